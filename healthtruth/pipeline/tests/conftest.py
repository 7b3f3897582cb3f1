"""Shared fixtures for normalization and trigger tests."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any

import pytest

from healthtruth.models.events import EventKind, RawEvent
from healthtruth.pipeline.failures import FailureRecorder
from healthtruth.pipeline.normalization import NormalizationPipeline
from healthtruth.pipeline.triggers import InMemoryTriggerQueue
from healthtruth.pipeline.versions import PipelineVersions
from healthtruth.storage.memory import InMemoryHealthStore

TEST_USER_ID = "user_2abc"
RECEIVED_AT = datetime(2026, 1, 15, 18, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, start: datetime = RECEIVED_AT) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


def make_raw(
    kind: EventKind,
    payload: dict[str, Any],
    *,
    raw_id: str = "raw_1",
    observed_at: datetime = datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc),
    time_zone: str = "America/New_York",
    schema_version: int = 1,
) -> RawEvent:
    return RawEvent(
        id=raw_id,
        user_id=TEST_USER_ID,
        source_id="manual",
        provider="manual",
        kind=kind,
        observed_at=observed_at,
        received_at=RECEIVED_AT,
        time_zone=time_zone,
        payload=payload,
        schema_version=schema_version,
    )


@pytest.fixture
def store() -> InMemoryHealthStore:
    return InMemoryHealthStore()


@pytest.fixture
def queue() -> InMemoryTriggerQueue:
    return InMemoryTriggerQueue()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def versions() -> PipelineVersions:
    return PipelineVersions()


@pytest.fixture
def failures(store: InMemoryHealthStore, clock: FakeClock) -> FailureRecorder:
    return FailureRecorder(store, 1, clock)


@pytest.fixture
def pipeline(
    store: InMemoryHealthStore,
    queue: InMemoryTriggerQueue,
    versions: PipelineVersions,
    failures: FailureRecorder,
    clock: FakeClock,
) -> NormalizationPipeline:
    return NormalizationPipeline(store, queue, versions, failures=failures, clock=clock)
