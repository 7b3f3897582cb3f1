"""Shared fixtures for ingestion tests."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any

import pytest

from healthtruth.dependencies import AuthContext
from healthtruth.ingestion.gateway import IngestionGateway
from healthtruth.ingestion.idempotency import IdempotencyGuard
from healthtruth.ingestion.rate_limit import FixedWindowRateLimiter
from healthtruth.pipeline.triggers import InMemoryTriggerQueue
from healthtruth.pipeline.versions import PipelineVersions
from healthtruth.storage.memory import InMemoryHealthStore

TEST_USER_ID = "user_2abc"
NOW = datetime(2026, 1, 15, 18, 30, tzinfo=timezone.utc)


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime = NOW) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


class FakeMonotonic:
    def __init__(self) -> None:
        self.value = 1000.0

    def __call__(self) -> float:
        return self.value


def weight_body(**overrides: Any) -> dict[str, Any]:
    body: dict[str, Any] = {
        "type": "weight",
        "timeZone": "America/New_York",
        "payload": {"time": "2026-01-15T12:00:00Z", "weight": 82.5, "unit": "kg"},
    }
    body.update(overrides)
    return body


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
def monotonic() -> FakeMonotonic:
    return FakeMonotonic()


@pytest.fixture
def limiter(monotonic: FakeMonotonic) -> FixedWindowRateLimiter:
    return FixedWindowRateLimiter(3, 60, clock=monotonic)


@pytest.fixture
def guard(store: InMemoryHealthStore, clock: FakeClock) -> IdempotencyGuard:
    return IdempotencyGuard(store, ttl_seconds=3600, clock=clock)


@pytest.fixture
def gateway(
    store: InMemoryHealthStore,
    queue: InMemoryTriggerQueue,
    guard: IdempotencyGuard,
    limiter: FixedWindowRateLimiter,
    clock: FakeClock,
) -> IngestionGateway:
    return IngestionGateway(store, queue, guard, limiter, PipelineVersions(), clock=clock)


@pytest.fixture
def auth() -> AuthContext:
    return AuthContext(user_id=TEST_USER_ID)
