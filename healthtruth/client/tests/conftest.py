"""Shared fixtures for truth client tests."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Callable

import httpx
import pytest

from healthtruth.models.events import CanonicalEvent, EventKind
from healthtruth.models.ledger import (
    DailyFact,
    HealthScoreDoc,
    InsightDoc,
    Provenance,
    ReplayResponse,
)

BASE_URL = "https://api.test"
TEST_USER_ID = "user_2abc"
TEST_DAY = "2026-01-15"
COMPUTED_AT = datetime(2026, 1, 15, 20, 0, tzinfo=timezone.utc)
LATEST_EVENT_AT = datetime(2026, 1, 15, 18, 0, tzinfo=timezone.utc)


def replay_doc(
    *,
    pipeline_version: int = 1,
    events_count: int = 1,
    latest_canonical_event_at: datetime | None = LATEST_EVENT_AT,
    run_id: str = "run_001",
) -> dict[str, Any]:
    stamp = dict(
        user_id=TEST_USER_ID,
        day=TEST_DAY,
        computed_at=COMPUTED_AT,
        pipeline_version=pipeline_version,
        latest_canonical_event_at=latest_canonical_event_at,
    )
    replay = ReplayResponse(
        day=TEST_DAY,
        daily_fact=DailyFact(events_count=events_count, **stamp),
        health_score=HealthScoreDoc(
            model_version="1.0",
            composite_score=100,
            composite_tier="excellent",
            status="stable",
            **stamp,
        ),
        insights=InsightDoc(**stamp),
        provenance=Provenance(
            run_id=run_id,
            selection="latest",
            computed_at=COMPUTED_AT,
            pipeline_version=pipeline_version,
            latest_canonical_event_at=latest_canonical_event_at,
            events_count=events_count,
        ),
    )
    return replay.to_doc()


def canonical_doc(raw_event_id: str = "raw_1", logic_version: int = 1) -> dict[str, Any]:
    at = datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc)
    event = CanonicalEvent(
        id=f"{raw_event_id}_l{logic_version}",
        user_id=TEST_USER_ID,
        raw_event_id=raw_event_id,
        source_id="manual",
        provider="manual",
        kind=EventKind.weight,
        day=TEST_DAY,
        time_zone="America/New_York",
        observed_at=at,
        start=at,
        end=at,
        values={"weightKg": 82.5},
        schema_version=1,
        canonical_version=1,
        logic_version=logic_version,
        created_at=LATEST_EVENT_AT,
    )
    return event.to_doc()


Handler = Callable[[httpx.Request], httpx.Response]


@pytest.fixture
def make_http() -> Callable[[Handler], httpx.AsyncClient]:
    def _make(handler: Handler) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(handler))

    return _make
