"""Shared fixtures for derived-ledger tests."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Iterator

import pytest

from healthtruth.ledger.config_loader import ScoringConfig, load_scoring_config
from healthtruth.ledger.engine import DerivedLedger
from healthtruth.models.events import CanonicalEvent, EventKind, canonical_event_id
from healthtruth.models.ledger import DailyFact, RecoveryFacts
from healthtruth.pipeline.versions import PipelineVersions
from healthtruth.storage.memory import InMemoryHealthStore

TEST_USER_ID = "user_2abc"
TEST_DAY = "2026-01-15"
T0 = datetime(2026, 1, 15, 20, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, start: datetime = T0) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


class RunIds:
    """Deterministic run id factory: run_001, run_002, ..."""

    def __init__(self) -> None:
        self._counter: Iterator[int] = iter(range(1, 10_000))
        self.forced: list[str] = []

    def __call__(self) -> str:
        if self.forced:
            return self.forced.pop(0)
        return f"run_{next(self._counter):03d}"


def make_event(
    kind: EventKind,
    values: dict[str, Any],
    *,
    raw_id: str,
    day: str = TEST_DAY,
    logic_version: int = 1,
    observed_at: datetime = datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc),
    created_at: datetime = datetime(2026, 1, 15, 18, 0, tzinfo=timezone.utc),
) -> CanonicalEvent:
    return CanonicalEvent(
        id=canonical_event_id(raw_id, logic_version),
        user_id=TEST_USER_ID,
        raw_event_id=raw_id,
        source_id="manual",
        provider="manual",
        kind=kind,
        day=day,
        time_zone="America/New_York",
        observed_at=observed_at,
        start=observed_at,
        end=observed_at,
        values=values,
        schema_version=1,
        canonical_version=1,
        logic_version=logic_version,
        created_at=created_at,
    )


def full_day_events(day: str = TEST_DAY, prefix: str = "raw") -> list[CanonicalEvent]:
    return [
        make_event(EventKind.sleep, {"totalMinutes": 450, "efficiency": 0.9}, raw_id=f"{prefix}_s", day=day),
        make_event(EventKind.steps, {"steps": 9000, "moveMinutes": 40}, raw_id=f"{prefix}_st", day=day),
        make_event(
            EventKind.workout,
            {"sport": "run", "durationMinutes": 45, "trainingLoad": 90},
            raw_id=f"{prefix}_w",
            day=day,
        ),
        make_event(EventKind.weight, {"weightKg": 82.5}, raw_id=f"{prefix}_kg", day=day),
        make_event(EventKind.hrv, {"rmssdMs": 60}, raw_id=f"{prefix}_h", day=day),
    ]


def fact_with_hrv(day: str, rmssd: float | None) -> DailyFact:
    return DailyFact(
        user_id=TEST_USER_ID,
        day=day,
        computed_at=T0,
        pipeline_version=1,
        recovery=RecoveryFacts(hrv_rmssd=rmssd) if rmssd is not None else None,
    )


@pytest.fixture
def scoring_config() -> ScoringConfig:
    return load_scoring_config()


@pytest.fixture
def store() -> InMemoryHealthStore:
    return InMemoryHealthStore()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def run_ids() -> RunIds:
    return RunIds()


@pytest.fixture
def ledger(
    store: InMemoryHealthStore,
    clock: FakeClock,
    run_ids: RunIds,
    scoring_config: ScoringConfig,
) -> DerivedLedger:
    return DerivedLedger(
        store,
        PipelineVersions(),
        clock=clock,
        config=scoring_config,
        run_id_factory=run_ids,
    )
