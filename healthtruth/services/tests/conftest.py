from __future__ import annotations

from datetime import datetime, timezone

import pytest

from healthtruth.config import Settings
from healthtruth.dependencies import AuthContext
from healthtruth.errors import TransientStorageError
from healthtruth.models.events import CanonicalEvent, EventKind, canonical_event_id
from healthtruth.services.container import Services, build_services
from healthtruth.storage.memory import InMemoryHealthStore

TEST_USER_ID = "user_2abc"

WEIGHT_EVENT = {
    "type": "weight",
    "timeZone": "America/New_York",
    "payload": {"time": "2026-01-15T12:00:00Z", "weight": 82.5, "unit": "kg"},
}


def make_canonical(
    raw_event_id: str = "raw_1",
    *,
    logic_version: int = 1,
    user_id: str = TEST_USER_ID,
    day: str = "2026-01-15",
    created_at: datetime = datetime(2026, 1, 15, 18, 0, tzinfo=timezone.utc),
) -> CanonicalEvent:
    at = datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc)
    return CanonicalEvent(
        id=canonical_event_id(raw_event_id, logic_version),
        user_id=user_id,
        raw_event_id=raw_event_id,
        source_id="manual",
        provider="manual",
        kind=EventKind.weight,
        day=day,
        time_zone="America/New_York",
        observed_at=at,
        start=at,
        end=at,
        values={"weightKg": 82.5},
        schema_version=1,
        canonical_version=1,
        logic_version=logic_version,
        created_at=created_at,
    )


class UnreadableRawStore(InMemoryHealthStore):
    """Accepts writes but fails every raw event read."""

    def __init__(self) -> None:
        super().__init__()
        self.raw_reads = 0

    async def get_raw_event(self, user_id, raw_event_id):
        self.raw_reads += 1
        raise TransientStorageError("replica lagging")


@pytest.fixture
def settings() -> Settings:
    return Settings(jwt_secret="unused", database_url=None, trigger_max_attempts=3)


@pytest.fixture
def sleeps() -> list[float]:
    return []


@pytest.fixture
def make_services(settings, sleeps):
    async def fake_sleep(delay: float) -> None:
        sleeps.append(delay)

    def factory(store: InMemoryHealthStore | None = None) -> Services:
        return build_services(settings, store=store or InMemoryHealthStore(), sleep=fake_sleep)

    return factory


@pytest.fixture
def auth() -> AuthContext:
    return AuthContext(user_id=TEST_USER_ID)
