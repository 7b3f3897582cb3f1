"""Pydantic models for the write side: idempotency records, raw events,
canonical events and failure entries."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import Field

from healthtruth.models.base import DayKey, TruthBase, utc_now


# ---------- Enums ----------

class EventKind(str, Enum):
    weight = "weight"
    sleep = "sleep"
    steps = "steps"
    workout = "workout"
    hrv = "hrv"


class SourceType(str, Enum):
    manual = "manual"
    device = "device"
    upload = "upload"


# ---------- Idempotency ----------

class IdempotencyRecord(TruthBase):
    key: str
    created_at: datetime
    expires_at: datetime

    def is_live(self, now: datetime) -> bool:
        return now < self.expires_at


# ---------- Raw events ----------

class RawEvent(TruthBase):
    """Immutable raw observation as accepted by the ingestion gateway."""

    id: str
    user_id: str
    source_id: str
    source_type: SourceType = SourceType.manual
    provider: str = "manual"
    kind: EventKind
    observed_at: datetime
    received_at: datetime
    time_zone: str = "UTC"
    payload: dict[str, Any]
    schema_version: int = 1


class IngestEventRequest(TruthBase):
    """Body of ``POST /events/ingest``.

    ``type`` is the declared event kind; ``payload`` is validated against that
    kind's schema before anything is persisted.
    """

    type: EventKind
    source: str | None = Field(default=None, max_length=100)
    source_type: SourceType = SourceType.manual
    occurred_at: datetime | None = None
    time_zone: str | None = Field(default=None, max_length=64)
    schema_version: int | None = Field(default=None, ge=1)
    payload: dict[str, Any]


class IngestEventResponse(TruthBase):
    accepted: bool
    trace_id: str
    raw_event_id: str | None = None
    day: DayKey | None = None


# ---------- Canonical events ----------

class CanonicalEvent(TruthBase):
    """A raw event normalized into canonical units.

    ``values`` holds the kind-specific fields (``weightKg``, ``totalMinutes``,
    ``steps`` ...). At most one canonical event exists per
    (raw_event_id, logic_version); the id encodes that pair.
    """

    id: str
    user_id: str
    raw_event_id: str
    source_id: str
    provider: str
    kind: EventKind
    day: DayKey
    time_zone: str
    time_zone_fallback: bool = False
    observed_at: datetime
    start: datetime
    end: datetime
    values: dict[str, Any] = Field(default_factory=dict)
    schema_version: int
    canonical_version: int
    logic_version: int
    created_at: datetime = Field(default_factory=utc_now)


def canonical_event_id(raw_event_id: str, logic_version: int) -> str:
    return f"{raw_event_id}_l{logic_version}"


class CanonicalEventsResponse(TruthBase):
    """Canonical events for one day, latest logicVersion per raw event.

    ``latestCanonicalEventAt`` is the newest canonical write among ``items``,
    the same value a rollup of this day stamps on its DailyFact.
    """

    day: DayKey
    items: list[CanonicalEvent] = Field(default_factory=list)
    events_count: int = 0
    latest_canonical_event_at: datetime | None = None


class EventLineage(TruthBase):
    """Where one canonical event came from and which versions produced it."""

    canonical_event_id: str
    raw_event_id: str
    kind: EventKind
    day: DayKey
    provider: str
    schema_version: int
    canonical_version: int
    logic_version: int
    raw_event_present: bool
    raw_received_at: datetime | None = None
    source_type: SourceType | None = None
    event: CanonicalEvent


# ---------- Failures ----------

class FailureEntry(TruthBase):
    id: str
    user_id: str
    day: DayKey
    code: str
    message: str
    raw_event_id: str | None = None
    details: dict[str, Any] | None = None
    created_at: datetime = Field(default_factory=utc_now)


class AccountDeleteResponse(TruthBase):
    accepted: bool = True
    request_id: str
