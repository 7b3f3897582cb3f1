"""Per-kind raw payload schemas.

The ingestion gateway validates ``payload`` against the schema for the declared
kind before persisting anything; the normalization mappers re-parse the stored
payload with the same models so both sides agree on field names and bounds.
Payloads are in vendor or user units; conversion to canonical units happens in
``healthtruth.pipeline.mappers``.
"""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import Field, model_validator

from healthtruth.models.base import TruthBase
from healthtruth.models.events import EventKind


class EventPayload(TruthBase):
    timezone: str | None = Field(default=None, max_length=64)

    def observed_time(self) -> datetime | None:
        """The payload's own notion of when the observation happened."""
        return None


class _WindowPayload(EventPayload):
    start: datetime
    end: datetime | None = None

    @model_validator(mode="after")
    def _end_not_before_start(self) -> "_WindowPayload":
        if self.end is not None and self.end < self.start:
            raise ValueError("end must not be before start")
        return self

    def observed_time(self) -> datetime | None:
        return self.start


class WeightPayload(EventPayload):
    time: datetime | None = None
    weight: float = Field(gt=0, le=1000)
    unit: Literal["kg", "lb"] = "kg"
    body_fat_percent: float | None = Field(default=None, ge=0, le=100)

    def observed_time(self) -> datetime | None:
        return self.time


class SleepPayload(_WindowPayload):
    end: datetime
    total_minutes: float | None = Field(default=None, ge=0, le=1440)
    efficiency: float | None = Field(default=None, ge=0, le=100)
    latency_minutes: float | None = Field(default=None, ge=0, le=600)
    awakenings: int | None = Field(default=None, ge=0)
    is_main_sleep: bool = True


class StepsPayload(_WindowPayload):
    steps: int = Field(ge=0, le=200_000)
    distance: float | None = Field(default=None, ge=0)
    distance_unit: Literal["km", "mi", "m"] = "km"
    move_minutes: float | None = Field(default=None, ge=0, le=1440)


class WorkoutPayload(_WindowPayload):
    sport: str = Field(min_length=1, max_length=64)
    duration_minutes: float | None = Field(default=None, ge=0, le=1440)
    duration_seconds: float | None = Field(default=None, ge=0, le=86400)
    intensity: Literal["easy", "moderate", "hard"] | None = None
    training_load: float | None = Field(default=None, ge=0)
    distance: float | None = Field(default=None, ge=0)
    distance_unit: Literal["km", "mi", "m"] = "km"
    calories: float | None = Field(default=None, ge=0)

    @model_validator(mode="after")
    def _has_duration(self) -> "WorkoutPayload":
        if (
            self.duration_minutes is None
            and self.duration_seconds is None
            and self.end is None
        ):
            raise ValueError(
                "one of durationMinutes, durationSeconds or end is required"
            )
        return self


class HrvPayload(EventPayload):
    time: datetime | None = None
    rmssd_ms: float | None = Field(default=None, gt=0, le=500)
    sdnn_ms: float | None = Field(default=None, gt=0, le=500)
    measurement_type: Literal["nightly", "spot"] | None = None

    @model_validator(mode="after")
    def _has_reading(self) -> "HrvPayload":
        if self.rmssd_ms is None and self.sdnn_ms is None:
            raise ValueError("one of rmssdMs or sdnnMs is required")
        return self

    def observed_time(self) -> datetime | None:
        return self.time


# Kind → payload schema accepted at the ingestion boundary.
PAYLOAD_SCHEMAS: dict[EventKind, type[EventPayload]] = {
    EventKind.weight: WeightPayload,
    EventKind.sleep: SleepPayload,
    EventKind.steps: StepsPayload,
    EventKind.workout: WorkoutPayload,
    EventKind.hrv: HrvPayload,
}


def get_payload_schema(kind: EventKind) -> type[EventPayload]:
    """Return the payload model for a kind.

    Raises:
        KeyError: If no schema is registered for ``kind``.
    """
    if kind not in PAYLOAD_SCHEMAS:
        raise KeyError(
            f"No payload schema registered for kind '{kind}'. "
            f"Available: {[k.value for k in PAYLOAD_SCHEMAS]}"
        )
    return PAYLOAD_SCHEMAS[kind]
