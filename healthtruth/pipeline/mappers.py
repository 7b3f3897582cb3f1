"""Versioned RawEvent → canonical values mappers.

A mapper turns one raw event of a given ``(kind, schemaVersion)`` into the
canonical time window and unit-normalized ``values`` dict:

    weight   → weightKg, bodyFatPercent
    sleep    → totalMinutes, efficiency (fraction 0–1), latencyMinutes,
               awakenings, isMainSleep
    steps    → steps, distanceKm, moveMinutes
    workout  → sport, durationMinutes, intensity, trainingLoad, distanceKm, calories
    hrv      → rmssdMs, sdnnMs, measurementType

A missing registration is a ``MappingError`` with code ``MAPPING_NOT_FOUND``;
a payload the mapper cannot read is ``MALFORMED_PAYLOAD``. Both are terminal.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable

from pydantic import ValidationError as PydanticValidationError

from healthtruth.errors import MappingError
from healthtruth.models.base import as_utc
from healthtruth.models.events import EventKind, RawEvent
from healthtruth.models.payloads import (
    HrvPayload,
    SleepPayload,
    StepsPayload,
    WeightPayload,
    WorkoutPayload,
)

logger = logging.getLogger("healthtruth.pipeline.mappers")

CODE_MAPPING_NOT_FOUND = "MAPPING_NOT_FOUND"
CODE_MALFORMED_PAYLOAD = "MALFORMED_PAYLOAD"

LB_TO_KG = 0.45359237
MI_TO_KM = 1.609344

_DISTANCE_TO_KM: dict[str, float] = {"km": 1.0, "mi": MI_TO_KM, "m": 0.001}


@dataclass
class MappedEvent:
    """Output of a mapper, before it is stamped into a CanonicalEvent."""

    start: datetime
    end: datetime
    values: dict[str, Any] = field(default_factory=dict)


Mapper = Callable[[RawEvent], MappedEvent]


def _to_km(distance: float | None, unit: str) -> float | None:
    if distance is None:
        return None
    return round(distance * _DISTANCE_TO_KM[unit], 3)


def _drop_none(values: dict[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in values.items() if v is not None}


def _parse(model: type, raw: RawEvent):
    try:
        return model.model_validate(raw.payload)
    except PydanticValidationError as exc:
        raise MappingError(
            f"{raw.kind.value} payload could not be mapped",
            code=CODE_MALFORMED_PAYLOAD,
            details={
                "kind": raw.kind.value,
                "schemaVersion": raw.schema_version,
                "errors": [
                    {"loc": ".".join(str(p) for p in e["loc"]), "type": e["type"]}
                    for e in exc.errors()
                ],
            },
        ) from exc


# ---------------------------------------------------------------------------
# v1 mappers
# ---------------------------------------------------------------------------


def map_weight_v1(raw: RawEvent) -> MappedEvent:
    p: WeightPayload = _parse(WeightPayload, raw)
    at = as_utc(p.time or raw.observed_at)
    weight_kg = p.weight * LB_TO_KG if p.unit == "lb" else p.weight
    return MappedEvent(
        start=at,
        end=at,
        values=_drop_none({
            "weightKg": round(weight_kg, 2),
            "bodyFatPercent": p.body_fat_percent,
        }),
    )


def map_sleep_v1(raw: RawEvent) -> MappedEvent:
    p: SleepPayload = _parse(SleepPayload, raw)
    start, end = as_utc(p.start), as_utc(p.end)
    total = p.total_minutes
    if total is None:
        total = (end - start).total_seconds() / 60.0
    efficiency = p.efficiency
    if efficiency is not None and efficiency > 1:
        efficiency = efficiency / 100.0
    return MappedEvent(
        start=start,
        end=end,
        values=_drop_none({
            "totalMinutes": round(total, 1),
            "efficiency": round(efficiency, 4) if efficiency is not None else None,
            "latencyMinutes": p.latency_minutes,
            "awakenings": p.awakenings,
            "isMainSleep": p.is_main_sleep,
        }),
    )


def map_steps_v1(raw: RawEvent) -> MappedEvent:
    p: StepsPayload = _parse(StepsPayload, raw)
    start = as_utc(p.start)
    end = as_utc(p.end) if p.end else start
    return MappedEvent(
        start=start,
        end=end,
        values=_drop_none({
            "steps": p.steps,
            "distanceKm": _to_km(p.distance, p.distance_unit),
            "moveMinutes": p.move_minutes,
        }),
    )


def map_workout_v1(raw: RawEvent) -> MappedEvent:
    p: WorkoutPayload = _parse(WorkoutPayload, raw)
    start = as_utc(p.start)
    if p.duration_minutes is not None:
        minutes = p.duration_minutes
    elif p.duration_seconds is not None:
        minutes = p.duration_seconds / 60.0
    else:
        minutes = (as_utc(p.end) - start).total_seconds() / 60.0
    end = as_utc(p.end) if p.end else start + timedelta(minutes=minutes)
    return MappedEvent(
        start=start,
        end=end,
        values=_drop_none({
            "sport": p.sport,
            "durationMinutes": round(minutes, 1),
            "intensity": p.intensity,
            "trainingLoad": p.training_load,
            "distanceKm": _to_km(p.distance, p.distance_unit),
            "calories": p.calories,
        }),
    )


def map_hrv_v1(raw: RawEvent) -> MappedEvent:
    p: HrvPayload = _parse(HrvPayload, raw)
    at = as_utc(p.time or raw.observed_at)
    return MappedEvent(
        start=at,
        end=at,
        values=_drop_none({
            "rmssdMs": p.rmssd_ms,
            "sdnnMs": p.sdnn_ms,
            "measurementType": p.measurement_type,
        }),
    )


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


class MapperRegistry:
    """Mappers keyed by ``(kind, schemaVersion)``.

    Usage::

        registry = build_default_registry()
        mapped = registry.get(EventKind.weight, 1)(raw_event)
    """

    def __init__(self) -> None:
        self._mappers: dict[tuple[EventKind, int], Mapper] = {}

    def register(self, kind: EventKind, schema_version: int, mapper: Mapper) -> None:
        self._mappers[(kind, schema_version)] = mapper
        logger.debug("Registered mapper %s v%d", kind.value, schema_version)

    def get(self, kind: EventKind, schema_version: int) -> Mapper:
        """Return the mapper for a pair.

        Raises:
            MappingError: With code ``MAPPING_NOT_FOUND`` if none is registered.
        """
        mapper = self._mappers.get((kind, schema_version))
        if mapper is None:
            raise MappingError(
                f"No mapping registered for {kind.value} schemaVersion {schema_version}",
                code=CODE_MAPPING_NOT_FOUND,
                details={
                    "kind": kind.value,
                    "schemaVersion": schema_version,
                    "available": sorted(f"{k.value}@v{v}" for k, v in self._mappers),
                },
            )
        return mapper

    def __contains__(self, key: tuple[EventKind, int]) -> bool:
        return key in self._mappers


def build_default_registry() -> MapperRegistry:
    registry = MapperRegistry()
    registry.register(EventKind.weight, 1, map_weight_v1)
    registry.register(EventKind.sleep, 1, map_sleep_v1)
    registry.register(EventKind.steps, 1, map_steps_v1)
    registry.register(EventKind.workout, 1, map_workout_v1)
    registry.register(EventKind.hrv, 1, map_hrv_v1)
    return registry
