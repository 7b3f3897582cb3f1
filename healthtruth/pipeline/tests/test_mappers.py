"""Tests for the versioned mappers and their unit conversions."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from healthtruth.errors import MappingError
from healthtruth.models.events import EventKind
from healthtruth.pipeline.mappers import (
    MappedEvent,
    MapperRegistry,
    build_default_registry,
    map_hrv_v1,
    map_sleep_v1,
    map_steps_v1,
    map_weight_v1,
    map_workout_v1,
)
from healthtruth.pipeline.tests.conftest import make_raw


class TestWeightMapper:
    def test_kilograms_pass_through(self) -> None:
        mapped = map_weight_v1(make_raw(EventKind.weight, {"weight": 82.5}))
        assert mapped.values == {"weightKg": 82.5}

    def test_pounds_converted(self) -> None:
        mapped = map_weight_v1(make_raw(EventKind.weight, {"weight": 180, "unit": "lb"}))
        assert mapped.values["weightKg"] == pytest.approx(81.65, abs=0.01)

    def test_time_defaults_to_observed_at(self) -> None:
        mapped = map_weight_v1(make_raw(EventKind.weight, {"weight": 70}))
        assert mapped.start == datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc)
        assert mapped.start == mapped.end


class TestSleepMapper:
    def test_total_minutes_from_window(self) -> None:
        payload = {"start": "2026-01-14T23:00:00Z", "end": "2026-01-15T06:30:00Z"}
        mapped = map_sleep_v1(make_raw(EventKind.sleep, payload))
        assert mapped.values["totalMinutes"] == 450.0

    def test_percent_efficiency_becomes_fraction(self) -> None:
        payload = {
            "start": "2026-01-14T23:00:00Z",
            "end": "2026-01-15T06:30:00Z",
            "efficiency": 91,
        }
        mapped = map_sleep_v1(make_raw(EventKind.sleep, payload))
        assert mapped.values["efficiency"] == pytest.approx(0.91)

    def test_fraction_efficiency_kept(self) -> None:
        payload = {
            "start": "2026-01-14T23:00:00Z",
            "end": "2026-01-15T06:30:00Z",
            "efficiency": 0.88,
            "totalMinutes": 400,
        }
        mapped = map_sleep_v1(make_raw(EventKind.sleep, payload))
        assert mapped.values["efficiency"] == pytest.approx(0.88)
        assert mapped.values["totalMinutes"] == 400


class TestActivityMappers:
    def test_steps_distance_in_miles(self) -> None:
        payload = {"start": "2026-01-15T00:00:00Z", "steps": 9000, "distance": 4, "distanceUnit": "mi"}
        mapped = map_steps_v1(make_raw(EventKind.steps, payload))
        assert mapped.values["distanceKm"] == pytest.approx(6.437, abs=0.001)
        assert mapped.start == mapped.end

    def test_steps_distance_in_meters(self) -> None:
        payload = {"start": "2026-01-15T00:00:00Z", "steps": 100, "distance": 750, "distanceUnit": "m"}
        mapped = map_steps_v1(make_raw(EventKind.steps, payload))
        assert mapped.values["distanceKm"] == 0.75

    def test_workout_seconds_to_minutes(self) -> None:
        payload = {"start": "2026-01-15T17:00:00Z", "sport": "run", "durationSeconds": 2700}
        mapped = map_workout_v1(make_raw(EventKind.workout, payload))
        assert mapped.values["durationMinutes"] == 45.0
        assert mapped.end == datetime(2026, 1, 15, 17, 45, tzinfo=timezone.utc)

    def test_workout_duration_from_window(self) -> None:
        payload = {
            "start": "2026-01-15T17:00:00Z",
            "end": "2026-01-15T18:10:00Z",
            "sport": "ride",
            "trainingLoad": 120,
        }
        mapped = map_workout_v1(make_raw(EventKind.workout, payload))
        assert mapped.values["durationMinutes"] == 70.0
        assert mapped.values["trainingLoad"] == 120

    def test_hrv(self) -> None:
        mapped = map_hrv_v1(make_raw(EventKind.hrv, {"rmssdMs": 55.2, "measurementType": "nightly"}))
        assert mapped.values == {"rmssdMs": 55.2, "measurementType": "nightly"}


class TestMapperRegistry:
    def test_default_registry_covers_every_kind_at_v1(self) -> None:
        registry = build_default_registry()
        for kind in EventKind:
            assert (kind, 1) in registry

    def test_missing_mapping(self) -> None:
        registry = build_default_registry()
        with pytest.raises(MappingError) as exc_info:
            registry.get(EventKind.sleep, 2)
        assert exc_info.value.code == "MAPPING_NOT_FOUND"
        assert exc_info.value.details["kind"] == "sleep"

    def test_register_new_version(self) -> None:
        registry = MapperRegistry()

        def map_weight_v2(raw):
            return MappedEvent(start=raw.observed_at, end=raw.observed_at, values={"weightKg": 1})

        registry.register(EventKind.weight, 2, map_weight_v2)
        assert registry.get(EventKind.weight, 2) is map_weight_v2
        assert (EventKind.weight, 1) not in registry

    def test_malformed_payload(self) -> None:
        with pytest.raises(MappingError) as exc_info:
            map_steps_v1(make_raw(EventKind.steps, {"steps": 10}))
        assert exc_info.value.code == "MALFORMED_PAYLOAD"
        assert exc_info.value.details["errors"][0]["loc"] == "start"
