"""Tests for day-key resolution."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from healthtruth.pipeline.timezones import day_key, resolve_zone


class TestDayKey:
    def test_new_york_midday(self) -> None:
        key = day_key(datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc), "America/New_York")
        assert key.day == "2026-01-15"
        assert key.fallback is False

    def test_utc_evening_is_previous_day_in_los_angeles(self) -> None:
        key = day_key(datetime(2026, 1, 15, 3, 0, tzinfo=timezone.utc), "America/Los_Angeles")
        assert key.day == "2026-01-14"

    def test_utc_evening_is_next_day_in_tokyo(self) -> None:
        key = day_key(datetime(2026, 1, 15, 20, 0, tzinfo=timezone.utc), "Asia/Tokyo")
        assert key.day == "2026-01-16"

    @pytest.mark.parametrize("zone", ["Not/A_Zone", "", "../etc/passwd", "+05:00"])
    def test_invalid_zone_falls_back_to_utc(self, zone: str) -> None:
        key = day_key(datetime(2026, 1, 15, 23, 30, tzinfo=timezone.utc), zone)
        assert key.day == "2026-01-15"
        assert key.time_zone == "UTC"
        assert key.fallback is True

    def test_deterministic(self) -> None:
        at = datetime(2026, 3, 8, 6, 59, tzinfo=timezone.utc)
        assert day_key(at, "America/Chicago") == day_key(at, "America/Chicago")

    def test_naive_datetime_treated_as_utc(self) -> None:
        key = day_key(datetime(2026, 1, 15, 23, 0), "UTC")
        assert key.day == "2026-01-15"
        assert key.fallback is False


def test_resolve_zone_none_is_utc() -> None:
    tz, name, fallback = resolve_zone(None)
    assert tz is timezone.utc
    assert (name, fallback) == ("UTC", False)
