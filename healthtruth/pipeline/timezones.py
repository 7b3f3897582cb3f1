"""Day-key resolution.

The rollup grain is a calendar day in the user's local zone. An unknown or
malformed IANA name falls back to UTC deterministically and the fallback is
flagged on the canonical event so it is never silent.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

logger = logging.getLogger("healthtruth.pipeline.timezones")

UTC_ZONE = "UTC"


@dataclass(frozen=True)
class DayKey:
    day: str  # YYYY-MM-DD
    time_zone: str  # zone actually used
    fallback: bool = False


def resolve_zone(name: str | None) -> tuple[ZoneInfo | timezone, str, bool]:
    """Return ``(tzinfo, effective_name, fell_back)`` for an IANA zone name."""
    if name is None or name.upper() == UTC_ZONE:
        return timezone.utc, UTC_ZONE, False
    try:
        return ZoneInfo(name), name, False
    except (ZoneInfoNotFoundError, ValueError, OSError):
        logger.warning("Unknown time zone %r, falling back to UTC", name)
        return timezone.utc, UTC_ZONE, True


def day_key(observed_at: datetime, time_zone: str | None) -> DayKey:
    """Format ``observed_at`` as ``YYYY-MM-DD`` in ``time_zone``.

    Naive datetimes are taken to be UTC. The result depends only on the two
    arguments.
    """
    if observed_at.tzinfo is None:
        observed_at = observed_at.replace(tzinfo=timezone.utc)
    tz, effective, fallback = resolve_zone(time_zone)
    local = observed_at.astimezone(tz)
    return DayKey(day=local.date().isoformat(), time_zone=effective, fallback=fallback)
