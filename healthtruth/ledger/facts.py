"""Daily fact aggregation.

``aggregate_daily_fact`` folds one day's canonical events into a DailyFact.
``enrich_daily_fact`` adds rolling averages and the HRV baseline from the
previous days' facts. Both are pure; the caller supplies ``computed_at``.
"""

from __future__ import annotations

from datetime import datetime
from typing import Iterable, Sequence

from healthtruth.models.events import CanonicalEvent, EventKind
from healthtruth.models.ledger import (
    ActivityFacts,
    BodyFacts,
    DailyFact,
    RecoveryFacts,
    SleepFacts,
)

# Input categories a complete day is expected to have
EXPECTED_INPUTS: tuple[str, ...] = ("sleep", "steps", "workout", "weight", "hrv")


def _number(value: object) -> float | None:
    """Return a finite float or None (same contract as the adapters' _safe_float)."""
    if value is None or isinstance(value, bool):
        return None
    try:
        result = float(value)
    except (TypeError, ValueError):
        return None
    if result != result or result in (float("inf"), float("-inf")):
        return None
    return result


def _average(values: Iterable[float | None]) -> float | None:
    present = [v for v in values if v is not None]
    if not present:
        return None
    return sum(present) / len(present)


def _total(values: Iterable[float | None]) -> float | None:
    present = [v for v in values if v is not None]
    return sum(present) if present else None


def latest_logic_version(events: Sequence[CanonicalEvent]) -> list[CanonicalEvent]:
    """Keep only the highest logicVersion canonical event per raw event."""
    chosen: dict[str, CanonicalEvent] = {}
    for event in events:
        current = chosen.get(event.raw_event_id)
        if current is None or event.logic_version > current.logic_version:
            chosen[event.raw_event_id] = event
    return sorted(chosen.values(), key=lambda e: (e.observed_at, e.id))


def missing_inputs(events: Sequence[CanonicalEvent]) -> list[str]:
    present = {e.kind.value for e in events}
    return [kind for kind in EXPECTED_INPUTS if kind not in present]


# ---------------------------------------------------------------------------
# Section builders
# ---------------------------------------------------------------------------


def _sleep_facts(events: list[CanonicalEvent]) -> SleepFacts | None:
    if not events:
        return None
    minutes = [_number(e.values.get("totalMinutes")) for e in events]
    main = [
        _number(e.values.get("totalMinutes"))
        for e in events
        if e.values.get("isMainSleep", True)
    ]
    awakenings = _total(_number(e.values.get("awakenings")) for e in events)
    return SleepFacts(
        total_minutes=_total(minutes),
        main_sleep_minutes=_total(main),
        efficiency=_average(_number(e.values.get("efficiency")) for e in events),
        latency_minutes=_average(_number(e.values.get("latencyMinutes")) for e in events),
        awakenings=int(awakenings) if awakenings is not None else None,
    )


def _activity_facts(
    steps_events: list[CanonicalEvent], workout_events: list[CanonicalEvent]
) -> ActivityFacts | None:
    if not steps_events and not workout_events:
        return None
    steps = _total(_number(e.values.get("steps")) for e in steps_events)
    distance = _total(
        _number(e.values.get("distanceKm")) for e in steps_events + workout_events
    )
    return ActivityFacts(
        steps=int(steps) if steps is not None else None,
        distance_km=round(distance, 3) if distance is not None else None,
        move_minutes=_total(_number(e.values.get("moveMinutes")) for e in steps_events),
        workouts_count=len(workout_events) if workout_events else None,
        workout_minutes=_total(
            _number(e.values.get("durationMinutes")) for e in workout_events
        ),
        training_load=_total(_number(e.values.get("trainingLoad")) for e in workout_events),
    )


def _body_facts(events: list[CanonicalEvent]) -> BodyFacts | None:
    if not events:
        return None
    # Last reading of the day wins
    latest = max(events, key=lambda e: (e.start, e.id))
    return BodyFacts(
        weight_kg=_number(latest.values.get("weightKg")),
        body_fat_percent=_number(latest.values.get("bodyFatPercent")),
    )


def _recovery_facts(events: list[CanonicalEvent]) -> RecoveryFacts | None:
    if not events:
        return None
    rmssd = _average(_number(e.values.get("rmssdMs")) for e in events)
    if rmssd is None:
        return None
    return RecoveryFacts(hrv_rmssd=round(rmssd, 2))


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def aggregate_daily_fact(
    user_id: str,
    day: str,
    events: Sequence[CanonicalEvent],
    computed_at: datetime,
    pipeline_version: int,
) -> DailyFact:
    """Fold one day's canonical events into a DailyFact.

    ``events`` should already be reduced with ``latest_logic_version``.
    """
    by_kind: dict[EventKind, list[CanonicalEvent]] = {kind: [] for kind in EventKind}
    for event in events:
        by_kind[event.kind].append(event)

    latest_event_at = max((e.created_at for e in events), default=None)

    return DailyFact(
        user_id=user_id,
        day=day,
        computed_at=computed_at,
        pipeline_version=pipeline_version,
        latest_canonical_event_at=latest_event_at,
        missing_inputs=missing_inputs(events),
        events_count=len(events),
        sleep=_sleep_facts(by_kind[EventKind.sleep]),
        activity=_activity_facts(by_kind[EventKind.steps], by_kind[EventKind.workout]),
        body=_body_facts(by_kind[EventKind.weight]),
        recovery=_recovery_facts(by_kind[EventKind.hrv]),
    )


def enrich_daily_fact(
    today: DailyFact, history: Sequence[DailyFact], window_days: int = 7
) -> DailyFact:
    """Add rolling averages, weight delta and HRV baseline from ``history``.

    Args:
        today:       Aggregated fact for the target day.
        history:     Previous days' facts, oldest first, excluding today.
        window_days: Rolling average window, today included.

    Returns:
        A new DailyFact; ``today`` is not modified.
    """
    enriched = today.model_copy(deep=True)
    if not history:
        return enriched

    window = [*history, today][-window_days:]

    avg_steps = _average(
        _number(f.activity.steps) if f.activity else None for f in window
    )
    avg_load = _average(
        _number(f.activity.training_load) if f.activity else None for f in window
    )
    if avg_steps is not None or avg_load is not None:
        activity = enriched.activity or ActivityFacts()
        activity.steps_avg_7d = round(avg_steps, 1) if avg_steps is not None else None
        activity.training_load_avg_7d = round(avg_load, 1) if avg_load is not None else None
        enriched.activity = activity

    if enriched.body is not None and enriched.body.weight_kg is not None:
        prior_weights = [
            f.body.weight_kg for f in history if f.body and f.body.weight_kg is not None
        ]
        if prior_weights:
            enriched.body.weight_delta_kg = round(
                enriched.body.weight_kg - prior_weights[-1], 2
            )

    baseline = _average(
        f.recovery.hrv_rmssd if f.recovery else None for f in history
    )
    if baseline is not None:
        recovery = enriched.recovery or RecoveryFacts()
        recovery.hrv_baseline = round(baseline, 2)
        if recovery.hrv_rmssd is not None and baseline != 0:
            recovery.hrv_deviation_pct = round(
                (recovery.hrv_rmssd - baseline) / baseline * 100, 1
            )
        enriched.recovery = recovery

    return enriched
