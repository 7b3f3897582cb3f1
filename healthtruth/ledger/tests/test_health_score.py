"""Tests for daily fact aggregation and the health score model."""

from __future__ import annotations

import pytest

from healthtruth.ledger.facts import aggregate_daily_fact, enrich_daily_fact, missing_inputs
from healthtruth.ledger.health_score import (
    STATUS_ATTENTION,
    STATUS_INSUFFICIENT,
    STATUS_STABLE,
    compute_health_score,
)
from healthtruth.ledger.tests.conftest import (
    T0,
    TEST_DAY,
    TEST_USER_ID,
    fact_with_hrv,
    full_day_events,
    make_event,
)
from healthtruth.models.events import EventKind


def _fact(events):
    return aggregate_daily_fact(TEST_USER_ID, TEST_DAY, events, T0, 1)


class TestAggregateDailyFact:
    def test_sections_from_full_day(self) -> None:
        fact = _fact(full_day_events())
        assert fact.events_count == 5
        assert fact.sleep.total_minutes == 450
        assert fact.sleep.efficiency == 0.9
        assert fact.activity.steps == 9000
        assert fact.activity.workouts_count == 1
        assert fact.activity.training_load == 90
        assert fact.body.weight_kg == 82.5
        assert fact.recovery.hrv_rmssd == 60
        assert fact.missing_inputs == []

    def test_steps_summed_across_events(self) -> None:
        events = [
            make_event(EventKind.steps, {"steps": 3000}, raw_id="a"),
            make_event(EventKind.steps, {"steps": 4500}, raw_id="b"),
        ]
        assert _fact(events).activity.steps == 7500

    def test_empty_day(self) -> None:
        fact = _fact([])
        assert fact.events_count == 0
        assert fact.latest_canonical_event_at is None
        assert fact.missing_inputs == ["sleep", "steps", "workout", "weight", "hrv"]

    def test_missing_inputs(self) -> None:
        events = [make_event(EventKind.weight, {"weightKg": 80}, raw_id="a")]
        assert missing_inputs(events) == ["sleep", "steps", "workout", "hrv"]


class TestEnrichDailyFact:
    def test_no_history_is_unchanged(self) -> None:
        fact = _fact(full_day_events())
        assert enrich_daily_fact(fact, []) == fact

    def test_weight_delta_and_rolling_steps(self) -> None:
        yesterday = _fact(full_day_events())
        yesterday.day = "2026-01-14"
        yesterday.body.weight_kg = 83.0
        yesterday.activity.steps = 7000
        enriched = enrich_daily_fact(_fact(full_day_events()), [yesterday])
        assert enriched.body.weight_delta_kg == -0.5
        assert enriched.activity.steps_avg_7d == 8000.0

    def test_input_not_mutated(self) -> None:
        today = _fact(full_day_events())
        enrich_daily_fact(today, [fact_with_hrv("2026-01-14", 50)])
        assert today.recovery.hrv_baseline is None


class TestHealthScore:
    def test_full_day(self, scoring_config) -> None:
        doc = compute_health_score(_fact(full_day_events()), [], T0, 1, scoring_config)
        domains = doc.domain_scores
        assert domains["sleep"].score == pytest.approx(90.0)
        assert domains["activity"].score == 75.0
        assert domains["body"].score == 100.0
        assert domains["recovery"].score == pytest.approx(45.5)
        assert doc.composite_score == 74
        assert doc.composite_tier == "good"
        assert doc.status == STATUS_STABLE
        assert doc.model_version == "1.0"

    def test_weights_renormalized_over_available_domains(self, scoring_config) -> None:
        events = [make_event(EventKind.weight, {"weightKg": 82.5}, raw_id="a")]
        doc = compute_health_score(_fact(events), [], T0, 1, scoring_config)
        assert doc.composite_score == 100
        assert doc.domain_scores["sleep"].available is False
        assert doc.domain_scores["recovery"].missing == ["hrv"]

    def test_no_data_is_insufficient(self, scoring_config) -> None:
        doc = compute_health_score(_fact([]), [], T0, 1, scoring_config)
        assert doc.composite_score == 0
        assert doc.status == STATUS_INSUFFICIENT

    def test_poor_day_needs_attention(self, scoring_config) -> None:
        events = [make_event(EventKind.sleep, {"totalMinutes": 300}, raw_id="a")]
        doc = compute_health_score(_fact(events), [], T0, 1, scoring_config)
        assert doc.composite_tier == "poor"
        assert doc.status == STATUS_ATTENTION

    def test_recovery_against_baseline(self, scoring_config) -> None:
        history = [fact_with_hrv(d, v) for d, v in (
            ("2026-01-12", 50), ("2026-01-13", 60), ("2026-01-14", 70),
        )]
        events = [make_event(EventKind.hrv, {"rmssdMs": 60}, raw_id="a")]
        doc = compute_health_score(_fact(events), history, T0, 1, scoring_config)
        assert doc.domain_scores["recovery"].score == 50.0
        assert "baseline over 3 days" in doc.domain_scores["recovery"].explanation

    def test_recovery_above_baseline_scores_higher(self, scoring_config) -> None:
        history = [fact_with_hrv(d, v) for d, v in (
            ("2026-01-12", 50), ("2026-01-13", 60), ("2026-01-14", 70),
        )]
        events = [make_event(EventKind.hrv, {"rmssdMs": 75}, raw_id="a")]
        doc = compute_health_score(_fact(events), history, T0, 1, scoring_config)
        assert doc.domain_scores["recovery"].score > 50.0

    def test_short_history_uses_absolute_band(self, scoring_config) -> None:
        history = [fact_with_hrv("2026-01-14", 30)]
        events = [make_event(EventKind.hrv, {"rmssdMs": 120}, raw_id="a")]
        doc = compute_health_score(_fact(events), history, T0, 1, scoring_config)
        assert doc.domain_scores["recovery"].score == 100.0
