"""Tests for rule-based insights."""

from __future__ import annotations

from healthtruth.ledger.facts import aggregate_daily_fact
from healthtruth.ledger.insights import generate_insights
from healthtruth.ledger.tests.conftest import T0, TEST_DAY, TEST_USER_ID, full_day_events, make_event
from healthtruth.models.events import EventKind


def _doc(events, config):
    fact = aggregate_daily_fact(TEST_USER_ID, TEST_DAY, events, T0, 1)
    return generate_insights(fact, T0, 1, config)


class TestInsights:
    def test_healthy_day_has_no_insights(self, scoring_config) -> None:
        assert _doc(full_day_events(), scoring_config).items == []

    def test_all_rules_fire(self, scoring_config) -> None:
        events = [
            make_event(EventKind.sleep, {"totalMinutes": 360}, raw_id="s"),
            make_event(EventKind.steps, {"steps": 4000}, raw_id="st"),
            make_event(EventKind.workout, {"durationMinutes": 90, "trainingLoad": 200}, raw_id="w"),
            make_event(EventKind.hrv, {"rmssdMs": 40}, raw_id="h"),
        ]
        doc = _doc(events, scoring_config)
        kinds = [i.kind for i in doc.items]
        assert kinds == ["low_sleep_duration", "low_steps", "high_training_load", "low_hrv"]

    def test_ids_are_stable_per_day(self, scoring_config) -> None:
        events = [make_event(EventKind.steps, {"steps": 1200}, raw_id="st")]
        first = _doc(events, scoring_config)
        second = _doc(events, scoring_config)
        assert [i.id for i in first.items] == ["2026-01-15_low_steps"]
        assert [i.id for i in first.items] == [i.id for i in second.items]

    def test_evidence_and_stamps(self, scoring_config) -> None:
        events = [make_event(EventKind.sleep, {"totalMinutes": 360}, raw_id="s")]
        doc = _doc(events, scoring_config)
        insight = doc.items[0]
        assert insight.severity == "warning"
        assert insight.rule_version == scoring_config.insights.rule_version
        evidence = insight.evidence[0]
        assert (evidence.fact_path, evidence.value, evidence.threshold, evidence.direction) == (
            "sleep.totalMinutes", 360, 420, "below",
        )
        assert doc.computed_at == T0
        assert doc.pipeline_version == 1

    def test_threshold_is_exclusive(self, scoring_config) -> None:
        events = [make_event(EventKind.steps, {"steps": 8000}, raw_id="st")]
        assert _doc(events, scoring_config).items == []
