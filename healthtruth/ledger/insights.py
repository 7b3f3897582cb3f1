"""Rule-based daily insights.

Each rule reads one DailyFact field and fires when it crosses a threshold
from ``scoring.yaml``. Insight ids are ``{day}_{kind}`` so a rerun of the
same day produces the same ids.
"""

from __future__ import annotations

from datetime import datetime
from typing import Callable

from healthtruth.ledger.config_loader import InsightConfig, ScoringConfig, get_scoring_config
from healthtruth.models.ledger import DailyFact, Insight, InsightDoc, InsightEvidence


def _insight(
    fact: DailyFact,
    cfg: InsightConfig,
    kind: str,
    severity: str,
    title: str,
    message: str,
    tags: list[str],
    evidence: InsightEvidence,
) -> Insight:
    return Insight(
        id=f"{fact.day}_{kind}",
        kind=kind,
        title=title,
        message=message,
        severity=severity,
        tags=tags,
        evidence=[evidence],
        rule_version=cfg.rule_version,
    )


def _low_sleep(fact: DailyFact, cfg: InsightConfig) -> Insight | None:
    minutes = fact.sleep.total_minutes if fact.sleep else None
    threshold = cfg.low_sleep_duration_minutes
    if minutes is None or minutes >= threshold:
        return None
    return _insight(
        fact, cfg, "low_sleep_duration", "warning",
        "Low sleep duration",
        f"You slept about {minutes / 60:.1f} hours, below the recommended "
        f"{threshold / 60:.0f}+ hours.",
        ["sleep", "recovery"],
        InsightEvidence(
            fact_path="sleep.totalMinutes", value=minutes, threshold=threshold, direction="below"
        ),
    )


def _low_steps(fact: DailyFact, cfg: InsightConfig) -> Insight | None:
    steps = fact.activity.steps if fact.activity else None
    threshold = cfg.low_steps
    if steps is None or steps >= threshold:
        return None
    return _insight(
        fact, cfg, "low_steps", "info",
        "Low daily movement",
        f"You logged {steps:,} steps, below the target of {threshold:,.0f}.",
        ["activity", "movement"],
        InsightEvidence(
            fact_path="activity.steps", value=steps, threshold=threshold, direction="below"
        ),
    )


def _high_training_load(fact: DailyFact, cfg: InsightConfig) -> Insight | None:
    load = fact.activity.training_load if fact.activity else None
    threshold = cfg.high_training_load
    if load is None or load <= threshold:
        return None
    return _insight(
        fact, cfg, "high_training_load", "warning",
        "High training load",
        f"Your training load ({load:.0f}) was high today. Plan recovery over the next 24-48 hours.",
        ["training", "recovery"],
        InsightEvidence(
            fact_path="activity.trainingLoad", value=load, threshold=threshold, direction="above"
        ),
    )


def _low_hrv(fact: DailyFact, cfg: InsightConfig) -> Insight | None:
    hrv = fact.recovery.hrv_rmssd if fact.recovery else None
    threshold = cfg.low_hrv_rmssd_ms
    if hrv is None or hrv >= threshold:
        return None
    return _insight(
        fact, cfg, "low_hrv", "info",
        "Low HRV today",
        f"Your HRV (RMSSD) was {hrv:.0f} ms today, which may indicate higher stress "
        f"or lower recovery.",
        ["recovery", "hrv"],
        InsightEvidence(
            fact_path="recovery.hrvRmssd", value=hrv, threshold=threshold, direction="below"
        ),
    )


RULES: tuple[Callable[[DailyFact, InsightConfig], Insight | None], ...] = (
    _low_sleep,
    _low_steps,
    _high_training_load,
    _low_hrv,
)


def generate_insights(
    fact: DailyFact,
    computed_at: datetime,
    pipeline_version: int,
    config: ScoringConfig | None = None,
) -> InsightDoc:
    cfg = (config or get_scoring_config()).insights
    items = [insight for rule in RULES if (insight := rule(fact, cfg)) is not None]
    return InsightDoc(
        user_id=fact.user_id,
        day=fact.day,
        computed_at=computed_at,
        pipeline_version=pipeline_version,
        latest_canonical_event_at=fact.latest_canonical_event_at,
        missing_inputs=list(fact.missing_inputs),
        items=items,
    )
