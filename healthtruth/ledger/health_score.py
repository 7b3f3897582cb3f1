"""Health score model.

Computes a 0–100 composite from four domains scored on the day's DailyFact:

    - recovery: HRV vs personal baseline (sigmoid), else absolute RMSSD band
    - activity: best of steps, training load and move minutes
    - sleep:    duration and efficiency composite
    - body:     a body measurement was logged

Domain weights, tiers and scaling bands come from ``scoring.yaml``. Domains
without data are marked unavailable and the remaining weights are
re-normalized, as the readiness scorer does for missing components.
"""

from __future__ import annotations

import logging
import math
from datetime import datetime
from typing import Sequence

from healthtruth.ledger.config_loader import HealthScoreConfig, ScoringConfig, get_scoring_config
from healthtruth.models.ledger import DailyFact, DomainScore, HealthScoreDoc

logger = logging.getLogger("healthtruth.ledger.health_score")

STATUS_STABLE = "stable"
STATUS_ATTENTION = "attention_required"
STATUS_INSUFFICIENT = "insufficient_data"


def _band_score(value: float, band: tuple[float, float]) -> float:
    """Linear 0–100 over ``band``, clamped."""
    low, high = band
    return round(min(max((value - low) / (high - low), 0.0), 1.0) * 100, 1)


def _sigmoid_score(value: float, mean: float, std: float) -> float:
    """0–100; the baseline mean maps to 50, higher values score higher."""
    if std <= 0:
        return 50.0 if value == mean else (100.0 if value > mean else 0.0)
    z = (value - mean) / std
    return round(100.0 / (1.0 + math.exp(-z * 1.5)), 1)


def _unavailable(cfg: HealthScoreConfig, missing: list[str], explanation: str) -> DomainScore:
    return DomainScore(
        score=0.0,
        tier=cfg.tier_for(0.0),
        available=False,
        missing=missing,
        explanation=explanation,
    )


# ---------------------------------------------------------------------------
# Domain scorers
# ---------------------------------------------------------------------------


def _score_recovery(
    fact: DailyFact, history: Sequence[DailyFact], cfg: HealthScoreConfig, min_days: int
) -> DomainScore:
    hrv = fact.recovery.hrv_rmssd if fact.recovery else None
    if hrv is None:
        return _unavailable(cfg, ["hrv"], "No HRV reading for this day")

    baseline = [
        f.recovery.hrv_rmssd for f in history if f.recovery and f.recovery.hrv_rmssd is not None
    ]
    if len(baseline) >= min_days:
        mean = sum(baseline) / len(baseline)
        std = math.sqrt(sum((v - mean) ** 2 for v in baseline) / len(baseline))
        score = _sigmoid_score(hrv, mean, std)
        explanation = f"HRV {hrv:.1f}ms vs {mean:.1f}ms baseline over {len(baseline)} days"
    else:
        score = _band_score(hrv, cfg.bands["hrv_rmssd_ms"])
        explanation = f"HRV {hrv:.1f}ms (baseline needs {min_days}+ days, have {len(baseline)})"

    return DomainScore(score=score, tier=cfg.tier_for(score), explanation=explanation)


def _score_activity(fact: DailyFact, cfg: HealthScoreConfig) -> DomainScore:
    a = fact.activity
    signals: dict[str, float] = {}
    missing: list[str] = []
    for name, value, band in (
        ("steps", a.steps if a else None, "steps"),
        ("training_load", a.training_load if a else None, "training_load"),
        ("move_minutes", a.move_minutes if a else None, "move_minutes"),
    ):
        if value is None:
            missing.append(name)
        else:
            signals[name] = _band_score(float(value), cfg.bands[band])

    if not signals:
        return _unavailable(cfg, missing, "No steps, workouts or move minutes logged")

    best = max(signals, key=lambda k: signals[k])
    score = signals[best]
    return DomainScore(
        score=score,
        tier=cfg.tier_for(score),
        missing=missing,
        explanation=f"Best activity signal: {best}",
    )


def _score_sleep(fact: DailyFact, cfg: HealthScoreConfig) -> DomainScore:
    s = fact.sleep
    if s is None or s.total_minutes is None:
        return _unavailable(cfg, ["sleep"], "No sleep logged")

    duration = _band_score(s.total_minutes, cfg.bands["sleep_minutes"])
    missing: list[str] = []
    if s.efficiency is not None:
        efficiency = _band_score(s.efficiency, cfg.bands["sleep_efficiency"])
        score = round(duration * 0.7 + efficiency * 0.3, 1)
    else:
        missing.append("efficiency")
        score = duration

    hours = s.total_minutes / 60.0
    eff = f"{s.efficiency * 100:.0f}%" if s.efficiency is not None else "n/a"
    return DomainScore(
        score=score,
        tier=cfg.tier_for(score),
        missing=missing,
        explanation=f"{hours:.1f}h sleep, {eff} efficiency",
    )


def _score_body(fact: DailyFact, cfg: HealthScoreConfig) -> DomainScore:
    b = fact.body
    if b is None or (b.weight_kg is None and b.body_fat_percent is None):
        return _unavailable(cfg, ["weight"], "No body measurement logged")
    return DomainScore(score=100.0, tier=cfg.tier_for(100.0), explanation="Body measurement logged")


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def compute_health_score(
    fact: DailyFact,
    history: Sequence[DailyFact],
    computed_at: datetime,
    pipeline_version: int,
    config: ScoringConfig | None = None,
) -> HealthScoreDoc:
    """Score one day.

    Args:
        fact:             Enriched DailyFact for the day.
        history:          Previous days' facts (baseline window), oldest first.
        computed_at:      Stamp shared with the other outputs of the run.
        pipeline_version: Stamp shared with the other outputs of the run.
        config:           Scoring config; the bundled one by default.
    """
    cfg = config or get_scoring_config()
    hs = cfg.health_score

    domains = {
        "recovery": _score_recovery(fact, history, hs, cfg.baseline.min_days),
        "activity": _score_activity(fact, hs),
        "sleep": _score_sleep(fact, hs),
        "body": _score_body(fact, hs),
    }

    available = {name: d for name, d in domains.items() if d.available}
    if available:
        weight_sum = sum(hs.domain_weight(name) for name in available) or 1.0
        composite = sum(
            d.score * (hs.domain_weight(name) / weight_sum) for name, d in available.items()
        )
        composite_score = max(0, min(100, int(round(composite))))
    else:
        composite_score = 0

    composite_tier = hs.tier_for(composite_score)
    if not available:
        status = STATUS_INSUFFICIENT
    elif composite_tier in ("fair", "poor"):
        status = STATUS_ATTENTION
    else:
        status = STATUS_STABLE

    logger.debug(
        "Health score for %s on %s: %d (%s, %s)",
        fact.user_id, fact.day, composite_score, composite_tier, status,
    )

    return HealthScoreDoc(
        user_id=fact.user_id,
        day=fact.day,
        computed_at=computed_at,
        pipeline_version=pipeline_version,
        latest_canonical_event_at=fact.latest_canonical_event_at,
        missing_inputs=list(fact.missing_inputs),
        model_version=hs.model_version,
        composite_score=composite_score,
        composite_tier=composite_tier,
        status=status,
        domain_scores=domains,
        history_days_used=len(history),
    )
