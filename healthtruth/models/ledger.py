"""Pydantic models for derived documents: daily facts, health score, insights,
ledger runs and the replay response."""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import Field

from healthtruth.models.base import DayKey, TruthBase
from healthtruth.models.events import FailureEntry


class RunStatus(str, Enum):
    complete = "complete"
    incomplete_inputs = "incomplete_inputs"


class _DerivedStamp(TruthBase):
    """Provenance stamp carried by every derived document."""

    user_id: str
    day: DayKey
    computed_at: datetime
    pipeline_version: int
    latest_canonical_event_at: datetime | None = None
    missing_inputs: list[str] = Field(default_factory=list)


# ---------- Daily facts ----------

class SleepFacts(TruthBase):
    total_minutes: float | None = None
    main_sleep_minutes: float | None = None
    efficiency: float | None = None
    latency_minutes: float | None = None
    awakenings: int | None = None


class ActivityFacts(TruthBase):
    steps: int | None = None
    distance_km: float | None = None
    move_minutes: float | None = None
    workouts_count: int | None = None
    workout_minutes: float | None = None
    training_load: float | None = None
    steps_avg_7d: float | None = None
    training_load_avg_7d: float | None = None


class BodyFacts(TruthBase):
    weight_kg: float | None = None
    body_fat_percent: float | None = None
    weight_delta_kg: float | None = None


class RecoveryFacts(TruthBase):
    hrv_rmssd: float | None = None
    hrv_baseline: float | None = None
    hrv_deviation_pct: float | None = None


class DailyFact(_DerivedStamp):
    events_count: int = 0
    sleep: SleepFacts | None = None
    activity: ActivityFacts | None = None
    body: BodyFacts | None = None
    recovery: RecoveryFacts | None = None


# ---------- Health score ----------

class DomainScore(TruthBase):
    score: float
    tier: str
    available: bool = True
    missing: list[str] = Field(default_factory=list)
    explanation: str = ""


class HealthScoreDoc(_DerivedStamp):
    model_version: str
    composite_score: int
    composite_tier: str
    status: str  # stable | attention_required | insufficient_data
    domain_scores: dict[str, DomainScore] = Field(default_factory=dict)
    history_days_used: int = 0


# ---------- Insights ----------

class InsightEvidence(TruthBase):
    fact_path: str
    value: float
    threshold: float
    direction: str  # above | below


class Insight(TruthBase):
    id: str
    kind: str
    title: str
    message: str
    severity: str  # info | warning
    tags: list[str] = Field(default_factory=list)
    evidence: list[InsightEvidence] = Field(default_factory=list)
    rule_version: str


class InsightDoc(_DerivedStamp):
    items: list[Insight] = Field(default_factory=list)


# ---------- Ledger runs ----------

class DerivedLedgerRun(TruthBase):
    run_id: str
    user_id: str
    day: DayKey
    triggered_by_event_id: str | None = None
    computed_at: datetime
    pipeline_version: int
    status: RunStatus
    latest_canonical_event_at: datetime | None = None
    missing_inputs: list[str] = Field(default_factory=list)
    canonical_event_ids: list[str] = Field(default_factory=list)


class RollupSnapshot(TruthBase):
    """One run plus the exact outputs it produced. Committed atomically."""

    run: DerivedLedgerRun
    daily_fact: DailyFact
    health_score: HealthScoreDoc
    insights: InsightDoc


# ---------- Read API responses ----------

class RunsResponse(TruthBase):
    day: DayKey
    latest_run_id: str | None = None
    runs: list[DerivedLedgerRun] = Field(default_factory=list)


class Provenance(TruthBase):
    run_id: str
    selection: str  # latest | runId | asOf
    computed_at: datetime
    pipeline_version: int
    latest_canonical_event_at: datetime | None = None
    triggered_by_event_id: str | None = None
    events_count: int = 0
    canonical_event_ids: list[str] = Field(default_factory=list)
    missing_inputs: list[str] = Field(default_factory=list)


class ReplayResponse(TruthBase):
    day: DayKey
    daily_fact: DailyFact
    health_score: HealthScoreDoc
    insights: InsightDoc
    provenance: Provenance


class FailuresResponse(TruthBase):
    day: DayKey | None = None
    items: list[FailureEntry] = Field(default_factory=list)
