"""Derived ledger: per-day rollup runs and replay.

Every rollup of a (user, day) is recorded as an append-only run carrying the
exact DailyFact, HealthScoreDoc and InsightDoc it produced. The latest
documents for the day point at the run with the greatest
``(computedAt, runId)``, so out-of-order rollups cannot regress them.

Usage::

    ledger = DerivedLedger(store, settings.pipeline_versions())
    run = await ledger.rollup_day(user_id, "2026-01-15")
    replay = await ledger.get_replay(user_id, "2026-01-15", as_of=some_instant)
"""

from __future__ import annotations

import logging
import uuid
from datetime import date, datetime, timedelta
from typing import Callable

from healthtruth.errors import RunNotFoundError, ValidationError
from healthtruth.ledger.config_loader import ScoringConfig, get_scoring_config
from healthtruth.ledger.facts import aggregate_daily_fact, enrich_daily_fact, latest_logic_version
from healthtruth.ledger.health_score import compute_health_score
from healthtruth.ledger.insights import generate_insights
from healthtruth.models.base import as_utc, utc_now
from healthtruth.models.ledger import (
    DerivedLedgerRun,
    Provenance,
    ReplayResponse,
    RollupSnapshot,
    RunStatus,
    RunsResponse,
)
from healthtruth.pipeline.triggers import TriggerMessage
from healthtruth.pipeline.versions import PipelineVersions
from healthtruth.storage.base import HealthStore, run_sort_key

logger = logging.getLogger("healthtruth.ledger")

SELECT_LATEST = "latest"
SELECT_RUN_ID = "runId"
SELECT_AS_OF = "asOf"


class DerivedLedger:
    """Rollup engine and read side of the derived ledger."""

    def __init__(
        self,
        store: HealthStore,
        versions: PipelineVersions,
        *,
        clock: Callable[[], datetime] = utc_now,
        config: ScoringConfig | None = None,
        run_id_factory: Callable[[], str] = lambda: uuid.uuid4().hex,
    ) -> None:
        self._store = store
        self._versions = versions
        self._clock = clock
        self._config = config
        self._new_run_id = run_id_factory

    @property
    def config(self) -> ScoringConfig:
        return self._config or get_scoring_config()

    # ------------------------------------------------------------------
    # Write side
    # ------------------------------------------------------------------

    async def rollup_day(
        self, user_id: str, day: str, triggered_by_event_id: str | None = None
    ) -> DerivedLedgerRun:
        """Recompute and commit one (user, day).

        Raises:
            TransientStorageError: If the store is unavailable. Nothing is
                committed in that case.
        """
        cfg = self.config
        pipeline_version = self._versions.pipeline_version
        target = date.fromisoformat(day)

        events = latest_logic_version(await self._store.list_canonical_events(user_id, day))
        window_start = (target - timedelta(days=cfg.baseline.window_days)).isoformat()
        window_end = (target - timedelta(days=1)).isoformat()
        history = await self._store.list_daily_facts(user_id, window_start, window_end)

        # Provisional stamp; replaced right before commit.
        started_at = self._clock()
        fact = aggregate_daily_fact(user_id, day, events, started_at, pipeline_version)
        fact = enrich_daily_fact(fact, history, cfg.baseline.window_days)
        score = compute_health_score(fact, history, started_at, pipeline_version, cfg)
        insights = generate_insights(fact, started_at, pipeline_version, cfg)

        computed_at = self._clock()
        fact.computed_at = computed_at
        score.computed_at = computed_at
        insights.computed_at = computed_at

        run = DerivedLedgerRun(
            run_id=self._new_run_id(),
            user_id=user_id,
            day=day,
            triggered_by_event_id=triggered_by_event_id,
            computed_at=computed_at,
            pipeline_version=pipeline_version,
            status=RunStatus.incomplete_inputs if fact.missing_inputs else RunStatus.complete,
            latest_canonical_event_at=fact.latest_canonical_event_at,
            missing_inputs=list(fact.missing_inputs),
            canonical_event_ids=[e.id for e in events],
        )
        promoted = await self._store.commit_rollup(
            RollupSnapshot(run=run, daily_fact=fact, health_score=score, insights=insights)
        )
        logger.info(
            "Rollup %s for %s/%s committed (%d events, status=%s, latest=%s)",
            run.run_id, user_id, day, len(events), run.status.value, promoted,
        )
        return run

    async def handle_trigger(self, message: TriggerMessage) -> DerivedLedgerRun:
        """Canonical-events topic handler."""
        data = message.data
        return await self.rollup_day(
            data["userId"], data["day"], triggered_by_event_id=data.get("canonicalEventId")
        )

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------

    async def get_runs(self, user_id: str, day: str) -> list[DerivedLedgerRun]:
        """All runs for the day, ordered by ``(computedAt, runId)`` ascending."""
        return await self._store.list_runs(user_id, day)

    async def get_runs_response(self, user_id: str, day: str) -> RunsResponse:
        runs = await self.get_runs(user_id, day)
        latest = await self._store.get_latest(user_id, day)
        return RunsResponse(
            day=day,
            latest_run_id=latest.run.run_id if latest else None,
            runs=runs,
        )

    async def get_replay(
        self,
        user_id: str,
        day: str,
        run_id: str | None = None,
        as_of: datetime | None = None,
    ) -> ReplayResponse:
        """Return the outputs of one run.

        Selection: ``run_id`` exact match; ``as_of`` greatest computedAt at or
        before the instant (ties go to the greater runId); neither: latest.

        Raises:
            ValidationError: Both selectors given.
            RunNotFoundError: No run matches.
        """
        if run_id is not None and as_of is not None:
            raise ValidationError("Specify at most one of runId and asOf")

        if run_id is not None:
            selection = SELECT_RUN_ID
            snapshot = await self._store.get_snapshot(user_id, day, run_id)
        elif as_of is not None:
            selection = SELECT_AS_OF
            cutoff = as_utc(as_of)
            candidates = [
                r for r in await self._store.list_runs(user_id, day) if r.computed_at <= cutoff
            ]
            snapshot = None
            if candidates:
                chosen = max(candidates, key=run_sort_key)
                snapshot = await self._store.get_snapshot(user_id, day, chosen.run_id)
        else:
            selection = SELECT_LATEST
            snapshot = await self._store.get_latest(user_id, day)

        if snapshot is None:
            raise RunNotFoundError(f"No derived ledger run for {day} ({selection})")

        run = snapshot.run
        return ReplayResponse(
            day=day,
            daily_fact=snapshot.daily_fact,
            health_score=snapshot.health_score,
            insights=snapshot.insights,
            provenance=Provenance(
                run_id=run.run_id,
                selection=selection,
                computed_at=run.computed_at,
                pipeline_version=run.pipeline_version,
                latest_canonical_event_at=run.latest_canonical_event_at,
                triggered_by_event_id=run.triggered_by_event_id,
                events_count=snapshot.daily_fact.events_count,
                canonical_event_ids=list(run.canonical_event_ids),
                missing_inputs=list(run.missing_inputs),
            ),
        )
