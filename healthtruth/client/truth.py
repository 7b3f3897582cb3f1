"""Day truth loader: fetch a day's derived documents and gate them.

``load_day_truth`` calls the replay API and feeds the outcome through the
readiness resolver, so callers only ever branch on ``view.readiness``.
A latest-read 404 means no data exists yet (``missing``); a pinned
selector that matches nothing raises ``RunNotFoundError`` instead.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

import httpx

from healthtruth.client.api import TruthClient
from healthtruth.errors import RunNotFoundError, VersionMismatchError
from healthtruth.models.ledger import ReplayResponse
from healthtruth.readiness.resolver import (
    NetworkState,
    ReadinessInput,
    ReadinessResult,
    ReadinessState,
    resolve,
)

logger = logging.getLogger("healthtruth.client.truth")


@dataclass(frozen=True)
class DayTruthView:
    day: str
    readiness: ReadinessResult
    replay: ReplayResponse | None = None

    @property
    def is_ready(self) -> bool:
        return self.readiness.state is ReadinessState.ready


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def readiness_for(replay: ReplayResponse, expected_pipeline_version: int) -> ReadinessResult:
    provenance = replay.provenance
    return resolve(
        ReadinessInput(
            network=NetworkState.ok,
            payload_valid=True,
            events_count=provenance.events_count,
            computed_at_iso=_iso(provenance.computed_at),
            latest_canonical_event_at_iso=_iso(provenance.latest_canonical_event_at),
            pipeline_version=provenance.pipeline_version,
            expected_pipeline_version=expected_pipeline_version,
        )
    )


async def load_day_truth(
    client: TruthClient,
    day: str,
    *,
    expected_pipeline_version: int = 1,
    run_id: str | None = None,
    as_of: datetime | None = None,
) -> DayTruthView:
    """Load and resolve one day.

    Raises:
        RunNotFoundError: ``run_id`` or ``as_of`` matched no run.
    """
    pinned = run_id is not None or as_of is not None
    try:
        replay = await client.get_replay(day, run_id=run_id, as_of=as_of)
    except RunNotFoundError:
        if pinned:
            raise
        readiness = resolve(
            ReadinessInput(
                network=NetworkState.ok,
                events_count=0,
                expected_pipeline_version=expected_pipeline_version,
            )
        )
        return DayTruthView(day=day, readiness=readiness)
    except httpx.HTTPError as exc:
        logger.warning("Replay request for %s failed: %s", day, exc)
        readiness = resolve(
            ReadinessInput(
                network=NetworkState.error,
                expected_pipeline_version=expected_pipeline_version,
            )
        )
        return DayTruthView(day=day, readiness=readiness)
    except ValueError as exc:
        # Undecodable JSON or a body that breaks the replay contract
        logger.warning("Replay body for %s failed validation: %s", day, exc)
        readiness = resolve(
            ReadinessInput(
                network=NetworkState.ok,
                payload_valid=False,
                expected_pipeline_version=expected_pipeline_version,
            )
        )
        return DayTruthView(day=day, readiness=readiness)

    return DayTruthView(
        day=day,
        readiness=readiness_for(replay, expected_pipeline_version),
        replay=replay,
    )


def require_current(replay: ReplayResponse, expected_pipeline_version: int) -> ReplayResponse:
    """Return ``replay`` if every document matches the expected pipeline version.

    Raises:
        VersionMismatchError: If the run or any of its documents is stale.
    """
    versions = {
        replay.provenance.pipeline_version,
        replay.daily_fact.pipeline_version,
        replay.health_score.pipeline_version,
        replay.insights.pipeline_version,
    }
    for observed in sorted(versions):
        if observed != expected_pipeline_version:
            raise VersionMismatchError(observed, expected_pipeline_version)
    return replay
