"""Read APIs for the derived ledger: run history and replay."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from fastapi import APIRouter, Query

from healthtruth.dependencies import AppServices, CurrentUser
from healthtruth.models.ledger import ReplayResponse, RunsResponse

router = APIRouter(prefix="/users/me/derived-ledger", tags=["derived-ledger"])

DAY_PATTERN = r"^\d{4}-\d{2}-\d{2}$"


@router.get("/runs", response_model=RunsResponse)
async def list_runs(
    user: CurrentUser,
    services: AppServices,
    day: str = Query(..., pattern=DAY_PATTERN),
) -> Any:
    return await services.ledger.get_runs_response(user.user_id, day)


@router.get("/replay", response_model=ReplayResponse)
async def replay(
    user: CurrentUser,
    services: AppServices,
    day: str = Query(..., pattern=DAY_PATTERN),
    run_id: str | None = Query(default=None, alias="runId"),
    as_of: datetime | None = Query(default=None, alias="asOf"),
) -> Any:
    """Return the exact DailyFact, HealthScore and Insights one run produced.

    ``runId`` selects a run exactly; ``asOf`` selects the newest run computed
    at or before that instant; neither returns the latest run.
    """
    return await services.ledger.get_replay(user.user_id, day, run_id=run_id, as_of=as_of)
