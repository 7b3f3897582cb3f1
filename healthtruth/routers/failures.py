"""Failure memory listing."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Query

from healthtruth.dependencies import AppServices, CurrentUser
from healthtruth.models.ledger import FailuresResponse
from healthtruth.routers.derived_ledger import DAY_PATTERN

router = APIRouter(prefix="/users/me", tags=["failures"])


@router.get("/failures", response_model=FailuresResponse)
async def list_failures(
    user: CurrentUser,
    services: AppServices,
    day: str | None = Query(default=None, pattern=DAY_PATTERN),
) -> Any:
    items = await services.store.list_failures(user.user_id, day)
    return FailuresResponse(day=day, items=items)
