"""Canonical event reads: the per-day listing and lineage."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Query

from healthtruth.dependencies import AppServices, CurrentUser
from healthtruth.models.events import CanonicalEventsResponse, EventLineage
from healthtruth.routers.derived_ledger import DAY_PATTERN

router = APIRouter(prefix="/users/me/events", tags=["events"])


@router.get("", response_model=CanonicalEventsResponse)
async def list_events(
    user: CurrentUser,
    services: AppServices,
    day: str = Query(..., pattern=DAY_PATTERN),
) -> Any:
    return await services.events.list_day(user.user_id, day)


@router.get("/{event_id}", response_model=EventLineage)
async def get_event(event_id: str, user: CurrentUser, services: AppServices) -> Any:
    """One canonical event with the raw event and versions behind it."""
    return await services.events.lineage(user.user_id, event_id)
