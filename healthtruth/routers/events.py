"""Event ingestion endpoint."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Body, Header, Request, Response

from healthtruth.dependencies import AppServices, OptionalUser
from healthtruth.models.events import IngestEventResponse

router = APIRouter(prefix="/events", tags=["events"])


@router.post("/ingest", response_model=IngestEventResponse, status_code=202)
async def ingest_event(
    request: Request,
    response: Response,
    services: AppServices,
    user: OptionalUser,
    body: Any = Body(default=None),
    idempotency_key: str | None = Header(default=None, alias="Idempotency-Key"),
) -> Any:
    """Accept one raw event. Normalization and rollup happen asynchronously."""
    result = await services.gateway.ingest(user, idempotency_key, body)
    if result.rate_limit is not None:
        response.headers["X-RateLimit-Limit"] = str(result.rate_limit.limit)
        response.headers["X-RateLimit-Remaining"] = str(result.rate_limit.remaining)
    return IngestEventResponse(
        accepted=result.accepted,
        trace_id=request.state.trace_id,
        raw_event_id=result.raw_event.id,
        day=result.day,
    )
