"""Account deletion and export."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Header

from healthtruth.dependencies import AppServices, CurrentUser
from healthtruth.models.events import AccountDeleteResponse

router = APIRouter(prefix="/account", tags=["account"])


@router.post("/delete", response_model=AccountDeleteResponse, status_code=202)
async def delete_account(
    user: CurrentUser,
    services: AppServices,
    idempotency_key: str | None = Header(default=None, alias="Idempotency-Key"),
) -> Any:
    """Queue deletion of every document the caller owns."""
    request_id = await services.account.request_delete(user.user_id, idempotency_key)
    return AccountDeleteResponse(accepted=True, request_id=request_id)


@router.post("/export")
async def export_account(
    user: CurrentUser,
    services: AppServices,
    idempotency_key: str | None = Header(default=None, alias="Idempotency-Key"),
) -> dict:
    return await services.account.export(user.user_id, idempotency_key)
