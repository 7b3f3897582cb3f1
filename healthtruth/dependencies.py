"""Shared FastAPI dependencies injected into route handlers."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Annotated

from fastapi import Depends, Request

from healthtruth.config import Settings, get_settings
from healthtruth.errors import AuthError
from healthtruth.services.container import Services


@dataclass(frozen=True)
class AuthContext:
    """Authenticated caller extracted from the bearer JWT."""

    user_id: str  # the token's ``sub`` claim
    email: str | None = None
    session_id: str | None = None


async def get_current_user(request: Request) -> AuthContext:
    """Extract the authenticated user from the request state.

    The JWT auth middleware sets ``request.state.auth`` before routes run.
    """
    auth: AuthContext | None = getattr(request.state, "auth", None)
    if auth is None:
        raise AuthError("Not authenticated")
    return auth


async def get_optional_user(request: Request) -> AuthContext | None:
    return getattr(request.state, "auth", None)


def get_services(request: Request) -> Services:
    return request.app.state.services


# Annotated shortcuts for route signatures
CurrentUser = Annotated[AuthContext, Depends(get_current_user)]
OptionalUser = Annotated[AuthContext | None, Depends(get_optional_user)]
AppSettings = Annotated[Settings, Depends(get_settings)]
AppServices = Annotated[Services, Depends(get_services)]
