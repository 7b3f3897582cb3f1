"""Bearer JWT verification middleware for FastAPI.

Validates the Bearer token on every request (except public routes) and sets
``request.state.auth`` with the caller context that route handlers consume
via ``get_current_user``. Tokens are verified with RS256 against a JWKS
endpoint when ``jwt_jwks_url`` is configured, otherwise with HS256 and
``jwt_secret``.
"""

from __future__ import annotations

import logging
from typing import Any

import jwt as pyjwt
from fastapi import Request, Response
from fastapi.responses import JSONResponse
from jwt import PyJWKClient
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from healthtruth.config import Settings, get_settings
from healthtruth.dependencies import AuthContext
from healthtruth.errors import AuthError

logger = logging.getLogger("healthtruth.auth")

# Paths that do not require authentication
PUBLIC_PATHS: set[str] = {
    "/healthz",
    "/docs",
    "/openapi.json",
    "/redoc",
}


def _is_public(path: str) -> bool:
    return path in PUBLIC_PATHS or path.startswith("/docs") or path.startswith("/redoc")


def _unauthorized(detail: str) -> Response:
    return JSONResponse(AuthError(detail).to_body(), status_code=401)


class JWTAuthMiddleware(BaseHTTPMiddleware):
    """Verify bearer JWTs and populate request.state.auth."""

    def __init__(self, app: Any, settings: Settings | None = None) -> None:
        super().__init__(app)
        self._settings = settings or get_settings()
        self._jwks_client: PyJWKClient | None = None
        if self._settings.jwt_jwks_url:
            self._jwks_client = PyJWKClient(
                self._settings.jwt_jwks_url,
                cache_keys=True,
                lifespan=3600,
            )
        elif not self._settings.jwt_secret:
            logger.warning("No JWT key material configured; every token will be rejected")

    def _decode(self, token: str) -> dict[str, Any]:
        s = self._settings
        options = {"verify_aud": s.jwt_audience is not None, "require": ["sub", "exp"]}
        if self._jwks_client is not None:
            key: Any = self._jwks_client.get_signing_key_from_jwt(token).key
            algorithms = ["RS256"]
        elif s.jwt_secret:
            key = s.jwt_secret
            algorithms = ["HS256"]
        else:
            raise pyjwt.InvalidTokenError("no verification key configured")
        return pyjwt.decode(
            token,
            key,
            algorithms=algorithms,
            audience=s.jwt_audience,
            issuer=s.jwt_issuer,
            options=options,
        )

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        if _is_public(request.url.path):
            return await call_next(request)

        # OPTIONS requests pass through (CORS preflight)
        if request.method == "OPTIONS":
            return await call_next(request)

        auth_header = request.headers.get("Authorization")
        if not auth_header or not auth_header.startswith("Bearer "):
            return _unauthorized("Missing or invalid Authorization header")

        token = auth_header.removeprefix("Bearer ").strip()

        try:
            payload = self._decode(token)
        except pyjwt.ExpiredSignatureError:
            return _unauthorized("Token expired")
        except (pyjwt.InvalidTokenError, pyjwt.PyJWKClientError) as exc:
            logger.warning("JWT validation failed: %s", exc)
            return _unauthorized("Invalid token")

        user_id: str = payload.get("sub", "")
        if not user_id:
            return _unauthorized("Invalid token")

        request.state.auth = AuthContext(
            user_id=user_id,
            email=payload.get("email"),
            session_id=payload.get("sid"),
        )

        return await call_next(request)
