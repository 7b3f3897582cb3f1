"""healthtruth API: FastAPI application entry point.

Run locally:
    uvicorn healthtruth.main:app --reload --port 8000
"""

from __future__ import annotations

import logging
import sys
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from healthtruth.config import Settings, get_settings
from healthtruth.errors import HealthTruthError, RateLimitError
from healthtruth.middleware.auth import JWTAuthMiddleware
from healthtruth.middleware.security import SecurityHeadersMiddleware
from healthtruth.routers import (
    account,
    canonical_events,
    derived_ledger,
    events,
    failures,
    health,
)
from healthtruth.services.container import Services, build_services

# ---------- Logging ----------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-8s %(name)s - %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
    stream=sys.stdout,
)
logger = logging.getLogger("healthtruth")


# ---------- Lifespan ----------

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup / shutdown hooks."""
    services: Services = app.state.services
    settings = services.settings
    logger.info(
        "Starting healthtruth API v%s [%s]",
        settings.app_version,
        settings.environment,
    )
    await services.store.open()
    purged = await services.guard.purge_expired()
    if purged:
        logger.info("Purged %d expired idempotency keys", purged)
    if settings.dispatcher_autostart:
        await services.dispatcher.start()
    yield
    await services.dispatcher.stop()
    await services.store.close()
    logger.info("healthtruth API shut down")


# ---------- Error handlers ----------

async def handle_domain_error(request: Request, exc: HealthTruthError) -> JSONResponse:
    headers = {}
    if isinstance(exc, RateLimitError):
        headers["Retry-After"] = str(exc.retry_after)
    if exc.status_code >= 500:
        logger.error("%s on %s %s: %s", exc.code, request.method, request.url.path, exc.detail)
    return JSONResponse(exc.to_body(), status_code=exc.status_code, headers=headers)


async def handle_request_validation(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    errors = [
        {"loc": [str(p) for p in err["loc"]], "msg": err["msg"], "type": err["type"]}
        for err in exc.errors()
    ]
    body = {"detail": "Invalid request", "code": "INVALID_REQUEST", "errors": errors}
    return JSONResponse(body, status_code=400)


# ---------- App factory ----------

def create_app(settings: Settings | None = None, services: Services | None = None) -> FastAPI:
    settings = settings or (services.settings if services else get_settings())
    logging.getLogger("healthtruth").setLevel(settings.log_level.upper())

    app = FastAPI(
        title="healthtruth API",
        description=(
            "Health data truth pipeline: idempotent ingestion, versioned "
            "normalization and a replayable derived ledger."
        ),
        version=settings.app_version,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )
    app.state.services = services or build_services(settings)

    app.add_exception_handler(HealthTruthError, handle_domain_error)
    app.add_exception_handler(RequestValidationError, handle_request_validation)

    # ---------- Middleware (last added is outermost) ----------

    # JWT authentication
    app.add_middleware(JWTAuthMiddleware, settings=settings)

    # Trace id and security headers on every response, 401s included
    app.add_middleware(SecurityHeadersMiddleware)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=[
            "X-Request-ID",
            "X-RateLimit-Limit",
            "X-RateLimit-Remaining",
            "Retry-After",
        ],
    )

    # ---------- Routes ----------
    app.include_router(health.router)
    app.include_router(events.router)
    app.include_router(canonical_events.router)
    app.include_router(derived_ledger.router)
    app.include_router(failures.router)
    app.include_router(account.router)

    return app


app = create_app()
