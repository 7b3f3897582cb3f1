"""Health check endpoint. Public, no auth required."""

from __future__ import annotations

import logging

from fastapi import APIRouter

from healthtruth.dependencies import AppServices
from healthtruth.storage.memory import InMemoryHealthStore

router = APIRouter(tags=["system"])
logger = logging.getLogger("healthtruth.health")


@router.get("/healthz")
async def health_check(services: AppServices) -> dict:
    """Liveness probe. Returns 200 if the API process is up.

    ``storage`` names the backend; ``storageReachable`` is a lightweight ping.
    """
    reachable = await services.store.ping()
    if not reachable:
        logger.warning("Health check storage probe failed")
    return {
        "ok": True,
        "version": services.settings.app_version,
        "storage": "memory" if isinstance(services.store, InMemoryHealthStore) else "postgres",
        "storageReachable": reachable,
    }
