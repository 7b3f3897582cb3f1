"""Fixtures for HTTP-level tests against the FastAPI app."""

from __future__ import annotations

import time
from typing import Iterator

import jwt as pyjwt
import pytest
from fastapi.testclient import TestClient

from healthtruth.config import Settings
from healthtruth.main import create_app
from healthtruth.services.container import Services, build_services
from healthtruth.storage.memory import InMemoryHealthStore

TEST_SECRET = "test-secret-0123456789abcdef0123456789"
TEST_USER_ID = "user_2abc"


def make_token(sub: str = TEST_USER_ID, *, secret: str = TEST_SECRET, ttl: int = 3600) -> str:
    now = int(time.time())
    return pyjwt.encode({"sub": sub, "iat": now, "exp": now + ttl}, secret, algorithm="HS256")


def auth_headers(sub: str = TEST_USER_ID, key: str | None = None) -> dict[str, str]:
    headers = {"Authorization": f"Bearer {make_token(sub)}"}
    if key is not None:
        headers["Idempotency-Key"] = key
    return headers


WEIGHT_EVENT = {
    "type": "weight",
    "timeZone": "America/New_York",
    "payload": {"time": "2026-01-15T12:00:00Z", "weight": 82.5, "unit": "kg"},
}


@pytest.fixture
def settings() -> Settings:
    return Settings(
        jwt_secret=TEST_SECRET,
        dispatcher_autostart=False,
        rate_limit_per_minute=5,
        database_url=None,
    )


@pytest.fixture
def services(settings: Settings) -> Services:
    async def no_sleep(delay: float) -> None:
        return None

    return build_services(settings, store=InMemoryHealthStore(), sleep=no_sleep)


@pytest.fixture
def client(settings: Settings, services: Services) -> Iterator[TestClient]:
    app = create_app(settings, services)
    with TestClient(app) as test_client:
        yield test_client


def drain(client: TestClient, services: Services) -> list:
    """Run the trigger pipeline to completion on the app's event loop."""
    return client.portal.call(services.dispatcher.run_pending)
