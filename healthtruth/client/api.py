"""httpx client for the healthtruth read and write APIs.

Responses are validated against the same pydantic contracts the server
emits, so a consumer never handles an unvalidated body.

Usage::

    async with TruthClient("https://api.example.com", token=jwt) as client:
        runs = await client.get_runs("2026-01-15")
        replay = await client.get_replay("2026-01-15", run_id=runs.latest_run_id)
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

import httpx

from healthtruth.errors import EventNotFoundError, RunNotFoundError
from healthtruth.models.events import CanonicalEventsResponse, EventLineage, IngestEventResponse
from healthtruth.models.ledger import FailuresResponse, ReplayResponse, RunsResponse

logger = logging.getLogger("healthtruth.client")


class TruthClient:
    """Async API client.

    Raises ``RunNotFoundError`` when a replay selector matches no run,
    ``EventNotFoundError`` for an unknown canonical event id,
    ``httpx.HTTPStatusError`` for any other non-2xx response, and
    ``pydantic.ValidationError`` when a body breaks its contract.
    """

    def __init__(
        self,
        base_url: str,
        token: str | None = None,
        *,
        http_client: httpx.AsyncClient | None = None,
        timeout: float = 10.0,
    ) -> None:
        """Initialize the client.

        Args:
            base_url:    API root, e.g. ``https://api.example.com``.
            token:       Bearer JWT sent on every request.
            http_client: Optional pre-configured httpx client (for testing).
            timeout:     Request timeout in seconds for the owned client.
        """
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(base_url=base_url, timeout=timeout)
        self._base_url = base_url.rstrip("/")
        self._token = token

    async def __aenter__(self) -> "TruthClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    def _headers(self, extra: dict[str, str] | None = None) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        if extra:
            headers.update(extra)
        return headers

    def _url(self, path: str) -> str:
        return f"{self._base_url}{path}"

    async def _get(self, path: str, params: dict[str, Any]) -> httpx.Response:
        return await self._client.get(
            self._url(path),
            params={k: v for k, v in params.items() if v is not None},
            headers=self._headers(),
        )

    # ---------- Read APIs ----------

    async def get_runs(self, day: str) -> RunsResponse:
        response = await self._get("/users/me/derived-ledger/runs", {"day": day})
        response.raise_for_status()
        return RunsResponse.model_validate(response.json())

    async def get_replay(
        self,
        day: str,
        run_id: str | None = None,
        as_of: datetime | None = None,
    ) -> ReplayResponse:
        params = {
            "day": day,
            "runId": run_id,
            "asOf": as_of.isoformat() if as_of is not None else None,
        }
        response = await self._get("/users/me/derived-ledger/replay", params)
        if response.status_code == 404:
            detail = _detail(response) or f"No derived ledger run for {day}"
            raise RunNotFoundError(detail)
        response.raise_for_status()
        return ReplayResponse.model_validate(response.json())

    async def get_events(self, day: str) -> CanonicalEventsResponse:
        response = await self._get("/users/me/events", {"day": day})
        response.raise_for_status()
        return CanonicalEventsResponse.model_validate(response.json())

    async def get_event(self, event_id: str) -> EventLineage:
        response = await self._get(f"/users/me/events/{event_id}", {})
        if response.status_code == 404:
            raise EventNotFoundError(_detail(response) or f"Canonical event {event_id} not found")
        response.raise_for_status()
        return EventLineage.model_validate(response.json())

    async def get_failures(self, day: str | None = None) -> FailuresResponse:
        response = await self._get("/users/me/failures", {"day": day})
        response.raise_for_status()
        return FailuresResponse.model_validate(response.json())

    # ---------- Write APIs ----------

    async def ingest_event(
        self, body: dict[str, Any], idempotency_key: str
    ) -> IngestEventResponse:
        response = await self._client.post(
            self._url("/events/ingest"),
            json=body,
            headers=self._headers({"Idempotency-Key": idempotency_key}),
        )
        response.raise_for_status()
        return IngestEventResponse.model_validate(response.json())


def _detail(response: httpx.Response) -> str | None:
    try:
        body = response.json()
    except ValueError:
        return None
    detail = body.get("detail") if isinstance(body, dict) else None
    # FastAPI validation bodies carry a list here
    return detail if isinstance(detail, str) and detail else None
