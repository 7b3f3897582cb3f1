"""Ingestion gateway: the synchronous write path for raw events.

Checks run in a fixed order and the first failure wins:

    1. credential present               → AuthError (401)
    2. Idempotency-Key present          → ValidationError (400)
    3. per-identity rate limit          → RateLimitError (429)
    4. envelope + kind payload schema   → ValidationError (400), nothing persisted
    5. Idempotency-Key unseen           → DuplicateRequestError (409)

On success one RawEvent is persisted and ``{userId, rawEventId, day}`` is
published to the raw-events topic. The gateway never waits for
normalization.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Any, Callable

from pydantic import ValidationError as PydanticValidationError

from healthtruth.errors import (
    AuthError,
    DuplicateRequestError,
    RateLimitError,
    ValidationError,
)
from healthtruth.ingestion.idempotency import IdempotencyGuard, scoped_key
from healthtruth.ingestion.rate_limit import RateLimitDecision, RateLimiter
from healthtruth.models.base import as_utc, utc_now
from healthtruth.models.events import IngestEventRequest, RawEvent
from healthtruth.models.payloads import EventPayload, get_payload_schema
from healthtruth.pipeline.timezones import UTC_ZONE, day_key
from healthtruth.pipeline.triggers import TriggerQueue
from healthtruth.pipeline.versions import PipelineVersions
from healthtruth.storage.base import HealthStore

if TYPE_CHECKING:
    from healthtruth.dependencies import AuthContext

logger = logging.getLogger("healthtruth.ingestion")

MAX_IDEMPOTENCY_KEY_LENGTH = 200


def _error_list(exc: PydanticValidationError, prefix: tuple[str, ...] = ()) -> list[dict[str, Any]]:
    """JSON-safe pydantic error detail without echoing input values."""
    return [
        {
            "loc": [*prefix, *(str(p) for p in err["loc"])],
            "msg": err["msg"],
            "type": err["type"],
        }
        for err in exc.errors(include_url=False, include_context=False, include_input=False)
    ]


def require_idempotency_key(key: str | None) -> str:
    if key is None or not key.strip():
        raise ValidationError("Missing Idempotency-Key header", code="IDEMPOTENCY_KEY_REQUIRED")
    key = key.strip()
    if len(key) > MAX_IDEMPOTENCY_KEY_LENGTH:
        raise ValidationError(
            f"Idempotency-Key must be at most {MAX_IDEMPOTENCY_KEY_LENGTH} characters",
            code="IDEMPOTENCY_KEY_INVALID",
        )
    return key


@dataclass(frozen=True)
class IngestResult:
    accepted: bool
    raw_event: RawEvent
    day: str
    rate_limit: RateLimitDecision | None = None


class IngestionGateway:
    """Authenticate, validate, rate-limit, persist and publish raw events."""

    def __init__(
        self,
        store: HealthStore,
        queue: TriggerQueue,
        guard: IdempotencyGuard,
        limiter: RateLimiter,
        versions: PipelineVersions,
        *,
        raw_topic: str = "raw-events.created.v1",
        clock: Callable[[], datetime] = utc_now,
        id_factory: Callable[[], str] = lambda: uuid.uuid4().hex,
    ) -> None:
        self._store = store
        self._queue = queue
        self._guard = guard
        self._limiter = limiter
        self._versions = versions
        self._raw_topic = raw_topic
        self._clock = clock
        self._new_id = id_factory

    async def ingest(
        self,
        auth: AuthContext | None,
        idempotency_key: str | None,
        body: dict[str, Any] | IngestEventRequest,
    ) -> IngestResult:
        if auth is None or not auth.user_id:
            raise AuthError("Not authenticated")
        key = require_idempotency_key(idempotency_key)

        decision = self._limiter.hit(auth.user_id)
        if not decision.allowed:
            logger.info("Rate limit hit for user %s", auth.user_id)
            raise RateLimitError("Rate limit exceeded", retry_after=decision.retry_after)

        request, payload_model = self._validate(body)

        received_at = self._clock()
        observed_at = as_utc(
            request.occurred_at or payload_model.observed_time() or received_at
        )
        time_zone = request.time_zone or payload_model.timezone or UTC_ZONE

        scoped = scoped_key(auth.user_id, key)
        if (await self._guard.accept(scoped)).duplicate:
            raise DuplicateRequestError("Idempotency-Key has already been used")

        raw = RawEvent(
            id=self._new_id(),
            user_id=auth.user_id,
            source_id=request.source or request.source_type.value,
            source_type=request.source_type,
            provider=request.source or request.source_type.value,
            kind=request.type,
            observed_at=observed_at,
            received_at=received_at,
            time_zone=time_zone,
            payload=request.payload,
            schema_version=request.schema_version or self._versions.schema_version,
        )
        day = day_key(raw.observed_at, raw.time_zone).day

        try:
            await self._store.put_raw_event(raw)
            await self._queue.publish(
                self._raw_topic,
                {"userId": raw.user_id, "rawEventId": raw.id, "day": day},
            )
        except Exception:
            # Let the client retry with the same key
            await self._guard.release(scoped)
            raise

        logger.info(
            "Accepted raw event %s (%s) for user %s, day %s",
            raw.id, raw.kind.value, raw.user_id, day,
        )
        return IngestResult(accepted=True, raw_event=raw, day=day, rate_limit=decision)

    @staticmethod
    def _validate(
        body: dict[str, Any] | IngestEventRequest,
    ) -> tuple[IngestEventRequest, EventPayload]:
        """Validate the envelope, then the payload against the kind's schema.

        Raises:
            ValidationError: With the structured pydantic error list.
        """
        if isinstance(body, IngestEventRequest):
            request = body
        else:
            if not isinstance(body, dict):
                raise ValidationError("Request body must be a JSON object")
            try:
                request = IngestEventRequest.model_validate(body)
            except PydanticValidationError as exc:
                raise ValidationError(
                    "Invalid event envelope", errors=_error_list(exc)
                ) from exc

        schema = get_payload_schema(request.type)
        try:
            payload_model = schema.model_validate(request.payload)
        except PydanticValidationError as exc:
            raise ValidationError(
                f"Invalid {request.type.value} payload",
                errors=_error_list(exc, ("payload",)),
            ) from exc
        return request, payload_model
