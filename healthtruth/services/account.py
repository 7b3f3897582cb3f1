"""Account lifecycle: cascade deletion and data export.

Deletion is asynchronous: the HTTP handler publishes a message to the
account-delete topic and the worker below removes every raw, canonical,
derived and failure document the user owns. Both operations are guarded by
the caller's Idempotency-Key, scoped to the user.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime
from typing import Any, Callable

from healthtruth.errors import DuplicateRequestError
from healthtruth.ingestion.gateway import require_idempotency_key
from healthtruth.ingestion.idempotency import IdempotencyGuard, scoped_key
from healthtruth.models.base import utc_now
from healthtruth.pipeline.triggers import TriggerMessage, TriggerQueue
from healthtruth.storage.base import HealthStore

logger = logging.getLogger("healthtruth.account")


class AccountService:
    def __init__(
        self,
        store: HealthStore,
        queue: TriggerQueue,
        guard: IdempotencyGuard,
        *,
        delete_topic: str = "account.delete.v1",
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._store = store
        self._queue = queue
        self._guard = guard
        self._delete_topic = delete_topic
        self._clock = clock

    async def _claim(self, user_id: str, operation: str, idempotency_key: str | None) -> str:
        key = require_idempotency_key(idempotency_key)
        scoped = scoped_key(user_id, f"{operation}:{key}")
        if (await self._guard.accept(scoped)).duplicate:
            raise DuplicateRequestError("Idempotency-Key has already been used")
        return scoped

    async def request_delete(self, user_id: str, idempotency_key: str | None) -> str:
        """Publish a deletion request and return its request id.

        Raises:
            ValidationError: Missing or oversized Idempotency-Key.
            DuplicateRequestError: The key was already used for a deletion.
        """
        scoped = await self._claim(user_id, "account-delete", idempotency_key)
        request_id = uuid.uuid4().hex
        try:
            await self._queue.publish(
                self._delete_topic,
                {
                    "userId": user_id,
                    "requestId": request_id,
                    "requestedAt": self._clock().isoformat(),
                },
            )
        except Exception:
            await self._guard.release(scoped)
            raise
        logger.info("Account deletion requested for user %s (%s)", user_id, request_id)
        return request_id

    async def handle_delete_trigger(self, message: TriggerMessage) -> dict[str, int]:
        """Account-delete topic handler."""
        user_id = message.data["userId"]
        counts = await self._store.delete_user(user_id)
        logger.info(
            "Deleted account data for user %s (%s): %s",
            user_id, message.data.get("requestId"), counts,
        )
        return counts

    async def export(self, user_id: str, idempotency_key: str | None) -> dict[str, Any]:
        scoped = await self._claim(user_id, "account-export", idempotency_key)
        try:
            documents = await self._store.export_user(user_id)
        except Exception:
            await self._guard.release(scoped)
            raise
        logger.info("Exported account data for user %s", user_id)
        return {
            "userId": user_id,
            "exportedAt": self._clock().isoformat(),
            **documents,
        }
