"""Idempotency guard for inbound write requests.

A client-supplied ``Idempotency-Key`` is recorded on first sight with a TTL.
A second request carrying the same key while the record is live is reported
as a duplicate. Storage outages propagate as ``TransientStorageError``; the
guard never answers "not a duplicate" when it could not check.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable

from healthtruth.models.base import utc_now
from healthtruth.models.events import IdempotencyRecord
from healthtruth.storage.base import HealthStore

logger = logging.getLogger("healthtruth.ingestion.idempotency")


def scoped_key(user_id: str, key: str) -> str:
    """Namespace a client key by identity so two users never collide."""
    return f"{user_id}:{key}"


@dataclass(frozen=True)
class IdempotencyDecision:
    key: str
    duplicate: bool


class IdempotencyGuard:
    """Create-if-absent bookkeeping over ``HealthStore`` idempotency records."""

    def __init__(
        self,
        store: HealthStore,
        ttl_seconds: int = 24 * 60 * 60,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._store = store
        self._ttl = timedelta(seconds=ttl_seconds)
        self._clock = clock

    async def accept(self, key: str, ttl_seconds: int | None = None) -> IdempotencyDecision:
        """Record ``key`` or report it as a duplicate.

        Args:
            key:         Already-scoped idempotency key.
            ttl_seconds: Override for the guard's default TTL.

        Returns:
            IdempotencyDecision with ``duplicate=True`` if a live record exists.
        """
        now = self._clock()
        ttl = timedelta(seconds=ttl_seconds) if ttl_seconds is not None else self._ttl
        record = IdempotencyRecord(key=key, created_at=now, expires_at=now + ttl)
        created = await self._store.create_idempotency_record(record, now)
        if not created:
            logger.info("Duplicate idempotency key rejected")
        return IdempotencyDecision(key=key, duplicate=not created)

    async def release(self, key: str) -> None:
        """Forget ``key`` after the guarded write failed, so a retry is accepted."""
        await self._store.delete_idempotency_record(key)

    async def purge_expired(self) -> int:
        return await self._store.purge_expired_idempotency(self._clock())
