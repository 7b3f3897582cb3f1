"""Failure memory writer.

Any stage that cannot process an input records a FailureEntry under the
user. Entry ids are deterministic in ``(rawEventId or message id, code,
logicVersion)`` so redelivered triggers do not create duplicates. Details
are scrubbed before storage: anything that looks like a raw payload,
credential or HTTP envelope is dropped and large values are truncated.
"""

from __future__ import annotations

import hashlib
import logging
from datetime import datetime
from typing import Any, Callable

from healthtruth.models.base import utc_now
from healthtruth.models.events import FailureEntry
from healthtruth.storage.base import HealthStore

logger = logging.getLogger("healthtruth.pipeline.failures")

CODE_RETRIES_EXHAUSTED = "RETRIES_EXHAUSTED"
CODE_HANDLER_FAILED = "HANDLER_FAILED"

_BLOCKED_KEYS: frozenset[str] = frozenset({
    "payload",
    "raw",
    "rawpayload",
    "vendorpayload",
    "body",
    "request",
    "response",
    "headers",
    "authorization",
    "cookie",
    "tokens",
    "token",
    "accesstoken",
    "refreshtoken",
})
_BLOCKED_FRAGMENTS: tuple[str, ...] = ("payload", "token", "secret", "authorization", "cookie")

MAX_STRING = 500
MAX_ITEMS = 25
MAX_DEPTH = 4


def _blocked(key: str) -> bool:
    lowered = key.lower()
    return lowered in _BLOCKED_KEYS or any(f in lowered for f in _BLOCKED_FRAGMENTS)


def _scrub(value: Any, depth: int) -> Any:
    if depth > MAX_DEPTH:
        return "[truncated]"
    if value is None or isinstance(value, (bool, int, float)):
        return value
    if isinstance(value, str):
        return value if len(value) <= MAX_STRING else value[:MAX_STRING] + "..."
    if isinstance(value, (list, tuple)):
        return [_scrub(v, depth + 1) for v in list(value)[:MAX_ITEMS]]
    if isinstance(value, dict):
        return {
            str(k): _scrub(v, depth + 1)
            for k, v in value.items()
            if not _blocked(str(k))
        }
    return str(value)


def sanitize_failure_details(details: dict[str, Any] | None) -> dict[str, Any] | None:
    """Return a payload-safe copy of ``details`` (None stays None)."""
    if not details:
        return None
    return _scrub(details, 0)


def failure_id(subject_id: str, code: str, logic_version: int) -> str:
    digest = hashlib.sha256(f"{subject_id}|{code}|{logic_version}".encode()).hexdigest()
    return digest[:24]


class FailureRecorder:
    """Write FailureEntry documents create-if-absent."""

    def __init__(
        self,
        store: HealthStore,
        logic_version: int = 1,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._store = store
        self._logic_version = logic_version
        self._clock = clock

    async def record(
        self,
        *,
        user_id: str,
        day: str,
        code: str,
        message: str,
        raw_event_id: str | None = None,
        subject_id: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> FailureEntry:
        """Persist one failure entry and return it.

        ``subject_id`` keys the deterministic id when there is no raw event
        (e.g. a trigger message id).
        """
        key = raw_event_id or subject_id or f"{user_id}:{day}"
        entry = FailureEntry(
            id=failure_id(key, code, self._logic_version),
            user_id=user_id,
            day=day,
            code=code,
            message=message,
            raw_event_id=raw_event_id,
            details=sanitize_failure_details(details),
            created_at=self._clock(),
        )
        written = await self._store.add_failure(entry)
        if written:
            logger.warning(
                "Recorded failure %s for user %s on %s (rawEventId=%s)",
                code, user_id, day, raw_event_id,
            )
        return entry
