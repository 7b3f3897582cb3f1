"""Error taxonomy shared by the HTTP surface and the async pipeline.

Synchronous errors (auth, duplicate, rate limit, validation) are returned to the
caller through the FastAPI exception handler registered in ``main.py``.
Pipeline errors are either terminal (``ValidationError`` and ``MappingError``,
recorded as a FailureEntry) or retryable (``TransientStorageError``, retried by
the trigger dispatcher with backoff).
"""

from __future__ import annotations

from typing import Any


class HealthTruthError(Exception):
    """Base class for every domain error raised by healthtruth."""

    status_code: int = 500
    code: str = "INTERNAL_ERROR"

    def __init__(self, detail: str, *, code: str | None = None) -> None:
        super().__init__(detail)
        self.detail = detail
        if code is not None:
            self.code = code

    def to_body(self) -> dict[str, Any]:
        return {"detail": self.detail, "code": self.code}


class AuthError(HealthTruthError):
    """Missing or invalid credential."""

    status_code = 401
    code = "UNAUTHORIZED"


class ValidationError(HealthTruthError):
    """Malformed input, unknown kind or unknown schema version."""

    status_code = 400
    code = "INVALID_REQUEST"

    def __init__(
        self,
        detail: str,
        *,
        code: str | None = None,
        errors: list[dict[str, Any]] | None = None,
    ) -> None:
        super().__init__(detail, code=code)
        self.errors = errors or []

    def to_body(self) -> dict[str, Any]:
        body = super().to_body()
        if self.errors:
            body["errors"] = self.errors
        return body


class DuplicateRequestError(HealthTruthError):
    """An Idempotency-Key was replayed within its TTL."""

    status_code = 409
    code = "DUPLICATE_REQUEST"


class RateLimitError(HealthTruthError):
    """The caller exhausted its request budget for the current window."""

    status_code = 429
    code = "RATE_LIMITED"

    def __init__(self, detail: str, *, retry_after: int) -> None:
        super().__init__(detail)
        self.retry_after = max(retry_after, 1)


class MappingError(HealthTruthError):
    """No normalization rule exists for a (kind, schemaVersion) pair, or the
    payload could not be mapped. Terminal: never retried."""

    status_code = 422
    code = "MAPPING_NOT_FOUND"

    def __init__(
        self,
        detail: str,
        *,
        code: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(detail, code=code)
        self.details = details or {}


class TransientStorageError(HealthTruthError):
    """Storage backend unavailable. Safe to retry."""

    status_code = 503
    code = "STORAGE_UNAVAILABLE"


class VersionMismatchError(HealthTruthError):
    """A derived document was produced by a different pipeline version than
    the consumer expects. Read-time staleness signal, never a write failure."""

    status_code = 409
    code = "PIPELINE_VERSION_MISMATCH"

    def __init__(self, observed: int | None, expected: int) -> None:
        super().__init__(
            f"pipelineVersion {observed} does not match expected {expected}"
        )
        self.observed = observed
        self.expected = expected


class RunNotFoundError(HealthTruthError):
    """No derived ledger run matches the requested selector."""

    status_code = 404
    code = "RUN_NOT_FOUND"


class EventNotFoundError(HealthTruthError):
    """No canonical event with that id belongs to the caller."""

    status_code = 404
    code = "EVENT_NOT_FOUND"
