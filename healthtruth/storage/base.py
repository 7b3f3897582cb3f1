"""Storage contract shared by the in-memory and Postgres backends.

Logical layout (one table / mapping per line)::

    idempotencyKeys/{key}
    users/{uid}/rawEvents/{id}
    users/{uid}/events/{id}                      canonical events
    users/{uid}/facts/daily/{day}                latest DailyFact / score / insights
    users/{uid}/derivedLedger/runs/{runId}       append-only runs + snapshots
    users/{uid}/failures/{id}

Raw and canonical events are write-once. Derived outputs are committed as a
single ``RollupSnapshot`` so a reader never sees a mixed-version day.
Backends translate connectivity problems into ``TransientStorageError``.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any

from healthtruth.models.events import (
    CanonicalEvent,
    FailureEntry,
    IdempotencyRecord,
    RawEvent,
)
from healthtruth.models.ledger import DailyFact, DerivedLedgerRun, RollupSnapshot


def run_sort_key(run: DerivedLedgerRun) -> tuple[datetime, str]:
    """Ordering used for "latest": computedAt, ties broken by runId."""
    return (run.computed_at, run.run_id)


class HealthStore(ABC):
    """Abstract persistence for every healthtruth document."""

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def open(self) -> None:
        """Acquire resources. Default: nothing to do."""

    async def close(self) -> None:
        """Release resources. Default: nothing to do."""

    @abstractmethod
    async def ping(self) -> bool:
        """Return True if the backend is reachable."""

    # ------------------------------------------------------------------
    # Idempotency keys
    # ------------------------------------------------------------------

    @abstractmethod
    async def create_idempotency_record(
        self, record: IdempotencyRecord, now: datetime
    ) -> bool:
        """Create ``record`` unless a live record with the same key exists.

        An expired record with the same key is replaced.

        Returns:
            True if created, False if a live record already existed.
        """

    @abstractmethod
    async def delete_idempotency_record(self, key: str) -> None:
        """Remove a record (used to release a key after a failed write)."""

    @abstractmethod
    async def purge_expired_idempotency(self, now: datetime) -> int:
        """Delete expired records and return how many were removed."""

    # ------------------------------------------------------------------
    # Raw events
    # ------------------------------------------------------------------

    @abstractmethod
    async def put_raw_event(self, event: RawEvent) -> None:
        """Persist a new raw event. Raw events are never overwritten."""

    @abstractmethod
    async def get_raw_event(self, user_id: str, raw_event_id: str) -> RawEvent | None:
        """Return a raw event or None."""

    # ------------------------------------------------------------------
    # Canonical events
    # ------------------------------------------------------------------

    @abstractmethod
    async def create_canonical_event(self, event: CanonicalEvent) -> bool:
        """Create-if-absent on ``event.id``.

        Returns:
            True if written, False if a canonical event with that id exists.
        """

    @abstractmethod
    async def list_canonical_events(self, user_id: str, day: str) -> list[CanonicalEvent]:
        """All canonical events (every logic version) for a user/day."""

    @abstractmethod
    async def get_canonical_event(self, user_id: str, event_id: str) -> CanonicalEvent | None:
        """Return one of the user's canonical events or None."""

    # ------------------------------------------------------------------
    # Failures
    # ------------------------------------------------------------------

    @abstractmethod
    async def add_failure(self, entry: FailureEntry) -> bool:
        """Create-if-absent on ``entry.id``. Returns True if written."""

    @abstractmethod
    async def list_failures(self, user_id: str, day: str | None = None) -> list[FailureEntry]:
        """Failure entries for a user, optionally restricted to one day."""

    # ------------------------------------------------------------------
    # Derived ledger
    # ------------------------------------------------------------------

    @abstractmethod
    async def commit_rollup(self, snapshot: RollupSnapshot) -> bool:
        """Atomically append the run and its outputs.

        The "latest" documents for the day are replaced only when the new run
        sorts after the current latest run (see ``run_sort_key``).

        Returns:
            True if the snapshot became the latest for its day.
        """

    @abstractmethod
    async def list_runs(self, user_id: str, day: str) -> list[DerivedLedgerRun]:
        """Runs for a user/day ordered by ``run_sort_key`` ascending."""

    @abstractmethod
    async def get_snapshot(self, user_id: str, day: str, run_id: str) -> RollupSnapshot | None:
        """The outputs a specific run produced."""

    @abstractmethod
    async def get_latest(self, user_id: str, day: str) -> RollupSnapshot | None:
        """The current latest outputs for a day."""

    @abstractmethod
    async def list_daily_facts(
        self, user_id: str, start_day: str, end_day: str
    ) -> list[DailyFact]:
        """Latest DailyFacts with ``start_day <= day <= end_day``, ascending."""

    # ------------------------------------------------------------------
    # Account lifecycle
    # ------------------------------------------------------------------

    @abstractmethod
    async def export_user(self, user_id: str) -> dict[str, list[dict[str, Any]]]:
        """Every document owned by the user, grouped by collection."""

    @abstractmethod
    async def delete_user(self, user_id: str) -> dict[str, int]:
        """Cascade-delete all of a user's documents. Returns per-collection counts."""
