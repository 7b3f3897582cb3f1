"""In-process ``HealthStore`` used for local development and tests.

Documents are held as validated pydantic models in plain dicts. A single
``asyncio.Lock`` guards every mutating call so the derived-ledger commit and
its conditional latest-pointer swap are observed all-or-nothing by readers
running on the same event loop.

Usage::

    store = InMemoryHealthStore()
    await store.put_raw_event(raw)
    events = await store.list_canonical_events(user_id, "2026-01-15")
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from datetime import datetime
from typing import Any

from healthtruth.errors import TransientStorageError
from healthtruth.models.events import (
    CanonicalEvent,
    FailureEntry,
    IdempotencyRecord,
    RawEvent,
)
from healthtruth.models.ledger import DailyFact, DerivedLedgerRun, RollupSnapshot
from healthtruth.storage.base import HealthStore, run_sort_key

logger = logging.getLogger("healthtruth.storage.memory")


class InMemoryHealthStore(HealthStore):
    """Dict-backed store. Not shared across processes."""

    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self._idempotency: dict[str, IdempotencyRecord] = {}
        # user_id -> id -> document
        self._raw: dict[str, dict[str, RawEvent]] = defaultdict(dict)
        self._canonical: dict[str, dict[str, CanonicalEvent]] = defaultdict(dict)
        self._failures: dict[str, dict[str, FailureEntry]] = defaultdict(dict)
        # (user_id, day) -> run_id -> snapshot
        self._runs: dict[tuple[str, str], dict[str, RollupSnapshot]] = defaultdict(dict)
        # (user_id, day) -> latest snapshot
        self._latest: dict[tuple[str, str], RollupSnapshot] = {}
        # Toggled by tests to simulate an outage
        self.available = True

    def _check_available(self) -> None:
        if not self.available:
            raise TransientStorageError("In-memory store marked unavailable")

    async def ping(self) -> bool:
        return self.available

    # ---------- Idempotency ----------

    async def create_idempotency_record(
        self, record: IdempotencyRecord, now: datetime
    ) -> bool:
        self._check_available()
        async with self._lock:
            existing = self._idempotency.get(record.key)
            if existing is not None and existing.is_live(now):
                return False
            self._idempotency[record.key] = record
            return True

    async def delete_idempotency_record(self, key: str) -> None:
        self._check_available()
        async with self._lock:
            self._idempotency.pop(key, None)

    async def purge_expired_idempotency(self, now: datetime) -> int:
        self._check_available()
        async with self._lock:
            expired = [k for k, r in self._idempotency.items() if not r.is_live(now)]
            for key in expired:
                del self._idempotency[key]
            return len(expired)

    # ---------- Raw events ----------

    async def put_raw_event(self, event: RawEvent) -> None:
        self._check_available()
        async with self._lock:
            self._raw[event.user_id].setdefault(event.id, event)

    async def get_raw_event(self, user_id: str, raw_event_id: str) -> RawEvent | None:
        self._check_available()
        return self._raw.get(user_id, {}).get(raw_event_id)

    # ---------- Canonical events ----------

    async def create_canonical_event(self, event: CanonicalEvent) -> bool:
        self._check_available()
        async with self._lock:
            bucket = self._canonical[event.user_id]
            if event.id in bucket:
                return False
            bucket[event.id] = event
            return True

    async def list_canonical_events(self, user_id: str, day: str) -> list[CanonicalEvent]:
        self._check_available()
        events = [e for e in self._canonical.get(user_id, {}).values() if e.day == day]
        return sorted(events, key=lambda e: (e.observed_at, e.id))

    async def get_canonical_event(self, user_id: str, event_id: str) -> CanonicalEvent | None:
        self._check_available()
        return self._canonical.get(user_id, {}).get(event_id)

    # ---------- Failures ----------

    async def add_failure(self, entry: FailureEntry) -> bool:
        self._check_available()
        async with self._lock:
            bucket = self._failures[entry.user_id]
            if entry.id in bucket:
                return False
            bucket[entry.id] = entry
            return True

    async def list_failures(self, user_id: str, day: str | None = None) -> list[FailureEntry]:
        self._check_available()
        items = [
            f for f in self._failures.get(user_id, {}).values()
            if day is None or f.day == day
        ]
        return sorted(items, key=lambda f: (f.created_at, f.id))

    # ---------- Derived ledger ----------

    async def commit_rollup(self, snapshot: RollupSnapshot) -> bool:
        self._check_available()
        run = snapshot.run
        key = (run.user_id, run.day)
        async with self._lock:
            self._runs[key][run.run_id] = snapshot
            current = self._latest.get(key)
            if current is None or run_sort_key(run) > run_sort_key(current.run):
                self._latest[key] = snapshot
                return True
            logger.debug(
                "Run %s for %s/%s is older than latest %s; history only",
                run.run_id, run.user_id, run.day, current.run.run_id,
            )
            return False

    async def list_runs(self, user_id: str, day: str) -> list[DerivedLedgerRun]:
        self._check_available()
        runs = [s.run for s in self._runs.get((user_id, day), {}).values()]
        return sorted(runs, key=run_sort_key)

    async def get_snapshot(self, user_id: str, day: str, run_id: str) -> RollupSnapshot | None:
        self._check_available()
        return self._runs.get((user_id, day), {}).get(run_id)

    async def get_latest(self, user_id: str, day: str) -> RollupSnapshot | None:
        self._check_available()
        return self._latest.get((user_id, day))

    async def list_daily_facts(
        self, user_id: str, start_day: str, end_day: str
    ) -> list[DailyFact]:
        self._check_available()
        facts = [
            snap.daily_fact
            for (uid, day), snap in self._latest.items()
            if uid == user_id and start_day <= day <= end_day
        ]
        return sorted(facts, key=lambda f: f.day)

    # ---------- Account lifecycle ----------

    async def export_user(self, user_id: str) -> dict[str, list[dict[str, Any]]]:
        self._check_available()
        runs = [
            snap.to_doc()
            for (uid, _), bucket in self._runs.items()
            if uid == user_id
            for snap in bucket.values()
        ]
        return {
            "rawEvents": [e.to_doc() for e in self._raw.get(user_id, {}).values()],
            "events": [e.to_doc() for e in self._canonical.get(user_id, {}).values()],
            "derivedLedgerRuns": runs,
            "failures": [f.to_doc() for f in self._failures.get(user_id, {}).values()],
        }

    async def delete_user(self, user_id: str) -> dict[str, int]:
        self._check_available()
        async with self._lock:
            counts = {
                "rawEvents": len(self._raw.pop(user_id, {})),
                "events": len(self._canonical.pop(user_id, {})),
                "failures": len(self._failures.pop(user_id, {})),
            }
            run_keys = [k for k in self._runs if k[0] == user_id]
            counts["derivedLedgerRuns"] = sum(len(self._runs.pop(k)) for k in run_keys)
            latest_keys = [k for k in self._latest if k[0] == user_id]
            for key in latest_keys:
                del self._latest[key]
            counts["dailyFacts"] = len(latest_keys)
            # Idempotency keys are scoped "{user_id}:{key}"
            prefix = f"{user_id}:"
            for key in [k for k in self._idempotency if k.startswith(prefix)]:
                del self._idempotency[key]
            return counts
