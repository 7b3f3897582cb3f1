"""Postgres-backed ``HealthStore`` over an asyncpg connection pool.

Each logical collection maps to one table holding the camelCase JSON document
in a ``JSONB`` column, plus the handful of key columns the queries filter on.
Create-if-absent writes use ``ON CONFLICT DO NOTHING``; the derived-ledger
commit runs in one transaction under a per-(user, day) advisory lock and
swaps the latest pointer with a conditional upsert.

Connection-level failures are raised as ``TransientStorageError`` so the
trigger dispatcher can retry them.
"""

from __future__ import annotations

import asyncio
import json
import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, AsyncGenerator

import asyncpg

from healthtruth.config import Settings, get_settings
from healthtruth.errors import TransientStorageError
from healthtruth.models.events import (
    CanonicalEvent,
    FailureEntry,
    IdempotencyRecord,
    RawEvent,
)
from healthtruth.models.ledger import DailyFact, DerivedLedgerRun, RollupSnapshot
from healthtruth.storage.base import HealthStore

logger = logging.getLogger("healthtruth.db")

_TRANSIENT_ERRORS: tuple[type[BaseException], ...] = (
    OSError,
    asyncio.TimeoutError,
    asyncpg.exceptions.InterfaceError,
    asyncpg.exceptions.PostgresConnectionError,
    asyncpg.exceptions.CannotConnectNowError,
    asyncpg.exceptions.TooManyConnectionsError,
    asyncpg.exceptions.DeadlockDetectedError,
    asyncpg.exceptions.SerializationError,
)

SCHEMA_DDL = """
CREATE TABLE IF NOT EXISTS idempotency_keys (
    key         TEXT PRIMARY KEY,
    created_at  TIMESTAMPTZ NOT NULL,
    expires_at  TIMESTAMPTZ NOT NULL
);
CREATE INDEX IF NOT EXISTS idempotency_keys_expires_idx ON idempotency_keys (expires_at);

CREATE TABLE IF NOT EXISTS raw_events (
    user_id     TEXT NOT NULL,
    id          TEXT NOT NULL,
    doc         JSONB NOT NULL,
    PRIMARY KEY (user_id, id)
);

CREATE TABLE IF NOT EXISTS canonical_events (
    user_id     TEXT NOT NULL,
    id          TEXT NOT NULL,
    day         TEXT NOT NULL,
    observed_at TIMESTAMPTZ NOT NULL,
    doc         JSONB NOT NULL,
    PRIMARY KEY (user_id, id)
);
CREATE INDEX IF NOT EXISTS canonical_events_day_idx ON canonical_events (user_id, day);

CREATE TABLE IF NOT EXISTS failures (
    user_id     TEXT NOT NULL,
    id          TEXT NOT NULL,
    day         TEXT NOT NULL,
    created_at  TIMESTAMPTZ NOT NULL,
    doc         JSONB NOT NULL,
    PRIMARY KEY (user_id, id)
);

CREATE TABLE IF NOT EXISTS derived_ledger_runs (
    user_id     TEXT NOT NULL,
    day         TEXT NOT NULL,
    run_id      TEXT NOT NULL,
    computed_at TIMESTAMPTZ NOT NULL,
    doc         JSONB NOT NULL,
    PRIMARY KEY (user_id, day, run_id)
);

CREATE TABLE IF NOT EXISTS daily_latest (
    user_id     TEXT NOT NULL,
    day         TEXT NOT NULL,
    run_id      TEXT NOT NULL,
    computed_at TIMESTAMPTZ NOT NULL,
    doc         JSONB NOT NULL,
    PRIMARY KEY (user_id, day)
);
"""

# Module-level connection pool, initialized once at app startup
_pool: asyncpg.Pool | None = None


async def _init_connection(conn: asyncpg.Connection) -> None:
    await conn.set_type_codec(
        "jsonb", encoder=json.dumps, decoder=json.loads, schema="pg_catalog"
    )


async def init_pool(settings: Settings | None = None) -> asyncpg.Pool:
    """Create the asyncpg connection pool. Call once at app startup."""
    global _pool
    s = settings or get_settings()
    if not s.database_url:
        raise RuntimeError("HEALTHTRUTH_DATABASE_URL is not set")
    _pool = await asyncpg.create_pool(
        s.database_url,
        min_size=s.database_pool_min,
        max_size=s.database_pool_max,
        command_timeout=30,
        init=_init_connection,
    )
    logger.info(
        "Database pool initialized (min=%d, max=%d)",
        s.database_pool_min,
        s.database_pool_max,
    )
    return _pool


async def close_pool() -> None:
    """Drain the pool. Call at app shutdown."""
    global _pool
    if _pool:
        await _pool.close()
        _pool = None
        logger.info("Database pool closed")


def get_pool() -> asyncpg.Pool:
    if _pool is None:
        raise RuntimeError("Database pool not initialized, call init_pool() first")
    return _pool


@asynccontextmanager
async def get_connection() -> AsyncGenerator[asyncpg.Connection, None]:
    """Acquire a pooled connection inside a transaction.

    Usage::

        async with get_connection() as conn:
            rows = await conn.fetch("SELECT doc FROM raw_events WHERE user_id = $1", uid)

    Connection-level failures surface as ``TransientStorageError``.
    """
    pool = get_pool()
    try:
        async with pool.acquire() as conn:
            async with conn.transaction():
                yield conn
    except _TRANSIENT_ERRORS as exc:
        logger.warning("Transient database error: %s", exc)
        raise TransientStorageError(f"Database unavailable: {exc}") from exc


class PostgresHealthStore(HealthStore):
    """``HealthStore`` over the module-level asyncpg pool."""

    def __init__(self, settings: Settings | None = None) -> None:
        self._settings = settings or get_settings()

    async def open(self) -> None:
        await init_pool(self._settings)
        await self.ensure_schema()

    async def close(self) -> None:
        await close_pool()

    async def ensure_schema(self) -> None:
        async with get_connection() as conn:
            await conn.execute(SCHEMA_DDL)

    async def ping(self) -> bool:
        try:
            async with get_connection() as conn:
                return await conn.fetchval("SELECT 1") == 1
        except TransientStorageError:
            return False

    # ---------- Idempotency ----------

    async def create_idempotency_record(
        self, record: IdempotencyRecord, now: datetime
    ) -> bool:
        # Insert, or take over an expired row; a live row is left untouched.
        async with get_connection() as conn:
            key = await conn.fetchval(
                """
                INSERT INTO idempotency_keys (key, created_at, expires_at)
                VALUES ($1, $2, $3)
                ON CONFLICT (key) DO UPDATE
                    SET created_at = EXCLUDED.created_at,
                        expires_at = EXCLUDED.expires_at
                    WHERE idempotency_keys.expires_at <= $4
                RETURNING key
                """,
                record.key, record.created_at, record.expires_at, now,
            )
        return key is not None

    async def delete_idempotency_record(self, key: str) -> None:
        async with get_connection() as conn:
            await conn.execute("DELETE FROM idempotency_keys WHERE key = $1", key)

    async def purge_expired_idempotency(self, now: datetime) -> int:
        async with get_connection() as conn:
            status = await conn.execute(
                "DELETE FROM idempotency_keys WHERE expires_at <= $1", now
            )
        return _affected(status)

    # ---------- Raw events ----------

    async def put_raw_event(self, event: RawEvent) -> None:
        async with get_connection() as conn:
            await conn.execute(
                """
                INSERT INTO raw_events (user_id, id, doc) VALUES ($1, $2, $3)
                ON CONFLICT (user_id, id) DO NOTHING
                """,
                event.user_id, event.id, event.to_doc(),
            )

    async def get_raw_event(self, user_id: str, raw_event_id: str) -> RawEvent | None:
        async with get_connection() as conn:
            doc = await conn.fetchval(
                "SELECT doc FROM raw_events WHERE user_id = $1 AND id = $2",
                user_id, raw_event_id,
            )
        return RawEvent.model_validate(doc) if doc is not None else None

    # ---------- Canonical events ----------

    async def create_canonical_event(self, event: CanonicalEvent) -> bool:
        async with get_connection() as conn:
            inserted = await conn.fetchval(
                """
                INSERT INTO canonical_events (user_id, id, day, observed_at, doc)
                VALUES ($1, $2, $3, $4, $5)
                ON CONFLICT (user_id, id) DO NOTHING
                RETURNING id
                """,
                event.user_id, event.id, event.day, event.observed_at, event.to_doc(),
            )
        return inserted is not None

    async def list_canonical_events(self, user_id: str, day: str) -> list[CanonicalEvent]:
        async with get_connection() as conn:
            rows = await conn.fetch(
                """
                SELECT doc FROM canonical_events
                WHERE user_id = $1 AND day = $2
                ORDER BY observed_at, id
                """,
                user_id, day,
            )
        return [CanonicalEvent.model_validate(r["doc"]) for r in rows]

    async def get_canonical_event(self, user_id: str, event_id: str) -> CanonicalEvent | None:
        async with get_connection() as conn:
            doc = await conn.fetchval(
                "SELECT doc FROM canonical_events WHERE user_id = $1 AND id = $2",
                user_id, event_id,
            )
        return CanonicalEvent.model_validate(doc) if doc is not None else None

    # ---------- Failures ----------

    async def add_failure(self, entry: FailureEntry) -> bool:
        async with get_connection() as conn:
            inserted = await conn.fetchval(
                """
                INSERT INTO failures (user_id, id, day, created_at, doc)
                VALUES ($1, $2, $3, $4, $5)
                ON CONFLICT (user_id, id) DO NOTHING
                RETURNING id
                """,
                entry.user_id, entry.id, entry.day, entry.created_at, entry.to_doc(),
            )
        return inserted is not None

    async def list_failures(self, user_id: str, day: str | None = None) -> list[FailureEntry]:
        async with get_connection() as conn:
            if day is None:
                rows = await conn.fetch(
                    "SELECT doc FROM failures WHERE user_id = $1 ORDER BY created_at, id",
                    user_id,
                )
            else:
                rows = await conn.fetch(
                    """
                    SELECT doc FROM failures WHERE user_id = $1 AND day = $2
                    ORDER BY created_at, id
                    """,
                    user_id, day,
                )
        return [FailureEntry.model_validate(r["doc"]) for r in rows]

    # ---------- Derived ledger ----------

    async def commit_rollup(self, snapshot: RollupSnapshot) -> bool:
        run = snapshot.run
        doc = snapshot.to_doc()
        async with get_connection() as conn:
            await conn.execute(
                "SELECT pg_advisory_xact_lock(hashtext($1))", f"{run.user_id}:{run.day}"
            )
            await conn.execute(
                """
                INSERT INTO derived_ledger_runs (user_id, day, run_id, computed_at, doc)
                VALUES ($1, $2, $3, $4, $5)
                ON CONFLICT (user_id, day, run_id) DO NOTHING
                """,
                run.user_id, run.day, run.run_id, run.computed_at, doc,
            )
            promoted = await conn.fetchval(
                """
                INSERT INTO daily_latest (user_id, day, run_id, computed_at, doc)
                VALUES ($1, $2, $3, $4, $5)
                ON CONFLICT (user_id, day) DO UPDATE
                    SET run_id = EXCLUDED.run_id,
                        computed_at = EXCLUDED.computed_at,
                        doc = EXCLUDED.doc
                    WHERE (daily_latest.computed_at, daily_latest.run_id)
                        < (EXCLUDED.computed_at, EXCLUDED.run_id)
                RETURNING run_id
                """,
                run.user_id, run.day, run.run_id, run.computed_at, doc,
            )
        return promoted is not None

    async def list_runs(self, user_id: str, day: str) -> list[DerivedLedgerRun]:
        async with get_connection() as conn:
            rows = await conn.fetch(
                """
                SELECT doc -> 'run' AS run FROM derived_ledger_runs
                WHERE user_id = $1 AND day = $2
                ORDER BY computed_at, run_id
                """,
                user_id, day,
            )
        return [DerivedLedgerRun.model_validate(r["run"]) for r in rows]

    async def get_snapshot(self, user_id: str, day: str, run_id: str) -> RollupSnapshot | None:
        async with get_connection() as conn:
            doc = await conn.fetchval(
                """
                SELECT doc FROM derived_ledger_runs
                WHERE user_id = $1 AND day = $2 AND run_id = $3
                """,
                user_id, day, run_id,
            )
        return RollupSnapshot.model_validate(doc) if doc is not None else None

    async def get_latest(self, user_id: str, day: str) -> RollupSnapshot | None:
        async with get_connection() as conn:
            doc = await conn.fetchval(
                "SELECT doc FROM daily_latest WHERE user_id = $1 AND day = $2",
                user_id, day,
            )
        return RollupSnapshot.model_validate(doc) if doc is not None else None

    async def list_daily_facts(
        self, user_id: str, start_day: str, end_day: str
    ) -> list[DailyFact]:
        async with get_connection() as conn:
            rows = await conn.fetch(
                """
                SELECT doc -> 'dailyFact' AS fact FROM daily_latest
                WHERE user_id = $1 AND day BETWEEN $2 AND $3
                ORDER BY day
                """,
                user_id, start_day, end_day,
            )
        return [DailyFact.model_validate(r["fact"]) for r in rows]

    # ---------- Account lifecycle ----------

    async def export_user(self, user_id: str) -> dict[str, list[dict[str, Any]]]:
        async with get_connection() as conn:
            raw = await conn.fetch("SELECT doc FROM raw_events WHERE user_id = $1", user_id)
            events = await conn.fetch(
                "SELECT doc FROM canonical_events WHERE user_id = $1", user_id
            )
            runs = await conn.fetch(
                "SELECT doc FROM derived_ledger_runs WHERE user_id = $1 ORDER BY day, computed_at",
                user_id,
            )
            failures = await conn.fetch("SELECT doc FROM failures WHERE user_id = $1", user_id)
        return {
            "rawEvents": [r["doc"] for r in raw],
            "events": [r["doc"] for r in events],
            "derivedLedgerRuns": [r["doc"] for r in runs],
            "failures": [r["doc"] for r in failures],
        }

    async def delete_user(self, user_id: str) -> dict[str, int]:
        tables = {
            "rawEvents": "raw_events",
            "events": "canonical_events",
            "derivedLedgerRuns": "derived_ledger_runs",
            "dailyFacts": "daily_latest",
            "failures": "failures",
        }
        counts: dict[str, int] = {}
        async with get_connection() as conn:
            for name, table in tables.items():
                status = await conn.execute(f"DELETE FROM {table} WHERE user_id = $1", user_id)
                counts[name] = _affected(status)
            await conn.execute(
                "DELETE FROM idempotency_keys WHERE starts_with(key, $1)", f"{user_id}:"
            )
        return counts


def _affected(status: str) -> int:
    """Row count from an asyncpg command tag such as ``'DELETE 3'``."""
    try:
        return int(status.rsplit(" ", 1)[-1])
    except (ValueError, IndexError):
        return 0
