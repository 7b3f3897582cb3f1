"""Wire storage, trigger queue and pipeline stages into one service graph.

``build_services`` is called from the app lifespan; tests call it directly
with an ``InMemoryHealthStore`` and a fake clock.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import date, datetime
from typing import Callable

from healthtruth.config import Settings, get_settings
from healthtruth.ingestion.gateway import IngestionGateway
from healthtruth.ingestion.idempotency import IdempotencyGuard
from healthtruth.ingestion.rate_limit import FixedWindowRateLimiter, RateLimiter
from healthtruth.ledger.engine import DerivedLedger
from healthtruth.models.base import utc_now
from healthtruth.pipeline.failures import (
    CODE_HANDLER_FAILED,
    CODE_RETRIES_EXHAUSTED,
    FailureRecorder,
)
from healthtruth.pipeline.normalization import NormalizationPipeline
from healthtruth.pipeline.triggers import (
    InMemoryTriggerQueue,
    TriggerDispatcher,
    TriggerMessage,
    TriggerQueue,
)
from healthtruth.services.account import AccountService
from healthtruth.services.events import EventReader
from healthtruth.storage.base import HealthStore
from healthtruth.storage.memory import InMemoryHealthStore

logger = logging.getLogger("healthtruth.services")


@dataclass
class Services:
    settings: Settings
    store: HealthStore
    queue: TriggerQueue
    dispatcher: TriggerDispatcher
    guard: IdempotencyGuard
    limiter: RateLimiter
    gateway: IngestionGateway
    normalization: NormalizationPipeline
    ledger: DerivedLedger
    failures: FailureRecorder
    account: AccountService
    events: EventReader


def message_day(message: TriggerMessage) -> str:
    """Day a failed message is filed under: its ``day`` if valid, else the publish date."""
    day = message.data.get("day")
    if isinstance(day, str):
        try:
            return date.fromisoformat(day).isoformat()
        except ValueError:
            pass
    return message.published_at.date().isoformat()


def build_store(settings: Settings) -> HealthStore:
    if settings.database_url:
        from healthtruth.storage.postgres import PostgresHealthStore

        return PostgresHealthStore(settings)
    return InMemoryHealthStore()


def build_services(
    settings: Settings | None = None,
    *,
    store: HealthStore | None = None,
    queue: TriggerQueue | None = None,
    limiter: RateLimiter | None = None,
    clock: Callable[[], datetime] = utc_now,
    monotonic: Callable[[], float] = time.monotonic,
    sleep: Callable[[float], object] | None = None,
) -> Services:
    s = settings or get_settings()
    versions = s.pipeline_versions()
    store = store or build_store(s)
    queue = queue or InMemoryTriggerQueue()
    limiter = limiter or FixedWindowRateLimiter(
        s.rate_limit_per_minute, s.rate_limit_window_seconds, clock=monotonic
    )

    failures = FailureRecorder(store, versions.logic_version, clock)
    guard = IdempotencyGuard(store, s.idempotency_ttl_seconds, clock)
    gateway = IngestionGateway(
        store, queue, guard, limiter, versions, raw_topic=s.topic_raw_events, clock=clock
    )
    normalization = NormalizationPipeline(
        store,
        queue,
        versions,
        failures=failures,
        canonical_topic=s.topic_canonical_events,
        clock=clock,
    )
    ledger = DerivedLedger(store, versions, clock=clock)
    account = AccountService(
        store, queue, guard, delete_topic=s.topic_account_delete, clock=clock
    )

    dispatcher_kwargs = {} if sleep is None else {"sleep": sleep}
    dispatcher = TriggerDispatcher(
        queue,
        max_attempts=s.trigger_max_attempts,
        backoff_seconds=s.trigger_backoff_seconds,
        concurrency=s.trigger_concurrency,
        **dispatcher_kwargs,
    )

    async def record_failure(
        code: str, text: str, message: TriggerMessage, exc: BaseException
    ) -> None:
        user_id = message.data.get("userId")
        if not user_id:
            logger.error("Failed message %s has no userId; not recorded", message.id)
            return
        await failures.record(
            user_id=user_id,
            day=message_day(message),
            code=code,
            message=text,
            raw_event_id=message.data.get("rawEventId"),
            subject_id=message.id,
            details={"topic": message.topic, "error": str(exc)},
        )

    async def record_exhausted(message: TriggerMessage, exc: BaseException) -> None:
        await record_failure(
            CODE_RETRIES_EXHAUSTED,
            f"Gave up on {message.topic} after {s.trigger_max_attempts} attempts",
            message,
            exc,
        )

    async def record_failed(message: TriggerMessage, exc: BaseException) -> None:
        await record_failure(
            CODE_HANDLER_FAILED, f"Handler for {message.topic} failed", message, exc
        )

    dispatcher.subscribe(s.topic_raw_events, normalization.handle_trigger)
    dispatcher.subscribe(s.topic_canonical_events, ledger.handle_trigger)
    dispatcher.subscribe(s.topic_account_delete, account.handle_delete_trigger)
    dispatcher.set_exhausted_handler(record_exhausted)
    dispatcher.set_failed_handler(record_failed)

    return Services(
        settings=s,
        store=store,
        queue=queue,
        dispatcher=dispatcher,
        guard=guard,
        limiter=limiter,
        gateway=gateway,
        normalization=normalization,
        ledger=ledger,
        failures=failures,
        account=account,
        events=EventReader(store),
    )
