"""Asynchronous trigger queue between pipeline stages.

Stages communicate only through messages published to named topics:

    raw-events.created.v1        {userId, rawEventId, day}
    canonical-events.created.v1  {userId, day, canonicalEventId}
    account.delete.v1            {userId, requestId}

Delivery is at-least-once. The dispatcher retries a handler that raises
``TransientStorageError`` with exponential backoff, up to ``max_attempts``,
then hands the message to ``on_exhausted``. Any other exception is terminal
for that message: it is never retried and the message goes to ``on_failed``.

Usage::

    queue = InMemoryTriggerQueue()
    dispatcher = TriggerDispatcher(queue, max_attempts=5, concurrency=4)
    dispatcher.subscribe("raw-events.created.v1", normalization.handle_trigger)
    await queue.publish("raw-events.created.v1", {"userId": "u1", "rawEventId": "r1"})
    await dispatcher.run_pending()
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from abc import ABC, abstractmethod
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable

from healthtruth.errors import TransientStorageError
from healthtruth.models.base import utc_now

logger = logging.getLogger("healthtruth.pipeline.triggers")


@dataclass(frozen=True)
class TriggerMessage:
    """One published message.

    Attributes:
        topic:        Topic name (e.g. ``raw-events.created.v1``).
        data:         JSON-safe message body.
        id:           Unique message id, stable across redeliveries.
        published_at: UTC timestamp of publication.
    """

    topic: str
    data: dict[str, Any]
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    published_at: datetime = field(default_factory=utc_now)


@dataclass
class DeliveryResult:
    """Outcome of dispatching one message.

    ``status`` is one of ``delivered``, ``failed`` (terminal error),
    ``exhausted`` (transient error on every attempt) or ``unrouted``.
    """

    message: TriggerMessage
    status: str
    attempts: int = 0
    error: str | None = None


Handler = Callable[[TriggerMessage], Awaitable[Any]]
FailureHook = Callable[[TriggerMessage, BaseException], Awaitable[Any]]


class TriggerQueue(ABC):
    """Publish side of the message boundary plus a consumer cursor."""

    @abstractmethod
    async def publish(self, topic: str, data: dict[str, Any]) -> TriggerMessage:
        """Enqueue a message. Must not wait for it to be processed."""

    @abstractmethod
    async def get(self) -> TriggerMessage:
        """Wait for and return the next message."""

    @abstractmethod
    def get_nowait(self) -> TriggerMessage | None:
        """Return the next message, or None if the queue is empty."""

    @abstractmethod
    def task_done(self) -> None:
        """Mark the last message returned by ``get`` as processed."""


class InMemoryTriggerQueue(TriggerQueue):
    """Process-local queue built on ``asyncio.Queue``."""

    def __init__(self) -> None:
        self._queue: asyncio.Queue[TriggerMessage] = asyncio.Queue()
        self.published: list[TriggerMessage] = []

    async def publish(self, topic: str, data: dict[str, Any]) -> TriggerMessage:
        message = TriggerMessage(topic=topic, data=dict(data))
        self.published.append(message)
        self._queue.put_nowait(message)
        logger.debug("Published %s to %s", message.id, topic)
        return message

    async def get(self) -> TriggerMessage:
        return await self._queue.get()

    def get_nowait(self) -> TriggerMessage | None:
        try:
            return self._queue.get_nowait()
        except asyncio.QueueEmpty:
            return None

    def task_done(self) -> None:
        self._queue.task_done()

    async def join(self) -> None:
        """Wait until every published message has been marked done."""
        await self._queue.join()

    def __len__(self) -> int:
        return self._queue.qsize()


class TriggerDispatcher:
    """Route queued messages to per-topic handlers with bounded concurrency."""

    def __init__(
        self,
        queue: TriggerQueue,
        *,
        max_attempts: int = 5,
        backoff_seconds: float = 0.5,
        concurrency: int = 4,
        on_exhausted: FailureHook | None = None,
        on_failed: FailureHook | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        """Initialize the dispatcher.

        Args:
            queue:           Source of messages.
            max_attempts:    Total attempts per message for transient errors.
            backoff_seconds: Base delay; attempt ``n`` waits ``base * 2**(n-1)``.
            concurrency:     Maximum handlers running at once.
            on_exhausted:    Async callback(message, last_error) once retries run out.
            on_failed:       Async callback(message, error) for a terminal handler error.
            sleep:           Awaitable sleep, replaceable in tests.
        """
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self._queue = queue
        self._max_attempts = max_attempts
        self._backoff_seconds = backoff_seconds
        self._semaphore = asyncio.Semaphore(concurrency)
        self._on_exhausted = on_exhausted
        self._on_failed = on_failed
        self._sleep = sleep
        self._handlers: dict[str, list[Handler]] = defaultdict(list)
        self._consumer: asyncio.Task | None = None
        self._inflight: set[asyncio.Task] = set()

    @property
    def queue(self) -> TriggerQueue:
        return self._queue

    def subscribe(self, topic: str, handler: Handler) -> None:
        self._handlers[topic].append(handler)

    def set_exhausted_handler(self, handler: FailureHook) -> None:
        self._on_exhausted = handler

    def set_failed_handler(self, handler: FailureHook) -> None:
        self._on_failed = handler

    # ---------- Draining ----------

    async def run_pending(self) -> list[DeliveryResult]:
        """Process messages until the queue is empty.

        Messages published by handlers during the drain are processed too, so
        one call carries an ingest all the way through to the derived ledger.
        """
        results: list[DeliveryResult] = []
        while True:
            batch: list[TriggerMessage] = []
            while (message := self._queue.get_nowait()) is not None:
                batch.append(message)
            if not batch:
                return results
            outcomes = await asyncio.gather(*(self._dispatch(m) for m in batch))
            for _ in batch:
                self._queue.task_done()
            results.extend(outcomes)

    # ---------- Background consumer ----------

    async def start(self) -> None:
        if self._consumer is not None:
            return
        self._consumer = asyncio.create_task(self._consume(), name="trigger-dispatcher")
        logger.info("Trigger dispatcher started")

    async def stop(self) -> None:
        if self._consumer is None:
            return
        self._consumer.cancel()
        try:
            await self._consumer
        except asyncio.CancelledError:
            pass
        self._consumer = None
        if self._inflight:
            await asyncio.gather(*self._inflight, return_exceptions=True)
        logger.info("Trigger dispatcher stopped")

    async def _consume(self) -> None:
        while True:
            message = await self._queue.get()
            task = asyncio.create_task(self._dispatch_and_ack(message))
            self._inflight.add(task)
            task.add_done_callback(self._inflight.discard)

    async def _dispatch_and_ack(self, message: TriggerMessage) -> None:
        try:
            await self._dispatch(message)
        finally:
            self._queue.task_done()

    # ---------- Delivery ----------

    async def _dispatch(self, message: TriggerMessage) -> DeliveryResult:
        handlers = self._handlers.get(message.topic)
        if not handlers:
            logger.warning("No handler subscribed to %s; dropping %s", message.topic, message.id)
            return DeliveryResult(message=message, status="unrouted")

        async with self._semaphore:
            result = DeliveryResult(message=message, status="delivered")
            for handler in handlers:
                result = await self._deliver(handler, message)
                if result.status != "delivered":
                    break
            return result

    async def _deliver(self, handler: Handler, message: TriggerMessage) -> DeliveryResult:
        attempt = 0
        while True:
            attempt += 1
            try:
                await handler(message)
                return DeliveryResult(message=message, status="delivered", attempts=attempt)
            except TransientStorageError as exc:
                if attempt >= self._max_attempts:
                    logger.error(
                        "Giving up on %s (%s) after %d attempts: %s",
                        message.id, message.topic, attempt, exc,
                    )
                    if self._on_exhausted is not None:
                        await self._notify(self._on_exhausted, message, exc)
                    return DeliveryResult(
                        message=message, status="exhausted", attempts=attempt, error=str(exc)
                    )
                delay = self._backoff_seconds * (2 ** (attempt - 1))
                logger.warning(
                    "Transient error on %s (%s), attempt %d/%d; retrying in %.2fs",
                    message.id, message.topic, attempt, self._max_attempts, delay,
                )
                await self._sleep(delay)
            except Exception as exc:
                logger.exception("Handler for %s failed on %s", message.topic, message.id)
                if self._on_failed is not None:
                    await self._notify(self._on_failed, message, exc)
                return DeliveryResult(
                    message=message, status="failed", attempts=attempt, error=str(exc)
                )

    async def _notify(
        self, hook: FailureHook, message: TriggerMessage, exc: BaseException
    ) -> None:
        try:
            await hook(message, exc)
        except Exception:
            logger.exception("Could not record failed message %s", message.id)
