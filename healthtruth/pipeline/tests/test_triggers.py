"""Tests for the trigger queue and dispatcher retry semantics."""

from __future__ import annotations

import asyncio

import pytest

from healthtruth.errors import MappingError, TransientStorageError
from healthtruth.pipeline.triggers import InMemoryTriggerQueue, TriggerDispatcher, TriggerMessage


class Recorder:
    """Handler that fails a configurable number of times before succeeding."""

    def __init__(self, failures: int = 0, exc: Exception | None = None) -> None:
        self.failures = failures
        self.exc = exc or TransientStorageError("store down")
        self.calls: list[TriggerMessage] = []

    async def __call__(self, message: TriggerMessage) -> None:
        self.calls.append(message)
        if len(self.calls) <= self.failures:
            raise self.exc


@pytest.fixture
def sleeps() -> list[float]:
    return []


@pytest.fixture
def dispatcher(queue: InMemoryTriggerQueue, sleeps: list[float]) -> TriggerDispatcher:
    async def fake_sleep(delay: float) -> None:
        sleeps.append(delay)

    return TriggerDispatcher(queue, max_attempts=4, backoff_seconds=0.5, sleep=fake_sleep)


class TestDelivery:
    @pytest.mark.asyncio
    async def test_delivers_to_subscribed_handler(self, queue, dispatcher) -> None:
        handler = Recorder()
        dispatcher.subscribe("t", handler)
        await queue.publish("t", {"userId": "u1"})
        results = await dispatcher.run_pending()
        assert [r.status for r in results] == ["delivered"]
        assert handler.calls[0].data == {"userId": "u1"}
        assert len(queue) == 0

    @pytest.mark.asyncio
    async def test_unrouted_topic(self, queue, dispatcher) -> None:
        await queue.publish("nobody-listens", {})
        results = await dispatcher.run_pending()
        assert results[0].status == "unrouted"

    @pytest.mark.asyncio
    async def test_messages_published_during_drain_are_processed(self, queue, dispatcher) -> None:
        downstream = Recorder()

        async def upstream(message: TriggerMessage) -> None:
            await queue.publish("second", {"from": message.id})

        dispatcher.subscribe("first", upstream)
        dispatcher.subscribe("second", downstream)
        await queue.publish("first", {})
        results = await dispatcher.run_pending()
        assert len(results) == 2
        assert len(downstream.calls) == 1


class TestRetries:
    @pytest.mark.asyncio
    async def test_transient_error_retried_with_backoff(self, queue, dispatcher, sleeps) -> None:
        handler = Recorder(failures=2)
        dispatcher.subscribe("t", handler)
        await queue.publish("t", {})
        results = await dispatcher.run_pending()
        assert results[0].status == "delivered"
        assert results[0].attempts == 3
        assert sleeps == [0.5, 1.0]

    @pytest.mark.asyncio
    async def test_exhaustion_calls_handler(self, queue, dispatcher, sleeps) -> None:
        exhausted: list[tuple[TriggerMessage, BaseException]] = []

        async def on_exhausted(message: TriggerMessage, exc: BaseException) -> None:
            exhausted.append((message, exc))

        dispatcher.set_exhausted_handler(on_exhausted)
        dispatcher.subscribe("t", Recorder(failures=100))
        await queue.publish("t", {"userId": "u1"})
        results = await dispatcher.run_pending()
        assert results[0].status == "exhausted"
        assert results[0].attempts == 4
        assert sleeps == [0.5, 1.0, 2.0]
        assert len(exhausted) == 1
        assert isinstance(exhausted[0][1], TransientStorageError)

    @pytest.mark.asyncio
    async def test_terminal_error_not_retried(self, queue, dispatcher, sleeps) -> None:
        handler = Recorder(failures=1, exc=MappingError("no mapping"))
        dispatcher.subscribe("t", handler)
        await queue.publish("t", {})
        results = await dispatcher.run_pending()
        assert results[0].status == "failed"
        assert len(handler.calls) == 1
        assert sleeps == []

    @pytest.mark.asyncio
    async def test_terminal_error_calls_failed_handler(self, queue, dispatcher) -> None:
        failed: list[tuple[TriggerMessage, BaseException]] = []

        async def on_failed(message: TriggerMessage, exc: BaseException) -> None:
            failed.append((message, exc))

        dispatcher.set_failed_handler(on_failed)
        dispatcher.subscribe("t", Recorder(failures=1, exc=ValueError("bad day")))
        message = await queue.publish("t", {"userId": "u1"})
        results = await dispatcher.run_pending()
        assert results[0].status == "failed"
        assert len(failed) == 1
        assert failed[0][0].id == message.id
        assert isinstance(failed[0][1], ValueError)

    @pytest.mark.asyncio
    async def test_failed_handler_not_called_after_successful_retry(
        self, queue, dispatcher
    ) -> None:
        failed: list[TriggerMessage] = []

        async def on_failed(message: TriggerMessage, exc: BaseException) -> None:
            failed.append(message)

        dispatcher.set_failed_handler(on_failed)
        dispatcher.subscribe("t", Recorder(failures=2))
        await queue.publish("t", {})
        await dispatcher.run_pending()
        assert failed == []

    @pytest.mark.asyncio
    async def test_failing_failed_handler_is_contained(self, queue, dispatcher) -> None:
        async def broken(message: TriggerMessage, exc: BaseException) -> None:
            raise RuntimeError("cannot record")

        dispatcher.set_failed_handler(broken)
        dispatcher.subscribe("t", Recorder(failures=1, exc=ValueError("boom")))
        await queue.publish("t", {})
        results = await dispatcher.run_pending()
        assert results[0].status == "failed"

    @pytest.mark.asyncio
    async def test_failing_exhausted_handler_is_contained(self, queue, dispatcher) -> None:
        async def broken(message: TriggerMessage, exc: BaseException) -> None:
            raise RuntimeError("cannot record")

        dispatcher.set_exhausted_handler(broken)
        dispatcher.subscribe("t", Recorder(failures=100))
        await queue.publish("t", {})
        results = await dispatcher.run_pending()
        assert results[0].status == "exhausted"

    def test_rejects_zero_attempts(self, queue) -> None:
        with pytest.raises(ValueError):
            TriggerDispatcher(queue, max_attempts=0)


class TestBackgroundConsumer:
    @pytest.mark.asyncio
    async def test_start_processes_and_stop_is_clean(self, queue) -> None:
        dispatcher = TriggerDispatcher(queue)
        handler = Recorder()
        dispatcher.subscribe("t", handler)
        await dispatcher.start()
        await queue.publish("t", {})
        await asyncio.wait_for(queue.join(), timeout=2)
        await dispatcher.stop()
        assert len(handler.calls) == 1
