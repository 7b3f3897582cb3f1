"""Normalization pipeline: RawEvent → 0..1 CanonicalEvent.

Per raw event the pipeline moves through::

    received → mapped → succeeded
            ↘ rejected (no mapping / malformed payload, FailureEntry written)

The canonical id is ``{rawEventId}_l{logicVersion}`` and is written
create-if-absent, so a redelivered trigger ends ``succeeded`` with
``created=False`` and never duplicates the event. ``TransientStorageError``
is not caught here; the trigger dispatcher retries it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable

from healthtruth.errors import MappingError
from healthtruth.models.base import as_utc, utc_now
from healthtruth.models.events import CanonicalEvent, FailureEntry, canonical_event_id
from healthtruth.pipeline.failures import FailureRecorder
from healthtruth.pipeline.mappers import MapperRegistry, build_default_registry
from healthtruth.pipeline.timezones import day_key
from healthtruth.pipeline.triggers import TriggerMessage, TriggerQueue
from healthtruth.pipeline.versions import PipelineVersions
from healthtruth.storage.base import HealthStore

logger = logging.getLogger("healthtruth.pipeline.normalization")

CODE_RAW_EVENT_NOT_FOUND = "RAW_EVENT_NOT_FOUND"


class NormalizationState(str, Enum):
    received = "received"
    mapped = "mapped"
    succeeded = "succeeded"
    rejected = "rejected"


@dataclass
class NormalizationOutcome:
    """Result of processing one raw event.

    Attributes:
        raw_event_id:    The processed raw event.
        state:           Terminal state (``succeeded`` or ``rejected``).
        canonical_event: The canonical event, when succeeded.
        created:         False when the canonical event already existed.
        failure:         The FailureEntry written, when rejected.
        history:         States visited, in order.
    """

    raw_event_id: str
    state: NormalizationState = NormalizationState.received
    canonical_event: CanonicalEvent | None = None
    created: bool = False
    failure: FailureEntry | None = None
    history: list[NormalizationState] = field(
        default_factory=lambda: [NormalizationState.received]
    )

    def advance(self, state: NormalizationState) -> None:
        self.state = state
        self.history.append(state)


class NormalizationPipeline:
    """Map raw events with the registered versioned mappers."""

    def __init__(
        self,
        store: HealthStore,
        queue: TriggerQueue,
        versions: PipelineVersions,
        *,
        registry: MapperRegistry | None = None,
        failures: FailureRecorder | None = None,
        canonical_topic: str = "canonical-events.created.v1",
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._store = store
        self._queue = queue
        self._versions = versions
        self._registry = registry or build_default_registry()
        self._failures = failures or FailureRecorder(store, versions.logic_version, clock)
        self._canonical_topic = canonical_topic
        self._clock = clock

    async def process(
        self, user_id: str, raw_event_id: str, day: str | None = None
    ) -> NormalizationOutcome:
        """Normalize one raw event.

        Args:
            user_id:      Owner of the raw event.
            raw_event_id: Raw event to normalize.
            day:          Day hint from the trigger, used only to file a
                          failure when the raw event no longer exists.
        """
        outcome = NormalizationOutcome(raw_event_id=raw_event_id)

        raw = await self._store.get_raw_event(user_id, raw_event_id)
        if raw is None:
            logger.warning("Raw event %s for user %s not found", raw_event_id, user_id)
            if day is not None:
                outcome.failure = await self._failures.record(
                    user_id=user_id,
                    day=day,
                    code=CODE_RAW_EVENT_NOT_FOUND,
                    message="Raw event not found at normalization time",
                    raw_event_id=raw_event_id,
                )
            outcome.advance(NormalizationState.rejected)
            return outcome

        key = day_key(raw.observed_at, raw.time_zone)

        try:
            mapper = self._registry.get(raw.kind, raw.schema_version)
            mapped = mapper(raw)
        except MappingError as exc:
            logger.warning(
                "Rejected raw event %s (%s v%d): %s",
                raw.id, raw.kind.value, raw.schema_version, exc.code,
            )
            outcome.failure = await self._failures.record(
                user_id=user_id,
                day=key.day,
                code=exc.code,
                message=exc.detail,
                raw_event_id=raw.id,
                details=exc.details,
            )
            outcome.advance(NormalizationState.rejected)
            return outcome

        outcome.advance(NormalizationState.mapped)

        event = CanonicalEvent(
            id=canonical_event_id(raw.id, self._versions.logic_version),
            user_id=user_id,
            raw_event_id=raw.id,
            source_id=raw.source_id,
            provider=raw.provider,
            kind=raw.kind,
            day=key.day,
            time_zone=key.time_zone,
            time_zone_fallback=key.fallback,
            observed_at=as_utc(raw.observed_at),
            start=mapped.start,
            end=mapped.end,
            values=mapped.values,
            schema_version=raw.schema_version,
            canonical_version=self._versions.canonical_version,
            logic_version=self._versions.logic_version,
            created_at=self._clock(),
        )
        outcome.created = await self._store.create_canonical_event(event)
        outcome.canonical_event = event
        if not outcome.created:
            logger.info("Canonical event %s already exists; redelivery", event.id)

        # Published on redelivery as well
        await self._queue.publish(
            self._canonical_topic,
            {"userId": user_id, "day": event.day, "canonicalEventId": event.id},
        )
        outcome.advance(NormalizationState.succeeded)
        logger.info(
            "Normalized %s → %s (day=%s, tz=%s%s)",
            raw.id, event.id, event.day, event.time_zone,
            ", fallback" if event.time_zone_fallback else "",
        )
        return outcome

    async def handle_trigger(self, message: TriggerMessage) -> NormalizationOutcome:
        """Raw-events topic handler."""
        data = message.data
        return await self.process(data["userId"], data["rawEventId"], data.get("day"))
