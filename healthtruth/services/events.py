"""Read side for canonical events: the per-day listing and lineage lookups."""

from __future__ import annotations

import logging

from healthtruth.errors import EventNotFoundError
from healthtruth.ledger.facts import latest_logic_version
from healthtruth.models.events import CanonicalEventsResponse, EventLineage
from healthtruth.storage.base import HealthStore

logger = logging.getLogger("healthtruth.events")


class EventReader:
    def __init__(self, store: HealthStore) -> None:
        self._store = store

    async def list_day(self, user_id: str, day: str) -> CanonicalEventsResponse:
        """Events a rollup of ``day`` would read, in observation order."""
        events = latest_logic_version(await self._store.list_canonical_events(user_id, day))
        return CanonicalEventsResponse(
            day=day,
            items=events,
            events_count=len(events),
            latest_canonical_event_at=max((e.created_at for e in events), default=None),
        )

    async def lineage(self, user_id: str, event_id: str) -> EventLineage:
        """Trace a canonical event back to its raw event.

        Raises:
            EventNotFoundError: The caller has no canonical event with that id.
        """
        event = await self._store.get_canonical_event(user_id, event_id)
        if event is None:
            raise EventNotFoundError(f"Canonical event {event_id} not found")

        raw = await self._store.get_raw_event(user_id, event.raw_event_id)
        if raw is None:
            logger.warning("Raw event %s behind %s is gone", event.raw_event_id, event.id)
        return EventLineage(
            canonical_event_id=event.id,
            raw_event_id=event.raw_event_id,
            kind=event.kind,
            day=event.day,
            provider=event.provider,
            schema_version=event.schema_version,
            canonical_version=event.canonical_version,
            logic_version=event.logic_version,
            raw_event_present=raw is not None,
            raw_received_at=raw.received_at if raw else None,
            source_type=raw.source_type if raw else None,
            event=event,
        )
