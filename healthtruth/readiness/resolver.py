"""Client-side readiness resolver.

Turns a derived document's metadata plus the request/schema state into one
of four canonical states. The first matching rule wins:

    network loading                       → partial / network-loading
    network error                         → error   / network-error
    eventsCount == 0                      → missing / no-events
    payload failed contract validation    → error   / invalid-payload
    computedAt or latestCanonicalEventAt  → partial / missing-meta
      absent
    pipelineVersion != expected           → error   / pipeline-version-mismatch
    otherwise                             → ready   / ready

Only ``{state, reason}`` is meant to reach a UI.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class NetworkState(str, Enum):
    loading = "loading"
    ok = "ok"
    error = "error"


class ReadinessState(str, Enum):
    missing = "missing"
    partial = "partial"
    ready = "ready"
    error = "error"


REASON_NETWORK_LOADING = "network-loading"
REASON_NETWORK_ERROR = "network-error"
REASON_NO_EVENTS = "no-events"
REASON_INVALID_PAYLOAD = "invalid-payload"
REASON_MISSING_META = "missing-meta"
REASON_VERSION_MISMATCH = "pipeline-version-mismatch"
REASON_READY = "ready"


@dataclass(frozen=True)
class ReadinessInput:
    network: NetworkState
    payload_valid: bool = True
    events_count: int | None = None
    computed_at_iso: str | None = None
    latest_canonical_event_at_iso: str | None = None
    pipeline_version: int | None = None
    expected_pipeline_version: int = 1


@dataclass(frozen=True)
class ReadinessResult:
    state: ReadinessState
    reason: str

    def to_dict(self) -> dict[str, str]:
        return {"state": self.state.value, "reason": self.reason}


def resolve(inp: ReadinessInput) -> ReadinessResult:
    """Resolve readiness. Pure: same input, same output."""
    network = NetworkState(inp.network)
    if network is NetworkState.loading:
        return ReadinessResult(ReadinessState.partial, REASON_NETWORK_LOADING)
    if network is NetworkState.error:
        return ReadinessResult(ReadinessState.error, REASON_NETWORK_ERROR)
    if inp.events_count == 0:
        return ReadinessResult(ReadinessState.missing, REASON_NO_EVENTS)
    if not inp.payload_valid:
        return ReadinessResult(ReadinessState.error, REASON_INVALID_PAYLOAD)
    if not inp.computed_at_iso or not inp.latest_canonical_event_at_iso:
        return ReadinessResult(ReadinessState.partial, REASON_MISSING_META)
    if inp.pipeline_version != inp.expected_pipeline_version:
        return ReadinessResult(ReadinessState.error, REASON_VERSION_MISMATCH)
    return ReadinessResult(ReadinessState.ready, REASON_READY)
