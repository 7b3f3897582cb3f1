"""Readiness resolver: gate consumption of derived documents on the client."""

from healthtruth.readiness.resolver import (
    NetworkState,
    ReadinessInput,
    ReadinessResult,
    ReadinessState,
    resolve,
)

__all__ = [
    "NetworkState",
    "ReadinessInput",
    "ReadinessResult",
    "ReadinessState",
    "resolve",
]
