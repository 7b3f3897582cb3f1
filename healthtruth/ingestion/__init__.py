"""Synchronous write path: auth, idempotency, rate limiting, validation.

Modules:
    gateway     - IngestionGateway (validate, persist, publish)
    idempotency - IdempotencyGuard over store-backed keys with a TTL
    rate_limit  - RateLimiter ABC and the in-memory fixed-window limiter
"""
