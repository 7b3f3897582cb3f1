"""healthtruth: a health-data truth pipeline.

Raw events are ingested idempotently, normalized by versioned mappers into
canonical events and rolled up per user and day into an append-only derived
ledger whose runs can be replayed exactly.
"""

__version__ = "0.1.0"
