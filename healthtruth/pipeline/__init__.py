"""Asynchronous processing between ingestion and the derived ledger.

Modules:
    triggers      - TriggerQueue / TriggerDispatcher message boundary
    normalization - RawEvent → CanonicalEvent state machine
    mappers       - Versioned (kind, schemaVersion) mapper registry
    timezones     - Day key computation with UTC fallback
    failures      - Failure memory writer and detail sanitizer
    versions      - PipelineVersions struct
"""
