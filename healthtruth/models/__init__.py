"""Pydantic documents and API contracts (camelCase on the wire)."""
