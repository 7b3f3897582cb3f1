"""Shared Pydantic base models and utilities."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Annotated

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Aware UTC copy of ``value``. Naive datetimes are read as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


# YYYY-MM-DD rollup grain
DayKey = Annotated[str, Field(pattern=r"^\d{4}-\d{2}-\d{2}$")]


class TruthBase(BaseModel):
    """Base model with shared config for all healthtruth documents.

    Attributes are snake_case in Python and camelCase on the wire.
    """

    model_config = ConfigDict(
        from_attributes=True,
        populate_by_name=True,
        str_strip_whitespace=True,
        alias_generator=to_camel,
        protected_namespaces=(),
    )

    def to_doc(self) -> dict:
        """JSON-safe camelCase dict, as persisted and served."""
        return self.model_dump(mode="json", by_alias=True)


class ErrorDetail(BaseModel):
    detail: str
    code: str
