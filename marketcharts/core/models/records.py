"""Normalized daily index records."""

from __future__ import annotations

from collections.abc import Iterable
from datetime import UTC, date, datetime
from decimal import Decimal

from pydantic import BaseModel, Field, field_serializer, field_validator
from pydantic import ConfigDict as PydanticConfigDict

from .market import IndexName, coerce_index_name, index_label

INTERPOLATED_SOURCE = "interpolated"


class NormalizedRecord(BaseModel):
    """One trading day of one index, independent of the provider wire format."""

    index_name: IndexName | str
    date: date
    open: Decimal = Decimal("0")
    high: Decimal = Decimal("0")
    low: Decimal = Decimal("0")
    close: Decimal
    volume: int = Field(default=0, ge=0)
    fetched_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    source: str | None = None
    is_interpolated: bool = False

    model_config = PydanticConfigDict(frozen=True)

    @field_validator("index_name", mode="before")
    @classmethod
    def _coerce_index_name(cls, value: object) -> object:
        if isinstance(value, str):
            return coerce_index_name(value)
        return value

    @field_validator("date", mode="before")
    @classmethod
    def _truncate_to_date(cls, value: object) -> object:
        if isinstance(value, datetime):
            return value.date()
        return value

    @field_serializer("open", "high", "low", "close", when_used="json")
    def serialize_decimal(self, value: Decimal) -> str:
        """Serialize Decimal to string."""
        return str(value)

    @property
    def index_label(self) -> str:
        return index_label(self.index_name)


def sort_and_dedupe(records: Iterable[NormalizedRecord]) -> list[NormalizedRecord]:
    """Order records by date, keeping the last occurrence of each date."""

    by_date: dict[date, NormalizedRecord] = {}
    for record in records:
        by_date[record.date] = record
    return [by_date[key] for key in sorted(by_date)]


def filter_range(records: Iterable[NormalizedRecord], start: date, end: date) -> list[NormalizedRecord]:
    """Keep records dated within ``[start, end]``."""

    return [record for record in records if start <= record.date <= end]


__all__ = ["INTERPOLATED_SOURCE", "NormalizedRecord", "filter_range", "sort_and_dedupe"]
