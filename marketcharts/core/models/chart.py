"""Chart-ready series models."""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, field_serializer, model_validator


class SeriesDataType(str, Enum):
    """What the values of a series represent."""

    PRICE = "Price"
    PERCENTAGE_CHANGE = "Percentage Change"
    NORMALIZED = "Normalized"


class ChartSeries(BaseModel):
    """One line on a chart, positionally aligned to the chart labels."""

    name: str
    color: str | None = None
    data_type: SeriesDataType = SeriesDataType.PRICE
    is_comparison: bool = False
    points: list[Decimal | None] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)

    @field_serializer("points", when_used="json")
    def serialize_points(self, value: list[Decimal | None]) -> list[float | None]:
        """Serialize Decimal points to floats for chart front-ends."""
        return [float(point) if point is not None else None for point in value]


class ChartAnnotation(BaseModel):
    """Event marker placed on a chart label."""

    date: date
    text: str
    type: str = "Event"


class TechnicalIndicator(BaseModel):
    """Derived series computed from one source series."""

    name: str
    parameters: dict[str, Any] = Field(default_factory=dict)
    data: list[Decimal | None] = Field(default_factory=list)
    color: str | None = None
    source_series: str | None = None

    @field_serializer("data", when_used="json")
    def serialize_data(self, value: list[Decimal | None]) -> list[float | None]:
        """Serialize Decimal values to floats for chart front-ends."""
        return [float(point) if point is not None else None for point in value]


class AlignedSeries(BaseModel):
    """Several series sharing one sorted label axis."""

    labels: list[date] = Field(default_factory=list)
    series: dict[str, list[Decimal | None]] = Field(default_factory=dict)


class ChartData(BaseModel):
    """Complete chart payload: labels, series, annotations and indicators."""

    title: str = ""
    start_date: date | None = None
    end_date: date | None = None
    labels: list[str] = Field(default_factory=list)
    series: list[ChartSeries] = Field(default_factory=list)
    annotations: list[ChartAnnotation] | None = None
    technical_indicators: list[TechnicalIndicator] | None = None

    @model_validator(mode="after")
    def _check_alignment(self) -> ChartData:
        names: set[str] = set()
        for item in self.series:
            if len(item.points) != len(self.labels):
                raise ValueError(
                    f"series {item.name!r} has {len(item.points)} points for {len(self.labels)} labels"
                )
            if item.name in names:
                raise ValueError(f"duplicate series name {item.name!r}")
            names.add(item.name)
        return self

    def get_series(self, name: str) -> ChartSeries | None:
        for item in self.series:
            if item.name == name:
                return item
        return None


__all__ = [
    "AlignedSeries",
    "ChartAnnotation",
    "ChartData",
    "ChartSeries",
    "SeriesDataType",
    "TechnicalIndicator",
]
