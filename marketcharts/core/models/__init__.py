"""Data models for marketcharts."""

from .chart import (
    AlignedSeries,
    ChartAnnotation,
    ChartData,
    ChartSeries,
    SeriesDataType,
    TechnicalIndicator,
)
from .market import (
    INDEX_TO_SYMBOL,
    SYMBOL_TO_INDEX,
    IndexName,
    coerce_index_name,
    index_label,
    index_name_for_symbol,
    symbol_for_index,
)
from .records import INTERPOLATED_SOURCE, NormalizedRecord, filter_range, sort_and_dedupe

__all__ = [
    "AlignedSeries",
    "ChartAnnotation",
    "ChartData",
    "ChartSeries",
    "SeriesDataType",
    "TechnicalIndicator",
    "INDEX_TO_SYMBOL",
    "SYMBOL_TO_INDEX",
    "IndexName",
    "coerce_index_name",
    "index_label",
    "index_name_for_symbol",
    "symbol_for_index",
    "INTERPOLATED_SOURCE",
    "NormalizedRecord",
    "filter_range",
    "sort_and_dedupe",
]
