"""Chart series shaping: percentage change, alignment, indicators, comparisons and downsampling.

Every function here is pure: inputs are never mutated and new model
instances are returned.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping, Sequence
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

from marketcharts.core.models import (
    AlignedSeries,
    ChartAnnotation,
    ChartData,
    ChartSeries,
    IndexName,
    NormalizedRecord,
    SeriesDataType,
    TechnicalIndicator,
    index_label,
    sort_and_dedupe,
)

INDEX_COLORS: dict[str, str] = {
    IndexName.SP500.value: "#1f77b4",
    IndexName.DOW.value: "#ff7f0e",
    IndexName.NASDAQ.value: "#2ca02c",
}
DEFAULT_COLOR = "#8c564b"

COMPARISON_COLORS: dict[str, str] = {
    IndexName.SP500.value: "#aec7e8",
    IndexName.DOW.value: "#ffbb78",
    IndexName.NASDAQ.value: "#98df8a",
}
DEFAULT_COMPARISON_COLOR = "#c49c94"

INDICATOR_COLORS: dict[str, str] = {
    "SMA20": "#7f7f7f",
    "SMA50": "#bcbd22",
    "SMA200": "#17becf",
    "RSI": "#e377c2",
    "Volatility": "#ffbb78",
}

SUPPORTED_INDICATORS = ("SMA", "RSI", "VOLATILITY")
COMPARISON_SUFFIX = " (Previous)"

_CENT = Decimal("0.01")
_HUNDRED = Decimal("100")
_FIFTY = Decimal("50")

Values = Sequence[Decimal | None]


def _round(value: Decimal) -> Decimal:
    return value.quantize(_CENT, rounding=ROUND_HALF_UP)


def _on_present(values: Values, compute: Callable[[list[Decimal]], list[Decimal | None]]) -> list[Decimal | None]:
    """Apply ``compute`` to the non-null values and scatter results back to their positions."""
    positions = [i for i, value in enumerate(values) if value is not None]
    present = [values[i] for i in positions]
    computed = compute(present)  # type: ignore[arg-type]
    result: list[Decimal | None] = [None] * len(values)
    for position, value in zip(positions, computed, strict=True):
        result[position] = value
    return result


def _check_period(period: int) -> None:
    if period <= 0:
        raise ValueError("period must be positive")


def _resolve_base(records: Sequence[NormalizedRecord], base_date: date) -> NormalizedRecord:
    for record in records:
        if record.date >= base_date:
            return record
    raise ValueError(f"no record on or after base date {base_date.isoformat()}")


def calculate_percentage_change(
    records: Sequence[NormalizedRecord],
    base_date: date,
    *,
    name: str | None = None,
    color: str | None = None,
) -> ChartSeries:
    """Closes expressed as percent change from the close on ``base_date``.

    Without an exact match the earliest record after ``base_date`` is used.
    The substitution is reported in ``metadata`` as ``base_date`` and
    ``base_substituted``; ``metadata["labels"]`` lists the ISO date of each point.
    """
    ordered = sort_and_dedupe(records)
    base = _resolve_base(ordered, base_date)
    if base.close == 0:
        raise ValueError(f"base close on {base.date.isoformat()} is zero")

    points: list[Decimal | None] = [_round((record.close - base.close) / base.close * _HUNDRED) for record in ordered]
    series_name = name or (ordered[0].index_label if ordered else "")
    return ChartSeries(
        name=series_name,
        color=color or INDEX_COLORS.get(series_name, DEFAULT_COLOR),
        data_type=SeriesDataType.PERCENTAGE_CHANGE,
        points=points,
        metadata={
            "labels": [record.date.isoformat() for record in ordered],
            "requested_base_date": base_date.isoformat(),
            "base_date": base.date.isoformat(),
            "base_substituted": base.date != base_date,
            "base_close": str(base.close),
        },
    )


def align_series(
    series_map: Mapping[str, Sequence[NormalizedRecord]],
    value: Callable[[NormalizedRecord], Decimal] = lambda record: record.close,
) -> AlignedSeries:
    """Place several record series on the sorted union of their dates.

    A series without a record for a label gets ``None`` there.
    """
    by_name = {name: {record.date: value(record) for record in records} for name, records in series_map.items()}
    labels = sorted({day for values in by_name.values() for day in values})
    return AlignedSeries(
        labels=labels,
        series={name: [values.get(day) for day in labels] for name, values in by_name.items()},
    )


def moving_average(values: Values, period: int) -> list[Decimal | None]:
    """Simple moving average; the first ``period - 1`` present values have no average."""
    _check_period(period)

    def compute(present: list[Decimal]) -> list[Decimal | None]:
        result: list[Decimal | None] = []
        window_sum = Decimal("0")
        for i, value in enumerate(present):
            window_sum += value
            if i >= period:
                window_sum -= present[i - period]
            result.append(_round(window_sum / period) if i >= period - 1 else None)
        return result

    return _on_present(values, compute)


def moving_averages(values: Values, periods: Sequence[int] = (20, 50, 200)) -> dict[int, list[Decimal | None]]:
    return {period: moving_average(values, period) for period in periods}


def rsi(values: Values, period: int = 14) -> list[Decimal | None]:
    """Relative strength index with Wilder smoothing.

    The first ``period`` values have no RSI. When the average loss is zero the
    RSI is 100.
    """
    _check_period(period)

    def compute(present: list[Decimal]) -> list[Decimal | None]:
        result: list[Decimal | None] = [None] * len(present)
        if len(present) <= period:
            return result
        changes = [present[i] - present[i - 1] for i in range(1, len(present))]
        avg_gain = sum((max(change, Decimal("0")) for change in changes[:period]), Decimal("0")) / period
        avg_loss = sum((max(-change, Decimal("0")) for change in changes[:period]), Decimal("0")) / period
        result[period] = _rsi_value(avg_gain, avg_loss)
        for i in range(period + 1, len(present)):
            change = changes[i - 1]
            gain = max(change, Decimal("0"))
            loss = max(-change, Decimal("0"))
            avg_gain = (avg_gain * (period - 1) + gain) / period
            avg_loss = (avg_loss * (period - 1) + loss) / period
            result[i] = _rsi_value(avg_gain, avg_loss)
        return result

    return _on_present(values, compute)


def _rsi_value(avg_gain: Decimal, avg_loss: Decimal) -> Decimal:
    if avg_loss == 0:
        return _HUNDRED
    relative_strength = avg_gain / avg_loss
    return _round(_HUNDRED - _HUNDRED / (1 + relative_strength))


def volatility(values: Values, period: int = 20) -> list[Decimal | None]:
    """Rolling population standard deviation of daily percentage returns.

    The value at position ``i`` covers the ``period`` returns ending at ``i``,
    so the first ``period`` positions are empty.
    """
    _check_period(period)

    def compute(present: list[Decimal]) -> list[Decimal | None]:
        result: list[Decimal | None] = [None] * len(present)
        returns: list[Decimal | None] = [None]
        for i in range(1, len(present)):
            previous = present[i - 1]
            returns.append(None if previous == 0 else (present[i] - previous) / previous * _HUNDRED)
        for i in range(period, len(present)):
            window = returns[i - period + 1 : i + 1]
            if any(item is None for item in window):
                continue
            window_values = [item for item in window if item is not None]
            mean = sum(window_values, Decimal("0")) / period
            variance = sum(((item - mean) ** 2 for item in window_values), Decimal("0")) / period
            result[i] = _round(variance.sqrt())
        return result

    return _on_present(values, compute)


def normalize(series_list: Sequence[ChartSeries]) -> list[ChartSeries]:
    """Rescale each series to 0-100 by its own min and max; a constant series maps to 50."""
    normalized: list[ChartSeries] = []
    for series in series_list:
        present = [point for point in series.points if point is not None]
        if not present:
            normalized.append(series.model_copy(update={"data_type": SeriesDataType.NORMALIZED}))
            continue
        low, high = min(present), max(present)
        span = high - low
        points: list[Decimal | None] = [
            None if point is None else (_FIFTY if span == 0 else _round((point - low) / span * _HUNDRED))
            for point in series.points
        ]
        normalized.append(
            series.model_copy(
                update={
                    "points": points,
                    "data_type": SeriesDataType.NORMALIZED,
                    "metadata": {**series.metadata, "min": str(low), "max": str(high)},
                }
            )
        )
    return normalized


def downsample_indices(length: int, max_points: int) -> list[int]:
    """Evenly spaced positions ``round(i * (length - 1) / (max_points - 1))``, rounding halves up."""
    if max_points < 2:
        raise ValueError("max_points must be at least 2")
    if length <= max_points:
        return list(range(length))
    span = length - 1
    steps = max_points - 1
    return [(2 * i * span + steps) // (2 * steps) for i in range(max_points)]


def optimize_data_points(chart_data: ChartData, max_points: int) -> ChartData:
    """Reduce every series to at most ``max_points`` evenly spaced points, keeping the first and last."""
    indices = downsample_indices(len(chart_data.labels), max_points)
    if len(indices) == len(chart_data.labels):
        return chart_data.model_copy(deep=True)

    def pick(values: Sequence[Any]) -> list[Any]:
        return [values[i] for i in indices]

    def reduce(series: ChartSeries) -> ChartSeries:
        metadata = dict(series.metadata)
        if "closes" in metadata:
            metadata["closes"] = pick(metadata["closes"])
        return series.model_copy(update={"points": pick(series.points), "metadata": metadata})

    return ChartData(
        title=chart_data.title,
        start_date=chart_data.start_date,
        end_date=chart_data.end_date,
        labels=pick(chart_data.labels),
        series=[reduce(series) for series in chart_data.series],
        annotations=[item.model_copy() for item in chart_data.annotations] if chart_data.annotations else None,
        technical_indicators=(
            [item.model_copy(update={"data": pick(item.data)}) for item in chart_data.technical_indicators]
            if chart_data.technical_indicators
            else None
        ),
    )


def _percentage_from_first(values: Sequence[Decimal]) -> list[Decimal | None]:
    if not values or values[0] == 0:
        return [None] * len(values)
    base = values[0]
    return [_round((value - base) / base * _HUNDRED) for value in values]


def generate_comparison_data(
    current: ChartData,
    previous_by_series: Mapping[str, Sequence[NormalizedRecord]],
) -> ChartData:
    """Overlay a previous period on the current chart, aligned by trading-day offset.

    The n-th trading day of the previous period lands on the n-th label of
    the current chart. Previous data longer than the chart is truncated,
    shorter data is padded with ``None``.
    """
    length = len(current.labels)
    overlays: list[ChartSeries] = []
    for series in current.series:
        if series.is_comparison:
            continue
        previous = previous_by_series.get(series.name)
        if not previous:
            continue
        ordered = sort_and_dedupe(previous)
        closes = [record.close for record in ordered]
        values: list[Decimal | None]
        if series.data_type is SeriesDataType.PERCENTAGE_CHANGE:
            values = _percentage_from_first(closes)
        else:
            values = list(closes)
        values = values[:length] + [None] * max(0, length - len(values))
        overlays.append(
            ChartSeries(
                name=f"{series.name}{COMPARISON_SUFFIX}",
                color=COMPARISON_COLORS.get(series.name, DEFAULT_COMPARISON_COLOR),
                data_type=series.data_type,
                is_comparison=True,
                points=values,
                metadata={
                    "alignment": "trading_day_offset",
                    "source_start": ordered[0].date.isoformat(),
                    "source_end": ordered[-1].date.isoformat(),
                },
            )
        )

    return current.model_copy(
        update={
            "title": f"{current.title} (with comparison)" if overlays else current.title,
            "series": [*current.series, *overlays],
        },
        deep=True,
    )


def generate_annotations(chart_data: ChartData, events_by_date: Mapping[date | str, str]) -> ChartData:
    """Attach event markers for dates present in the labels.

    Events off the axis, or with an unparsable date, are dropped.
    """
    labels = set(chart_data.labels)
    annotations: list[ChartAnnotation] = []
    for raw_day, text in events_by_date.items():
        try:
            day = raw_day if isinstance(raw_day, date) else date.fromisoformat(raw_day)
        except ValueError:
            continue
        if day.isoformat() in labels:
            annotations.append(ChartAnnotation(date=day, text=text))
    annotations.sort(key=lambda item: item.date)
    return chart_data.model_copy(update={"annotations": annotations}, deep=True)


def format_data_for_chart(
    records_by_index: Mapping[IndexName | str, Sequence[NormalizedRecord]],
    title: str,
    start: date | None = None,
    end: date | None = None,
    *,
    as_percentage_change: bool = False,
    base_date: date | None = None,
    colors: Mapping[str, str] | None = None,
) -> ChartData:
    """Build a chart with one aligned series per index.

    With ``as_percentage_change`` each series is expressed relative to its
    close on ``base_date`` (``start`` when omitted, else the first label),
    and the aligned closes are kept in ``metadata["closes"]``.
    """
    palette = {**INDEX_COLORS, **(colors or {})}
    filtered: dict[str, list[NormalizedRecord]] = {}
    for index_name, records in records_by_index.items():
        filtered[index_label(index_name)] = [
            record
            for record in sort_and_dedupe(records)
            if (start is None or record.date >= start) and (end is None or record.date <= end)
        ]

    aligned = align_series(filtered)
    series: list[ChartSeries] = []
    for name, points in aligned.series.items():
        metadata: dict[str, Any] = {}
        data_type = SeriesDataType.PRICE
        if as_percentage_change and filtered[name]:
            requested = base_date or start or aligned.labels[0]
            change = calculate_percentage_change(filtered[name], requested, name=name)
            by_label = dict(zip(change.metadata["labels"], change.points, strict=True))
            metadata = {key: value for key, value in change.metadata.items() if key != "labels"}
            metadata["closes"] = [None if close is None else str(close) for close in points]
            points = [by_label.get(day.isoformat()) for day in aligned.labels]
            data_type = SeriesDataType.PERCENTAGE_CHANGE
        series.append(
            ChartSeries(
                name=name,
                color=palette.get(name, DEFAULT_COLOR),
                data_type=data_type,
                points=list(points),
                metadata=metadata,
            )
        )

    return ChartData(
        title=title,
        start_date=start or (aligned.labels[0] if aligned.labels else None),
        end_date=end or (aligned.labels[-1] if aligned.labels else None),
        labels=[day.isoformat() for day in aligned.labels],
        series=series,
    )


def _close_points(series: ChartSeries) -> list[Decimal | None]:
    """Prices behind a series: the kept closes of a derived series, else its own points."""
    closes = series.metadata.get("closes")
    if closes is None:
        return list(series.points)
    return [None if close is None else Decimal(close) for close in closes]


def apply_technical_indicators(
    chart_data: ChartData,
    indicators: Sequence[str],
    *,
    source_series: str | None = None,
    sma_periods: Sequence[int] = (20, 50, 200),
    rsi_period: int = 14,
    volatility_period: int = 20,
) -> ChartData:
    """Compute the requested indicators (``SMA``, ``RSI``, ``VOLATILITY``) for the primary series.

    Comparison series are skipped. Indicator names carry the source series
    name when more than one series is processed. SMA and RSI follow the
    displayed points; volatility is always taken from the closes.
    """
    requested = [item.upper() for item in indicators]
    unknown = [item for item in requested if item not in SUPPORTED_INDICATORS]
    if unknown:
        raise ValueError(f"unsupported indicators: {', '.join(unknown)}")

    targets = [
        series
        for series in chart_data.series
        if not series.is_comparison and (source_series is None or series.name == source_series)
    ]
    prefix_names = len(targets) > 1
    computed: list[TechnicalIndicator] = list(chart_data.technical_indicators or [])

    def add(base_name: str, parameters: dict[str, Any], data: list[Decimal | None], series_name: str) -> None:
        computed.append(
            TechnicalIndicator(
                name=f"{series_name} {base_name}" if prefix_names else base_name,
                parameters=parameters,
                data=data,
                color=INDICATOR_COLORS.get(base_name),
                source_series=series_name,
            )
        )

    for series in targets:
        if "SMA" in requested:
            for period in sma_periods:
                add(f"SMA{period}", {"period": period}, moving_average(series.points, period), series.name)
        if "RSI" in requested:
            add("RSI", {"period": rsi_period}, rsi(series.points, rsi_period), series.name)
        if "VOLATILITY" in requested:
            data = volatility(_close_points(series), volatility_period)
            add("Volatility", {"period": volatility_period}, data, series.name)

    return chart_data.model_copy(update={"technical_indicators": computed}, deep=True)


def identify_trends(values: Values) -> list[str]:
    """Describe direction, late reversals and volatility of a series."""
    present = [value for value in values if value is not None]
    if len(present) < 2:
        raise ValueError("at least two values are required")
    if any(value == 0 for value in present[:-1]):
        raise ValueError("values must be non-zero to compute percentage changes")

    trends: list[str] = []
    overall = (present[-1] - present[0]) / present[0] * _HUNDRED
    if overall > 5:
        trends.append("Strong Uptrend")
    elif overall > 0:
        trends.append("Mild Uptrend")
    elif overall > -5:
        trends.append("Mild Downtrend")
    else:
        trends.append("Strong Downtrend")

    recent = present[-max(len(present) // 10, 2) :]
    recent_change = (recent[-1] - recent[0]) / recent[0] * _HUNDRED
    if (overall > 0 and recent_change < -2) or (overall < 0 and recent_change > 2):
        trends.append("Recent Reversal")

    changes = [abs((present[i] - present[i - 1]) / present[i - 1] * _HUNDRED) for i in range(1, len(present))]
    average_change = sum(changes, Decimal("0")) / len(changes)
    if average_change > Decimal("1.5"):
        trends.append("High Volatility")
    elif average_change < Decimal("0.5"):
        trends.append("Low Volatility")
    return trends


class ChartDataProcessor:
    """Stateless facade over the chart shaping functions."""

    calculate_percentage_change = staticmethod(calculate_percentage_change)
    align_series = staticmethod(align_series)
    moving_average = staticmethod(moving_average)
    moving_averages = staticmethod(moving_averages)
    rsi = staticmethod(rsi)
    volatility = staticmethod(volatility)
    normalize = staticmethod(normalize)
    optimize_data_points = staticmethod(optimize_data_points)
    generate_comparison_data = staticmethod(generate_comparison_data)
    generate_annotations = staticmethod(generate_annotations)
    format_data_for_chart = staticmethod(format_data_for_chart)
    apply_technical_indicators = staticmethod(apply_technical_indicators)
    identify_trends = staticmethod(identify_trends)


__all__ = [
    "COMPARISON_COLORS",
    "COMPARISON_SUFFIX",
    "ChartDataProcessor",
    "DEFAULT_COLOR",
    "DEFAULT_COMPARISON_COLOR",
    "INDEX_COLORS",
    "INDICATOR_COLORS",
    "SUPPORTED_INDICATORS",
    "align_series",
    "apply_technical_indicators",
    "calculate_percentage_change",
    "downsample_indices",
    "format_data_for_chart",
    "generate_annotations",
    "generate_comparison_data",
    "identify_trends",
    "moving_average",
    "moving_averages",
    "normalize",
    "optimize_data_points",
    "rsi",
    "volatility",
]
