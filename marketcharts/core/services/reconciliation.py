"""Cache-first range reconciliation with provider failover and gap filling."""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import UTC, date, datetime
from decimal import Decimal

from loguru import logger

from marketcharts.core.config import ReconciliationConfig
from marketcharts.core.data.repositories import RecordRepository
from marketcharts.core.exceptions import (
    AllProvidersUnavailable,
    DataUnavailable,
    ProviderError,
    RepositoryError,
)
from marketcharts.core.models import (
    INTERPOLATED_SOURCE,
    IndexName,
    NormalizedRecord,
    coerce_index_name,
    index_label,
    sort_and_dedupe,
    symbol_for_index,
)
from marketcharts.core.monitoring import MetricsCollector
from marketcharts.core.patterns import ExponentialBackoffRetry, RetryConfig
from marketcharts.core.providers import ProviderClient
from marketcharts.core.services.calendars import DateGap, TradingCalendar
from marketcharts.core.services.failover import FailoverEvent, FailoverEventKind, ProviderFailoverController

_HUNDRED = Decimal("100")


@dataclass(frozen=True)
class ReconciliationResult:
    """Outcome of ``ensure_range_available``."""

    index_name: IndexName | str
    start: date
    end: date
    records: list[NormalizedRecord] = field(default_factory=list)
    complete: bool = True
    incomplete_ranges: list[DateGap] = field(default_factory=list)
    errors: list[DataUnavailable] = field(default_factory=list)
    providers_used: list[str] = field(default_factory=list)
    notices: list[str] = field(default_factory=list)
    cancelled: bool = False


class DataReconciliationService:
    """Serves date ranges from the record store, fetching only missing trading days."""

    def __init__(
        self,
        controller: ProviderFailoverController,
        repository: RecordRepository,
        calendar: TradingCalendar | None = None,
        *,
        config: ReconciliationConfig | None = None,
        retry_config: RetryConfig | None = None,
        metrics: MetricsCollector | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._controller = controller
        self._repository = repository
        self._calendar = calendar or TradingCalendar()
        self._config = config or ReconciliationConfig()
        self._retry_config = retry_config or RetryConfig()
        self._metrics = metrics
        self._clock = clock or (lambda: datetime.now(UTC))
        controller.subscribe(self._on_failover_event)

    @property
    def calendar(self) -> TradingCalendar:
        return self._calendar

    async def ensure_range_available(
        self,
        index_name: IndexName | str,
        start: date,
        end: date,
        *,
        cancel_event: asyncio.Event | None = None,
    ) -> ReconciliationResult:
        """Return every record for ``[start, end]``, fetching and persisting missing trading days.

        Gaps are fetched one after another. A failing gap is recorded and the
        remaining gaps are still attempted. Setting ``cancel_event`` stops the
        loop before the next gap; gaps already fetched stay persisted.
        """
        if end < start:
            raise ValueError("end must be on or after start")

        index_name = coerce_index_name(index_name)
        label = index_label(index_name)
        cached = await self._repository.get_by_date_range(start, end, index_name)
        gaps = self._calendar.find_missing_ranges(start, end, (record.date for record in cached))
        self._record_cache_lookup(cached, gaps)

        if not gaps:
            return ReconciliationResult(index_name, start, end, records=sort_and_dedupe(cached))

        symbol = symbol_for_index(index_name)
        fetched: list[NormalizedRecord] = []
        incomplete: list[DateGap] = []
        errors: list[DataUnavailable] = []
        providers_used: list[str] = []
        notices: list[str] = []
        cancelled = False

        for position, gap in enumerate(gaps):
            if cancel_event is not None and cancel_event.is_set():
                cancelled = True
                incomplete.extend(gaps[position:])
                logger.info("reconciliation of {} cancelled with {} gaps left", label, len(gaps) - position)
                break

            try:
                records, provider = await self._fetch_gap(label, symbol, gap)
            except DataUnavailable as exc:
                errors.append(exc)
                incomplete.append(gap)
                logger.bind(error_code=exc.error_code).warning(exc.message)
                continue

            if provider.service_name not in providers_used:
                providers_used.append(provider.service_name)
            if not self._controller.is_primary(provider):
                notices.append(f"{label} {gap.start}..{gap.end} served by backup provider {provider.service_name}")

            if records:
                notice = await self._persist(records)
                if notice is not None:
                    notices.append(notice)
            fetched.extend(records)
            incomplete.extend(
                self._calendar.find_missing_ranges(gap.start, gap.end, (record.date for record in records))
            )

        merged = sort_and_dedupe([*cached, *fetched])
        return ReconciliationResult(
            index_name,
            start,
            end,
            records=merged,
            complete=not incomplete,
            incomplete_ranges=incomplete,
            errors=errors,
            providers_used=providers_used,
            notices=notices,
            cancelled=cancelled,
        )

    async def _fetch_gap(
        self, label: str, symbol: str, gap: DateGap
    ) -> tuple[list[NormalizedRecord], ProviderClient]:
        try:
            provider = await self._controller.select_provider()
        except AllProvidersUnavailable as exc:
            raise DataUnavailable(label, gap.start, gap.end, reason=exc.message) from exc

        try:
            return await provider.get_historical_data(symbol, gap.start, gap.end), provider
        except ProviderError as exc:
            if not self._controller.is_primary(provider):
                raise DataUnavailable(label, gap.start, gap.end, reason=exc.message) from exc
            await self._controller.report_primary_failure(exc)

        try:
            fallback = await self._controller.select_provider()
        except AllProvidersUnavailable as exc:
            raise DataUnavailable(label, gap.start, gap.end, reason=exc.message) from exc

        try:
            return await fallback.get_historical_data(symbol, gap.start, gap.end), fallback
        except ProviderError as exc:
            raise DataUnavailable(label, gap.start, gap.end, reason=exc.message) from exc

    async def _persist(self, records: Sequence[NormalizedRecord]) -> str | None:
        retry = ExponentialBackoffRetry(self._retry_config)
        try:
            await retry.execute(self._repository.save_batch, list(records))
        except RepositoryError as exc:
            logger.bind(error_code=exc.error_code).error(
                "failed to persist {} records after {} attempts: {}", len(records), retry.attempt_count, exc.message
            )
            return f"{len(records)} fetched records were not persisted: {exc.message}"
        return None

    def _record_cache_lookup(self, cached: Sequence[NormalizedRecord], gaps: Sequence[DateGap]) -> None:
        if self._metrics is None:
            return
        if not gaps:
            self._metrics.record_cache_lookup("hit")
        elif cached:
            self._metrics.record_cache_lookup("partial")
        else:
            self._metrics.record_cache_lookup("miss")

    def _on_failover_event(self, event: FailoverEvent) -> None:
        if self._metrics is not None:
            self._metrics.record_failover(event.kind.value)
        bound = logger.bind(provider=event.provider, error_code=event.error_code)
        if event.kind is FailoverEventKind.PRIMARY_RESTORED:
            bound.info("primary provider restored")
        elif event.kind is FailoverEventKind.PRIMARY_FAILED:
            bound.warning("primary provider failed ({}); using backup until {}", event.cause, event.retry_after)
        else:
            bound.warning("primary provider still unavailable; next probe after {}", event.retry_after)

    def fill_data_gaps(
        self,
        records: Sequence[NormalizedRecord],
        start: date | None = None,
        end: date | None = None,
    ) -> list[NormalizedRecord]:
        """Synthesize missing trading days by carrying the previous close forward.

        Synthetic rows use the prior close for open, high, low and close, have
        zero volume and are flagged ``is_interpolated``. Trading days before
        the first real record are left empty.
        """
        ordered = sort_and_dedupe(records)
        if not ordered:
            return []
        start = start or ordered[0].date
        end = end or ordered[-1].date
        if end < start:
            return []

        by_date = {record.date: record for record in ordered}
        prior: NormalizedRecord | None = None
        for record in ordered:
            if record.date < start:
                prior = record

        days = sorted({*self._calendar.trading_days(start, end), *(d for d in by_date if start <= d <= end)})
        fetched_at = self._clock()
        result: list[NormalizedRecord] = []
        synthesized = 0
        for day in days:
            existing = by_date.get(day)
            if existing is not None:
                result.append(existing)
                prior = existing
                continue
            if prior is None:
                continue
            filler = NormalizedRecord(
                index_name=prior.index_name,
                date=day,
                open=prior.close,
                high=prior.close,
                low=prior.close,
                close=prior.close,
                volume=0,
                fetched_at=fetched_at,
                source=INTERPOLATED_SOURCE,
                is_interpolated=True,
            )
            result.append(filler)
            prior = filler
            synthesized += 1

        if synthesized and self._metrics is not None:
            self._metrics.record_interpolated(synthesized)
        return result

    def are_markets_closed(self, day: date) -> bool:
        return not self._calendar.is_trading_day(day)

    async def should_fetch_for_date(self, index_name: IndexName | str, day: date) -> bool:
        """True for trading days that have no stored record yet."""
        if self.are_markets_closed(day):
            return False
        return await self._repository.get_by_date_and_index(day, index_name) is None

    def verify_data_consistency(
        self,
        records_a: Sequence[NormalizedRecord],
        records_b: Sequence[NormalizedRecord],
        tolerance_pct: float | Decimal | None = None,
    ) -> bool:
        """Compare closes on overlapping dates; false when any differ beyond the tolerance."""
        tolerance = Decimal(str(self._config.consistency_tolerance_pct if tolerance_pct is None else tolerance_pct))
        closes_b = {record.date: record.close for record in records_b}
        consistent = True
        for record in records_a:
            other = closes_b.get(record.date)
            if other is None:
                continue
            if record.close == 0:
                within = other == 0
            else:
                within = abs(record.close - other) / abs(record.close) * _HUNDRED <= tolerance
            if not within:
                logger.warning(
                    "close mismatch for {} on {}: {} vs {}", record.index_label, record.date, record.close, other
                )
                consistent = False
        return consistent

    def resolve_data_conflicts(
        self,
        primary_records: Sequence[NormalizedRecord],
        backup_records: Sequence[NormalizedRecord],
    ) -> list[NormalizedRecord]:
        """Union by date, preferring the primary record where both exist."""
        merged = {record.date: record for record in backup_records}
        for record in primary_records:
            other = merged.get(record.date)
            if other is not None and other.close != record.close:
                logger.warning(
                    "Data conflict detected for {} on {}: primary close {} vs backup close {}",
                    record.index_label,
                    record.date,
                    record.close,
                    other.close,
                )
            merged[record.date] = record
        return [merged[day] for day in sorted(merged)]

    def detect_anomalies(
        self,
        records: Sequence[NormalizedRecord],
        threshold_pct: float | Decimal | None = None,
    ) -> list[NormalizedRecord]:
        """Records whose open jumps away from the previous close, or whose OHLC values are inconsistent."""
        threshold = Decimal(str(self._config.anomaly_threshold_pct if threshold_pct is None else threshold_pct))
        anomalies: list[NormalizedRecord] = []
        previous: NormalizedRecord | None = None
        for record in sort_and_dedupe(records):
            reason: str | None = None
            if previous is not None and previous.close != 0 and record.open != 0:
                jump = abs(record.open - previous.close) / previous.close * _HUNDRED
                if jump > threshold:
                    reason = f"open moved {jump:.2f}% from previous close"
            if reason is None and _has_invalid_range(record):
                reason = "high/low range does not contain open and close"
            if reason is not None:
                logger.warning("Data anomaly detected for {} on {}: {}", record.index_label, record.date, reason)
                anomalies.append(record)
            previous = record
        return anomalies


def _has_invalid_range(record: NormalizedRecord) -> bool:
    if record.high == 0 and record.low == 0:
        return False
    if record.high < record.low:
        return True
    return any(value != 0 and not record.low <= value <= record.high for value in (record.open, record.close))


__all__ = ["DataReconciliationService", "ReconciliationResult"]
