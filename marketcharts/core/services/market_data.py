"""Application service wiring providers, reconciliation and chart shaping together."""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import UTC, date, datetime, timedelta

from loguru import logger

from marketcharts.core.config import MarketChartsConfig
from marketcharts.core.data.repositories import DuckDBRecordRepository, RecordRepository
from marketcharts.core.exceptions import AllProvidersUnavailable
from marketcharts.core.logging import log_context
from marketcharts.core.models import ChartData, IndexName, NormalizedRecord, index_label
from marketcharts.core.monitoring import MetricsCollector, get_metrics_collector
from marketcharts.core.patterns import RetryConfig
from marketcharts.core.providers import AlphaVantageClient, StockDataClient
from marketcharts.core.services import chart
from marketcharts.core.services.calendars import TradingCalendar
from marketcharts.core.services.failover import ProviderFailoverController
from marketcharts.core.services.reconciliation import DataReconciliationService, ReconciliationResult

DEFAULT_INDICES: tuple[IndexName, ...] = (IndexName.SP500, IndexName.DOW, IndexName.NASDAQ)


@dataclass(frozen=True)
class MarketSnapshot:
    """Records per index for one requested window, plus any degradation notices."""

    start: date
    end: date
    records_by_index: dict[str, list[NormalizedRecord]] = field(default_factory=dict)
    results_by_index: dict[str, ReconciliationResult] = field(default_factory=dict)
    notices: list[str] = field(default_factory=list)

    @property
    def complete(self) -> bool:
        return all(result.complete for result in self.results_by_index.values())


class MarketDataService:
    """Serves index history for the configured administration windows."""

    def __init__(
        self,
        reconciliation: DataReconciliationService,
        controller: ProviderFailoverController,
        repository: RecordRepository,
        config: MarketChartsConfig | None = None,
        *,
        indices: Sequence[IndexName | str] = DEFAULT_INDICES,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._reconciliation = reconciliation
        self._controller = controller
        self._repository = repository
        self._config = config or MarketChartsConfig()
        self._indices = tuple(indices)
        self._clock = clock or (lambda: datetime.now(UTC))
        self._last_update_time: datetime | None = None

    @property
    def controller(self) -> ProviderFailoverController:
        return self._controller

    @property
    def reconciliation(self) -> DataReconciliationService:
        return self._reconciliation

    @property
    def last_update_time(self) -> datetime | None:
        return self._last_update_time

    def _today(self) -> date:
        return self._clock().date()

    async def get_range_for_all_indices(
        self,
        start: date,
        end: date,
        *,
        fill_gaps: bool = False,
        cancel_event: asyncio.Event | None = None,
    ) -> MarketSnapshot:
        """Reconcile ``[start, end]`` for every index concurrently.

        Raises:
            AllProvidersUnavailable: no provider could be reached and nothing is cached
        """
        with log_context(operation="get_range_for_all_indices"):
            results = await asyncio.gather(
                *(
                    self._reconciliation.ensure_range_available(index, start, end, cancel_event=cancel_event)
                    for index in self._indices
                )
            )

            records_by_index: dict[str, list[NormalizedRecord]] = {}
            results_by_index: dict[str, ReconciliationResult] = {}
            notices: list[str] = []
            for index, result in zip(self._indices, results, strict=True):
                label = index_label(index)
                records = result.records
                if fill_gaps and records:
                    filled = self._reconciliation.fill_data_gaps(records, start, end)
                    synthesized = sum(1 for record in filled if record.is_interpolated)
                    if synthesized:
                        notices.append(f"{label}: {synthesized} missing trading days filled from the previous close")
                    records = filled
                records_by_index[label] = records
                results_by_index[label] = result
                notices.extend(result.notices)
                notices.extend(error.message for error in result.errors)

            if not any(records_by_index.values()) and any(result.errors for result in results):
                if await self._controller.are_all_unavailable():
                    raise AllProvidersUnavailable(
                        "All API services are unavailable and no cached data exists",
                        failed_providers=[self._controller.primary.service_name, self._controller.backup.service_name],
                    )

            if any(result.providers_used for result in results):
                self._last_update_time = self._clock()
            return MarketSnapshot(start, end, records_by_index, results_by_index, notices)

    async def get_inauguration_to_present(self, *, fill_gaps: bool = False) -> MarketSnapshot:
        return await self.get_range_for_all_indices(
            self._config.timeline.inauguration_date, self._today(), fill_gaps=fill_gaps
        )

    async def get_tariff_announcement_to_present(self, *, fill_gaps: bool = False) -> MarketSnapshot:
        return await self.get_range_for_all_indices(
            self._config.timeline.tariff_announcement_date, self._today(), fill_gaps=fill_gaps
        )

    async def get_previous_administration_data(self, *, fill_gaps: bool = False) -> MarketSnapshot:
        timeline = self._config.timeline
        return await self.get_range_for_all_indices(
            timeline.previous_administration_start, timeline.previous_administration_end, fill_gaps=fill_gaps
        )

    async def get_latest_data_for_all_indices(self) -> dict[str, NormalizedRecord]:
        """Newest record per index, from the store when current, otherwise from the active provider."""
        latest = await asyncio.gather(*(self._latest_for(index) for index in self._indices))
        return {index_label(index): record for index, record in zip(self._indices, latest, strict=True) if record}

    async def _latest_for(self, index: IndexName | str) -> NormalizedRecord | None:
        today = self._today()
        calendar = self._reconciliation.calendar
        expected = today if calendar.is_trading_day(today) else calendar.previous_trading_day(today)
        stored = await self._repository.get_latest(index)
        if stored is not None and stored.date >= expected:
            return stored

        result = await self._reconciliation.ensure_range_available(index, today - timedelta(days=7), today)
        if result.records:
            return result.records[-1]
        return stored

    async def check_and_update_data(self) -> bool:
        """Fetch the latest trading day for every index if it is not stored yet.

        Returns True when anything new was stored.
        """
        today = self._today()
        calendar = self._reconciliation.calendar
        target = today if calendar.is_trading_day(today) else calendar.previous_trading_day(today)
        pending = [
            index for index in self._indices if await self._reconciliation.should_fetch_for_date(index, target)
        ]
        if not pending:
            logger.debug("all indices already stored for {}", target)
            return False

        results = await asyncio.gather(
            *(self._reconciliation.ensure_range_available(index, target, target) for index in pending)
        )
        updated = any(result.providers_used and result.records for result in results)
        if updated:
            self._last_update_time = self._clock()
        return updated

    async def build_performance_chart(
        self,
        snapshot: MarketSnapshot,
        *,
        title: str | None = None,
        as_percentage_change: bool = True,
        comparison: MarketSnapshot | None = None,
        indicators: Sequence[str] = (),
    ) -> ChartData:
        """Chart for a snapshot with optional comparison overlay, indicators and event annotations."""
        chart_config = self._config.chart
        data = chart.format_data_for_chart(
            snapshot.records_by_index,
            title or f"Index performance since {snapshot.start.isoformat()}",
            snapshot.start,
            snapshot.end,
            as_percentage_change=as_percentage_change,
            colors=chart_config.colors,
        )
        if comparison is not None and chart_config.enable_comparison:
            data = chart.generate_comparison_data(data, comparison.records_by_index)
        if indicators and chart_config.enable_technical_indicators:
            data = chart.apply_technical_indicators(data, indicators)
        if chart_config.show_annotations:
            data = chart.generate_annotations(data, self._config.timeline.events)
        if chart_config.optimize_data_points:
            data = chart.optimize_data_points(data, chart_config.max_data_points)
        return data

    async def health(self) -> dict[str, object]:
        all_down = await self._controller.are_all_unavailable()
        return {
            "state": self._controller.state.value,
            "all_unavailable": all_down,
            "providers": [vars(item) for item in self._controller.health()],
            "last_update_time": self._last_update_time,
        }

    async def close(self) -> None:
        await asyncio.gather(self._controller.primary.close(), self._controller.backup.close())
        await self._repository.close()


def create_market_data_service(
    config: MarketChartsConfig,
    *,
    repository: RecordRepository | None = None,
    metrics: MetricsCollector | None = None,
    clock: Callable[[], datetime] | None = None,
) -> MarketDataService:
    """Build the full object graph from configuration."""
    metrics = metrics or get_metrics_collector()
    primary = AlphaVantageClient.from_config(config.primary, clock=clock, metrics=metrics)
    backup = StockDataClient.from_config(config.backup, clock=clock, metrics=metrics)
    controller = ProviderFailoverController(
        primary,
        backup,
        retry_window=timedelta(minutes=config.failover.retry_primary_after_minutes),
        clock=clock,
    )
    repository = repository or DuckDBRecordRepository(config.storage.database_path)
    reconciliation = DataReconciliationService(
        controller,
        repository,
        TradingCalendar.from_holidays(config.calendar.holidays),
        config=config.reconciliation,
        retry_config=RetryConfig.from_failover(config.failover.max_retry_attempts, config.failover.retry_delay_ms),
        metrics=metrics,
        clock=clock,
    )
    return MarketDataService(reconciliation, controller, repository, config, clock=clock)


__all__ = ["DEFAULT_INDICES", "MarketDataService", "MarketSnapshot", "create_market_data_service"]
