"""Tests for cache-first reconciliation."""

from __future__ import annotations

import asyncio
from collections.abc import Sequence
from datetime import date, timedelta
from decimal import Decimal

import pytest

from marketcharts.core.data.repositories import InMemoryRecordRepository
from marketcharts.core.exceptions import RateLimited, RepositoryError, UpstreamError
from marketcharts.core.models import IndexName, NormalizedRecord
from marketcharts.core.monitoring import MetricsCollector
from marketcharts.core.patterns import RetryConfig
from marketcharts.core.services import (
    DataReconciliationService,
    DateGap,
    FailoverState,
    ProviderFailoverController,
)

JAN_6 = date(2025, 1, 6)
JAN_7 = date(2025, 1, 7)
JAN_8 = date(2025, 1, 8)
JAN_10 = date(2025, 1, 10)


class FailingRepository(InMemoryRecordRepository):
    async def save_batch(self, records: Sequence[NormalizedRecord]) -> int:
        self.save_calls += 1
        raise RepositoryError("disk full", operation="save_batch")


@pytest.fixture
def history(record_factory) -> dict[str, list[NormalizedRecord]]:
    closes = {JAN_6: "5975.38", JAN_7: "5909.03", JAN_8: "5918.25", JAN_10: "5827.04"}
    return {"^GSPC": [record_factory(day, close) for day, close in closes.items()]}


@pytest.fixture
def primary(provider_factory, history):
    return provider_factory("alpha_vantage", history)


@pytest.fixture
def backup(provider_factory, history, record_factory):
    backup_history = {"^GSPC": [record_factory(r.date, r.close, source="stockdata") for r in history["^GSPC"]]}
    return provider_factory("stockdata", backup_history, call_limit=100)


@pytest.fixture
def metrics() -> MetricsCollector:
    return MetricsCollector()


def _service(primary, backup, clock, repository=None, metrics=None):
    controller = ProviderFailoverController(primary, backup, clock=clock)
    repository = repository if repository is not None else InMemoryRecordRepository()
    service = DataReconciliationService(
        controller,
        repository,
        retry_config=RetryConfig(max_attempts=2, base_delay=0.0, jitter=False),
        metrics=metrics,
        clock=clock,
    )
    return service, controller, repository


@pytest.mark.asyncio
async def test_empty_cache_fetches_once_and_persists(primary, backup, clock, metrics) -> None:
    service, _, repository = _service(primary, backup, clock, metrics=metrics)

    result = await service.ensure_range_available(IndexName.SP500, JAN_6, JAN_10)

    assert result.complete is True
    assert [r.date for r in result.records] == [JAN_6, JAN_7, JAN_8, JAN_10]
    assert primary.calls == [("^GSPC", JAN_6, JAN_10)]
    assert result.providers_used == ["alpha_vantage"]
    assert len(repository) == 4
    assert metrics.registry.get_sample_value("marketcharts_cache_lookups_total", {"outcome": "miss"}) == 1


@pytest.mark.asyncio
async def test_second_call_is_served_from_cache(primary, backup, clock, metrics) -> None:
    service, _, _ = _service(primary, backup, clock, metrics=metrics)
    first = await service.ensure_range_available(IndexName.SP500, JAN_6, JAN_10)
    primary.calls.clear()

    second = await service.ensure_range_available("S&P 500", JAN_6, JAN_10)

    assert primary.calls == []
    assert backup.calls == []
    assert second.records == first.records
    assert second.complete is True
    assert metrics.registry.get_sample_value("marketcharts_cache_lookups_total", {"outcome": "hit"}) == 1


@pytest.mark.asyncio
async def test_partial_cache_fetches_only_the_gap(primary, backup, clock, history) -> None:
    repository = InMemoryRecordRepository(history["^GSPC"][:2])
    service, _, _ = _service(primary, backup, clock, repository=repository)

    result = await service.ensure_range_available(IndexName.SP500, JAN_6, JAN_10)

    assert primary.calls == [("^GSPC", JAN_8, JAN_10)]
    assert len(result.records) == 4
    assert result.complete is True


@pytest.mark.asyncio
async def test_disjoint_gaps_are_fetched_separately(primary, backup, clock, history) -> None:
    cached = [r for r in history["^GSPC"] if r.date in {JAN_6, JAN_8}]
    service, _, _ = _service(primary, backup, clock, repository=InMemoryRecordRepository(cached))

    result = await service.ensure_range_available(IndexName.SP500, JAN_6, JAN_10)

    assert primary.calls == [("^GSPC", JAN_7, JAN_7), ("^GSPC", JAN_10, JAN_10)]
    assert result.complete is True


@pytest.mark.asyncio
async def test_primary_failure_falls_back_to_backup(primary, backup, clock, metrics) -> None:
    primary.failures.append(RateLimited("API call frequency exceeded", provider_name="alpha_vantage"))
    service, controller, _ = _service(primary, backup, clock, metrics=metrics)

    result = await service.ensure_range_available(IndexName.SP500, JAN_6, JAN_10)

    assert result.complete is True
    assert result.providers_used == ["stockdata"]
    assert {r.source for r in result.records} == {"stockdata"}
    assert any("backup provider stockdata" in notice for notice in result.notices)
    assert controller.state is FailoverState.BACKUP_ACTIVE
    assert controller.retry_after == clock.now + timedelta(minutes=60)
    assert metrics.registry.get_sample_value("marketcharts_failovers_total", {"kind": "primary_failed"}) == 1


@pytest.mark.asyncio
async def test_backup_is_used_without_retrying_primary_inside_window(primary, backup, clock) -> None:
    service, controller, _ = _service(primary, backup, clock)
    await controller.report_primary_failure("boom")

    result = await service.ensure_range_available(IndexName.SP500, JAN_6, JAN_10)

    assert primary.calls == []
    assert primary.probe_count == 0
    assert backup.calls == [("^GSPC", JAN_6, JAN_10)]
    assert result.complete is True


@pytest.mark.asyncio
async def test_both_providers_failing_reports_incomplete_gap(primary, backup, clock, history) -> None:
    primary.fail_always = UpstreamError("HTTP 503", provider_name="alpha_vantage", status_code=503)
    backup.fail_always = UpstreamError("HTTP 500", provider_name="stockdata", status_code=500)
    repository = InMemoryRecordRepository(history["^GSPC"][:2])
    service, _, _ = _service(primary, backup, clock, repository=repository)

    result = await service.ensure_range_available(IndexName.SP500, JAN_6, JAN_10)

    assert result.complete is False
    assert result.incomplete_ranges == [DateGap(JAN_8, JAN_10)]
    assert [r.date for r in result.records] == [JAN_6, JAN_7]
    assert len(result.errors) == 1
    error = result.errors[0]
    assert (error.index_name, error.start, error.end) == ("S&P 500", JAN_8, JAN_10)


@pytest.mark.asyncio
async def test_days_missing_from_provider_response_are_incomplete(provider_factory, backup, clock, history) -> None:
    sparse = {"^GSPC": [r for r in history["^GSPC"] if r.date != JAN_8]}
    primary = provider_factory("alpha_vantage", sparse)
    service, _, _ = _service(primary, backup, clock)

    result = await service.ensure_range_available(IndexName.SP500, JAN_6, JAN_10)

    assert result.complete is False
    assert result.incomplete_ranges == [DateGap(JAN_8, JAN_8)]
    assert result.errors == []


@pytest.mark.asyncio
async def test_cancellation_stops_before_next_gap(primary, backup, clock) -> None:
    service, _, repository = _service(primary, backup, clock)
    cancel = asyncio.Event()
    cancel.set()

    result = await service.ensure_range_available(IndexName.SP500, JAN_6, JAN_10, cancel_event=cancel)

    assert result.cancelled is True
    assert result.complete is False
    assert result.incomplete_ranges == [DateGap(JAN_6, JAN_10)]
    assert primary.calls == []
    assert len(repository) == 0


@pytest.mark.asyncio
async def test_persistence_failure_becomes_notice(primary, backup, clock) -> None:
    repository = FailingRepository()
    service, _, _ = _service(primary, backup, clock, repository=repository)

    result = await service.ensure_range_available(IndexName.SP500, JAN_6, JAN_10)

    assert len(result.records) == 4
    assert repository.save_calls == 2
    assert any("not persisted" in notice for notice in result.notices)


@pytest.mark.asyncio
async def test_inverted_range_is_rejected(primary, backup, clock) -> None:
    service, _, _ = _service(primary, backup, clock)

    with pytest.raises(ValueError):
        await service.ensure_range_available(IndexName.SP500, JAN_10, JAN_6)


def test_fill_data_gaps_carries_previous_close(primary, backup, clock, record_factory, metrics) -> None:
    service, _, _ = _service(primary, backup, clock, metrics=metrics)
    records = [record_factory(JAN_7, "100"), record_factory(JAN_8, "110")]

    filled = service.fill_data_gaps(records, JAN_6, JAN_10)

    assert [r.date for r in filled] == [JAN_7, JAN_8, JAN_10]
    synthetic = filled[-1]
    assert synthetic.is_interpolated is True
    assert synthetic.close == Decimal("110")
    assert synthetic.open == Decimal("110")
    assert synthetic.volume == 0
    assert synthetic.source == "interpolated"
    assert metrics.registry.get_sample_value("marketcharts_interpolated_records_total") == 1


def test_fill_data_gaps_skips_the_weekend(primary, backup, clock, record_factory) -> None:
    service, _, _ = _service(primary, backup, clock)
    friday, monday, tuesday = JAN_10, date(2025, 1, 13), date(2025, 1, 14)
    records = [record_factory(friday, "5827.04"), record_factory(tuesday, "5842.91")]

    filled = service.fill_data_gaps(records, friday, tuesday)

    assert [r.date for r in filled] == [friday, monday, tuesday]
    assert filled[1].is_interpolated is True
    assert filled[1].close == Decimal("5827.04")
    assert not any(r.is_interpolated for r in (filled[0], filled[2]))


def test_fill_data_gaps_of_nothing_is_empty(primary, backup, clock) -> None:
    service, _, _ = _service(primary, backup, clock)

    assert service.fill_data_gaps([], JAN_6, JAN_10) == []


@pytest.mark.asyncio
async def test_should_fetch_for_date(primary, backup, clock, history) -> None:
    repository = InMemoryRecordRepository(history["^GSPC"][:1])
    service, _, _ = _service(primary, backup, clock, repository=repository)

    assert await service.should_fetch_for_date(IndexName.SP500, JAN_6) is False
    assert await service.should_fetch_for_date(IndexName.SP500, JAN_7) is True
    assert await service.should_fetch_for_date(IndexName.SP500, date(2025, 1, 9)) is False
    assert service.are_markets_closed(date(2025, 1, 11)) is True


def test_verify_data_consistency_uses_tolerance(primary, backup, clock, record_factory) -> None:
    service, _, _ = _service(primary, backup, clock)
    reference = [record_factory(JAN_6, "100"), record_factory(JAN_7, "200")]
    close_enough = [record_factory(JAN_6, "100.5"), record_factory(JAN_7, "201")]
    too_far = [record_factory(JAN_6, "102")]

    assert service.verify_data_consistency(reference, close_enough) is True
    assert service.verify_data_consistency(reference, too_far) is False
    assert service.verify_data_consistency(reference, too_far, tolerance_pct=5) is True


def test_resolve_data_conflicts_prefers_primary(primary, backup, clock, record_factory) -> None:
    service, _, _ = _service(primary, backup, clock)
    primary_records = [record_factory(JAN_7, "100")]
    backup_records = [record_factory(JAN_6, "99", source="stockdata"), record_factory(JAN_7, "101", source="stockdata")]

    merged = service.resolve_data_conflicts(primary_records, backup_records)

    assert [(r.date, r.close) for r in merged] == [(JAN_6, Decimal("99")), (JAN_7, Decimal("100"))]


def test_detect_anomalies_flags_large_open_jump(primary, backup, clock, record_factory) -> None:
    service, _, _ = _service(primary, backup, clock)
    records = [
        record_factory(JAN_6, "100"),
        record_factory(JAN_7, "116", open_="115"),
        record_factory(JAN_8, "117", open_="116"),
    ]

    anomalies = service.detect_anomalies(records)

    assert [r.date for r in anomalies] == [JAN_7]
    assert service.detect_anomalies(records, threshold_pct=20) == []
