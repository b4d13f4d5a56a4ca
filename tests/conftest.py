"""Pytest configuration for the marketcharts test suite."""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, date, datetime, timedelta
from decimal import Decimal

import pytest

from marketcharts.core.exceptions import ProviderError
from marketcharts.core.models import NormalizedRecord, filter_range, index_name_for_symbol


def pytest_addoption(parser: pytest.Parser) -> None:
    """Register command-line options for controlling integration tests."""

    parser.addoption(
        "--marketcharts-run-integration",
        action="store_true",
        default=False,
        help="Run marketcharts integration tests that require external services.",
    )


def pytest_configure(config: pytest.Config) -> None:
    """Register the integration marker for marketcharts tests."""

    config.addinivalue_line(
        "markers",
        "integration: marks marketcharts tests requiring network or external services",
    )


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Skip integration tests unless explicitly requested."""

    if config.getoption("--marketcharts-run-integration"):
        return

    skip_integration = pytest.mark.skip(
        reason="integration tests require --marketcharts-run-integration",
    )
    for item in items:
        if "integration" in item.keywords:
            item.add_marker(skip_integration)


class FakeClock:
    """Manually advanced UTC clock."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, delta: timedelta) -> None:
        self.now += delta


class FakeProvider:
    """In-memory stand-in for a provider client.

    ``history`` maps symbols to records; ``failures`` is a queue of exceptions
    raised by successive history calls before data is served again.
    """

    def __init__(
        self,
        service_name: str,
        history: dict[str, list[NormalizedRecord]] | None = None,
        *,
        available: bool = True,
        call_limit: int = 25,
    ) -> None:
        self.service_name = service_name
        self.history = history or {}
        self.available = available
        self.call_limit = call_limit
        self.remaining = call_limit
        self.failures: list[ProviderError] = []
        self.fail_always: ProviderError | None = None
        self.calls: list[tuple[str, date, date]] = []
        self.probe_count = 0
        self.closed = False

    async def get_historical_data(self, symbol: str, start_date: date, end_date: date) -> list[NormalizedRecord]:
        self.calls.append((symbol, start_date, end_date))
        if self.fail_always is not None:
            raise self.fail_always
        if self.failures:
            raise self.failures.pop(0)
        self.remaining -= 1
        return sorted(filter_range(self.history.get(symbol, []), start_date, end_date), key=lambda r: r.date)

    async def is_available(self) -> bool:
        self.probe_count += 1
        return self.available

    def get_remaining_calls(self) -> int:
        return self.remaining

    async def close(self) -> None:
        self.closed = True


def make_record(
    day: date,
    close: str | int | Decimal,
    *,
    symbol: str = "^GSPC",
    source: str = "alpha_vantage",
    open_: str | int | Decimal | None = None,
) -> NormalizedRecord:
    close_value = Decimal(str(close))
    open_value = Decimal(str(open_)) if open_ is not None else close_value
    return NormalizedRecord(
        index_name=index_name_for_symbol(symbol),
        date=day,
        open=open_value,
        high=max(open_value, close_value),
        low=min(open_value, close_value),
        close=close_value,
        volume=1000,
        fetched_at=datetime(2025, 1, 1, tzinfo=UTC),
        source=source,
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2025, 3, 14, 12, 0, tzinfo=UTC))


@pytest.fixture
def provider_factory() -> Callable[..., FakeProvider]:
    return FakeProvider


@pytest.fixture
def record_factory() -> Callable[..., NormalizedRecord]:
    return make_record
