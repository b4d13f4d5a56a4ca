from __future__ import annotations

import json
from datetime import UTC, date, datetime

import pytest
from typer.testing import CliRunner

from marketcharts import cli as cli_module
from marketcharts.core.data.repositories import InMemoryRecordRepository
from marketcharts.core.exceptions import UpstreamError
from marketcharts.core.patterns import RetryConfig
from marketcharts.core.services import (
    DataReconciliationService,
    MarketDataService,
    ProviderFailoverController,
)

runner = CliRunner()


@pytest.fixture
def history(record_factory):
    days = [date(2025, 4, 1), date(2025, 4, 2), date(2025, 4, 3), date(2025, 4, 4)]
    return {
        symbol: [record_factory(day, base + i, symbol=symbol) for i, day in enumerate(days)]
        for symbol, base in (("^GSPC", 5600), ("^DJI", 42000), ("^IXIC", 17600))
    }


@pytest.fixture
def build_service(monkeypatch, clock):
    clock.now = datetime(2025, 4, 4, 22, 0, tzinfo=UTC)
    built: list[MarketDataService] = []

    def install(primary, backup):
        def factory(config_path):
            controller = ProviderFailoverController(primary, backup, clock=clock)
            repository = InMemoryRecordRepository()
            reconciliation = DataReconciliationService(
                controller,
                repository,
                retry_config=RetryConfig(max_attempts=1, base_delay=0.0, jitter=False),
                clock=clock,
            )
            service = MarketDataService(reconciliation, controller, repository, clock=clock)
            built.append(service)
            return service

        monkeypatch.setattr(cli_module, "_build_service", factory)
        return built

    return install


def test_version_command() -> None:
    result = runner.invoke(cli_module.app, ["version"])

    assert result.exit_code == 0
    assert "marketcharts version: 0.1.0" in result.stdout


def test_fetch_prints_table(build_service, provider_factory, history) -> None:
    primary = provider_factory("alpha_vantage", history)
    build_service(primary, provider_factory("stockdata"))

    result = runner.invoke(cli_module.app, ["fetch", "--start", "2025-04-01", "--end", "2025-04-04"])

    assert result.exit_code == 0, result.stdout
    assert "S&P 500" in result.stdout
    assert "NASDAQ" in result.stdout
    assert "5603" in result.stdout
    assert primary.closed is True


def test_fetch_rejects_malformed_dates(build_service, provider_factory) -> None:
    build_service(provider_factory("alpha_vantage"), provider_factory("stockdata"))

    result = runner.invoke(cli_module.app, ["fetch", "--start", "04/01/2025"])

    assert result.exit_code != 0


def test_fetch_reports_total_outage(build_service, provider_factory) -> None:
    primary = provider_factory("alpha_vantage", available=False)
    primary.fail_always = UpstreamError("HTTP 503", provider_name="alpha_vantage", status_code=503)
    build_service(primary, provider_factory("stockdata", available=False))

    result = runner.invoke(cli_module.app, ["fetch", "--start", "2025-04-01", "--end", "2025-04-04"])

    assert result.exit_code == 1
    assert "All API services are unavailable" in result.stdout


def test_health_exits_non_zero_when_everything_is_down(build_service, provider_factory) -> None:
    build_service(provider_factory("alpha_vantage", available=False), provider_factory("stockdata", available=False))

    result = runner.invoke(cli_module.app, ["health"])

    assert result.exit_code == 1
    assert "alpha_vantage" in result.stdout


def test_health_lists_quota(build_service, provider_factory) -> None:
    build_service(provider_factory("alpha_vantage"), provider_factory("stockdata", call_limit=100))

    result = runner.invoke(cli_module.app, ["health"])

    assert result.exit_code == 0
    assert "25/25" in result.stdout
    assert "100/100" in result.stdout


def test_latest_shows_each_index(build_service, provider_factory, history) -> None:
    build_service(provider_factory("alpha_vantage", history), provider_factory("stockdata"))

    result = runner.invoke(cli_module.app, ["latest"])

    assert result.exit_code == 0, result.stdout
    assert "2025-04-04" in result.stdout
    assert "Dow Jones" in result.stdout


def test_chart_writes_json(build_service, provider_factory, history, tmp_path) -> None:
    build_service(provider_factory("alpha_vantage", history), provider_factory("stockdata"))
    output = tmp_path / "chart.json"

    args = ["chart", "--window", "tariff", "--indicator", "RSI", "--output", str(output)]
    result = runner.invoke(cli_module.app, args)

    assert result.exit_code == 0, result.stdout
    payload = json.loads(output.read_text(encoding="utf-8"))
    assert payload["labels"] == ["2025-04-02", "2025-04-03", "2025-04-04"]
    assert {series["name"] for series in payload["series"]} == {"S&P 500", "Dow Jones", "NASDAQ"}
    assert payload["annotations"][0]["text"] == "Tariff announcement"


def test_chart_rejects_unknown_indicator(build_service, provider_factory, history) -> None:
    build_service(provider_factory("alpha_vantage", history), provider_factory("stockdata"))

    result = runner.invoke(cli_module.app, ["chart", "--window", "tariff", "--indicator", "MACD"])

    assert result.exit_code == 1
    assert "unsupported indicators" in result.stdout
