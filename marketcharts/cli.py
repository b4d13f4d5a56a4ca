"""
Command-line interface for marketcharts.

Thin wrapper over ``MarketDataService`` for fetching index history,
checking provider health and exporting chart payloads.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from datetime import date
from enum import Enum
from pathlib import Path
from typing import TypeVar

import typer
from rich.console import Console
from rich.table import Table

from marketcharts.core.config import ConfigManager
from marketcharts.core.exceptions import MarketChartsError
from marketcharts.core.logging import configure_logging
from marketcharts.core.services import MarketDataService, MarketSnapshot, create_market_data_service

T = TypeVar("T")

app = typer.Typer(
    name="marketcharts",
    help="marketcharts - stock index history with provider failover",
    add_completion=False,
)
console = Console()


class Window(str, Enum):
    """Named reporting windows."""

    INAUGURATION = "inauguration"
    TARIFF = "tariff"
    PREVIOUS = "previous"


def _build_service(config_path: Path | None) -> MarketDataService:
    config = ConfigManager(config_path).get_config()
    configure_logging(
        level=config.logging.level,
        serialize=config.logging.serialize,
        file_output=config.logging.file is not None,
        file_path=config.logging.file,
    )
    return create_market_data_service(config)


def _run(config_path: Path | None, action: Callable[[MarketDataService], Awaitable[T]]) -> T:
    async def runner() -> T:
        service = _build_service(config_path)
        try:
            return await action(service)
        finally:
            await service.close()

    try:
        return asyncio.run(runner())
    except MarketChartsError as e:
        console.print(f"[red]Error: {e.message}[/red]")
        if e.details:
            console.print(f"[yellow]Details: {e.details}[/yellow]")
        raise typer.Exit(1) from e


async def _snapshot_for(
    service: MarketDataService,
    window: Window | None,
    start: date | None,
    end: date | None,
    fill_gaps: bool,
) -> MarketSnapshot:
    if start is not None:
        return await service.get_range_for_all_indices(start, end or date.today(), fill_gaps=fill_gaps)
    if window is Window.TARIFF:
        return await service.get_tariff_announcement_to_present(fill_gaps=fill_gaps)
    if window is Window.PREVIOUS:
        return await service.get_previous_administration_data(fill_gaps=fill_gaps)
    return await service.get_inauguration_to_present(fill_gaps=fill_gaps)


def _parse_date(value: str | None) -> date | None:
    if value is None:
        return None
    try:
        return date.fromisoformat(value)
    except ValueError as e:
        raise typer.BadParameter(f"invalid date {value!r}, expected YYYY-MM-DD") from e


config_option = typer.Option(None, "--config", "-c", help="Path to config.toml")


@app.command()
def version() -> None:
    """Show marketcharts version information."""
    from marketcharts import __version__

    console.print(f"marketcharts version: {__version__}")


@app.command()
def fetch(
    window: Window = typer.Option(Window.INAUGURATION, "--window", "-w", help="Named reporting window"),
    start: str | None = typer.Option(None, "--start", help="Start date (YYYY-MM-DD), overrides --window"),
    end: str | None = typer.Option(None, "--end", help="End date (YYYY-MM-DD)"),
    fill_gaps: bool = typer.Option(False, "--fill-gaps", help="Carry the previous close into missing days"),
    config: Path | None = config_option,
) -> None:
    """Fetch and store index history for a window."""
    start_date, end_date = _parse_date(start), _parse_date(end)
    snapshot = _run(config, lambda service: _snapshot_for(service, window, start_date, end_date, fill_gaps))

    table = Table(title=f"Index history {snapshot.start} .. {snapshot.end}")
    table.add_column("Index", style="cyan")
    table.add_column("Records", justify="right")
    table.add_column("First close", justify="right")
    table.add_column("Last close", justify="right")
    table.add_column("Complete")
    for label, records in snapshot.records_by_index.items():
        result = snapshot.results_by_index[label]
        table.add_row(
            label,
            str(len(records)),
            str(records[0].close) if records else "-",
            str(records[-1].close) if records else "-",
            "yes" if result.complete else "[yellow]no[/yellow]",
        )
    console.print(table)
    for notice in snapshot.notices:
        console.print(f"[yellow]{notice}[/yellow]")


@app.command()
def latest(config: Path | None = config_option) -> None:
    """Show the newest close for every index."""
    records = _run(config, lambda service: service.get_latest_data_for_all_indices())

    table = Table(title="Latest closes")
    table.add_column("Index", style="cyan")
    table.add_column("Date")
    table.add_column("Close", justify="right")
    table.add_column("Source")
    for label, record in records.items():
        table.add_row(label, record.date.isoformat(), str(record.close), record.source or "-")
    console.print(table)


@app.command()
def health(config: Path | None = config_option) -> None:
    """Probe both providers and show quota state."""
    status = _run(config, lambda service: service.health())

    table = Table(title=f"Providers ({status['state']})")
    table.add_column("Provider", style="cyan")
    table.add_column("Available")
    table.add_column("Calls left", justify="right")
    table.add_column("Retry after")
    for provider in status["providers"]:  # type: ignore[union-attr]
        table.add_row(
            provider["service_name"],
            "yes" if provider["is_available"] else "[red]no[/red]",
            f"{provider['remaining_calls_today']}/{provider['call_limit']}",
            str(provider["retry_after"] or "-"),
        )
    console.print(table)
    if status["all_unavailable"]:
        console.print("[red]All API services are unavailable[/red]")
        raise typer.Exit(1)


@app.command()
def chart(
    window: Window = typer.Option(Window.INAUGURATION, "--window", "-w", help="Named reporting window"),
    compare: bool = typer.Option(False, "--compare", help="Overlay the previous administration"),
    indicator: list[str] = typer.Option([], "--indicator", "-i", help="SMA, RSI or VOLATILITY"),
    output: Path | None = typer.Option(None, "--output", "-o", help="Write JSON to this file"),
    config: Path | None = config_option,
) -> None:
    """Export a chart payload as JSON."""

    async def build(service: MarketDataService) -> str:
        snapshot = await _snapshot_for(service, window, None, None, False)
        comparison = await service.get_previous_administration_data() if compare else None
        data = await service.build_performance_chart(snapshot, comparison=comparison, indicators=indicator)
        return data.model_dump_json(indent=2)

    try:
        payload = _run(config, build)
    except ValueError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1) from e

    if output is None:
        console.print_json(payload)
    else:
        output.write_text(payload, encoding="utf-8")
        console.print(f"[green]Chart written to {output}[/green]")


def main() -> None:
    """Entry point for the ``marketcharts`` script."""
    app()


if __name__ == "__main__":
    main()
