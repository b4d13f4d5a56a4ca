"""StockData.org client, the backup provider."""

from __future__ import annotations

from collections.abc import Callable
from datetime import date, datetime
from decimal import Decimal
from typing import Any

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from marketcharts.core.config import BackupProviderConfig
from marketcharts.core.exceptions import ParseError
from marketcharts.core.http_adapter import HttpClient, HttpConfig
from marketcharts.core.models import NormalizedRecord, index_name_for_symbol
from marketcharts.core.monitoring import MetricsCollector
from marketcharts.core.providers.base import HEALTH_PROBE_SYMBOL, ProviderClient

EOD_PATH = "data/eod"
QUOTE_PATH = "data/quote"
RATE_LIMIT_CODES = frozenset({"rate_limit_reached", "usage_limit_reached"})


class StockDataMeta(BaseModel):
    model_config = ConfigDict(extra="ignore")

    requested: int | None = None
    returned: int | None = None
    status: str | None = None
    message: str | None = None


class StockDataError(BaseModel):
    model_config = ConfigDict(extra="ignore")

    code: str | None = None
    message: str | None = None


class StockDataBar(BaseModel):
    """One entry of the ``data`` array; missing numbers default to zero."""

    model_config = ConfigDict(extra="ignore")

    symbol: str | None = None
    trade_day: str = Field(alias="date")
    open: Decimal = Decimal("0")
    high: Decimal = Decimal("0")
    low: Decimal = Decimal("0")
    close: Decimal = Decimal("0")
    volume: int = Field(default=0, ge=0)
    change: Decimal | None = None
    change_percent: Decimal | None = None

    @field_validator("open", "high", "low", "close", "volume", mode="before")
    @classmethod
    def _null_to_zero(cls, value: Any) -> Any:
        return 0 if value is None else value

    @field_validator("volume", mode="before")
    @classmethod
    def _truncate_volume(cls, value: Any) -> Any:
        if isinstance(value, float):
            return int(value)
        return value

    def trade_date(self) -> date:
        return date.fromisoformat(self.trade_day[:10])


class StockDataResponse(BaseModel):
    """StockData.org response envelope."""

    model_config = ConfigDict(extra="ignore")

    meta: StockDataMeta | None = None
    data: list[dict[str, Any]] | None = None
    error: StockDataError | None = None


class StockDataClient(ProviderClient):
    """End-of-day index history from StockData.org."""

    service_name = "stockdata"

    def __init__(
        self,
        api_token: str,
        http: HttpClient,
        call_limit: int = 100,
        *,
        clock: Callable[[], datetime] | None = None,
        metrics: MetricsCollector | None = None,
    ) -> None:
        super().__init__(http, call_limit, clock=clock, metrics=metrics)
        self.api_token = api_token

    @classmethod
    def from_config(
        cls,
        config: BackupProviderConfig,
        *,
        clock: Callable[[], datetime] | None = None,
        metrics: MetricsCollector | None = None,
        transport: Any = None,
    ) -> StockDataClient:
        http_config = HttpConfig(base_url=config.base_url, timeout=config.timeout)
        http = HttpClient(http_config, cls.service_name, transport=transport)
        return cls(config.api_token, http, config.daily_limit, clock=clock, metrics=metrics)

    def _history_request(self, symbol: str, start_date: date, end_date: date) -> tuple[str, dict[str, Any]]:
        return EOD_PATH, {
            "symbols": symbol,
            "date_from": start_date.isoformat(),
            "date_to": end_date.isoformat(),
            "api_token": self.api_token,
        }

    def _probe_request(self) -> tuple[str, dict[str, Any]]:
        return QUOTE_PATH, {"symbols": HEALTH_PROBE_SYMBOL, "api_token": self.api_token}

    def _rate_limit_notice(self, payload: dict[str, Any]) -> str | None:
        error = payload.get("error")
        if isinstance(error, dict) and error.get("code") in RATE_LIMIT_CODES:
            return f"StockData rate limit: {error.get('message') or error.get('code')}"
        return None

    def _payload_error(self, payload: dict[str, Any]) -> str | None:
        error = payload.get("error")
        if isinstance(error, dict) and (error.get("code") or error.get("message")):
            return f"StockData error {error.get('code')}: {error.get('message')}"
        return None

    def _parse_history(self, symbol: str, payload: Any) -> list[NormalizedRecord]:
        try:
            response = StockDataResponse.model_validate(payload)
        except ValidationError as exc:
            raise ParseError(
                "StockData response does not match the expected schema",
                self.service_name,
                diagnostic=str(exc),
            ) from exc

        if response.data is None:
            raise ParseError(
                "StockData response is missing 'data'",
                self.service_name,
                diagnostic=f"keys: {sorted(payload)}",
            )

        index_name = index_name_for_symbol(symbol)
        fetched_at = self._clock()
        records: list[NormalizedRecord] = []
        for raw_bar in response.data:
            try:
                bar = StockDataBar.model_validate(raw_bar)
                trade_date = bar.trade_date()
            except (ValidationError, ValueError) as exc:
                logger.bind(provider=self.service_name).debug("skipping malformed row {}: {}", raw_bar, exc)
                continue
            records.append(
                NormalizedRecord(
                    index_name=index_name,
                    date=trade_date,
                    open=bar.open,
                    high=bar.high,
                    low=bar.low,
                    close=bar.close,
                    volume=bar.volume,
                    fetched_at=fetched_at,
                    source=self.service_name,
                )
            )
        return records
