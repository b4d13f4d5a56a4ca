"""Alpha Vantage client, the primary provider."""

from __future__ import annotations

from collections.abc import Callable
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from marketcharts.core.config import PrimaryProviderConfig
from marketcharts.core.exceptions import ParseError
from marketcharts.core.http_adapter import HttpClient, HttpConfig
from marketcharts.core.models import NormalizedRecord, index_name_for_symbol
from marketcharts.core.monitoring import MetricsCollector
from marketcharts.core.providers.base import HEALTH_PROBE_SYMBOL, ProviderClient

QUERY_PATH = "query"
RATE_LIMIT_PHRASES = ("api call frequency", "rate limit")


def classify_notice(text: str | None) -> bool:
    """True when an in-band ``Note``/``Information`` message signals throttling."""
    if not text:
        return False
    lowered = text.lower()
    return any(phrase in lowered for phrase in RATE_LIMIT_PHRASES)


class AlphaVantageDailyBar(BaseModel):
    """One ``Time Series (Daily)`` entry."""

    model_config = ConfigDict(populate_by_name=True)

    open: Decimal = Field(alias="1. open")
    high: Decimal = Field(alias="2. high")
    low: Decimal = Field(alias="3. low")
    close: Decimal = Field(alias="4. close")
    volume: int = Field(alias="5. volume", ge=0)

    @field_validator("volume", mode="before")
    @classmethod
    def _parse_volume(cls, value: Any) -> Any:
        if isinstance(value, str):
            try:
                return int(Decimal(value))
            except InvalidOperation as exc:
                raise ValueError(f"invalid volume {value!r}") from exc
        return value


class AlphaVantageDailyResponse(BaseModel):
    """``TIME_SERIES_DAILY`` response envelope."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    meta_data: dict[str, Any] | None = Field(default=None, alias="Meta Data")
    time_series: dict[str, Any] | None = Field(default=None, alias="Time Series (Daily)")
    error_message: str | None = Field(default=None, alias="Error Message")
    note: str | None = Field(default=None, alias="Note")
    information: str | None = Field(default=None, alias="Information")


class AlphaVantageClient(ProviderClient):
    """Daily index history from Alpha Vantage ``TIME_SERIES_DAILY``."""

    service_name = "alpha_vantage"

    def __init__(
        self,
        api_key: str,
        http: HttpClient,
        call_limit: int = 25,
        *,
        clock: Callable[[], datetime] | None = None,
        metrics: MetricsCollector | None = None,
    ) -> None:
        super().__init__(http, call_limit, clock=clock, metrics=metrics)
        self.api_key = api_key

    @classmethod
    def from_config(
        cls,
        config: PrimaryProviderConfig,
        *,
        clock: Callable[[], datetime] | None = None,
        metrics: MetricsCollector | None = None,
        transport: Any = None,
    ) -> AlphaVantageClient:
        http_config = HttpConfig(base_url=config.base_url, timeout=config.timeout)
        http = HttpClient(http_config, cls.service_name, transport=transport)
        return cls(config.api_key, http, config.daily_limit, clock=clock, metrics=metrics)

    def _history_request(self, symbol: str, start_date: date, end_date: date) -> tuple[str, dict[str, Any]]:
        return QUERY_PATH, {
            "function": "TIME_SERIES_DAILY",
            "symbol": symbol,
            "outputsize": "full",
            "apikey": self.api_key,
        }

    def _probe_request(self) -> tuple[str, dict[str, Any]]:
        return QUERY_PATH, {"function": "GLOBAL_QUOTE", "symbol": HEALTH_PROBE_SYMBOL, "apikey": self.api_key}

    def _rate_limit_notice(self, payload: dict[str, Any]) -> str | None:
        for key in ("Note", "Information"):
            text = payload.get(key)
            if isinstance(text, str) and classify_notice(text):
                return f"Alpha Vantage rate limit: {text}"
        return None

    def _payload_error(self, payload: dict[str, Any]) -> str | None:
        message = payload.get("Error Message")
        if message:
            return f"Alpha Vantage error: {message}"
        return None

    def _parse_history(self, symbol: str, payload: Any) -> list[NormalizedRecord]:
        try:
            response = AlphaVantageDailyResponse.model_validate(payload)
        except ValidationError as exc:
            raise ParseError(
                "Alpha Vantage response does not match the TIME_SERIES_DAILY schema",
                self.service_name,
                diagnostic=str(exc),
            ) from exc

        if response.time_series is None:
            raise ParseError(
                "Alpha Vantage response is missing 'Time Series (Daily)'",
                self.service_name,
                diagnostic=response.information or response.note or f"keys: {sorted(payload)}",
            )

        index_name = index_name_for_symbol(symbol)
        fetched_at = self._clock()
        records: list[NormalizedRecord] = []
        for raw_date, raw_bar in response.time_series.items():
            try:
                bar = AlphaVantageDailyBar.model_validate(raw_bar)
                trade_date = date.fromisoformat(raw_date[:10])
            except (ValidationError, ValueError) as exc:
                logger.bind(provider=self.service_name).debug("skipping malformed row {}: {}", raw_date, exc)
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
