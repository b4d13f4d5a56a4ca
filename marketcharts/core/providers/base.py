"""Provider client abstraction shared by the primary and backup services."""

from __future__ import annotations

import time as _time
from abc import ABC, abstractmethod
from collections.abc import Callable
from datetime import UTC, date, datetime, timedelta
from types import TracebackType
from typing import Any

import httpx
from loguru import logger

from marketcharts.core.exceptions import (
    NoDataAvailable,
    ParseError,
    ProviderError,
    QuotaExceeded,
    RateLimited,
    UpstreamError,
)
from marketcharts.core.http_adapter import HttpClient
from marketcharts.core.models import NormalizedRecord, filter_range, sort_and_dedupe
from marketcharts.core.monitoring import MetricsCollector

LATEST_WINDOW = timedelta(days=7)
HEALTH_PROBE_SYMBOL = "^GSPC"


def _retry_after_seconds(response: httpx.Response) -> int | None:
    raw = response.headers.get("Retry-After")
    if raw is None:
        return None
    try:
        return int(raw)
    except ValueError:
        return None


class ProviderClient(ABC):
    """Fetches daily index history from one upstream service.

    Subclasses describe the wire format: how to build the history request,
    how to spot error or throttling payloads and how to turn a payload into
    ``NormalizedRecord`` values. The base class owns the daily call counter,
    status code classification, range filtering and ordering.
    """

    service_name: str = "provider"

    def __init__(
        self,
        http: HttpClient,
        call_limit: int,
        *,
        clock: Callable[[], datetime] | None = None,
        metrics: MetricsCollector | None = None,
    ) -> None:
        if call_limit < 0:
            raise ValueError("call_limit must be non-negative")
        self._http = http
        self.call_limit = call_limit
        self._remaining = call_limit
        self._clock = clock or (lambda: datetime.now(UTC))
        self._metrics = metrics
        self._log = logger.bind(provider=self.service_name)

    async def __aenter__(self) -> ProviderClient:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.close()

    async def close(self) -> None:
        await self._http.close()

    def get_remaining_calls(self) -> int:
        return self._remaining

    def reset_quota(self) -> None:
        """Restore the daily counter, called by the host's daily scheduler."""
        self._remaining = self.call_limit

    async def get_historical_data(self, symbol: str, start_date: date, end_date: date) -> list[NormalizedRecord]:
        """Return daily records for ``symbol`` within ``[start_date, end_date]``, ascending by date.

        Raises:
            QuotaExceeded: the daily counter is exhausted, no request is made
            RateLimited: the service throttled the request
            UpstreamError: non-success status, timeout or error payload
            ParseError: the body does not match the expected schema
        """
        if end_date < start_date:
            raise ValueError("end_date must be on or after start_date")
        if self._remaining <= 0:
            raise QuotaExceeded(self.service_name, self.call_limit)

        path, params = self._history_request(symbol, start_date, end_date)
        started = _time.perf_counter()
        try:
            payload = await self._fetch_json(path, params)
            records = self._parse_history(symbol, payload)
        except ProviderError as exc:
            self._observe(started, exc.error_code)
            self._log.bind(error_code=exc.error_code).info("{} history request failed: {}", symbol, exc.message)
            raise

        self._remaining = max(0, self._remaining - 1)
        self._observe(started, None)
        result = sort_and_dedupe(filter_range(records, start_date, end_date))
        self._log.debug(
            "{} returned {} records for {} between {} and {}",
            self.service_name,
            len(result),
            symbol,
            start_date,
            end_date,
        )
        return result

    async def get_latest_data(self, symbol: str) -> NormalizedRecord:
        """Most recent record within the last seven days."""
        today = self._clock().date()
        records = await self.get_historical_data(symbol, today - LATEST_WINDOW, today)
        if not records:
            raise NoDataAvailable(
                f"No data available for {symbol} in the last {LATEST_WINDOW.days} days",
                self.service_name,
                symbol=symbol,
            )
        return max(records, key=lambda record: record.date)

    async def is_available(self) -> bool:
        """Cheap health probe; never raises and never consumes quota.

        An exhausted daily counter or an in-band throttling message counts
        as unavailable, even when the probe itself answers 200.
        """
        if self._remaining <= 0:
            self._log.debug("health probe skipped: daily quota of {} calls is used up", self.call_limit)
            return False

        path, params = self._probe_request()
        try:
            response = await self._http.get(path, params)
        except ProviderError as exc:
            self._log.debug("health probe failed: {}", exc.message)
            return False
        if not response.is_success:
            return False

        try:
            payload = response.json()
        except ValueError:
            return True
        if isinstance(payload, dict):
            notice = self._rate_limit_notice(payload)
            if notice is not None:
                self._log.debug("health probe throttled: {}", notice)
                return False
        return True

    async def _fetch_json(self, path: str, params: dict[str, Any]) -> Any:
        response = await self._http.get(path, params)
        if response.status_code == 429:
            raise RateLimited(
                f"{self.service_name} rate limited the request (HTTP 429)",
                self.service_name,
                retry_after=_retry_after_seconds(response),
            )

        try:
            payload = response.json()
        except ValueError as exc:
            if not response.is_success:
                raise UpstreamError(
                    f"{self.service_name} request failed with HTTP {response.status_code}",
                    self.service_name,
                    status_code=response.status_code,
                ) from exc
            raise ParseError(
                f"{self.service_name} returned a body that is not valid JSON",
                self.service_name,
                diagnostic=str(exc),
            ) from exc

        if isinstance(payload, dict):
            notice = self._rate_limit_notice(payload)
            if notice is not None:
                raise RateLimited(notice, self.service_name)

        if not response.is_success:
            raise UpstreamError(
                f"{self.service_name} request failed with HTTP {response.status_code}",
                self.service_name,
                status_code=response.status_code,
            )

        if isinstance(payload, dict):
            error = self._payload_error(payload)
            if error is not None:
                raise UpstreamError(error, self.service_name, status_code=response.status_code)
        return payload

    def _observe(self, started: float, error_code: str | None) -> None:
        if self._metrics is not None:
            self._metrics.observe_request(self.service_name, _time.perf_counter() - started, error_code=error_code)

    @abstractmethod
    def _history_request(self, symbol: str, start_date: date, end_date: date) -> tuple[str, dict[str, Any]]:
        """Path and query parameters for a history request."""

    @abstractmethod
    def _probe_request(self) -> tuple[str, dict[str, Any]]:
        """Path and query parameters for the health probe."""

    @abstractmethod
    def _rate_limit_notice(self, payload: dict[str, Any]) -> str | None:
        """Throttling message carried in-band, if any."""

    @abstractmethod
    def _payload_error(self, payload: dict[str, Any]) -> str | None:
        """Provider error message carried in-band, if any."""

    @abstractmethod
    def _parse_history(self, symbol: str, payload: Any) -> list[NormalizedRecord]:
        """Convert a decoded payload into records, skipping malformed rows."""
