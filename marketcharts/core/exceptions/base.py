"""marketcharts core exception classes."""

from __future__ import annotations

from datetime import date
from typing import Any

from marketcharts.core.exceptions.codes import ErrorCode


class MarketChartsError(Exception):
    """Base exception for every marketcharts failure."""

    def __init__(
        self,
        message: str,
        error_code: str = ErrorCode.GENERAL.value,
        details: dict[str, Any] | None = None,
    ):
        """Initialise the error.

        Args:
            message: human readable message
            error_code: stable error code, see ``ErrorCode``
            details: extra structured context
        """
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.details = details or {}

    def to_payload(self) -> dict[str, Any]:
        """Return a serializable payload representing the error."""

        return {
            "code": self.error_code,
            "message": self.message,
            "details": dict(self.details),
        }


class ConfigurationError(MarketChartsError):
    """Invalid configuration values."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message, ErrorCode.CONFIG.value, details)


class ProviderError(MarketChartsError):
    """Failure reported by, or while talking to, a market data provider."""

    def __init__(
        self,
        message: str,
        provider_name: str,
        error_code: str = ErrorCode.PROVIDER.value,
        details: dict[str, Any] | None = None,
    ):
        super_details = details or {}
        super_details.setdefault("provider", provider_name)
        super().__init__(message, error_code, super_details)
        self.provider_name = provider_name


class QuotaExceeded(ProviderError):
    """The local daily call counter for a provider is exhausted."""

    def __init__(
        self,
        provider_name: str,
        call_limit: int,
        details: dict[str, Any] | None = None,
    ):
        super_details = details or {}
        super_details["call_limit"] = call_limit
        super().__init__(
            f"{provider_name} daily call limit of {call_limit} reached",
            provider_name,
            ErrorCode.QUOTA_EXCEEDED.value,
            super_details,
        )
        self.call_limit = call_limit


class RateLimited(ProviderError):
    """The provider throttled the request (HTTP 429 or an in-band notice)."""

    def __init__(
        self,
        message: str,
        provider_name: str,
        retry_after: int | None = None,
        details: dict[str, Any] | None = None,
    ):
        super_details = details or {}
        if retry_after is not None:
            super_details["retry_after"] = retry_after
        super().__init__(message, provider_name, ErrorCode.RATE_LIMITED.value, super_details)
        self.retry_after = retry_after


class UpstreamError(ProviderError):
    """Non-success status, timeout, transport failure or provider error payload."""

    def __init__(
        self,
        message: str,
        provider_name: str,
        status_code: int | None = None,
        details: dict[str, Any] | None = None,
    ):
        super_details = details or {}
        if status_code is not None:
            super_details["status_code"] = status_code
        super().__init__(message, provider_name, ErrorCode.UPSTREAM.value, super_details)
        self.status_code = status_code


class ParseError(ProviderError):
    """Provider body could not be decoded into the expected schema."""

    def __init__(
        self,
        message: str,
        provider_name: str,
        diagnostic: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        super_details = details or {}
        if diagnostic:
            super_details["diagnostic"] = diagnostic
        super().__init__(message, provider_name, ErrorCode.PARSE.value, super_details)
        self.diagnostic = diagnostic


class NoDataAvailable(ProviderError):
    """The provider returned no rows for the requested window."""

    def __init__(
        self,
        message: str,
        provider_name: str,
        symbol: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        super_details = details or {}
        if symbol:
            super_details["symbol"] = symbol
        super().__init__(message, provider_name, ErrorCode.NO_DATA_AVAILABLE.value, super_details)
        self.symbol = symbol


class AllProvidersUnavailable(MarketChartsError):
    """Neither the primary nor the backup provider is healthy."""

    def __init__(
        self,
        message: str = "All API services are unavailable",
        failed_providers: list[str] | None = None,
        details: dict[str, Any] | None = None,
    ):
        super_details = details or {}
        if failed_providers:
            super_details["failed_providers"] = failed_providers
        super().__init__(message, ErrorCode.ALL_PROVIDERS_UNAVAILABLE.value, super_details)
        self.failed_providers = failed_providers or []


class DataUnavailable(MarketChartsError):
    """A single date gap could not be fetched from any provider."""

    def __init__(
        self,
        index_name: str,
        start: date,
        end: date,
        reason: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        super_details = details or {}
        super_details.update({"index_name": index_name, "start": start.isoformat(), "end": end.isoformat()})
        if reason:
            super_details["reason"] = reason
        message = f"Data unavailable for {index_name} between {start.isoformat()} and {end.isoformat()}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message, ErrorCode.DATA_UNAVAILABLE.value, super_details)
        self.index_name = index_name
        self.start = start
        self.end = end
        self.reason = reason


class RepositoryError(MarketChartsError):
    """Persistence layer failure."""

    def __init__(
        self,
        message: str,
        operation: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        super_details = details or {}
        if operation:
            super_details["operation"] = operation
        super().__init__(message, ErrorCode.REPOSITORY.value, super_details)
        self.operation = operation
