"""Tests for the marketcharts error hierarchy."""

from __future__ import annotations

from datetime import date

import pytest

from marketcharts.core.exceptions import (
    AllProvidersUnavailable,
    DataUnavailable,
    ErrorCode,
    MarketChartsError,
    ParseError,
    ProviderError,
    QuotaExceeded,
    RateLimited,
    UpstreamError,
)


@pytest.mark.parametrize(
    ("error", "code"),
    [
        (QuotaExceeded("alpha_vantage", 25), ErrorCode.QUOTA_EXCEEDED),
        (RateLimited("slow down", "alpha_vantage", retry_after=60), ErrorCode.RATE_LIMITED),
        (UpstreamError("HTTP 503", "stockdata", status_code=503), ErrorCode.UPSTREAM),
        (ParseError("bad body", "stockdata", diagnostic="missing data"), ErrorCode.PARSE),
    ],
)
def test_provider_errors_carry_code_and_provider(error: ProviderError, code: ErrorCode) -> None:
    assert isinstance(error, ProviderError)
    assert error.error_code == code.value
    assert error.details["provider"] == error.provider_name


def test_quota_exceeded_records_limit() -> None:
    error = QuotaExceeded("alpha_vantage", 25)

    assert error.details["call_limit"] == 25


def test_all_providers_unavailable_default_message() -> None:
    error = AllProvidersUnavailable(failed_providers=["alpha_vantage", "stockdata"])

    assert str(error) == "All API services are unavailable"
    assert error.failed_providers == ["alpha_vantage", "stockdata"]
    assert not isinstance(error, ProviderError)


def test_data_unavailable_describes_range() -> None:
    error = DataUnavailable("NASDAQ", date(2025, 1, 6), date(2025, 1, 10), reason="HTTP 500")

    assert error.start == date(2025, 1, 6)
    assert error.end == date(2025, 1, 10)
    assert "2025-01-06" in error.message
    assert error.message.endswith("HTTP 500")


def test_to_payload_is_serializable() -> None:
    payload = MarketChartsError("boom", details={"index_name": "Dow Jones"}).to_payload()

    assert payload == {"code": "GENERAL_ERROR", "message": "boom", "details": {"index_name": "Dow Jones"}}
