"""Exception handling module."""

from marketcharts.core.exceptions.base import (
    AllProvidersUnavailable,
    ConfigurationError,
    DataUnavailable,
    MarketChartsError,
    NoDataAvailable,
    ParseError,
    ProviderError,
    QuotaExceeded,
    RateLimited,
    RepositoryError,
    UpstreamError,
)
from marketcharts.core.exceptions.codes import ErrorCode

__all__ = [
    "MarketChartsError",
    "ConfigurationError",
    "ProviderError",
    "QuotaExceeded",
    "RateLimited",
    "UpstreamError",
    "ParseError",
    "NoDataAvailable",
    "AllProvidersUnavailable",
    "DataUnavailable",
    "RepositoryError",
    "ErrorCode",
]
