"""Standardized error codes shared across marketcharts layers."""

from __future__ import annotations

from enum import Enum


class ErrorCode(str, Enum):
    """Stable identifiers attached to every marketcharts error."""

    GENERAL = "GENERAL_ERROR"
    CONFIG = "CONFIG_ERROR"
    PROVIDER = "PROVIDER_ERROR"
    QUOTA_EXCEEDED = "QUOTA_EXCEEDED"
    RATE_LIMITED = "RATE_LIMITED"
    UPSTREAM = "UPSTREAM_ERROR"
    PARSE = "PARSE_ERROR"
    NO_DATA_AVAILABLE = "NO_DATA_AVAILABLE"
    ALL_PROVIDERS_UNAVAILABLE = "ALL_PROVIDERS_UNAVAILABLE"
    DATA_UNAVAILABLE = "DATA_UNAVAILABLE"
    REPOSITORY = "REPOSITORY_ERROR"


__all__ = ["ErrorCode"]
