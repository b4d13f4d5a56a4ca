"""Configuration module."""

from marketcharts.core.config.settings import (
    US_MARKET_HOLIDAYS,
    BackupProviderConfig,
    CalendarConfig,
    ChartConfig,
    ConfigManager,
    FailoverConfig,
    LoggingConfig,
    MarketChartsConfig,
    PrimaryProviderConfig,
    ReconciliationConfig,
    StorageConfig,
    TimelineConfig,
    get_default_config,
    load_config_from_env,
)

__all__ = [
    "US_MARKET_HOLIDAYS",
    "BackupProviderConfig",
    "CalendarConfig",
    "ChartConfig",
    "ConfigManager",
    "FailoverConfig",
    "LoggingConfig",
    "MarketChartsConfig",
    "PrimaryProviderConfig",
    "ReconciliationConfig",
    "StorageConfig",
    "TimelineConfig",
    "get_default_config",
    "load_config_from_env",
]
