"""Configuration management for marketcharts."""

from __future__ import annotations

import os
import tomllib
from dataclasses import asdict, dataclass, field, fields
from datetime import date
from pathlib import Path
from typing import Any

from loguru import logger

from marketcharts.core.exceptions import ConfigurationError

DEFAULT_CONFIG_DIR = Path.home() / ".marketcharts"

# NYSE full-day closures
US_MARKET_HOLIDAYS: tuple[date, ...] = (
    date(2023, 1, 2),
    date(2023, 1, 16),
    date(2023, 2, 20),
    date(2023, 4, 7),
    date(2023, 5, 29),
    date(2023, 6, 19),
    date(2023, 7, 4),
    date(2023, 9, 4),
    date(2023, 11, 23),
    date(2023, 12, 25),
    date(2024, 1, 1),
    date(2024, 1, 15),
    date(2024, 2, 19),
    date(2024, 3, 29),
    date(2024, 5, 27),
    date(2024, 6, 19),
    date(2024, 7, 4),
    date(2024, 9, 2),
    date(2024, 11, 28),
    date(2024, 12, 25),
    date(2025, 1, 1),
    date(2025, 1, 9),
    date(2025, 1, 20),
    date(2025, 2, 17),
    date(2025, 4, 18),
    date(2025, 5, 26),
    date(2025, 6, 19),
    date(2025, 7, 4),
    date(2025, 9, 1),
    date(2025, 11, 27),
    date(2025, 12, 25),
    date(2026, 1, 1),
    date(2026, 1, 19),
    date(2026, 2, 16),
    date(2026, 4, 3),
    date(2026, 5, 25),
    date(2026, 6, 19),
    date(2026, 7, 3),
    date(2026, 9, 7),
    date(2026, 11, 26),
    date(2026, 12, 25),
)


@dataclass
class PrimaryProviderConfig:
    """Alpha Vantage settings."""

    base_url: str = "https://www.alphavantage.co"
    api_key: str = "demo"
    daily_limit: int = 25
    timeout: float = 30.0


@dataclass
class BackupProviderConfig:
    """StockData.org settings."""

    base_url: str = "https://api.stockdata.org/v1"
    api_token: str = ""
    daily_limit: int = 100
    timeout: float = 30.0


@dataclass
class FailoverConfig:
    """Provider failover and persistence retry settings."""

    retry_primary_after_minutes: int = 60
    max_retry_attempts: int = 3
    retry_delay_ms: int = 1000


@dataclass
class CalendarConfig:
    """Exchange calendar settings."""

    holidays: list[date] = field(default_factory=lambda: list(US_MARKET_HOLIDAYS))


@dataclass
class ReconciliationConfig:
    """Cross-source consistency and anomaly thresholds, in percent."""

    consistency_tolerance_pct: float = 1.0
    anomaly_threshold_pct: float = 10.0


@dataclass
class ChartConfig:
    """Chart rendering defaults."""

    max_data_points: int = 100
    optimize_data_points: bool = True
    show_annotations: bool = True
    enable_comparison: bool = True
    enable_technical_indicators: bool = True
    colors: dict[str, str] = field(
        default_factory=lambda: {
            "S&P 500": "#10B981",
            "Dow Jones": "#3B82F6",
            "NASDAQ": "#8B5CF6",
        }
    )


@dataclass
class StorageConfig:
    """Record store settings."""

    database_path: str = str(DEFAULT_CONFIG_DIR / "marketdata.duckdb")


@dataclass
class TimelineConfig:
    """Reference dates for the administration comparison views."""

    inauguration_date: date = date(2025, 1, 20)
    tariff_announcement_date: date = date(2025, 4, 2)
    previous_administration_start: date = date(2017, 1, 20)
    previous_administration_end: date = date(2021, 1, 19)
    events: dict[str, str] = field(
        default_factory=lambda: {
            "2025-01-20": "Inauguration",
            "2025-04-02": "Tariff announcement",
        }
    )


@dataclass
class LoggingConfig:
    """Logging settings."""

    level: str = "INFO"
    file: str | None = None
    serialize: bool = True


_SECTIONS: dict[str, type] = {
    "primary": PrimaryProviderConfig,
    "backup": BackupProviderConfig,
    "failover": FailoverConfig,
    "calendar": CalendarConfig,
    "reconciliation": ReconciliationConfig,
    "chart": ChartConfig,
    "storage": StorageConfig,
    "timeline": TimelineConfig,
    "logging": LoggingConfig,
}


@dataclass
class MarketChartsConfig:
    """Top level marketcharts configuration."""

    primary: PrimaryProviderConfig = field(default_factory=PrimaryProviderConfig)
    backup: BackupProviderConfig = field(default_factory=BackupProviderConfig)
    failover: FailoverConfig = field(default_factory=FailoverConfig)
    calendar: CalendarConfig = field(default_factory=CalendarConfig)
    reconciliation: ReconciliationConfig = field(default_factory=ReconciliationConfig)
    chart: ChartConfig = field(default_factory=ChartConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    timeline: TimelineConfig = field(default_factory=TimelineConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    def __post_init__(self) -> None:
        if self.primary.daily_limit < 0 or self.backup.daily_limit < 0:
            raise ConfigurationError("daily_limit must be non-negative")
        if self.primary.timeout <= 0 or self.backup.timeout <= 0:
            raise ConfigurationError("timeout must be positive")
        if self.failover.retry_primary_after_minutes <= 0:
            raise ConfigurationError("retry_primary_after_minutes must be positive")
        if self.failover.max_retry_attempts < 1:
            raise ConfigurationError("max_retry_attempts must be at least 1")
        if self.reconciliation.consistency_tolerance_pct < 0:
            raise ConfigurationError("consistency_tolerance_pct must be non-negative")
        if self.chart.max_data_points < 2:
            raise ConfigurationError("max_data_points must be at least 2")

    @classmethod
    def from_dict(cls, config_dict: dict[str, Any]) -> MarketChartsConfig:
        """Build a config from nested section dictionaries."""
        sections: dict[str, Any] = {}
        for name, section_type in _SECTIONS.items():
            raw = dict(config_dict.get(name, {}))
            known = {item.name for item in fields(section_type)}
            unknown = set(raw) - known
            if unknown:
                raise ConfigurationError(
                    f"unknown keys in [{name}]: {', '.join(sorted(unknown))}",
                    details={"section": name},
                )
            sections[name] = section_type(**_coerce_section(name, raw))
        return cls(**sections)

    def to_dict(self) -> dict[str, Any]:
        """Convert to a nested dictionary."""
        return {name: asdict(getattr(self, name)) for name in _SECTIONS}


def _parse_date(value: Any) -> date:
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value))
    except ValueError as exc:
        raise ConfigurationError(f"invalid date value: {value!r}") from exc


def _coerce_section(name: str, raw: dict[str, Any]) -> dict[str, Any]:
    if name == "calendar":
        if "holidays" in raw:
            raw["holidays"] = [_parse_date(item) for item in raw["holidays"]]
    elif name == "timeline":
        for key in (
            "inauguration_date",
            "tariff_announcement_date",
            "previous_administration_start",
            "previous_administration_end",
        ):
            if key in raw:
                raw[key] = _parse_date(raw[key])
        if "events" in raw:
            raw["events"] = {_parse_date(day).isoformat(): str(text) for day, text in dict(raw["events"]).items()}
    return raw


class ConfigManager:
    """Loads configuration from TOML and layers environment overrides on top."""

    def __init__(self, config_path: Path | None = None, *, use_env: bool = True):
        """Initialise the manager.

        Args:
            config_path: TOML file, defaults to ``~/.marketcharts/config.toml``
            use_env: apply ``MARKETCHARTS_*`` environment overrides
        """
        self.config_path = config_path or DEFAULT_CONFIG_DIR / "config.toml"
        self.use_env = use_env
        self.config = self._load_config()

    def _load_config(self) -> MarketChartsConfig:
        config_dict: dict[str, Any] = {}
        if self.config_path.exists():
            try:
                with open(self.config_path, "rb") as f:
                    config_dict = tomllib.load(f)
            except (OSError, tomllib.TOMLDecodeError) as exc:
                logger.warning("Failed to load config from {}: {}", self.config_path, exc)
                config_dict = {}

        if self.use_env:
            _deep_update(config_dict, load_config_from_env())
        return MarketChartsConfig.from_dict(config_dict)

    def get_config(self) -> MarketChartsConfig:
        """Return the active configuration."""
        return self.config

    def update_config(self, **updates: Any) -> None:
        """Apply nested section updates, e.g. ``update_config(chart={"max_data_points": 50})``."""
        config_dict = self.config.to_dict()
        _deep_update(config_dict, updates)
        self.config = MarketChartsConfig.from_dict(config_dict)


def _deep_update(target: dict[str, Any], updates: dict[str, Any]) -> dict[str, Any]:
    for key, value in updates.items():
        if isinstance(value, dict) and isinstance(target.get(key), dict):
            _deep_update(target[key], value)
        else:
            target[key] = value
    return target


def get_default_config() -> MarketChartsConfig:
    """Return a configuration populated with defaults."""
    return MarketChartsConfig()


_ENV_OVERRIDES: tuple[tuple[str, str, str, type], ...] = (
    ("MARKETCHARTS_ALPHA_VANTAGE_API_KEY", "primary", "api_key", str),
    ("MARKETCHARTS_ALPHA_VANTAGE_BASE_URL", "primary", "base_url", str),
    ("MARKETCHARTS_ALPHA_VANTAGE_DAILY_LIMIT", "primary", "daily_limit", int),
    ("MARKETCHARTS_STOCKDATA_API_TOKEN", "backup", "api_token", str),
    ("MARKETCHARTS_STOCKDATA_BASE_URL", "backup", "base_url", str),
    ("MARKETCHARTS_STOCKDATA_DAILY_LIMIT", "backup", "daily_limit", int),
    ("MARKETCHARTS_RETRY_PRIMARY_AFTER_MINUTES", "failover", "retry_primary_after_minutes", int),
    ("MARKETCHARTS_MAX_RETRY_ATTEMPTS", "failover", "max_retry_attempts", int),
    ("MARKETCHARTS_RETRY_DELAY_MS", "failover", "retry_delay_ms", int),
    ("MARKETCHARTS_CONSISTENCY_TOLERANCE_PCT", "reconciliation", "consistency_tolerance_pct", float),
    ("MARKETCHARTS_MAX_DATA_POINTS", "chart", "max_data_points", int),
    ("MARKETCHARTS_DATABASE_PATH", "storage", "database_path", str),
    ("MARKETCHARTS_LOGGING_LEVEL", "logging", "level", str),
    ("MARKETCHARTS_LOGGING_FILE", "logging", "file", str),
)


def load_config_from_env() -> dict[str, Any]:
    """Collect ``MARKETCHARTS_*`` overrides as nested section dictionaries."""
    config: dict[str, Any] = {}
    for env_name, section, key, caster in _ENV_OVERRIDES:
        raw = os.getenv(env_name)
        if raw is None:
            continue
        try:
            value = caster(raw)
        except ValueError as exc:
            raise ConfigurationError(f"invalid value for {env_name}: {raw!r}") from exc
        config.setdefault(section, {})[key] = value
    return config
