"""Domain services."""

from marketcharts.core.services.calendars import DateGap, TradingCalendar
from marketcharts.core.services.chart import ChartDataProcessor
from marketcharts.core.services.failover import (
    FailoverEvent,
    FailoverEventKind,
    FailoverState,
    ProviderFailoverController,
    ProviderHealthState,
)
from marketcharts.core.services.reconciliation import DataReconciliationService, ReconciliationResult
from marketcharts.core.services.market_data import (
    MarketDataService,
    MarketSnapshot,
    create_market_data_service,
)

__all__ = [
    "ChartDataProcessor",
    "DataReconciliationService",
    "DateGap",
    "FailoverEvent",
    "FailoverEventKind",
    "FailoverState",
    "MarketDataService",
    "MarketSnapshot",
    "ProviderFailoverController",
    "ProviderHealthState",
    "ReconciliationResult",
    "TradingCalendar",
    "create_market_data_service",
]
