"""Market data provider clients."""

from marketcharts.core.providers.alpha_vantage import AlphaVantageClient, classify_notice
from marketcharts.core.providers.base import ProviderClient
from marketcharts.core.providers.stockdata import StockDataClient

__all__ = ["AlphaVantageClient", "ProviderClient", "StockDataClient", "classify_notice"]
