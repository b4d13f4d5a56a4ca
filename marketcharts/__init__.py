"""marketcharts - stock index time series with provider failover and chart-ready output."""

__version__ = "0.1.0"
