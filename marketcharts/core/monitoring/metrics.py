"""Prometheus metrics helpers for marketcharts services."""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, generate_latest


@dataclass
class _ProviderStats:
    """Internal container tracking provider level success and failure counts."""

    total: int = 0
    failures: int = 0


_ALLOWED_CACHE_OUTCOMES = {"hit", "partial", "miss"}


class MetricsCollector:
    """Collects and exposes Prometheus metrics for provider and cache activity."""

    def __init__(self, *, registry: CollectorRegistry | None = None) -> None:
        self.registry = registry or CollectorRegistry()
        self.provider_latency_seconds = Histogram(
            "marketcharts_provider_latency_seconds",
            "Latency distribution for upstream market data requests.",
            ("provider",),
            buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, float("inf")),
            registry=self.registry,
        )
        self.provider_requests_total = Counter(
            "marketcharts_provider_requests_total",
            "Total count of upstream market data requests.",
            ("provider",),
            registry=self.registry,
        )
        self.provider_failures_total = Counter(
            "marketcharts_provider_failures_total",
            "Total count of failed upstream market data requests.",
            ("provider", "error_code"),
            registry=self.registry,
        )
        self.provider_error_rate = Gauge(
            "marketcharts_provider_error_rate",
            "Error rate for upstream market data providers (0-1 range).",
            ("provider",),
            registry=self.registry,
        )
        self.failovers_total = Counter(
            "marketcharts_failovers_total",
            "Provider failover transitions grouped by event kind.",
            ("kind",),
            registry=self.registry,
        )
        self.cache_lookups_total = Counter(
            "marketcharts_cache_lookups_total",
            "Record store lookups grouped by outcome.",
            ("outcome",),
            registry=self.registry,
        )
        self.interpolated_records_total = Counter(
            "marketcharts_interpolated_records_total",
            "Synthetic records created to fill trading-day gaps.",
            registry=self.registry,
        )
        self._provider_stats: defaultdict[str, _ProviderStats] = defaultdict(_ProviderStats)

    def observe_request(self, provider: str, latency_seconds: float, *, error_code: str | None = None) -> None:
        """Record a provider request; ``error_code`` marks it as failed."""

        self.provider_latency_seconds.labels(provider=provider).observe(latency_seconds)
        stats = self._provider_stats[provider]
        stats.total += 1
        self.provider_requests_total.labels(provider=provider).inc()
        if error_code is not None:
            stats.failures += 1
            self.provider_failures_total.labels(provider=provider, error_code=error_code).inc()
        self.provider_error_rate.labels(provider=provider).set(stats.failures / stats.total)

    def record_failover(self, kind: str) -> None:
        self.failovers_total.labels(kind=kind).inc()

    def record_cache_lookup(self, outcome: str) -> None:
        """Track cache activity with constrained outcome labels."""

        label = outcome if outcome in _ALLOWED_CACHE_OUTCOMES else "__other__"
        self.cache_lookups_total.labels(outcome=label).inc()

    def record_interpolated(self, count: int) -> None:
        if count > 0:
            self.interpolated_records_total.inc(count)

    def render(self) -> bytes:
        """Render metrics in Prometheus exposition format."""

        return generate_latest(self.registry)


_DEFAULT_COLLECTOR: MetricsCollector | None = None


def get_metrics_collector() -> MetricsCollector:
    """Return the global metrics collector instance."""

    global _DEFAULT_COLLECTOR
    if _DEFAULT_COLLECTOR is None:
        _DEFAULT_COLLECTOR = MetricsCollector()
    return _DEFAULT_COLLECTOR


def configure_metrics_collector(collector: MetricsCollector | None) -> None:
    """Override the global metrics collector for application wiring or tests."""

    global _DEFAULT_COLLECTOR
    _DEFAULT_COLLECTOR = collector
