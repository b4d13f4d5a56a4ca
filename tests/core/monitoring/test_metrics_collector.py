"""Tests for the Prometheus metrics collector."""

from prometheus_client import CollectorRegistry

from marketcharts.core.monitoring.metrics import MetricsCollector


def test_observe_request_updates_metrics() -> None:
    registry = CollectorRegistry()
    collector = MetricsCollector(registry=registry)

    collector.observe_request("alpha_vantage", 0.25)
    collector.observe_request("alpha_vantage", 0.5, error_code="RATE_LIMITED")

    labels = {"provider": "alpha_vantage"}
    count = registry.get_sample_value("marketcharts_provider_latency_seconds_count", labels)
    total_latency = registry.get_sample_value("marketcharts_provider_latency_seconds_sum", labels)
    total_requests = registry.get_sample_value("marketcharts_provider_requests_total", labels)
    total_failures = registry.get_sample_value(
        "marketcharts_provider_failures_total",
        {"provider": "alpha_vantage", "error_code": "RATE_LIMITED"},
    )
    error_rate = registry.get_sample_value("marketcharts_provider_error_rate", labels)

    assert count == 2.0
    assert total_latency == 0.75
    assert total_requests == 2.0
    assert total_failures == 1.0
    assert error_rate == 0.5


def test_cache_lookup_outcomes_are_constrained() -> None:
    registry = CollectorRegistry()
    collector = MetricsCollector(registry=registry)

    collector.record_cache_lookup("hit")
    collector.record_cache_lookup("bogus")

    assert registry.get_sample_value("marketcharts_cache_lookups_total", {"outcome": "hit"}) == 1.0
    assert registry.get_sample_value("marketcharts_cache_lookups_total", {"outcome": "__other__"}) == 1.0


def test_failover_and_interpolation_counters() -> None:
    registry = CollectorRegistry()
    collector = MetricsCollector(registry=registry)

    collector.record_failover("primary_failed")
    collector.record_interpolated(3)
    collector.record_interpolated(0)

    assert registry.get_sample_value("marketcharts_failovers_total", {"kind": "primary_failed"}) == 1.0
    assert registry.get_sample_value("marketcharts_interpolated_records_total") == 3.0
    assert b"marketcharts_failovers_total" in collector.render()
