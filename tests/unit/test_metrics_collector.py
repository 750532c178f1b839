"""Unit tests for metrics collector."""

import pytest

from mcp_fleet.utils.metrics_collector import MetricsCollector, get_metrics_collector


@pytest.fixture
def metrics_collector():
    """Metrics collector with its own registry."""
    return MetricsCollector()


def test_metrics_collector_singleton():
    """Test that get_metrics_collector returns singleton instance."""
    assert get_metrics_collector() is get_metrics_collector()


def test_collectors_do_not_share_state():
    """Test that each collector owns a private registry."""
    first = MetricsCollector()
    second = MetricsCollector()

    first.record_reconcile("live")

    assert 'mcp_fleet_reconcile_total{outcome="live"} 1.0' in first.get_metrics().decode()
    assert 'outcome="live"' not in second.get_metrics().decode()


def test_record_reconcile(metrics_collector):
    """Test fleet read outcomes."""
    metrics_collector.record_reconcile("live")
    metrics_collector.record_reconcile("live")
    metrics_collector.record_reconcile("cache_fallback")

    data = metrics_collector.get_metrics().decode("utf-8")

    assert 'mcp_fleet_reconcile_total{outcome="live"} 2.0' in data
    assert 'mcp_fleet_reconcile_total{outcome="cache_fallback"} 1.0' in data


def test_record_engine_failure(metrics_collector):
    """Test failed engine calls by operation."""
    metrics_collector.record_engine_failure("inspect")

    data = metrics_collector.get_metrics().decode("utf-8")

    assert 'mcp_fleet_engine_failures_total{operation="inspect"} 1.0' in data


def test_record_rebuild(metrics_collector):
    """Test rebuild outcomes and durations."""
    metrics_collector.record_rebuild("success", 12.5)
    metrics_collector.record_rebuild("spawn_error")

    data = metrics_collector.get_metrics().decode("utf-8")

    assert 'mcp_fleet_rebuilds_total{outcome="success"} 1.0' in data
    assert 'mcp_fleet_rebuilds_total{outcome="spawn_error"} 1.0' in data
    assert "mcp_fleet_rebuild_duration_seconds_count 1.0" in data


def test_gauges(metrics_collector):
    """Test that gauges report the last value set."""
    metrics_collector.set_active_rebuilds(2)
    metrics_collector.set_active_rebuilds(1)
    metrics_collector.set_active_log_follows(3)
    metrics_collector.set_cached_containers(7)

    data = metrics_collector.get_metrics().decode("utf-8")

    assert "mcp_fleet_active_rebuilds 1.0" in data
    assert "mcp_fleet_active_log_follows 3.0" in data
    assert "mcp_fleet_cached_containers 7.0" in data
