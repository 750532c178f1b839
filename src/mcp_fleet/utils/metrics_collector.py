"""Prometheus metrics collection for MCP Fleet."""

from typing import Optional

from prometheus_client import (
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)


class MetricsCollector:
    """Collects and exposes Prometheus metrics for MCP Fleet operations."""

    def __init__(self, registry: CollectorRegistry | None = None):
        """
        Initialize metrics collector with all metrics.

        Args:
            registry: Registry to register into (a private one by default)
        """
        self.registry = registry or CollectorRegistry()

        # Counter metrics
        self.reconcile_total = Counter(
            "mcp_fleet_reconcile_total",
            "Total number of fleet reads by outcome",
            ["outcome"],
            registry=self.registry,
        )

        self.engine_failures_total = Counter(
            "mcp_fleet_engine_failures_total",
            "Total number of failed Docker engine calls",
            ["operation"],
            registry=self.registry,
        )

        self.rebuilds_total = Counter(
            "mcp_fleet_rebuilds_total",
            "Total number of rebuild jobs by outcome",
            ["outcome"],
            registry=self.registry,
        )

        # Histogram metrics
        self.rebuild_duration_seconds = Histogram(
            "mcp_fleet_rebuild_duration_seconds",
            "Rebuild script duration in seconds",
            buckets=[1.0, 5.0, 15.0, 30.0, 60.0, 120.0, 300.0, 600.0, 1800.0],
            registry=self.registry,
        )

        # Gauge metrics
        self.active_rebuilds = Gauge(
            "mcp_fleet_active_rebuilds",
            "Number of rebuild jobs currently running",
            registry=self.registry,
        )

        self.active_log_follows = Gauge(
            "mcp_fleet_active_log_follows",
            "Number of upstream log streams currently followed",
            registry=self.registry,
        )

        self.cached_containers = Gauge(
            "mcp_fleet_cached_containers",
            "Number of containers in the fleet snapshot",
            registry=self.registry,
        )

    def record_reconcile(self, outcome: str) -> None:
        """
        Record a fleet read.

        Args:
            outcome: live, cache_fallback or failed
        """
        self.reconcile_total.labels(outcome=outcome).inc()

    def record_engine_failure(self, operation: str) -> None:
        """Record a failed engine call."""
        self.engine_failures_total.labels(operation=operation).inc()

    def record_rebuild(self, outcome: str, duration_seconds: float | None = None) -> None:
        """
        Record a finished rebuild.

        Args:
            outcome: success, failure or spawn_error
            duration_seconds: Wall time of the job, if it ran
        """
        self.rebuilds_total.labels(outcome=outcome).inc()
        if duration_seconds is not None:
            self.rebuild_duration_seconds.observe(duration_seconds)

    def set_active_rebuilds(self, count: int) -> None:
        """Set the number of running rebuilds."""
        self.active_rebuilds.set(count)

    def set_active_log_follows(self, count: int) -> None:
        """Set the number of followed log streams."""
        self.active_log_follows.set(count)

    def set_cached_containers(self, count: int) -> None:
        """Set the size of the fleet snapshot."""
        self.cached_containers.set(count)

    def get_metrics(self) -> bytes:
        """
        Get current metrics in Prometheus format.

        Returns:
            Metrics data in bytes
        """
        return generate_latest(self.registry)


# Global metrics collector instance
_metrics_collector: Optional[MetricsCollector] = None


def get_metrics_collector() -> MetricsCollector:
    """
    Get the global metrics collector instance.

    Returns:
        MetricsCollector instance
    """
    global _metrics_collector
    if _metrics_collector is None:
        _metrics_collector = MetricsCollector()
    return _metrics_collector
