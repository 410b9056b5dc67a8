"""Prometheus metrics for the database provisioner."""

from __future__ import annotations

from prometheus_client import (
    Counter,
    Gauge,
    Histogram,
    Info,
    start_http_server,
    REGISTRY,
    CollectorRegistry,
)


class MetricsRegistry:
    """Registry of all provisioner metrics."""

    def __init__(self, registry: CollectorRegistry | None = None) -> None:
        """Initialize metrics registry."""
        self._registry = registry or REGISTRY

        # Container metrics
        self.container_operations_total = Counter(
            "container_operations_total",
            "Total container operations",
            ["operation", "status"],  # create/clone/rename/delete/list, success/error
            registry=self._registry,
        )

        self.container_count = Gauge(
            "container_count",
            "Number of containers seen by the last list, by engine and status",
            ["engine", "status"],
            registry=self._registry,
        )

        # Binary provisioning metrics
        self.binary_installs_total = Counter(
            "binary_installs_total",
            "Total binary install attempts",
            ["engine", "status"],  # installed, cached, failed
            registry=self._registry,
        )

        self.binary_download_seconds = Histogram(
            "binary_download_seconds",
            "Archive download duration in seconds",
            buckets=(1.0, 5.0, 10.0, 30.0, 60.0, 120.0, 300.0),
            registry=self._registry,
        )

        # Version metadata metrics
        self.version_fetch_total = Counter(
            "version_fetch_total",
            "Version metadata resolutions by the tier that answered",
            ["engine", "source"],  # remote, installed, hardcoded
            registry=self._registry,
        )

        # Filesystem resilience metrics
        self.fs_retries_total = Counter(
            "fs_retries_total",
            "Busy-resource retries performed by the filesystem layer",
            ["operation"],
            registry=self._registry,
        )

        # Registry lock metrics
        self.registry_lock_wait_seconds = Histogram(
            "registry_lock_wait_seconds",
            "Time spent acquiring the shared registry lock",
            buckets=(0.001, 0.01, 0.05, 0.1, 0.5, 1.0, 2.5, 5.0),
            registry=self._registry,
        )

        self.registry_lock_reclaims_total = Counter(
            "registry_lock_reclaims_total",
            "Stale registry lock markers force-removed",
            registry=self._registry,
        )

        # Build info
        self.info = Info(
            "db_provisioner",
            "Database provisioner information",
            registry=self._registry,
        )


_metrics: MetricsRegistry | None = None


def setup_metrics(port: int = 8003, registry: CollectorRegistry | None = None) -> MetricsRegistry:
    """Set up Prometheus metrics server."""
    global _metrics
    _metrics = MetricsRegistry(registry)

    from db_provisioner import __version__
    _metrics.info.info({"version": __version__})

    start_http_server(port, registry=registry or REGISTRY)
    return _metrics


def get_metrics() -> MetricsRegistry:
    """Get the global metrics registry."""
    global _metrics
    if _metrics is None:
        _metrics = MetricsRegistry()
    return _metrics
