"""Prometheus metrics exporter for the streaming control plane."""

import logging
from typing import Dict, Iterable, Optional

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, generate_latest, REGISTRY

logger = logging.getLogger(__name__)

STREAM_STATUSES = ("stopped", "starting", "running", "stopping", "error")


class MetricsExporter:
    """Prometheus metrics exporter for streams and the Icecast server.

    Provides gauges for per-status stream counts and server health,
    counters for worker starts and crashes, and a histogram of start
    verification time.
    """

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        """Initialize Prometheus metrics.

        Args:
            registry: Collector registry (the global REGISTRY if not provided)
        """
        self.registry = registry if registry is not None else REGISTRY

        # Counters
        self.stream_starts_total = Counter(
            "lanstream_stream_starts_total",
            "Total number of worker start attempts",
            ["result"],  # success, failure
            registry=self.registry,
        )

        self.stream_crashes_total = Counter(
            "lanstream_stream_crashes_total",
            "Total number of workers found dead while running",
            ["category"],
            registry=self.registry,
        )

        # Gauges
        self.streams = Gauge(
            "lanstream_streams",
            "Number of streams per status",
            ["status"],
            registry=self.registry,
        )

        self.icecast_up = Gauge(
            "lanstream_icecast_up",
            "Icecast server status (1=running, 0=not running)",
            registry=self.registry,
        )

        self.icecast_source_limit = Gauge(
            "lanstream_icecast_source_limit",
            "Configured Icecast source limit (0=unknown)",
            registry=self.registry,
        )

        self.icecast_listeners = Gauge(
            "lanstream_icecast_listeners",
            "Listeners reported by the Icecast admin interface",
            registry=self.registry,
        )

        # Histograms
        self.stream_start_duration_seconds = Histogram(
            "lanstream_stream_start_duration_seconds",
            "Time from spawn to verified running or failure",
            buckets=(0.5, 1.0, 2.0, 3.0, 5.0, 10.0, 20.0),
            registry=self.registry,
        )

        logger.info("Prometheus metrics initialized")

    def record_stream_start(self, success: bool, duration_seconds: float) -> None:
        """Record a worker start attempt.

        Args:
            success: True if the worker was verified running
            duration_seconds: Time spent verifying
        """
        self.stream_starts_total.labels(result="success" if success else "failure").inc()
        self.stream_start_duration_seconds.observe(duration_seconds)
        logger.debug(f"Stream start recorded: success={success} ({duration_seconds:.3f}s)")

    def record_stream_crash(self, category: str) -> None:
        """Record a worker crash.

        Args:
            category: Diagnosis category of the crash
        """
        self.stream_crashes_total.labels(category=category).inc()

    def update_stream_counts(self, statuses: Iterable[str]) -> None:
        """Set the per-status stream gauges.

        Args:
            statuses: Status value of every stream in the registry
        """
        counts = {status: 0 for status in STREAM_STATUSES}
        for status in statuses:
            counts[status] = counts.get(status, 0) + 1
        for status, count in counts.items():
            self.streams.labels(status=status).set(count)

    def update_icecast_status(self, state) -> None:
        """Update server gauges from a BroadcastServerState.

        Args:
            state: BroadcastServerState from the controller
        """
        self.icecast_up.set(1 if state.running else 0)
        self.icecast_source_limit.set(state.source_limit or 0)
        self.icecast_listeners.set(state.listeners or 0)

    def generate_metrics(self) -> bytes:
        """Generate Prometheus metrics output.

        Returns:
            Prometheus metrics in text format
        """
        return generate_latest(self.registry)

    def get_metrics_summary(self) -> Dict:
        """Get current metrics summary as dictionary.

        Returns:
            Dictionary with current metric values
        """
        return {
            "streams": {
                status: self.streams.labels(status=status)._value.get()
                for status in STREAM_STATUSES
            },
            "starts": {
                "success": self.stream_starts_total.labels(result="success")._value.get(),
                "failure": self.stream_starts_total.labels(result="failure")._value.get(),
            },
            "icecast_up": bool(self.icecast_up._value.get()),
            "icecast_source_limit": self.icecast_source_limit._value.get(),
            "icecast_listeners": self.icecast_listeners._value.get(),
        }
