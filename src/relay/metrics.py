"""Prometheus-compatible metrics for relay observability.

This module provides metrics collection for monitoring:
- Connection lifecycle (attached connections, rejected events)
- Session lifecycle (created, reclaimed, active, lifetime)
- Message fan-out (messages, AI responses, recipients per broadcast)
- Delivery health (per-recipient delivery failures)

Metrics are collected in-memory and exposed via the /metrics endpoint in
Prometheus exposition format.
"""

import logging
import threading
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)


@dataclass
class HistogramBucket:
    """Histogram bucket for value distributions."""

    le: float  # Upper bound (less-than-or-equal)
    count: int = 0  # Number of observations <= le


def _buckets(bounds: list[float]) -> list[HistogramBucket]:
    return [HistogramBucket(le=b) for b in bounds] + [HistogramBucket(le=float("inf"))]


# Session lifetimes range from seconds to hours
LIFETIME_BOUNDS_S = [1.0, 10.0, 30.0, 60.0, 300.0, 900.0, 1800.0, 3600.0, 14400.0]

# Recipients per broadcast
FANOUT_BOUNDS = [1.0, 2.0, 4.0, 8.0, 16.0, 32.0, 64.0]


@dataclass
class Histogram:
    """Histogram metric for tracking distributions.

    Uses fixed bucket boundaries for consistent memory footprint.
    """

    name: str
    help: str
    labels: dict[str, str] = field(default_factory=dict)
    buckets: list[HistogramBucket] = field(default_factory=lambda: _buckets(LIFETIME_BOUNDS_S))

    sum: float = 0.0  # Sum of all observed values
    count: int = 0  # Total number of observations

    def observe(self, value: float) -> None:
        """Record an observation.

        Args:
            value: Observed value (in base units, e.g., seconds)
        """
        self.sum += value
        self.count += 1

        for bucket in self.buckets:
            if value <= bucket.le:
                bucket.count += 1

    def quantile(self, q: float) -> float | None:
        """Calculate approximate quantile (e.g., 0.95 for p95).

        Bucket counts are cumulative; the result is interpolated linearly
        inside the bucket holding the target rank.

        Args:
            q: Quantile to calculate (0.0 to 1.0)

        Returns:
            Approximate quantile value, or None if no data
        """
        if self.count == 0:
            return None

        target_rank = int(q * self.count)

        prev_count = 0
        for i, bucket in enumerate(self.buckets):
            if bucket.count >= target_rank:
                if i == 0:
                    return bucket.le / 2.0

                prev_bucket = self.buckets[i - 1]
                bucket_count = bucket.count - prev_count
                if bucket.le == float("inf"):
                    return prev_bucket.le
                if bucket_count == 0:
                    return bucket.le

                rank_in_bucket = target_rank - prev_count
                bucket_width = bucket.le - prev_bucket.le
                return prev_bucket.le + (rank_in_bucket / bucket_count) * bucket_width

            prev_count = bucket.count

        return self.buckets[-1].le


@dataclass
class Counter:
    """Counter metric (monotonically increasing)."""

    name: str
    help: str
    labels: dict[str, str] = field(default_factory=dict)
    value: float = 0.0

    def inc(self, amount: float = 1.0) -> None:
        self.value += amount


@dataclass
class Gauge:
    """Gauge metric (can go up or down)."""

    name: str
    help: str
    labels: dict[str, str] = field(default_factory=dict)
    value: float = 0.0

    def set(self, value: float) -> None:
        self.value = value

    def inc(self, amount: float = 1.0) -> None:
        self.value += amount

    def dec(self, amount: float = 1.0) -> None:
        self.value -= amount


class MetricsCollector:
    """Thread-safe metrics collector with Prometheus-compatible output.

    Thread-safety: All public methods are thread-safe via mutex.
    """

    def __init__(self) -> None:
        """Initialize metrics collector."""
        self._lock = threading.RLock()

        self._counters: dict[str, Counter] = {}
        self._gauges: dict[str, Gauge] = {}
        self._histograms: dict[str, Histogram] = {}

        self._init_connection_metrics()
        self._init_session_metrics()
        self._init_message_metrics()

        logger.info("MetricsCollector initialized")

    def _init_connection_metrics(self) -> None:
        """Initialize connection lifecycle metrics."""
        self._gauges["connections_active"] = Gauge(
            name="connections_active",
            help="Number of attached connections",
        )
        self._counters["connections_total"] = Counter(
            name="connections_total",
            help="Total number of connections attached",
        )
        self._counters["rejected_events_total"] = Counter(
            name="rejected_events_total",
            help="Total number of client events rejected with an error",
        )

    def _init_session_metrics(self) -> None:
        """Initialize session lifecycle metrics."""
        self._gauges["sessions_active"] = Gauge(
            name="sessions_active",
            help="Number of sessions with at least one member",
        )
        self._counters["sessions_created_total"] = Counter(
            name="sessions_created_total",
            help="Total number of sessions created",
        )
        self._counters["sessions_reclaimed_total"] = Counter(
            name="sessions_reclaimed_total",
            help="Total number of sessions removed after their last member left",
        )
        self._counters["joins_total"] = Counter(
            name="joins_total",
            help="Total number of successful joins",
        )
        self._counters["leaves_total"] = Counter(
            name="leaves_total",
            help="Total number of leaves",
        )
        self._histograms["session_lifetime_seconds"] = Histogram(
            name="session_lifetime_seconds",
            help="Session lifetime in seconds (creation to reclaim)",
        )

    def _init_message_metrics(self) -> None:
        """Initialize message fan-out metrics."""
        self._counters["messages_total"] = Counter(
            name="messages_total",
            help="Total number of human messages relayed",
        )
        self._counters["ai_responses_total"] = Counter(
            name="ai_responses_total",
            help="Total number of AI responses relayed",
        )
        self._counters["delivery_failures_total"] = Counter(
            name="delivery_failures_total",
            help="Total number of per-recipient delivery failures",
        )
        self._histograms["broadcast_recipients"] = Histogram(
            name="broadcast_recipients",
            help="Number of recipients per broadcast",
            buckets=_buckets(FANOUT_BOUNDS),
        )

    # === Connection metrics ===

    def record_connection_open(self) -> None:
        with self._lock:
            self._gauges["connections_active"].inc()
            self._counters["connections_total"].inc()

    def record_connection_close(self) -> None:
        with self._lock:
            self._gauges["connections_active"].dec()

    def record_rejected_event(self) -> None:
        with self._lock:
            self._counters["rejected_events_total"].inc()

    # === Session metrics ===

    def record_join(self, session_created: bool) -> None:
        """Record a successful join.

        Args:
            session_created: Whether the join created the session
        """
        with self._lock:
            self._counters["joins_total"].inc()
            if session_created:
                self._counters["sessions_created_total"].inc()
                self._gauges["sessions_active"].inc()

    def record_leave(self, reclaimed_lifetime_s: float | None = None) -> None:
        """Record a leave.

        Args:
            reclaimed_lifetime_s: Session lifetime if the leave emptied and
                removed the session, None otherwise
        """
        with self._lock:
            self._counters["leaves_total"].inc()
            if reclaimed_lifetime_s is not None:
                self._counters["sessions_reclaimed_total"].inc()
                self._gauges["sessions_active"].dec()
                self._histograms["session_lifetime_seconds"].observe(reclaimed_lifetime_s)

    # === Message metrics ===

    def record_message(self, ai_response: bool) -> None:
        with self._lock:
            if ai_response:
                self._counters["ai_responses_total"].inc()
            else:
                self._counters["messages_total"].inc()

    def record_delivery_failure(self) -> None:
        with self._lock:
            self._counters["delivery_failures_total"].inc()

    def record_fanout(self, recipients: int) -> None:
        with self._lock:
            self._histograms["broadcast_recipients"].observe(float(recipients))

    # === Export ===

    def export_prometheus(self) -> str:
        """Export all metrics in Prometheus exposition format.

        Returns:
            Metrics in Prometheus text format for scraping
        """
        with self._lock:
            lines: list[str] = []

            for counter in self._counters.values():
                lines.extend(self._scalar_lines(counter, "counter"))
            for gauge in self._gauges.values():
                lines.extend(self._scalar_lines(gauge, "gauge"))
            for histogram in self._histograms.values():
                lines.extend(self._histogram_lines(histogram))

            return "\n".join(lines) + "\n"

    def _scalar_lines(self, metric: Counter | Gauge, kind: str) -> list[str]:
        return [
            f"# HELP {metric.name} {metric.help}",
            f"# TYPE {metric.name} {kind}",
            f"{metric.name}{self._format_labels(metric.labels)} {metric.value}",
        ]

    def _histogram_lines(self, histogram: Histogram) -> list[str]:
        name = histogram.name
        lines = [f"# HELP {name} {histogram.help}", f"# TYPE {name} histogram"]
        for bucket in histogram.buckets:
            le = "+Inf" if bucket.le == float("inf") else str(bucket.le)
            bucket_labels = self._format_labels({**histogram.labels, "le": le})
            lines.append(f"{name}_bucket{bucket_labels} {bucket.count}")

        labels = self._format_labels(histogram.labels)
        lines.append(f"{name}_sum{labels} {histogram.sum}")
        lines.append(f"{name}_count{labels} {histogram.count}")
        return lines

    def _format_labels(self, labels: dict[str, str]) -> str:
        """Format labels for Prometheus output.

        Returns:
            Formatted label string (e.g., '{label1="value1",label2="value2"}')
        """
        if not labels:
            return ""

        label_pairs = [f'{k}="{v}"' for k, v in sorted(labels.items())]
        return "{" + ",".join(label_pairs) + "}"

    # === Summary statistics ===

    def get_summary(self) -> dict[str, float | None]:
        """Get summary statistics for monitoring dashboard.

        Returns:
            Dictionary with key metrics and percentiles
        """
        with self._lock:
            lifetime = self._histograms["session_lifetime_seconds"]
            fanout = self._histograms["broadcast_recipients"]

            return {
                "connections_active": self._gauges["connections_active"].value,
                "connections_total": self._counters["connections_total"].value,
                "rejected_events": self._counters["rejected_events_total"].value,
                "sessions_active": self._gauges["sessions_active"].value,
                "sessions_created": self._counters["sessions_created_total"].value,
                "sessions_reclaimed": self._counters["sessions_reclaimed_total"].value,
                "joins": self._counters["joins_total"].value,
                "leaves": self._counters["leaves_total"].value,
                "session_lifetime_p50_s": lifetime.quantile(0.50),
                "session_lifetime_p95_s": lifetime.quantile(0.95),
                "messages": self._counters["messages_total"].value,
                "ai_responses": self._counters["ai_responses_total"].value,
                "delivery_failures": self._counters["delivery_failures_total"].value,
                "broadcast_recipients_p95": fanout.quantile(0.95),
            }


# Global metrics collector singleton
_metrics_collector: MetricsCollector | None = None
_collector_lock = threading.Lock()


def get_metrics_collector() -> MetricsCollector:
    """Get global metrics collector singleton.

    Thread-safety: Safe for concurrent access.
    """
    global _metrics_collector

    if _metrics_collector is None:
        with _collector_lock:
            if _metrics_collector is None:
                _metrics_collector = MetricsCollector()

    return _metrics_collector


def reset_metrics_collector() -> None:
    """Drop the singleton so the next caller gets fresh metrics."""
    global _metrics_collector

    with _collector_lock:
        _metrics_collector = None
