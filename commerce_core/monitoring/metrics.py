"""
Prometheus metrics for purchase and settlement monitoring.

Tracks:
- Purchase outcomes by error kind
- Purchase processing duration
- Order cancellations
- Settlement classifications
- Lock timeouts and commit conflicts (contention signals)
"""
from prometheus_client import Counter, Histogram

purchases_total = Counter(
    "commerce_purchases_total",
    "Total number of purchase attempts",
    ["outcome"],  # SUCCESS or an ErrorKind value
)

purchase_duration_seconds = Histogram(
    "commerce_purchase_duration_seconds",
    "Purchase orchestration duration in seconds",
    buckets=(0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 5.0),
)

order_cancellations_total = Counter(
    "commerce_order_cancellations_total",
    "Total order cancellations",
    ["outcome"],
)

settlements_total = Counter(
    "commerce_settlements_total",
    "Total settlement records by classification",
    ["status"],  # MATCHED, SURPLUS, DEFICIT
)

lock_timeouts_total = Counter(
    "commerce_lock_timeouts_total",
    "Aggregate lock acquisitions that timed out",
    ["aggregate_type"],
)

commit_conflicts_total = Counter(
    "commerce_commit_conflicts_total",
    "Unit-of-work commits rejected by a version check",
    ["aggregate_type"],
)


class MetricsCollector:
    """Helper class for collecting metrics."""

    @staticmethod
    def record_purchase(outcome: str, duration_seconds: float) -> None:
        """Record a purchase attempt and how long it took."""
        purchases_total.labels(outcome=outcome).inc()
        purchase_duration_seconds.observe(duration_seconds)

    @staticmethod
    def record_cancellation(outcome: str) -> None:
        """Record an order cancellation attempt."""
        order_cancellations_total.labels(outcome=outcome).inc()

    @staticmethod
    def record_settlement(status: str) -> None:
        """Record a settlement classification."""
        settlements_total.labels(status=status).inc()

    @staticmethod
    def record_lock_timeout(aggregate_type: str) -> None:
        """Record a lock acquisition timeout."""
        lock_timeouts_total.labels(aggregate_type=aggregate_type).inc()

    @staticmethod
    def record_commit_conflict(aggregate_type: str) -> None:
        """Record a unit-of-work version conflict."""
        commit_conflicts_total.labels(aggregate_type=aggregate_type).inc()


# Export singleton instance
metrics = MetricsCollector()
