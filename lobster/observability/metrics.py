"""
Prometheus metrics collection.
"""

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    REGISTRY,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

from lobster.constants import (
    METRIC_DELIVERIES,
    METRIC_ITEMS_COMPLETED,
    METRIC_ITEMS_ENQUEUED,
    METRIC_ITEMS_REQUEUED,
    METRIC_MESSAGE_DURATION,
    METRIC_MESSAGES_REJECTED,
    METRIC_QUEUE_DEPTH,
    METRIC_RATE_LIMITED,
    METRIC_RETRY_ATTEMPTS,
)

# Global metrics instance
_metrics: "MetricsCollector | None" = None


class MetricsCollector:
    """
    Prometheus metrics collector for the relay kernel.

    Collects metrics for:
    - Queue depth and item lifecycle
    - Admission rejections and rate limiting
    - Agent processing duration
    - Reply deliveries
    - Remote call retries
    """

    def __init__(self, registry: CollectorRegistry | None = None):
        """
        Initialize the metrics collector.

        Args:
            registry: Optional custom registry. Uses default if not provided.
        """
        self._registry = registry or REGISTRY

        self.queue_depth = Gauge(
            METRIC_QUEUE_DEPTH,
            "Number of pending items in a queue",
            ["queue"],
            registry=self._registry,
        )

        self.items_enqueued = Counter(
            METRIC_ITEMS_ENQUEUED,
            "Total number of items written to a queue",
            ["queue"],
            registry=self._registry,
        )

        self.items_completed = Counter(
            METRIC_ITEMS_COMPLETED,
            "Total number of items archived after processing",
            ["queue", "outcome"],
            registry=self._registry,
        )

        self.items_requeued = Counter(
            METRIC_ITEMS_REQUEUED,
            "Total number of orphaned items returned to pending",
            ["queue"],
            registry=self._registry,
        )

        self.messages_rejected = Counter(
            METRIC_MESSAGES_REJECTED,
            "Total number of inbound messages refused admission",
            ["reason"],
            registry=self._registry,
        )

        self.message_duration = Histogram(
            METRIC_MESSAGE_DURATION,
            "Agent processing duration in seconds",
            ["agent", "status"],
            buckets=(0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0, 300.0),
            registry=self._registry,
        )

        self.deliveries = Counter(
            METRIC_DELIVERIES,
            "Total number of reply deliveries",
            ["output", "status"],
            registry=self._registry,
        )

        self.rate_limited = Counter(
            METRIC_RATE_LIMITED,
            "Total number of messages denied by the rate limiter",
            ["source"],
            registry=self._registry,
        )

        self.retry_attempts = Counter(
            METRIC_RETRY_ATTEMPTS,
            "Total number of retried remote calls",
            ["operation"],
            registry=self._registry,
        )

    def record_enqueued(self, queue: str, depth: int) -> None:
        """Record an enqueue and the resulting depth."""
        self.items_enqueued.labels(queue=queue).inc()
        self.queue_depth.labels(queue=queue).set(depth)

    def record_completed(self, queue: str, outcome: str) -> None:
        """Record an item leaving the processing partition."""
        self.items_completed.labels(queue=queue, outcome=outcome).inc()

    def record_requeued(self, queue: str, count: int) -> None:
        self.items_requeued.labels(queue=queue).inc(count)

    def update_queue_depth(self, queue: str, depth: int) -> None:
        self.queue_depth.labels(queue=queue).set(depth)

    def record_rejected(self, reason: str) -> None:
        self.messages_rejected.labels(reason=reason).inc()

    def record_processed(self, agent: str, status: str, duration_seconds: float) -> None:
        """Record one agent call."""
        self.message_duration.labels(agent=agent, status=status).observe(duration_seconds)

    def record_delivery(self, output: str, status: str) -> None:
        self.deliveries.labels(output=output, status=status).inc()

    def record_rate_limited(self, source: str) -> None:
        self.rate_limited.labels(source=source).inc()

    def record_retry(self, operation: str) -> None:
        self.retry_attempts.labels(operation=operation).inc()

    def get_metrics(self) -> bytes:
        """Get all metrics in Prometheus format."""
        return generate_latest(self._registry)

    def get_content_type(self) -> str:
        """Get the content type for metrics response."""
        return CONTENT_TYPE_LATEST


def setup_metrics() -> MetricsCollector:
    """
    Set up and return the metrics collector.

    Returns:
        MetricsCollector: The metrics collector instance.
    """
    global _metrics
    if _metrics is None:
        _metrics = MetricsCollector()
    return _metrics


def get_metrics() -> MetricsCollector:
    """
    Get the metrics collector instance, creating it on first use.

    Returns:
        MetricsCollector: The metrics collector instance.
    """
    if _metrics is None:
        return setup_metrics()
    return _metrics
