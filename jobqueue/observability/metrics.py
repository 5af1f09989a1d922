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

from jobqueue.constants import (
    METRIC_JOB_ATTEMPTS,
    METRIC_JOB_DURATION,
    METRIC_JOBS_CANCELLED,
    METRIC_JOBS_DEAD_LETTERED,
    METRIC_JOBS_DEDUPLICATED,
    METRIC_JOBS_ENQUEUED,
    METRIC_JOBS_REPLAYED,
    METRIC_LEASES_RECOVERED,
    METRIC_QUEUE_DEPTH,
)

# Global metrics instance
_metrics: "MetricsCollector | None" = None


class MetricsCollector:
    """
    Prometheus metrics collector for the job queue.

    Collects metrics for:
    - Queue depth
    - Enqueues and idempotent hits
    - Attempts by outcome and their duration
    - Dead-letter, cancel, and replay transitions
    - Lease recovery
    """

    def __init__(self, registry: CollectorRegistry | None = None):
        """
        Initialize the metrics collector.

        Args:
            registry: Optional custom registry. Uses default if not provided.
        """
        self._registry = registry or REGISTRY

        # Queue depth gauge (by organization)
        self.queue_depth = Gauge(
            METRIC_QUEUE_DEPTH,
            "Number of queued jobs",
            ["organization_id"],
            registry=self._registry,
        )

        self.jobs_enqueued = Counter(
            METRIC_JOBS_ENQUEUED,
            "Total number of jobs enqueued",
            ["job_type"],
            registry=self._registry,
        )

        self.jobs_deduplicated = Counter(
            METRIC_JOBS_DEDUPLICATED,
            "Total number of enqueues answered by an existing active job",
            ["job_type"],
            registry=self._registry,
        )

        # Attempts by outcome: completed, retried, dead_letter, cancelled
        self.job_attempts = Counter(
            METRIC_JOB_ATTEMPTS,
            "Total number of job attempts",
            ["job_type", "outcome"],
            registry=self._registry,
        )

        self.job_duration = Histogram(
            METRIC_JOB_DURATION,
            "Job attempt duration in seconds",
            ["job_type", "outcome"],
            buckets=(0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0),
            registry=self._registry,
        )

        self.jobs_dead_lettered = Counter(
            METRIC_JOBS_DEAD_LETTERED,
            "Total number of jobs moved to dead letter",
            ["job_type"],
            registry=self._registry,
        )

        self.jobs_cancelled = Counter(
            METRIC_JOBS_CANCELLED,
            "Total number of jobs cancelled",
            ["job_type"],
            registry=self._registry,
        )

        self.jobs_replayed = Counter(
            METRIC_JOBS_REPLAYED,
            "Total number of jobs replayed from dead letter",
            ["job_type"],
            registry=self._registry,
        )

        self.leases_recovered = Counter(
            METRIC_LEASES_RECOVERED,
            "Total number of processing jobs recovered after lease expiry",
            registry=self._registry,
        )

    def record_job_enqueued(self, job_type: str, created: bool) -> None:
        """Record an enqueue call."""
        if created:
            self.jobs_enqueued.labels(job_type=job_type).inc()
        else:
            self.jobs_deduplicated.labels(job_type=job_type).inc()

    def record_job_attempt(
        self,
        job_type: str,
        outcome: str,
        duration_seconds: float,
    ) -> None:
        """Record the end of one attempt."""
        self.job_attempts.labels(job_type=job_type, outcome=outcome).inc()
        self.job_duration.labels(job_type=job_type, outcome=outcome).observe(
            duration_seconds
        )

    def record_dead_lettered(self, job_type: str) -> None:
        self.jobs_dead_lettered.labels(job_type=job_type).inc()

    def record_cancelled(self, job_type: str) -> None:
        self.jobs_cancelled.labels(job_type=job_type).inc()

    def record_replayed(self, job_type: str) -> None:
        self.jobs_replayed.labels(job_type=job_type).inc()

    def record_leases_recovered(self, count: int) -> None:
        self.leases_recovered.inc(count)

    def update_queue_depth(self, organization_id: str, depth: int) -> None:
        """Update queue depth for an organization."""
        self.queue_depth.labels(organization_id=organization_id).set(depth)

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
