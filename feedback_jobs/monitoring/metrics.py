"""Prometheus metrics collection for the feedback job processor."""

from prometheus_client import Counter, Histogram, Gauge, Info, CollectorRegistry, generate_latest
import structlog

logger = structlog.get_logger()


class MetricsCollector:
    """Collects and exposes Prometheus metrics for queued analysis jobs."""

    def __init__(self, registry: CollectorRegistry = None):
        """Initialize metrics collector."""
        self.registry = registry or CollectorRegistry()

        # Job metrics
        self.jobs_enqueued = Counter(
            'jobs_enqueued_total',
            'Total number of jobs enqueued',
            ['kind'],
            registry=self.registry
        )

        self.jobs_finished = Counter(
            'jobs_finished_total',
            'Total number of job attempts finished',
            ['kind', 'status'],
            registry=self.registry
        )

        self.job_execution_time = Histogram(
            'job_execution_seconds',
            'Job execution time in seconds',
            ['kind'],
            buckets=[0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0, float('inf')],
            registry=self.registry
        )

        self.job_retries = Counter(
            'job_retries_total',
            'Total number of job retries scheduled',
            ['kind'],
            registry=self.registry
        )

        self.jobs_stalled = Counter(
            'jobs_stalled_total',
            'Active jobs recovered after their claim deadline passed',
            registry=self.registry
        )

        # Analysis metrics
        self.fallback_analyses = Counter(
            'fallback_analyses_total',
            'Analyses answered by the keyword fallback',
            registry=self.registry
        )

        self.notifications = Counter(
            'webhook_notifications_total',
            'Webhook notifications attempted',
            ['outcome'],
            registry=self.registry
        )

        self.insight_cache_hits = Counter(
            'insight_cache_hits_total',
            'Insight requests answered from cache',
            registry=self.registry
        )

        # Queue metrics
        self.queue_size = Gauge(
            'queue_size',
            'Current number of ready jobs',
            registry=self.registry
        )

        self.delayed_size = Gauge(
            'delayed_queue_size',
            'Current number of jobs waiting out a retry backoff',
            registry=self.registry
        )

        # Worker metrics
        self.active_workers = Gauge(
            'active_workers',
            'Number of running workers',
            registry=self.registry
        )

        self.system_info = Info(
            'system_info',
            'System information',
            registry=self.registry
        )
        self.system_info.info({
            'version': '1.0.0',
            'component': 'feedback_jobs'
        })

    def record_job_enqueued(self, kind: str):
        """Record a job submission."""
        self.jobs_enqueued.labels(kind=kind).inc()

    def record_job_finished(self, kind: str, status: str, execution_time: float):
        """Record the outcome of one job attempt."""
        self.jobs_finished.labels(kind=kind, status=status).inc()
        self.job_execution_time.labels(kind=kind).observe(execution_time)
        logger.debug("Job attempt recorded", kind=kind, status=status, execution_time=execution_time)

    def record_job_retry(self, kind: str):
        self.job_retries.labels(kind=kind).inc()

    def record_stalled(self, count: int):
        if count:
            self.jobs_stalled.inc(count)

    def record_fallback(self):
        self.fallback_analyses.inc()

    def record_notification(self, delivered: bool):
        self.notifications.labels(outcome="delivered" if delivered else "failed").inc()

    def record_cache_hit(self):
        self.insight_cache_hits.inc()

    def update_queue_sizes(self, ready: int, delayed: int):
        self.queue_size.set(ready)
        self.delayed_size.set(delayed)

    def update_active_workers(self, count: int):
        self.active_workers.set(count)

    def get_metrics(self) -> bytes:
        """Get metrics in Prometheus text format."""
        return generate_latest(self.registry)
