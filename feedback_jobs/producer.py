"""Producer-facing operations: enqueue, poll and cancel jobs."""

from typing import Any, Dict, Optional

import structlog

from feedback_jobs.cache import InsightCache, insight_cache_key
from feedback_jobs.models import JobKind
from feedback_jobs.monitoring.metrics import MetricsCollector
from feedback_jobs.queue import RedisQueue
from feedback_jobs.repositories import InsightHistoryRepository
from feedback_jobs.schemas import (
    EnqueueInsightResponse, InsightFilters, InsightReport, JobStatusResponse,
)
from feedback_jobs.status import JobStatusTracker

logger = structlog.get_logger()

URGENT_KEYWORDS = (
    "bad", "terrible", "awful", "hate", "disappointed",
    "frustrated", "angry", "broken", "error", "bug",
)

URGENT_PRIORITY = 1
NORMAL_PRIORITY = 5
INSIGHT_PRIORITY = 1


def calculate_priority(text: str) -> int:
    """Urgent priority when the text contains any negative keyword."""
    lowered = text.lower()
    if any(keyword in lowered for keyword in URGENT_KEYWORDS):
        return URGENT_PRIORITY
    return NORMAL_PRIORITY


class JobService:
    """Entry point used by request handlers to drive the job core."""

    def __init__(
        self,
        queue: RedisQueue,
        cache: InsightCache,
        history_repository: InsightHistoryRepository,
        metrics: MetricsCollector = None,
    ):
        self.queue = queue
        self.cache = cache
        self.history_repository = history_repository
        self.metrics = metrics
        self.tracker = JobStatusTracker(queue)

    def enqueue_feedback_job(self, feedback_id: str, project_id: str, text: str,
                             metadata: Optional[Dict[str, Any]] = None) -> str:
        priority = calculate_priority(text)
        logger.info("Adding feedback to processing queue", feedback_id=feedback_id, priority=priority)

        job_id = self.queue.enqueue(
            JobKind.FEEDBACK_ANALYSIS,
            {
                "feedback_id": feedback_id,
                "project_id": project_id,
                "text": text,
                "metadata": metadata,
            },
            priority,
        )
        if self.metrics:
            self.metrics.record_job_enqueued(JobKind.FEEDBACK_ANALYSIS.value)
        return job_id

    def enqueue_insight_job(self, user_id: str, project_id: Optional[str],
                            filters: Optional[InsightFilters] = None) -> EnqueueInsightResponse:
        """Enqueue insight generation unless a cached report already exists."""
        filters = filters or InsightFilters()
        cached = self.cache.get(insight_cache_key(user_id, project_id, filters))
        if cached is not None:
            logger.info("Serving insights from cache", user_id=user_id, project_id=project_id)
            if self.metrics:
                self.metrics.record_cache_hit()
            return EnqueueInsightResponse(status="completed", cached=True, result=cached)

        job_id = self.queue.enqueue(
            JobKind.INSIGHT_GENERATION,
            {
                "user_id": user_id,
                "project_id": project_id,
                "filters": filters.canonical(),
            },
            INSIGHT_PRIORITY,
        )
        if self.metrics:
            self.metrics.record_job_enqueued(JobKind.INSIGHT_GENERATION.value)
        logger.info("Insights job enqueued", job_id=job_id, user_id=user_id, project_id=project_id)
        return EnqueueInsightResponse(job_id=job_id, status="pending")

    def get_job_status(self, job_id: str) -> JobStatusResponse:
        return self.tracker.get_status(job_id)

    def cancel_job(self, job_id: str) -> None:
        self.queue.cancel(job_id)

    def get_existing_insights(self, user_id: str, project_id: Optional[str] = None,
                              filters: Optional[InsightFilters] = None) -> Optional[InsightReport]:
        """Latest stored report for the user, project and filters."""
        report = self.history_repository.latest(user_id, project_id, filters)
        if report is None:
            logger.info("No existing insights found", user_id=user_id, project_id=project_id)
        return report
