"""Externally visible job status for polling clients."""

import structlog

from feedback_jobs.models import JobState
from feedback_jobs.queue import RedisQueue
from feedback_jobs.schemas import JobStatusResponse

logger = structlog.get_logger()

STATUS_BY_STATE = {
    JobState.PENDING: "pending",
    JobState.ACTIVE: "processing",
    JobState.COMPLETED: "completed",
    JobState.FAILED: "failed",
    JobState.CANCELLED: "cancelled",
}


class JobStatusTracker:
    """Answers status queries for any job id.

    Unknown or pruned ids report ``not_found``. Repeated queries on a terminal
    job return the same snapshot until retention removes it.
    """

    def __init__(self, queue: RedisQueue):
        self.queue = queue

    def get_status(self, job_id: str) -> JobStatusResponse:
        job = self.queue.get_job(job_id)
        if job is None:
            return JobStatusResponse(status="not_found")

        status = STATUS_BY_STATE[job.state]
        return JobStatusResponse(
            status=status,
            progress=job.progress,
            result=job.result if job.state == JobState.COMPLETED else None,
            error=job.error if job.state == JobState.FAILED else None,
        )
