"""Job execution engine dispatching jobs to per-kind handlers."""

import time
from typing import Any, Awaitable, Callable, Dict

import structlog

from feedback_jobs.exceptions import UnknownJobKindError
from feedback_jobs.models import JobKind, JobState
from feedback_jobs.monitoring.metrics import MetricsCollector
from feedback_jobs.schemas import Job

logger = structlog.get_logger()


class JobExecutor:
    """Executes jobs through the handler registered for their kind.

    A handler is any object with ``async process(job, report_progress)``
    returning a JSON-serializable result; ``report_progress`` is a coroutine
    function taking a percentage.
    """

    def __init__(self, handlers: Dict[JobKind, Any], metrics: MetricsCollector = None):
        """Initialize the job executor."""
        self.job_handlers = dict(handlers)
        self.metrics = metrics

    async def execute_job(self, job: Job, report_progress: Callable[[int], Awaitable[Any]]) -> Dict[str, Any]:
        """Execute a job and report its outcome instead of raising."""
        start_time = time.time()

        try:
            handler = self.job_handlers.get(job.kind)
            if handler is None:
                raise UnknownJobKindError(f"No handler for job kind: {job.kind.value}")

            result = await handler.process(job, report_progress)
            execution_time = time.time() - start_time

            logger.info("Job executed successfully",
                        job_id=job.id,
                        kind=job.kind.value,
                        execution_time_ms=int(execution_time * 1000))
            if self.metrics:
                self.metrics.record_job_finished(job.kind.value, JobState.COMPLETED.value, execution_time)

            return {
                "status": JobState.COMPLETED,
                "result": result,
                "execution_time_ms": int(execution_time * 1000),
                "error_message": None
            }

        except Exception as e:
            execution_time = time.time() - start_time
            error_message = str(e) or e.__class__.__name__
            logger.error("Job execution failed",
                         job_id=job.id,
                         kind=job.kind.value,
                         attempt=job.attempts,
                         error=error_message,
                         execution_time_ms=int(execution_time * 1000))
            if self.metrics:
                self.metrics.record_job_finished(job.kind.value, JobState.FAILED.value, execution_time)

            return {
                "status": JobState.FAILED,
                "result": None,
                "execution_time_ms": int(execution_time * 1000),
                "error_message": error_message
            }
