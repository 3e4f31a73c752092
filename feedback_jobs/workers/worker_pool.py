"""Worker pool pulling jobs from the shared Redis queue."""

import asyncio
import uuid
from typing import List, Optional

import structlog

from feedback_jobs.config import settings
from feedback_jobs.models import JobState
from feedback_jobs.monitoring.metrics import MetricsCollector
from feedback_jobs.queue import RedisQueue
from feedback_jobs.schemas import Job
from .job_executor import JobExecutor

logger = structlog.get_logger()


class Worker:
    """Individual worker that processes one job at a time."""

    def __init__(self, worker_id: str, queue: RedisQueue, executor: JobExecutor,
                 metrics: MetricsCollector = None, dequeue_timeout: Optional[int] = None):
        """Initialize worker."""
        self.worker_id = worker_id
        self.queue = queue
        self.executor = executor
        self.metrics = metrics
        self.dequeue_timeout = settings.dequeue_timeout_seconds if dequeue_timeout is None else dequeue_timeout
        self.running = False
        self.current_job: Optional[Job] = None

    async def start(self):
        """Start the worker."""
        self.running = True
        logger.info("Worker started", worker_id=self.worker_id)

        while self.running:
            try:
                # The blocking pop runs in a thread so other workers keep going.
                job = await asyncio.to_thread(self.queue.dequeue_next, self.dequeue_timeout)

                if job:
                    await self.process_job(job)
                else:
                    await asyncio.sleep(0.1)

            except Exception as e:
                logger.error("Worker error", worker_id=self.worker_id, error=str(e))
                await asyncio.sleep(1)

    async def stop(self):
        """Stop the worker after its current job."""
        self.running = False
        logger.info("Worker stopped", worker_id=self.worker_id)

    async def process_job(self, job: Job):
        """Execute a claimed job and record its outcome in the queue."""
        logger.info("Processing job", worker_id=self.worker_id, job_id=job.id, kind=job.kind.value)
        self.current_job = job

        async def report_progress(percent: int):
            await asyncio.to_thread(self.queue.update_progress, job.id, percent)

        try:
            outcome = await self.executor.execute_job(job, report_progress)

            if outcome["status"] == JobState.COMPLETED:
                await asyncio.to_thread(self.queue.complete, job.id, outcome["result"])
                return

            updated = await asyncio.to_thread(self.queue.fail, job.id, outcome["error_message"])
            if updated is not None and updated.state == JobState.PENDING and self.metrics:
                self.metrics.record_job_retry(job.kind.value)
        finally:
            self.current_job = None


class WorkerPool:
    """Pool of workers plus the task that releases retries and recovers stalled jobs."""

    def __init__(self, queue: RedisQueue, executor: JobExecutor, pool_size: int = None,
                 metrics: MetricsCollector = None, retry_poll_seconds: float = None,
                 dequeue_timeout: int = None):
        """Initialize worker pool."""
        self.pool_size = pool_size or settings.worker_pool_size
        self.queue = queue
        self.executor = executor
        self.metrics = metrics
        self.retry_poll_seconds = retry_poll_seconds or settings.retry_poll_seconds
        self.dequeue_timeout = dequeue_timeout
        self.workers: List[Worker] = []
        self.running = False

    async def start(self):
        """Start the worker pool and run until stopped."""
        self.running = True
        logger.info("Starting worker pool", pool_size=self.pool_size)

        for _ in range(self.pool_size):
            worker_id = f"worker-{uuid.uuid4().hex[:8]}"
            self.workers.append(Worker(worker_id, self.queue, self.executor,
                                       metrics=self.metrics, dequeue_timeout=self.dequeue_timeout))

        if self.metrics:
            self.metrics.update_active_workers(len(self.workers))

        tasks = [worker.start() for worker in self.workers]
        retry_task = asyncio.create_task(self._process_retry_queue())

        try:
            await asyncio.gather(*tasks, retry_task)
        except asyncio.CancelledError:
            logger.info("Worker pool tasks cancelled")

    async def stop(self):
        """Stop the worker pool gracefully."""
        self.running = False
        logger.info("Stopping worker pool")

        for worker in self.workers:
            await worker.stop()

        if self.metrics:
            self.metrics.update_active_workers(0)
        logger.info("Worker pool stopped")

    async def _process_retry_queue(self):
        """Promote delayed retries and recover jobs whose worker went away."""
        while self.running:
            try:
                await asyncio.to_thread(self.queue.promote_delayed)
                stalled = await asyncio.to_thread(self.queue.recover_stalled)
                if self.metrics:
                    self.metrics.record_stalled(len(stalled))
                    ready, delayed = await asyncio.to_thread(
                        lambda: (self.queue.get_queue_size(), self.queue.get_delayed_size())
                    )
                    self.metrics.update_queue_sizes(ready, delayed)
                await asyncio.sleep(self.retry_poll_seconds)
            except Exception as e:
                logger.error("Error processing retry queue", error=str(e))
                await asyncio.sleep(self.retry_poll_seconds)
