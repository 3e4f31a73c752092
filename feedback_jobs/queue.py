"""Redis-based priority job queue with retry, backoff and bounded retention."""

import time
import uuid
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

import redis
import structlog

from feedback_jobs.config import settings
from feedback_jobs.models import JobKind, JobState
from feedback_jobs.schemas import Job, JobOptions

logger = structlog.get_logger()

# Pending scores are priority * PRIORITY_SPAN + sequence, so the lowest
# priority value is served first and enqueue order within a tier.
PRIORITY_SPAN = 10 ** 12

STALLED_ERROR = "Job stalled: worker stopped responding"


def _pick(value, default):
    return default if value is None else value


class RedisQueue:
    """Redis-backed job queue.

    Layout under ``queue_name``:

    - ``<q>:job:<id>``  JSON job record, the source of truth for job state
    - ``<q>:pending``   sorted set of ready job ids
    - ``<q>:delayed``   sorted set of retrying job ids scored by ready-at time
    - ``<q>:active``    sorted set of claimed job ids scored by claim deadline
    - ``<q>:completed:<kind>`` / ``<q>:failed:<kind>``  newest-first id lists
      used for retention, one pair per job kind
    - ``<q>:seq``       counter that orders jobs within a priority tier

    The client must be created with ``decode_responses=True``.
    """

    def __init__(
        self,
        redis_client: redis.Redis,
        queue_name: Optional[str] = None,
        job_ttl_seconds: Optional[int] = None,
        clock: Callable[[], float] = time.time,
        stall_timeout_seconds: Optional[int] = None,
        claim_poll_seconds: Optional[float] = None,
    ):
        self.redis_client = redis_client
        self.queue_name = queue_name or settings.queue_name
        self.job_ttl_seconds = _pick(job_ttl_seconds, settings.job_ttl_seconds)
        self.clock = clock
        self.stall_timeout_seconds = _pick(stall_timeout_seconds, settings.stalled_job_timeout_seconds)
        self.claim_poll_seconds = _pick(claim_poll_seconds, settings.claim_poll_seconds)

        self.pending_key = f"{self.queue_name}:pending"
        self.delayed_key = f"{self.queue_name}:delayed"
        self.active_key = f"{self.queue_name}:active"
        self.sequence_key = f"{self.queue_name}:seq"

    def _job_key(self, job_id: str) -> str:
        return f"{self.queue_name}:job:{job_id}"

    def completed_key(self, kind: Union[JobKind, str]) -> str:
        return f"{self.queue_name}:completed:{JobKind(kind).value}"

    def failed_key(self, kind: Union[JobKind, str]) -> str:
        return f"{self.queue_name}:failed:{JobKind(kind).value}"

    def _score(self, priority: int) -> int:
        sequence = self.redis_client.incr(self.sequence_key)
        return priority * PRIORITY_SPAN + sequence

    def enqueue(
        self,
        kind: Union[JobKind, str],
        payload: Dict[str, Any],
        priority: int,
        options: Optional[JobOptions] = None,
    ) -> str:
        """Persist a new pending job and return its id."""
        options = options or JobOptions()
        job = Job(
            id=uuid.uuid4().hex,
            kind=JobKind(kind),
            payload=payload,
            priority=priority,
            max_attempts=_pick(options.max_attempts, settings.default_max_attempts),
            backoff_delay_ms=_pick(options.backoff_delay_ms, settings.default_backoff_delay_ms),
            remove_on_complete=_pick(options.remove_on_complete, settings.remove_on_complete),
            remove_on_fail=_pick(options.remove_on_fail, settings.remove_on_fail),
            created_at=self.clock(),
        )

        try:
            score = self._score(priority)
            pipe = self.redis_client.pipeline(transaction=True)
            pipe.set(self._job_key(job.id), job.model_dump_json())
            pipe.zadd(self.pending_key, {job.id: score})
            pipe.execute()
        except redis.RedisError as e:
            logger.error("Failed to enqueue job", job_id=job.id, kind=job.kind.value, error=str(e))
            raise

        logger.info("Job enqueued", job_id=job.id, kind=job.kind.value, priority=priority)
        return job.id

    def _transact(self, job_id: str, apply: Callable[[Job, Any], bool]) -> Tuple[Optional[Job], bool]:
        """Run ``apply`` against a job record inside WATCH/MULTI.

        ``apply`` mutates the job and queues its writes on the pipeline; it
        returns False when the transition does not apply to the current state.
        """
        key = self._job_key(job_id)

        def txn(pipe):
            raw = pipe.get(key)
            if raw is None:
                return None, False
            job = Job.model_validate_json(raw)
            pipe.multi()
            return job, apply(job, pipe)

        return self.redis_client.transaction(txn, key, value_from_callable=True)

    def _claim_next(self) -> Tuple[Optional[str], Optional[Job]]:
        """Move the head of the pending set to active in one transaction.

        Returns ``(None, None)`` when nothing is pending and ``(job_id, None)``
        when the head entry was stale and has been dropped.
        """
        now = self.clock()

        def txn(pipe):
            head = pipe.zrange(self.pending_key, 0, 0)
            if not head:
                return None, None
            job_id = head[0]
            key = self._job_key(job_id)
            pipe.watch(key)
            raw = pipe.get(key)

            pipe.multi()
            pipe.zrem(self.pending_key, job_id)
            if raw is None:
                return job_id, None
            job = Job.model_validate_json(raw)
            if job.state != JobState.PENDING:
                return job_id, None

            job.state = JobState.ACTIVE
            job.attempts += 1
            job.progress = 0
            job.started_at = now
            pipe.set(key, job.model_dump_json())
            pipe.zadd(self.active_key, {job_id: now + self.stall_timeout_seconds})
            return job_id, job

        return self.redis_client.transaction(txn, self.pending_key, value_from_callable=True)

    def dequeue_next(self, timeout: float = 0) -> Optional[Job]:
        """Claim the next ready job, waiting up to ``timeout`` seconds.

        The claim is a single transaction, so a ready job is handed to exactly
        one caller and never leaves the pending set without becoming active.
        """
        deadline = time.monotonic() + timeout
        while True:
            job_id, job = self._claim_next()
            if job is not None:
                logger.info("Job dequeued", job_id=job.id, kind=job.kind.value,
                            priority=job.priority, attempt=job.attempts)
                return job
            if job_id is not None:
                # Cancelled or pruned after it was queued; look for the next one.
                logger.debug("Skipped stale queue entry", job_id=job_id)
                continue

            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return None
            time.sleep(min(self.claim_poll_seconds, remaining))

    def get_job(self, job_id: str) -> Optional[Job]:
        """Return the job record, or None when it does not exist."""
        raw = self.redis_client.get(self._job_key(job_id))
        if raw is None:
            return None
        return Job.model_validate_json(raw)

    def update_progress(self, job_id: str, percent: int) -> Optional[Job]:
        """Raise the progress of an active job; lower values are ignored.

        Any report from the worker also extends the job's claim deadline.
        """
        percent = max(0, min(100, int(percent)))
        deadline = self.clock() + self.stall_timeout_seconds

        def apply(job: Job, pipe) -> bool:
            if job.state != JobState.ACTIVE:
                return False
            raised = percent > job.progress
            if raised:
                job.progress = percent
            # The record is rewritten even when unchanged so stall recovery,
            # which watches it, sees the heartbeat.
            pipe.set(self._job_key(job.id), job.model_dump_json())
            pipe.zadd(self.active_key, {job.id: deadline}, xx=True)
            return raised

        job, _ = self._transact(job_id, apply)
        return job

    def complete(self, job_id: str, result: Any) -> Optional[Job]:
        """Mark an active job completed with its result."""
        now = self.clock()

        def apply(job: Job, pipe) -> bool:
            if job.state != JobState.ACTIVE:
                return False
            job.state = JobState.COMPLETED
            job.progress = 100
            job.result = result
            job.error = None
            job.finished_at = now
            pipe.zrem(self.active_key, job.id)
            if job.remove_on_complete == 0:
                pipe.delete(self._job_key(job.id))
            else:
                pipe.set(self._job_key(job.id), job.model_dump_json())
                pipe.lpush(self.completed_key(job.kind), job.id)
            return True

        job, applied = self._transact(job_id, apply)
        if job is None:
            logger.warning("Cannot complete unknown job", job_id=job_id)
            return None
        if not applied:
            logger.info("Completion ignored", job_id=job_id, state=job.state.value)
            return job

        logger.info("Job completed", job_id=job_id, kind=job.kind.value, attempts=job.attempts)
        self._prune(self.completed_key(job.kind), job.remove_on_complete)
        return job

    def _apply_failure(self, job: Job, pipe, error: str, now: float):
        """Queue the writes for a failed attempt of an active job."""
        job.error = error
        pipe.zrem(self.active_key, job.id)
        if job.attempts < job.max_attempts:
            job.state = JobState.PENDING
            pipe.set(self._job_key(job.id), job.model_dump_json())
            pipe.zadd(self.delayed_key, {job.id: now + job.backoff_ms() / 1000.0})
            return

        job.state = JobState.FAILED
        job.finished_at = now
        if job.remove_on_fail == 0:
            pipe.delete(self._job_key(job.id))
        else:
            pipe.set(self._job_key(job.id), job.model_dump_json())
            pipe.lpush(self.failed_key(job.kind), job.id)

    def _after_failure(self, job: Job, error: str):
        if job.state == JobState.PENDING:
            logger.info("Scheduling job retry", job_id=job.id, attempt=job.attempts,
                        delay_ms=job.backoff_ms(), error=error)
        else:
            logger.warning("Job failed permanently", job_id=job.id, attempts=job.attempts, error=error)
            self._prune(self.failed_key(job.kind), job.remove_on_fail)

    def fail(self, job_id: str, error: str) -> Optional[Job]:
        """Record a failed attempt.

        The job goes back to pending after an exponential backoff while
        attempts remain, otherwise it becomes failed with ``error`` verbatim.
        """
        now = self.clock()

        def apply(job: Job, pipe) -> bool:
            if job.state != JobState.ACTIVE:
                return False
            self._apply_failure(job, pipe, error, now)
            return True

        job, applied = self._transact(job_id, apply)
        if job is None:
            logger.warning("Cannot fail unknown job", job_id=job_id)
            return None
        if not applied:
            logger.info("Failure ignored", job_id=job_id, state=job.state.value)
            return job

        self._after_failure(job, error)
        return job

    def cancel(self, job_id: str) -> bool:
        """Cancel a pending or active job.

        Terminal jobs are left untouched and still report success. Returns
        False only for unknown ids.
        """
        now = self.clock()

        def apply(job: Job, pipe) -> bool:
            if job.is_terminal:
                return False
            job.state = JobState.CANCELLED
            job.finished_at = now
            pipe.set(self._job_key(job.id), job.model_dump_json(), ex=self.job_ttl_seconds)
            pipe.zrem(self.pending_key, job.id)
            pipe.zrem(self.delayed_key, job.id)
            pipe.zrem(self.active_key, job.id)
            return True

        job, applied = self._transact(job_id, apply)
        if job is None:
            logger.info("Cancel requested for unknown job", job_id=job_id)
            return False
        if applied:
            logger.info("Job cancelled", job_id=job_id)
        return True

    def promote_delayed(self, now: Optional[float] = None) -> List[str]:
        """Move retrying jobs whose backoff has elapsed back to pending."""
        now = self.clock() if now is None else now
        promoted = []

        for job_id in self.redis_client.zrangebyscore(self.delayed_key, 0, now):
            # Only the caller that removes the entry promotes it.
            if not self.redis_client.zrem(self.delayed_key, job_id):
                continue
            job = self.get_job(job_id)
            if job is None or job.state != JobState.PENDING:
                continue
            self.redis_client.zadd(self.pending_key, {job_id: self._score(job.priority)})
            promoted.append(job_id)

        if promoted:
            logger.info("Promoted retry jobs", count=len(promoted))
        return promoted

    def recover_stalled(self, now: Optional[float] = None) -> List[str]:
        """Fail active jobs whose claim deadline has passed.

        Each stalled job counts as a failed attempt, so it is retried after
        its backoff or becomes failed once attempts are exhausted. Active-set
        entries whose record is gone or no longer active are dropped.
        """
        now = self.clock() if now is None else now
        recovered = []

        for job_id in self.redis_client.zrangebyscore(self.active_key, 0, now):
            key = self._job_key(job_id)

            def txn(pipe):
                raw = pipe.get(key)
                deadline = pipe.zscore(self.active_key, job_id)
                job = Job.model_validate_json(raw) if raw is not None else None
                if job is None or job.state != JobState.ACTIVE:
                    pipe.multi()
                    pipe.zrem(self.active_key, job_id)
                    return None
                if deadline is None or deadline > now:
                    return None
                pipe.multi()
                self._apply_failure(job, pipe, STALLED_ERROR, now)
                return job

            job = self.redis_client.transaction(txn, key, value_from_callable=True)
            if job is None:
                continue
            self._after_failure(job, STALLED_ERROR)
            recovered.append(job_id)

        if recovered:
            logger.warning("Recovered stalled jobs", count=len(recovered))
        return recovered

    def _prune(self, list_key: str, keep: int):
        """Drop the oldest terminal records beyond ``keep``."""
        if keep <= 0:
            return

        def txn(pipe):
            stale = pipe.lrange(list_key, keep, -1)
            pipe.multi()
            pipe.ltrim(list_key, 0, keep - 1)
            for stale_id in stale:
                pipe.delete(self._job_key(stale_id))
            return stale

        try:
            stale = self.redis_client.transaction(txn, list_key, value_from_callable=True)
        except redis.RedisError as e:
            logger.error("Failed to prune job records", list_key=list_key, error=str(e))
            return
        if stale:
            logger.debug("Pruned job records", list_key=list_key, count=len(stale))

    def get_queue_size(self) -> int:
        """Get current number of ready jobs."""
        try:
            return self.redis_client.zcard(self.pending_key)
        except Exception as e:
            logger.error("Failed to get queue size", error=str(e))
            return 0

    def get_delayed_size(self) -> int:
        """Get number of jobs waiting out a retry backoff."""
        try:
            return self.redis_client.zcard(self.delayed_key)
        except Exception as e:
            logger.error("Failed to get delayed queue size", error=str(e))
            return 0

    def get_active_size(self) -> int:
        """Get number of claimed jobs."""
        try:
            return self.redis_client.zcard(self.active_key)
        except Exception as e:
            logger.error("Failed to get active queue size", error=str(e))
            return 0

    def health_check(self) -> bool:
        """Check Redis connection health."""
        try:
            self.redis_client.ping()
            return True
        except Exception as e:
            logger.error("Redis health check failed", error=str(e))
            return False
