"""Application entry point and composition root."""

import asyncio
import logging
import signal

import redis
import structlog

from feedback_jobs.ai.client import AnalysisClient, ChatCompletionsBackend
from feedback_jobs.cache import InsightCache
from feedback_jobs.config import Settings, settings
from feedback_jobs.database import build_engine, build_session_factory, create_tables
from feedback_jobs.models import JobKind
from feedback_jobs.monitoring.metrics import MetricsCollector
from feedback_jobs.notifications import WebhookNotifier
from feedback_jobs.producer import JobService
from feedback_jobs.queue import RedisQueue
from feedback_jobs.repositories import FeedbackRepository, InsightHistoryRepository, ProjectRepository
from feedback_jobs.workers.feedback_processor import FeedbackProcessor
from feedback_jobs.workers.insight_generator import InsightGenerator
from feedback_jobs.workers.job_executor import JobExecutor
from feedback_jobs.workers.worker_pool import WorkerPool

logger = structlog.get_logger()


def configure_logging(log_level: str = None):
    """Configure structlog to emit JSON lines through stdlib logging."""
    logging.basicConfig(format="%(message)s", level=(log_level or settings.log_level).upper())
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer()
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


class Components:
    """Concrete collaborators wired once at startup."""

    def __init__(self, config: Settings = settings):
        self.config = config
        self.redis_client = redis.Redis(
            host=config.redis_host,
            port=config.redis_port,
            db=config.redis_db,
            password=config.redis_password,
            decode_responses=True
        )
        self.engine = build_engine(config.database_url)
        self.session_factory = build_session_factory(self.engine)
        self.metrics = MetricsCollector()

        self.queue = RedisQueue(
            self.redis_client,
            config.queue_name,
            config.job_ttl_seconds,
            stall_timeout_seconds=config.stalled_job_timeout_seconds,
            claim_poll_seconds=config.claim_poll_seconds,
        )
        self.cache = InsightCache(self.redis_client, ttl_seconds=config.insight_cache_ttl_seconds)
        self.feedback_repository = FeedbackRepository(self.session_factory)
        self.project_repository = ProjectRepository(self.session_factory)
        self.history_repository = InsightHistoryRepository(self.session_factory)

        backend = None
        if config.ai_api_key:
            backend = ChatCompletionsBackend(
                config.ai_api_key,
                base_url=config.ai_base_url,
                model=config.ai_model,
                timeout_seconds=config.ai_timeout_seconds,
            )
        self.analysis_client = AnalysisClient(backend)
        self.notifier = WebhookNotifier(timeout_seconds=config.webhook_timeout_seconds)

        self.service = JobService(self.queue, self.cache, self.history_repository, metrics=self.metrics)

    def build_executor(self) -> JobExecutor:
        return JobExecutor(
            {
                JobKind.FEEDBACK_ANALYSIS: FeedbackProcessor(
                    self.analysis_client,
                    self.feedback_repository,
                    self.project_repository,
                    self.notifier,
                    metrics=self.metrics,
                ),
                JobKind.INSIGHT_GENERATION: InsightGenerator(
                    self.analysis_client,
                    self.feedback_repository,
                    self.project_repository,
                    self.history_repository,
                    self.cache,
                    metrics=self.metrics,
                    feedback_limit=self.config.insight_feedback_limit,
                ),
            },
            metrics=self.metrics,
        )

    def build_worker_pool(self) -> WorkerPool:
        return WorkerPool(
            self.queue,
            self.build_executor(),
            pool_size=self.config.worker_pool_size,
            metrics=self.metrics,
            retry_poll_seconds=self.config.retry_poll_seconds,
            dequeue_timeout=self.config.dequeue_timeout_seconds,
        )

    def close(self):
        self.redis_client.close()
        self.engine.dispose()


async def run_workers():
    """Run the worker pool until SIGINT or SIGTERM."""
    components = Components()
    create_tables(components.engine)
    pool = components.build_worker_pool()

    loop = asyncio.get_running_loop()
    for signum in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(signum, lambda s=signum: asyncio.create_task(_shutdown(pool, s)))

    try:
        await pool.start()
    finally:
        await pool.stop()
        components.close()


async def _shutdown(pool: WorkerPool, signum: int):
    logger.info("Received shutdown signal", signal=signum)
    await pool.stop()


def main():
    """Main function."""
    configure_logging()
    logger.info("Starting feedback job workers", version="1.0.0")
    asyncio.run(run_workers())


if __name__ == "__main__":
    main()
