"""Feedback analysis job handler."""

import asyncio
import time
from typing import Any, Awaitable, Callable, Dict

import structlog

from feedback_jobs.ai.client import AnalysisClient
from feedback_jobs.models import Feedback, ProcessingStatus, Sentiment
from feedback_jobs.monitoring.metrics import MetricsCollector
from feedback_jobs.notifications import WebhookNotifier
from feedback_jobs.repositories import FeedbackRepository, ProjectRepository
from feedback_jobs.schemas import AnalysisResult, FeedbackAnalysis, Job

logger = structlog.get_logger()

URGENT_RATING_THRESHOLD = 2


def needs_notification(sentiment: AnalysisResult, analysis: FeedbackAnalysis) -> bool:
    return sentiment.sentiment == Sentiment.NEGATIVE or analysis.rating <= URGENT_RATING_THRESHOLD


class FeedbackProcessor:
    """Analyzes one feedback row, stores the results and alerts the project.

    Progress: 20 analyzing, 60 persisting, 90 notifying, 100 done.
    """

    def __init__(
        self,
        analysis_client: AnalysisClient,
        feedback_repository: FeedbackRepository,
        project_repository: ProjectRepository,
        notifier: WebhookNotifier,
        metrics: MetricsCollector = None,
    ):
        self.analysis_client = analysis_client
        self.feedback_repository = feedback_repository
        self.project_repository = project_repository
        self.notifier = notifier
        self.metrics = metrics

    async def process(self, job: Job, report_progress: Callable[[int], Awaitable[Any]]) -> Dict[str, Any]:
        payload = job.payload
        feedback_id = payload["feedback_id"]
        project_id = payload["project_id"]
        text = payload["text"]
        start_time = time.time()

        logger.info("Starting feedback processing", job_id=job.id, feedback_id=feedback_id, attempt=job.attempts)

        try:
            await report_progress(20)
            sentiment, analysis = await asyncio.gather(
                asyncio.to_thread(self.analysis_client.analyze_sentiment, text),
                asyncio.to_thread(self.analysis_client.analyze_feedback, text),
            )
            if sentiment.is_fallback and self.metrics:
                self.metrics.record_fallback()

            await report_progress(60)
            feedback = await asyncio.to_thread(
                self.feedback_repository.save_analysis,
                feedback_id, sentiment, analysis, payload.get("metadata"),
            )

            await report_progress(90)
            notified = False
            if needs_notification(sentiment, analysis):
                notified = await self._notify(feedback, project_id)

            await report_progress(100)
        except Exception as e:
            logger.error("Failed feedback processing", job_id=job.id, feedback_id=feedback_id, error=str(e))
            await self._mark_failed(feedback_id)
            raise

        processing_time_ms = int((time.time() - start_time) * 1000)
        logger.info("Completed feedback processing", job_id=job.id, feedback_id=feedback_id,
                    processing_time_ms=processing_time_ms)

        return {
            "feedback_id": feedback_id,
            "sentiment": sentiment.sentiment.value,
            "score": sentiment.score,
            "confidence": sentiment.confidence,
            "rating": analysis.rating,
            "category": analysis.category,
            "notified": notified,
            "processing_time_ms": processing_time_ms,
        }

    async def _notify(self, feedback: Feedback, project_id: str) -> bool:
        """Send the urgent-feedback webhook; failures are logged only."""
        try:
            project = await asyncio.to_thread(self.project_repository.get, project_id)
            if project is None:
                logger.warning("Project not found for notification", project_id=project_id,
                               feedback_id=feedback.id)
                return False
            if not project.webhook_url:
                return False

            delivered = await asyncio.to_thread(self.notifier.send_feedback_alert, feedback, project.webhook_url)
        except Exception as e:
            logger.error("Notification failed", feedback_id=feedback.id, error=str(e))
            delivered = False

        if self.metrics:
            self.metrics.record_notification(delivered)
        return delivered

    async def _mark_failed(self, feedback_id: str):
        try:
            updated = await asyncio.to_thread(
                self.feedback_repository.set_processing_status, feedback_id, ProcessingStatus.FAILED,
            )
            if not updated:
                logger.warning("Feedback not found when marking failed", feedback_id=feedback_id)
        except Exception as e:
            logger.error("Failed to mark feedback as failed", feedback_id=feedback_id, error=str(e))
