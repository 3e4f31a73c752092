"""Insight generation job handler."""

import asyncio
import time
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

import structlog

from feedback_jobs.ai.client import AnalysisClient
from feedback_jobs.cache import InsightCache, insight_cache_key
from feedback_jobs.config import settings
from feedback_jobs.exceptions import AnalysisBackendError
from feedback_jobs.monitoring.metrics import MetricsCollector
from feedback_jobs.repositories import FeedbackRepository, InsightHistoryRepository, ProjectRepository
from feedback_jobs.schemas import Insight, InsightFilters, InsightReport, InsightStatistics, Job

logger = structlog.get_logger()

EMPTY_SUMMARY = "No feedback data available for analysis."
NEGATIVE_ALERT_THRESHOLD = 30
LOW_RATING_THRESHOLD = 3

FALLBACK_THEMES = ["User Experience", "Feature Requests", "Performance Issues"]
FALLBACK_RECOMMENDATIONS = [
    "Review negative feedback for common patterns",
    "Improve user onboarding process",
    "Add more customization options",
]


def percentage(count: int, total: int) -> int:
    """count/total as a whole percentage, rounding halves up."""
    if total == 0:
        return 0
    return int(count * 100 / total + 0.5)


def calculate_statistics(rows: Sequence[Any]) -> InsightStatistics:
    """Recompute all statistics from the fetched rows.

    The average uses rated rows only; the percentages use every row.
    """
    total = len(rows)
    ratings = [row.rating for row in rows if row.rating is not None]
    positive = sum(1 for row in rows if row.sentiment == "positive")
    negative = sum(1 for row in rows if row.sentiment == "negative")

    return InsightStatistics(
        total_feedback=total,
        average_rating=sum(ratings) / len(ratings) if ratings else 0.0,
        positive_percentage=percentage(positive, total),
        negative_percentage=percentage(negative, total),
    )


def format_feedback_for_analysis(rows: Sequence[Any]) -> str:
    blocks = []
    for index, row in enumerate(rows, start=1):
        created_at = row.created_at.isoformat() if row.created_at else "unknown"
        blocks.append(
            f"Feedback #{index}:\n"
            f"Rating: {row.rating}/5\n"
            f"Sentiment: {row.sentiment}\n"
            f"Category: {row.category}\n"
            f'Text: "{row.text}"\n'
            f"Date: {created_at}\n"
            "---"
        )
    return "\n\n".join(blocks)


def build_insights_prompt(transcript: str, statistics: InsightStatistics) -> str:
    return f"""Analyze the following feedback data and provide actionable insights.

FEEDBACK DATA:
{transcript}

CURRENT STATISTICS:
- Total Feedback: {statistics.total_feedback}
- Average Rating: {statistics.average_rating:.2f}/5
- Positive: {statistics.positive_percentage}%
- Negative: {statistics.negative_percentage}%

Provide your response in the following JSON format:
{{
  "summary": "A 2-3 sentence executive summary of the feedback",
  "keyThemes": ["theme 1", "theme 2", "theme 3"],
  "recommendations": ["recommendation 1", "recommendation 2", "recommendation 3"],
  "insights": [
    {{
      "type": "theme|recommendation|alert|trend",
      "title": "Insight title",
      "description": "Detailed explanation of the insight",
      "priority": "high|medium|low"
    }}
  ]
}}

Rules:
- Provide 3-5 key themes based on recurring patterns
- Provide 3-5 actionable recommendations
- Include 4-6 specific insights with priorities
- Be specific and actionable, not generic
- Focus on patterns and trends in the data"""


def fallback_insights(statistics: InsightStatistics) -> Dict[str, Any]:
    """Rule-based report body used when AI synthesis fails."""
    insights: List[Insight] = []

    if statistics.negative_percentage > NEGATIVE_ALERT_THRESHOLD:
        insights.append(Insight(
            type="alert",
            title="High Negative Feedback",
            description=(
                f"Negative feedback is at {statistics.negative_percentage}%, which is above "
                "the acceptable threshold. Immediate attention required."
            ),
            priority="high",
        ))

    if statistics.average_rating < LOW_RATING_THRESHOLD:
        insights.append(Insight(
            type="trend",
            title="Low Average Rating",
            description=f"The average rating of {statistics.average_rating:.2f} is below industry standards.",
            priority="high",
        ))

    return {
        "summary": (
            f"Based on {statistics.total_feedback} feedback entries, the current satisfaction "
            f"level is {statistics.positive_percentage}% positive."
        ),
        "keyThemes": list(FALLBACK_THEMES),
        "recommendations": list(FALLBACK_RECOMMENDATIONS),
        "insights": insights,
    }


def empty_report() -> InsightReport:
    return InsightReport(summary=EMPTY_SUMMARY)


class InsightGenerator:
    """Builds insight reports from recent feedback.

    Progress: 20 fetching feedback, 80 persisting and caching, 100 done.
    """

    def __init__(
        self,
        analysis_client: AnalysisClient,
        feedback_repository: FeedbackRepository,
        project_repository: ProjectRepository,
        history_repository: InsightHistoryRepository,
        cache: InsightCache,
        metrics: MetricsCollector = None,
        feedback_limit: Optional[int] = None,
    ):
        self.analysis_client = analysis_client
        self.feedback_repository = feedback_repository
        self.project_repository = project_repository
        self.history_repository = history_repository
        self.cache = cache
        self.metrics = metrics
        self.feedback_limit = feedback_limit or settings.insight_feedback_limit

    async def process(self, job: Job, report_progress: Callable[[int], Awaitable[Any]]) -> Dict[str, Any]:
        payload = job.payload
        user_id = payload["user_id"]
        project_id = payload.get("project_id")
        filters = InsightFilters.model_validate(payload.get("filters") or {})
        start_time = time.time()

        logger.info("Starting insights generation", job_id=job.id, user_id=user_id, project_id=project_id)

        await report_progress(20)
        rows = await asyncio.to_thread(self.fetch_feedback, user_id, project_id, filters)
        report = await asyncio.to_thread(self.build_report, rows)

        await report_progress(80)
        if rows:
            await asyncio.to_thread(self.history_repository.append, user_id, project_id, filters, report)
        await asyncio.to_thread(self.cache.set, insight_cache_key(user_id, project_id, filters), report.to_wire())

        await report_progress(100)
        processing_time_ms = int((time.time() - start_time) * 1000)
        logger.info("Completed insights generation", job_id=job.id, project_id=project_id,
                    feedback_count=len(rows), processing_time_ms=processing_time_ms)

        return {
            "insights": report.to_wire(),
            "processing_time_ms": processing_time_ms,
            "cached": False,
        }

    def fetch_feedback(self, user_id: str, project_id: Optional[str], filters: InsightFilters) -> List[Any]:
        if self.project_repository.count_for_user(user_id) == 0:
            logger.info("User has no projects", user_id=user_id)
            return []
        return self.feedback_repository.list_for_insights(user_id, project_id, filters, limit=self.feedback_limit)

    def build_report(self, rows: Sequence[Any]) -> InsightReport:
        """Aggregate rows into a report; no rows yields the empty report."""
        if not rows:
            return empty_report()

        statistics = calculate_statistics(rows)
        prompt = build_insights_prompt(format_feedback_for_analysis(rows), statistics)

        try:
            body = self.analysis_client.generate_insights(prompt)
        except AnalysisBackendError as e:
            logger.warning("AI insights generation failed, using rule-based insights", error=str(e))
            if self.metrics:
                self.metrics.record_fallback()
            body = fallback_insights(statistics)

        return InsightReport(
            summary=body["summary"],
            key_themes=body["keyThemes"],
            recommendations=body["recommendations"],
            insights=body["insights"],
            statistics=statistics,
            generated_at=datetime.now(),
        )
