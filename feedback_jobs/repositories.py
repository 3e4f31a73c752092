"""Record access for feedback, projects and insight history."""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import structlog
from sqlalchemy.orm import sessionmaker

from feedback_jobs.cache import stable_hash
from feedback_jobs.exceptions import FeedbackNotFoundError
from feedback_jobs.models import Feedback, InsightRecord, ProcessingStatus, Project
from feedback_jobs.schemas import AnalysisResult, FeedbackAnalysis, InsightFilters, InsightReport

logger = structlog.get_logger()


def _naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def filters_hash(filters: Optional[InsightFilters]) -> str:
    return stable_hash((filters or InsightFilters()).canonical())


class FeedbackRepository:
    """Reads and updates feedback rows."""

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    def get(self, feedback_id: str) -> Optional[Feedback]:
        db = self.session_factory()
        try:
            return db.get(Feedback, feedback_id)
        finally:
            db.close()

    def save_analysis(self, feedback_id: str, sentiment: AnalysisResult, analysis: FeedbackAnalysis,
                      metadata: Optional[Dict[str, Any]] = None) -> Feedback:
        """Store analysis results and mark the row completed."""
        db = self.session_factory()
        try:
            feedback = db.get(Feedback, feedback_id)
            if feedback is None:
                raise FeedbackNotFoundError(feedback_id)

            feedback.rating = analysis.rating
            feedback.category = analysis.category
            feedback.sentiment = sentiment.sentiment.value
            feedback.sentiment_score = sentiment.score
            feedback.processing_status = ProcessingStatus.COMPLETED.value
            feedback.metadata_ = metadata or {}
            db.commit()
            db.refresh(feedback)
            return feedback
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def set_processing_status(self, feedback_id: str, status: ProcessingStatus) -> bool:
        """Update the processing status; returns False when the row is missing."""
        db = self.session_factory()
        try:
            feedback = db.get(Feedback, feedback_id)
            if feedback is None:
                return False
            feedback.processing_status = status.value
            db.commit()
            return True
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def list_for_insights(self, user_id: str, project_id: Optional[str] = None,
                          filters: Optional[InsightFilters] = None, limit: int = 100) -> List[Feedback]:
        """Newest feedback across the user's projects, capped at ``limit`` rows."""
        filters = filters or InsightFilters()
        db = self.session_factory()
        try:
            query = (
                db.query(Feedback)
                .join(Project, Project.id == Feedback.project_id)
                .filter(Project.user_id == user_id)
            )
            if project_id:
                query = query.filter(Feedback.project_id == project_id)
            if filters.start_date:
                query = query.filter(Feedback.created_at >= _naive_utc(filters.start_date))
            if filters.end_date:
                query = query.filter(Feedback.created_at <= _naive_utc(filters.end_date))
            if filters.category:
                query = query.filter(Feedback.category == filters.category)

            return query.order_by(Feedback.created_at.desc(), Feedback.id.desc()).limit(limit).all()
        finally:
            db.close()


class ProjectRepository:
    """Reads project rows."""

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    def get(self, project_id: str) -> Optional[Project]:
        db = self.session_factory()
        try:
            return db.get(Project, project_id)
        finally:
            db.close()

    def count_for_user(self, user_id: str) -> int:
        db = self.session_factory()
        try:
            return db.query(Project).filter(Project.user_id == user_id).count()
        finally:
            db.close()


class InsightHistoryRepository:
    """Append-only store of generated insight reports."""

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    def append(self, user_id: str, project_id: Optional[str], filters: Optional[InsightFilters],
               report: InsightReport) -> int:
        canonical = (filters or InsightFilters()).canonical()
        record = InsightRecord(
            user_id=user_id,
            project_id=project_id or None,
            filters=canonical,
            filters_hash=filters_hash(filters),
            summary=report.summary,
            key_themes=list(report.key_themes),
            recommendations=list(report.recommendations),
            insights=[insight.model_dump() for insight in report.insights],
            statistics=report.statistics.model_dump(by_alias=True),
            generated_at=_naive_utc(report.generated_at),
        )
        db = self.session_factory()
        try:
            db.add(record)
            db.commit()
            logger.info("Saved insights", user_id=user_id, project_id=project_id, record_id=record.id)
            return record.id
        except Exception as e:
            db.rollback()
            logger.error("Failed to save insights", user_id=user_id, error=str(e))
            raise
        finally:
            db.close()

    def latest(self, user_id: str, project_id: Optional[str] = None,
               filters: Optional[InsightFilters] = None) -> Optional[InsightReport]:
        """Most recent report for the key, or None."""
        db = self.session_factory()
        try:
            query = db.query(InsightRecord).filter(
                InsightRecord.user_id == user_id,
                InsightRecord.filters_hash == filters_hash(filters),
            )
            if project_id:
                query = query.filter(InsightRecord.project_id == project_id)
            else:
                query = query.filter(InsightRecord.project_id.is_(None))

            record = query.order_by(InsightRecord.id.desc()).first()
            if record is None:
                return None
            return InsightReport(
                summary=record.summary,
                key_themes=record.key_themes,
                recommendations=record.recommendations,
                insights=record.insights,
                statistics=record.statistics,
                generated_at=record.generated_at,
            )
        finally:
            db.close()
