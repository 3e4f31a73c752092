"""Database models and shared enumerations."""

from sqlalchemy import Column, Integer, String, DateTime, Text, Float, ForeignKey, JSON, Boolean
from sqlalchemy.ext.declarative import declarative_base
from sqlalchemy.sql import func
from enum import Enum
import uuid

Base = declarative_base()


class JobKind(str, Enum):
    """Kinds of queued work."""
    FEEDBACK_ANALYSIS = "feedback-analysis"
    INSIGHT_GENERATION = "insight-generation"


class JobState(str, Enum):
    """Stored job states."""
    PENDING = "pending"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class Sentiment(str, Enum):
    POSITIVE = "positive"
    NEGATIVE = "negative"
    NEUTRAL = "neutral"


class ProcessingStatus(str, Enum):
    """Processing status of a feedback row."""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


def _uuid() -> str:
    return str(uuid.uuid4())


class Project(Base):
    """Project owning feedback and an optional notification webhook."""

    __tablename__ = "projects"

    id = Column(String, primary_key=True, default=_uuid)
    name = Column(String, nullable=False)
    user_id = Column(String, nullable=False, index=True)
    webhook_url = Column(String, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, default=func.now())


class Feedback(Base):
    """Feedback row submitted by the widget and enriched by analysis."""

    __tablename__ = "feedback"

    id = Column(String, primary_key=True, default=_uuid)
    project_id = Column(String, ForeignKey("projects.id"), nullable=False, index=True)
    text = Column(Text, nullable=False)
    rating = Column(Integer, nullable=True)
    category = Column(String, nullable=False, default="other")
    sentiment = Column(String, nullable=False, default="pending")
    sentiment_score = Column(Float, nullable=False, default=0.0)
    user_name = Column(String, nullable=True)
    user_email = Column(String, nullable=True)
    processing_status = Column(String, nullable=False, default=ProcessingStatus.PENDING.value)
    metadata_ = Column("metadata", JSON, nullable=True)

    # Timestamps
    created_at = Column(DateTime, default=func.now(), index=True)
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())

    def to_dict(self):
        """Convert feedback to dictionary."""
        return {
            "id": self.id,
            "project_id": self.project_id,
            "text": self.text,
            "rating": self.rating,
            "category": self.category,
            "sentiment": self.sentiment,
            "sentiment_score": self.sentiment_score,
            "processing_status": self.processing_status,
            "metadata": self.metadata_,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


class InsightRecord(Base):
    """Append-only history of generated insight reports."""

    __tablename__ = "insights"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String, nullable=False, index=True)
    project_id = Column(String, nullable=True, index=True)
    filters = Column(JSON, nullable=True)
    filters_hash = Column(String, nullable=False)
    summary = Column(Text, nullable=False)
    key_themes = Column(JSON, nullable=False)
    recommendations = Column(JSON, nullable=False)
    insights = Column(JSON, nullable=False)
    statistics = Column(JSON, nullable=False)
    generated_at = Column(DateTime, nullable=False)
    created_at = Column(DateTime, default=func.now())
