"""Pydantic schemas for jobs, analysis results and API models."""

import time
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from feedback_jobs.models import JobKind, JobState, Sentiment


class JobOptions(BaseModel):
    """Per-job queue policy. Unset values fall back to settings."""
    max_attempts: Optional[int] = Field(default=None, ge=1)
    backoff_delay_ms: Optional[int] = Field(default=None, ge=0)
    remove_on_complete: Optional[int] = Field(default=None, ge=0)
    remove_on_fail: Optional[int] = Field(default=None, ge=0)


class Job(BaseModel):
    """Queue record for a unit of work."""
    id: str
    kind: JobKind
    payload: Dict[str, Any]
    priority: int
    state: JobState = JobState.PENDING
    attempts: int = 0
    max_attempts: int = 3
    backoff_delay_ms: int = 2000
    remove_on_complete: int = 10
    remove_on_fail: int = 5
    progress: int = 0
    result: Optional[Any] = None
    error: Optional[str] = None
    created_at: float = Field(default_factory=time.time)
    started_at: Optional[float] = None
    finished_at: Optional[float] = None

    def backoff_ms(self) -> int:
        """Delay before the next attempt, given the attempts made so far."""
        return self.backoff_delay_ms * 2 ** max(self.attempts - 1, 0)

    @property
    def is_terminal(self) -> bool:
        return self.state in (JobState.COMPLETED, JobState.FAILED, JobState.CANCELLED)


class AnalysisResult(BaseModel):
    """Sentiment classification of a piece of text."""
    sentiment: Sentiment
    score: float = Field(..., ge=0.0, le=1.0)
    confidence: float = Field(..., ge=0.0, le=1.0)
    source: Literal["model", "fallback"] = "model"

    @property
    def is_fallback(self) -> bool:
        return self.source == "fallback"


class FeedbackAnalysis(BaseModel):
    """Rating and category extracted from a feedback text."""
    rating: int = Field(..., ge=1, le=5)
    category: str
    summary: str


class Insight(BaseModel):
    type: Literal["theme", "recommendation", "alert", "trend"]
    title: str
    description: str
    priority: Literal["high", "medium", "low"]


class InsightStatistics(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    total_feedback: int = Field(default=0, alias="totalFeedback")
    average_rating: float = Field(default=0.0, alias="averageRating")
    positive_percentage: int = Field(default=0, alias="positivePercentage")
    negative_percentage: int = Field(default=0, alias="negativePercentage")


class InsightReport(BaseModel):
    """Aggregate insight output for a project or a user's projects."""
    model_config = ConfigDict(populate_by_name=True)

    summary: str
    key_themes: List[str] = Field(default_factory=list, alias="keyThemes")
    recommendations: List[str] = Field(default_factory=list)
    insights: List[Insight] = Field(default_factory=list)
    statistics: InsightStatistics = Field(default_factory=InsightStatistics)
    generated_at: datetime = Field(default_factory=datetime.now, alias="generatedAt")

    def to_wire(self) -> Dict[str, Any]:
        """Serialize with camelCase keys for callers and caches."""
        return self.model_dump(mode="json", by_alias=True)


class InsightFilters(BaseModel):
    """Feedback selection for insight generation."""
    model_config = ConfigDict(populate_by_name=True)

    start_date: Optional[datetime] = Field(default=None, alias="startDate")
    end_date: Optional[datetime] = Field(default=None, alias="endDate")
    category: Optional[str] = None

    def canonical(self) -> Dict[str, Any]:
        """Stable dict used for hashing; unset filters are omitted."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class JobStatusResponse(BaseModel):
    """Externally visible job status."""
    status: Literal["pending", "processing", "completed", "failed", "cancelled", "not_found"]
    progress: Optional[int] = None
    result: Optional[Any] = None
    error: Optional[str] = None


class EnqueueInsightResponse(BaseModel):
    """Answer to an insight generation request."""
    job_id: Optional[str] = None
    status: Literal["pending", "completed"] = "pending"
    cached: bool = False
    result: Optional[Dict[str, Any]] = None


class FeedbackJobRequest(BaseModel):
    """Request schema for feedback analysis submission."""
    feedback_id: str = Field(..., description="Feedback row to analyze")
    project_id: str = Field(..., description="Project owning the feedback")
    text: str = Field(..., min_length=1, max_length=5000, description="Feedback text")
    metadata: Optional[Dict[str, Any]] = None


class InsightJobRequest(BaseModel):
    """Request schema for insight generation."""
    user_id: str = Field(..., description="User requesting the insights")
    project_id: Optional[str] = Field(default=None, description="Restrict to one project")
    filters: Optional[InsightFilters] = None


class JobSubmitResponse(BaseModel):
    """Response schema for job submission."""
    success: bool
    message: str
    job_id: str


class HealthResponse(BaseModel):
    """Response schema for health check."""
    status: str
    redis_connected: bool
    database_connected: bool
    queue_size: int
    delayed_size: int
