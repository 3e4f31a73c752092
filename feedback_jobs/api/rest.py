"""REST endpoints exposing the producer operations to polling clients."""

from datetime import datetime
from typing import Optional

from fastapi import FastAPI, HTTPException, status
from fastapi.responses import Response
from prometheus_client import CONTENT_TYPE_LATEST
from sqlalchemy.orm import sessionmaker
import structlog

from feedback_jobs.config import settings
from feedback_jobs.database import check_connection
from feedback_jobs.monitoring.metrics import MetricsCollector
from feedback_jobs.producer import JobService
from feedback_jobs.queue import RedisQueue
from feedback_jobs.schemas import (
    EnqueueInsightResponse, FeedbackJobRequest, HealthResponse, InsightFilters,
    InsightJobRequest, JobStatusResponse, JobSubmitResponse,
)

logger = structlog.get_logger()


def create_app(service: JobService, queue: RedisQueue, session_factory: sessionmaker,
               metrics: MetricsCollector) -> FastAPI:
    """Build the API around already-wired collaborators."""
    app = FastAPI(
        title="Feedback Jobs",
        description="Queued feedback analysis and insight generation",
        version="1.0.0"
    )

    @app.get("/health", response_model=HealthResponse)
    async def health_check():
        """Health check endpoint."""
        try:
            redis_connected = queue.health_check()
            database_connected = check_connection(session_factory)

            return HealthResponse(
                status="healthy" if redis_connected and database_connected else "unhealthy",
                redis_connected=redis_connected,
                database_connected=database_connected,
                queue_size=queue.get_queue_size(),
                delayed_size=queue.get_delayed_size()
            )
        except Exception as e:
            logger.error("Health check failed", error=str(e))
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail="Service unhealthy"
            )

    @app.post("/feedback/jobs", response_model=JobSubmitResponse)
    async def submit_feedback_job(request: FeedbackJobRequest):
        """Queue a feedback row for analysis."""
        try:
            job_id = service.enqueue_feedback_job(
                request.feedback_id, request.project_id, request.text, request.metadata
            )
        except Exception as e:
            logger.error("Failed to submit feedback job", feedback_id=request.feedback_id, error=str(e))
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail="Failed to enqueue job"
            )

        return JobSubmitResponse(success=True, message="Feedback queued for analysis", job_id=job_id)

    @app.post("/insights/jobs", response_model=EnqueueInsightResponse)
    async def submit_insight_job(request: InsightJobRequest):
        """Request insight generation, answered from cache when possible."""
        try:
            return service.enqueue_insight_job(request.user_id, request.project_id, request.filters)
        except Exception as e:
            logger.error("Failed to submit insights job", user_id=request.user_id, error=str(e))
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail="Failed to enqueue job"
            )

    @app.get("/insights/latest")
    async def get_latest_insights(
        user_id: str,
        project_id: Optional[str] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        category: Optional[str] = None,
    ):
        """Most recent stored insight report."""
        filters = InsightFilters(start_date=start_date, end_date=end_date, category=category)
        try:
            report = service.get_existing_insights(user_id, project_id, filters)
        except Exception as e:
            logger.error("Failed to load insights", user_id=user_id, error=str(e))
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail="Internal server error"
            )

        if report is None:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="No insights found"
            )
        return report.to_wire()

    @app.get("/jobs/{job_id}", response_model=JobStatusResponse)
    async def get_job_status(job_id: str):
        """Poll a job; unknown ids report not_found."""
        try:
            return service.get_job_status(job_id)
        except Exception as e:
            logger.error("Failed to get job status", job_id=job_id, error=str(e))
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail="Internal server error"
            )

    @app.delete("/jobs/{job_id}")
    async def cancel_job(job_id: str):
        """Cancel a job. Repeating the call is harmless."""
        try:
            service.cancel_job(job_id)
        except Exception as e:
            logger.error("Failed to cancel job", job_id=job_id, error=str(e))
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail="Internal server error"
            )
        return {"success": True}

    @app.get("/metrics")
    async def get_metrics():
        """Prometheus metrics endpoint."""
        metrics.update_queue_sizes(queue.get_queue_size(), queue.get_delayed_size())
        return Response(metrics.get_metrics(), media_type=CONTENT_TYPE_LATEST)

    return app


if __name__ == "__main__":
    import uvicorn
    from feedback_jobs.database import create_tables
    from feedback_jobs.main import Components, configure_logging

    configure_logging()
    components = Components()
    create_tables(components.engine)
    uvicorn.run(
        create_app(components.service, components.queue, components.session_factory, components.metrics),
        host=settings.api_host,
        port=settings.api_port,
    )
