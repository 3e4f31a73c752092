"""Configuration settings for the feedback job processor."""

from pydantic_settings import BaseSettings
from typing import Optional


class Settings(BaseSettings):
    """Application settings."""

    # Redis Configuration
    redis_host: str = "localhost"
    redis_port: int = 6379
    redis_db: int = 0
    redis_password: Optional[str] = None

    # Database Configuration
    database_url: str = "sqlite:///./feedback_jobs.db"

    # API Configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8000

    # Worker Configuration
    worker_pool_size: int = 4
    dequeue_timeout_seconds: int = 5
    retry_poll_seconds: float = 1.0
    claim_poll_seconds: float = 0.2
    stalled_job_timeout_seconds: int = 300

    # Job Configuration
    default_max_attempts: int = 3
    default_backoff_delay_ms: int = 2000
    remove_on_complete: int = 10
    remove_on_fail: int = 5
    job_ttl_seconds: int = 86400  # 24 hours

    # Queue Configuration
    queue_name: str = "feedback_jobs"

    # AI Backend
    ai_api_key: Optional[str] = None
    ai_base_url: str = "https://api.z.ai/api/paas/v4"
    ai_model: str = "glm-4.5-flash"
    ai_timeout_seconds: float = 20.0

    # Insights
    insight_cache_ttl_seconds: int = 86400  # 24 hours
    insight_feedback_limit: int = 100

    # Notifications
    webhook_timeout_seconds: float = 10.0

    # Monitoring
    log_level: str = "INFO"

    class Config:
        env_file = ".env"
        case_sensitive = False


settings = Settings()
