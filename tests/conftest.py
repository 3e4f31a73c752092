"""Pytest fixtures: fake Redis, in-memory SQLite and wired collaborators."""
import uuid
from datetime import datetime, timedelta

import fakeredis
import pytest

from feedback_jobs.ai.client import AnalysisClient
from feedback_jobs.cache import InsightCache
from feedback_jobs.database import build_engine, build_session_factory, create_tables
from feedback_jobs.models import Feedback, Project
from feedback_jobs.monitoring.metrics import MetricsCollector
from feedback_jobs.producer import JobService
from feedback_jobs.queue import RedisQueue
from feedback_jobs.repositories import FeedbackRepository, InsightHistoryRepository, ProjectRepository


class FakeClock:
    """Manually advanced clock for backoff timing."""

    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class ProgressRecorder:
    """Async progress callback that records every reported value."""

    def __init__(self):
        self.values = []

    async def __call__(self, percent: int):
        self.values.append(percent)


@pytest.fixture
def redis_client():
    client = fakeredis.FakeRedis(server=fakeredis.FakeServer(), decode_responses=True)
    yield client
    client.flushall()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def progress():
    return ProgressRecorder()


@pytest.fixture
def queue(redis_client, clock):
    return RedisQueue(redis_client, queue_name="test_jobs", job_ttl_seconds=3600, clock=clock)


@pytest.fixture
def metrics():
    return MetricsCollector()


@pytest.fixture
def engine():
    engine = build_engine("sqlite://")
    create_tables(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
def feedback_repository(session_factory):
    return FeedbackRepository(session_factory)


@pytest.fixture
def project_repository(session_factory):
    return ProjectRepository(session_factory)


@pytest.fixture
def history_repository(session_factory):
    return InsightHistoryRepository(session_factory)


@pytest.fixture
def cache(redis_client):
    return InsightCache(redis_client, prefix="test_jobs:insights-cache", ttl_seconds=60)


@pytest.fixture
def analysis_client():
    """Client without a backend, so every analysis uses the keyword fallback."""
    return AnalysisClient()


@pytest.fixture
def service(queue, cache, history_repository, metrics):
    return JobService(queue, cache, history_repository, metrics=metrics)


@pytest.fixture
def make_project(session_factory):
    """Insert a project row and return its id."""

    def _make(user_id: str = "user-1", webhook_url: str = None) -> str:
        project_id = str(uuid.uuid4())
        db = session_factory()
        try:
            db.add(Project(id=project_id, name="Test project", user_id=user_id, webhook_url=webhook_url))
            db.commit()
        finally:
            db.close()
        return project_id

    return _make


@pytest.fixture
def make_feedback(session_factory):
    """Insert a feedback row and return its id."""
    base_time = datetime(2024, 1, 1, 12, 0, 0)

    def _make(project_id: str, text: str = "It works", rating: int = None,
              sentiment: str = "pending", category: str = "other", minutes: int = 0) -> str:
        feedback_id = str(uuid.uuid4())
        db = session_factory()
        try:
            db.add(Feedback(
                id=feedback_id,
                project_id=project_id,
                text=text,
                rating=rating,
                sentiment=sentiment,
                category=category,
                created_at=base_time + timedelta(minutes=minutes),
            ))
            db.commit()
        finally:
            db.close()
        return feedback_id

    return _make
