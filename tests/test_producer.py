"""Producer operations, status tracking and the insight cache."""
from datetime import datetime

import pytest

from feedback_jobs.cache import insight_cache_key
from feedback_jobs.models import JobKind, JobState
from feedback_jobs.producer import NORMAL_PRIORITY, URGENT_PRIORITY, calculate_priority
from feedback_jobs.schemas import InsightFilters, InsightReport


@pytest.mark.parametrize("text, expected", [
    ("The export is broken", URGENT_PRIORITY),
    ("I HATE the new layout", URGENT_PRIORITY),
    ("Found a bug in search", URGENT_PRIORITY),
    ("Nice update, thanks", NORMAL_PRIORITY),
])
def test_calculate_priority(text, expected):
    assert calculate_priority(text) == expected


def test_enqueue_feedback_job(service, queue):
    job_id = service.enqueue_feedback_job("fb-1", "proj-1", "Terrible checkout", {"page": "/cart"})

    job = queue.get_job(job_id)
    assert job.kind == JobKind.FEEDBACK_ANALYSIS
    assert job.priority == URGENT_PRIORITY
    assert job.payload == {
        "feedback_id": "fb-1", "project_id": "proj-1", "text": "Terrible checkout", "metadata": {"page": "/cart"},
    }


def test_urgent_feedback_overtakes_normal(service, queue):
    service.enqueue_feedback_job("fb-1", "proj-1", "Looks fine")
    urgent = service.enqueue_feedback_job("fb-2", "proj-1", "Awful experience")

    assert queue.dequeue_next().id == urgent


def test_enqueue_insight_job_on_cache_miss(service, queue):
    response = service.enqueue_insight_job("user-1", "proj-1", InsightFilters(category="bug"))

    assert response.status == "pending"
    assert response.cached is False
    job = queue.get_job(response.job_id)
    assert job.kind == JobKind.INSIGHT_GENERATION
    assert job.payload == {"user_id": "user-1", "project_id": "proj-1", "filters": {"category": "bug"}}


def test_enqueue_insight_job_served_from_cache(service, queue, cache, metrics):
    cached = {"summary": "Cached report"}
    cache.set(insight_cache_key("user-1", "proj-1", InsightFilters()), cached)

    response = service.enqueue_insight_job("user-1", "proj-1")

    assert response.job_id is None
    assert response.status == "completed"
    assert response.cached is True
    assert response.result == cached
    assert queue.get_queue_size() == 0
    assert metrics.registry.get_sample_value("insight_cache_hits_total") == 1.0


def test_cached_report_is_not_shared_between_users(service, queue, cache):
    cache.set(insight_cache_key("user-A", None, InsightFilters()), {"summary": "A's projects"})

    response = service.enqueue_insight_job("user-B", None)

    assert response.cached is False
    assert response.job_id is not None
    assert queue.get_job(response.job_id).payload["user_id"] == "user-B"
    assert service.enqueue_insight_job("user-A", None).cached is True


def test_cache_key_depends_on_filters():
    assert insight_cache_key("u", "p", None) == insight_cache_key("u", "p", InsightFilters())
    assert insight_cache_key("u", "p", InsightFilters(category="bug")) != insight_cache_key("u", "p", InsightFilters())
    assert insight_cache_key("u", "p", InsightFilters()) != insight_cache_key("u", None, InsightFilters())
    assert insight_cache_key("u", "p", InsightFilters()) != insight_cache_key("v", "p", InsightFilters())


def test_corrupt_cache_entry_is_a_miss(cache, redis_client):
    redis_client.set(cache._key("abc"), "{not json")

    assert cache.get("abc") is None


def test_status_not_found(service):
    assert service.get_job_status("missing").status == "not_found"


def test_status_follows_job_lifecycle(service, queue):
    job_id = service.enqueue_feedback_job("fb-1", "proj-1", "Looks fine")
    assert service.get_job_status(job_id).status == "pending"
    assert service.get_job_status(job_id).progress == 0

    queue.dequeue_next()
    queue.update_progress(job_id, 60)
    status = service.get_job_status(job_id)
    assert status.status == "processing"
    assert status.progress == 60

    queue.complete(job_id, {"sentiment": "neutral"})
    status = service.get_job_status(job_id)
    assert status.status == "completed"
    assert status.progress == 100
    assert status.result == {"sentiment": "neutral"}
    assert status.error is None


def test_status_of_retrying_job_hides_error(service, queue):
    job_id = service.enqueue_feedback_job("fb-1", "proj-1", "Looks fine")
    queue.dequeue_next()
    queue.fail(job_id, "timeout")

    status = service.get_job_status(job_id)
    assert status.status == "pending"
    assert status.error is None
    assert queue.get_job(job_id).error == "timeout"


def test_status_of_failed_job(service, queue):
    job_id = service.enqueue_feedback_job("fb-1", "proj-1", "Looks fine")
    for _ in range(3):
        queue.dequeue_next()
        queue.fail(job_id, "Feedback fb-1 not found")
        queue.promote_delayed(queue.clock() + 60)

    status = service.get_job_status(job_id)
    assert status.status == "failed"
    assert status.error == "Feedback fb-1 not found"
    assert status.result is None


def test_cancel_job(service, queue):
    job_id = service.enqueue_feedback_job("fb-1", "proj-1", "Looks fine")

    service.cancel_job(job_id)
    service.cancel_job(job_id)
    service.cancel_job("missing")

    assert service.get_job_status(job_id).status == "cancelled"
    assert queue.get_queue_size() == 0


def test_existing_insights(service, history_repository):
    assert service.get_existing_insights("user-1", "proj-1") is None

    older = InsightReport(summary="Older", generated_at=datetime(2024, 1, 1))
    newer = InsightReport(summary="Newer", key_themes=["Speed"], generated_at=datetime(2024, 2, 1))
    history_repository.append("user-1", "proj-1", None, older)
    history_repository.append("user-1", "proj-1", None, newer)

    report = service.get_existing_insights("user-1", "proj-1")
    assert report.summary == "Newer"
    assert report.key_themes == ["Speed"]
    assert service.get_existing_insights("user-1", None) is None
    assert service.get_existing_insights("user-1", "proj-1", InsightFilters(category="bug")) is None


def test_job_state_values_are_stable():
    assert [state.value for state in JobState] == ["pending", "active", "completed", "failed", "cancelled"]
