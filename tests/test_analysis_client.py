"""AI analysis client: JSON extraction, validation and fallback."""
from unittest.mock import MagicMock, patch

import pytest
import requests

from feedback_jobs.ai.client import (
    AnalysisClient, ChatCompletionsBackend, extract_json_object, sanitize_insights,
)
from feedback_jobs.exceptions import AnalysisBackendError
from feedback_jobs.models import Sentiment


def _client_returning(raw):
    backend = MagicMock()
    backend.complete.return_value = raw
    return AnalysisClient(backend)


def _http_response(status_code=200, payload=None):
    response = MagicMock()
    response.status_code = status_code
    response.ok = 200 <= status_code < 400
    response.text = "error body"
    response.json.return_value = payload
    return response


def test_extract_plain_json():
    assert extract_json_object('{"sentiment": "positive", "score": 0.9}') == {"sentiment": "positive", "score": 0.9}


def test_extract_strips_markdown_fences():
    raw = '```json\n{"rating": 4, "category": "feature"}\n```'

    assert extract_json_object(raw) == {"rating": 4, "category": "feature"}


def test_extract_object_surrounded_by_text():
    assert extract_json_object('Sure! {"a": 1} Hope that helps.') == {"a": 1}


def test_extract_without_object_raises():
    with pytest.raises(AnalysisBackendError):
        extract_json_object("I cannot help with that")


def test_extract_rejects_non_object():
    with pytest.raises(AnalysisBackendError):
        extract_json_object("[1, 2, 3]")


def test_model_sentiment_confidence_equals_score():
    client = _client_returning('```json\n{"sentiment": "negative", "score": 0.9}\n```')

    result = client.analyze_sentiment("Checkout keeps failing")
    assert result.sentiment == Sentiment.NEGATIVE
    assert result.score == 0.9
    assert result.confidence == 0.9
    assert not result.is_fallback


@pytest.mark.parametrize("raw", [
    '{"sentiment": "angry", "score": 0.9}',
    '{"sentiment": "positive", "score": 1.5}',
    '{"sentiment": "positive", "score": "high"}',
    '{"sentiment": "positive"}',
    "not json at all",
])
def test_invalid_sentiment_output_falls_back(raw):
    client = _client_returning(raw)

    result = client.analyze_sentiment("This is broken and terrible")
    assert result.is_fallback
    assert result.sentiment == Sentiment.NEGATIVE
    assert result.score == pytest.approx(0.76)


def test_backend_error_falls_back():
    backend = MagicMock()
    backend.complete.side_effect = AnalysisBackendError("timeout")
    client = AnalysisClient(backend)

    assert client.analyze_sentiment("great product").is_fallback
    assert client.analyze_feedback("great product").rating == 4


def test_unconfigured_client_uses_fallback():
    client = AnalysisClient()

    assert not client.configured
    assert client.analyze_sentiment("great product").is_fallback
    with pytest.raises(AnalysisBackendError):
        client.generate_insights("prompt")


@patch("feedback_jobs.ai.fallback.logger")
@patch("feedback_jobs.ai.client.logger")
def test_fallback_warns_once_per_failure(client_logger, fallback_logger):
    backend = MagicMock()
    backend.complete.side_effect = AnalysisBackendError("timeout")

    AnalysisClient(backend).analyze_sentiment("great product")

    client_logger.warning.assert_called_once()
    fallback_logger.warning.assert_not_called()
    fallback_logger.debug.assert_called_once()


def test_feedback_rating_is_clamped_and_category_normalized():
    client = _client_returning('{"rating": 7, "category": "rant", "summary": "Loud"}')

    analysis = client.analyze_feedback("whatever")
    assert analysis.rating == 5
    assert analysis.category == "other"
    assert analysis.summary == "Loud"


def test_feedback_rating_is_rounded():
    client = _client_returning('{"rating": 1.6, "category": "bug", "summary": "Crash"}')

    assert client.analyze_feedback("whatever").rating == 2


def test_feedback_without_rating_falls_back():
    client = _client_returning('{"category": "bug", "summary": "Crash"}')

    analysis = client.analyze_feedback("The app crashes, it is broken")
    assert analysis.category == "bug"
    assert analysis.rating == 2


def test_generate_insights_sanitizes_output():
    client = _client_returning(
        '{"summary": "Users like it", "keyThemes": ["Speed", 3], "recommendations": "none",'
        ' "insights": [{"type": "alert", "title": "T", "description": "D", "priority": "high"},'
        ' {"type": "rumor", "title": "T", "description": "D", "priority": "high"}]}'
    )

    body = client.generate_insights("prompt")
    assert body["summary"] == "Users like it"
    assert body["keyThemes"] == ["Speed"]
    assert body["recommendations"] == []
    assert body["insights"] == [{"type": "alert", "title": "T", "description": "D", "priority": "high"}]


def test_sanitize_defaults_missing_fields():
    body = sanitize_insights({"insights": "oops"})

    assert body == {"summary": "No summary available", "keyThemes": [], "recommendations": [], "insights": []}


@patch("feedback_jobs.ai.client.requests.post")
def test_backend_returns_message_content(mock_post):
    mock_post.return_value = _http_response(payload={"choices": [{"message": {"content": ' {"a": 1} '}}]})
    backend = ChatCompletionsBackend("key", base_url="https://ai.example.com/v4/", model="m", timeout_seconds=5)

    assert backend.complete("system", "user") == '{"a": 1}'
    args, kwargs = mock_post.call_args
    assert args[0] == "https://ai.example.com/v4/chat/completions"
    assert kwargs["headers"]["Authorization"] == "Bearer key"
    assert kwargs["json"]["model"] == "m"
    assert kwargs["timeout"] == 5


@patch("feedback_jobs.ai.client.requests.post")
def test_backend_uses_reasoning_content(mock_post):
    message = {"content": "", "reasoning_content": '{"b": 2}'}
    mock_post.return_value = _http_response(payload={"choices": [{"message": message}]})

    assert ChatCompletionsBackend("key").complete("system", "user") == '{"b": 2}'


@patch("feedback_jobs.ai.client.requests.post")
def test_backend_http_error_raises(mock_post):
    mock_post.return_value = _http_response(status_code=500)

    with pytest.raises(AnalysisBackendError):
        ChatCompletionsBackend("key").complete("system", "user")


@patch("feedback_jobs.ai.client.requests.post")
def test_backend_connection_error_raises(mock_post):
    mock_post.side_effect = requests.ConnectionError("refused")

    with pytest.raises(AnalysisBackendError):
        ChatCompletionsBackend("key").complete("system", "user")


@patch("feedback_jobs.ai.client.requests.post")
def test_backend_empty_content_raises(mock_post):
    mock_post.return_value = _http_response(payload={"choices": [{"message": {"content": None}}]})

    with pytest.raises(AnalysisBackendError):
        ChatCompletionsBackend("key").complete("system", "user")
