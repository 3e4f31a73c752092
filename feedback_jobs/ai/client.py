"""AI-backed sentiment, feedback and insight analysis."""

import json
import math
import re
from typing import Any, Dict, List, Optional

import requests
import structlog

from feedback_jobs.ai.fallback import KeywordSentimentFallback
from feedback_jobs.config import settings
from feedback_jobs.exceptions import AnalysisBackendError
from feedback_jobs.models import Sentiment
from feedback_jobs.schemas import AnalysisResult, FeedbackAnalysis

logger = structlog.get_logger()

JSON_ONLY_SYSTEM_PROMPT = (
    "You must respond with valid JSON only. No markdown, no explanations, "
    "no text before or after the JSON."
)

INSIGHTS_SYSTEM_PROMPT = (
    "You are a product analyst. Analyze user feedback for a software project objectively. "
    "Focus on the project's performance, user sentiment and actionable product improvements. "
    "Do not address the project creator directly or use a conversational tone. "
    "Your entire output must be a single valid JSON object with no markdown or other text."
)

VALID_CATEGORIES = ("bug", "feature", "improvement", "complaint", "praise", "other")
INSIGHT_TYPES = ("theme", "recommendation", "alert", "trend")
INSIGHT_PRIORITIES = ("high", "medium", "low")

_FENCE_RE = re.compile(r"```(?:json)?\s*")
_OBJECT_RE = re.compile(r"\{[\s\S]*\}")


def extract_json_object(raw: str) -> Dict[str, Any]:
    """Parse a JSON object out of free-form model output.

    Markdown fences are stripped first; if the remainder does not parse, the
    outermost ``{...}`` span is parsed once more.
    """
    clean = _FENCE_RE.sub("", raw or "").strip()
    try:
        parsed = json.loads(clean)
    except json.JSONDecodeError:
        match = _OBJECT_RE.search(clean)
        if not match:
            raise AnalysisBackendError("No JSON object in backend response")
        try:
            parsed = json.loads(match.group(0))
        except json.JSONDecodeError as e:
            raise AnalysisBackendError(f"Invalid JSON in backend response: {e}")

    if not isinstance(parsed, dict):
        raise AnalysisBackendError("Backend response is not a JSON object")
    return parsed


def _is_unit_interval(value: Any) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return math.isfinite(value) and 0.0 <= value <= 1.0


class ChatCompletionsBackend:
    """OpenAI-compatible chat completions endpoint."""

    def __init__(self, api_key: str, base_url: Optional[str] = None, model: Optional[str] = None,
                 timeout_seconds: Optional[float] = None):
        self.api_key = api_key
        self.base_url = (base_url or settings.ai_base_url).rstrip("/")
        self.model = model or settings.ai_model
        self.timeout_seconds = timeout_seconds or settings.ai_timeout_seconds

    def complete(self, system_prompt: str, user_prompt: str,
                 temperature: float = 0.1, max_tokens: int = 500) -> str:
        """Return the raw text of the first choice."""
        body = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            "temperature": temperature,
            "max_tokens": max_tokens,
            "stream": False,
            "response_format": {"type": "json_object"},
        }
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.api_key}",
        }

        try:
            response = requests.post(
                f"{self.base_url}/chat/completions",
                json=body,
                headers=headers,
                timeout=self.timeout_seconds,
            )
        except requests.RequestException as e:
            raise AnalysisBackendError(f"AI backend request failed: {e}")

        if not response.ok:
            raise AnalysisBackendError(f"AI backend error ({response.status_code}): {response.text[:500]}")

        try:
            message = response.json()["choices"][0]["message"]
        except (ValueError, KeyError, IndexError, TypeError):
            raise AnalysisBackendError("Unexpected AI backend response shape")

        # Reasoning models may put the answer in reasoning_content.
        content = (message.get("content") or "").strip() or (message.get("reasoning_content") or "").strip()
        if not content:
            raise AnalysisBackendError("Empty AI backend response")
        return content


class AnalysisClient:
    """Runs analysis against the configured backend with a keyword fallback.

    ``analyze_sentiment`` and ``analyze_feedback`` never raise: backend
    failures and invalid output degrade to the fallback. ``generate_insights``
    raises AnalysisBackendError so the caller can apply its own fallback.
    """

    def __init__(self, backend: Optional[ChatCompletionsBackend] = None,
                 fallback: Optional[KeywordSentimentFallback] = None):
        self.backend = backend
        self.fallback = fallback or KeywordSentimentFallback()
        if backend is None:
            logger.warning("AI backend not configured, using fallback analysis")

    @property
    def configured(self) -> bool:
        return self.backend is not None

    def _ask(self, system_prompt: str, user_prompt: str, **kwargs) -> Dict[str, Any]:
        if self.backend is None:
            raise AnalysisBackendError("AI backend not configured")
        return extract_json_object(self.backend.complete(system_prompt, user_prompt, **kwargs))

    def analyze_sentiment(self, text: str) -> AnalysisResult:
        prompt = (
            "Analyze sentiment and respond with ONLY JSON.\n\n"
            f"Text: {json.dumps(text)}\n\n"
            'Format: {"sentiment":"positive","score":0.95}\n'
            '- sentiment: "positive", "negative", or "neutral"\n'
            "- score: 0.0-1.0\n"
            "NO markdown, NO explanations, JSON only"
        )
        try:
            parsed = self._ask(JSON_ONLY_SYSTEM_PROMPT, prompt, temperature=0.1, max_tokens=500)
            sentiment = parsed.get("sentiment")
            score = parsed.get("score")
            if sentiment not in [s.value for s in Sentiment]:
                raise AnalysisBackendError(f"Invalid sentiment value: {sentiment!r}")
            if not _is_unit_interval(score):
                raise AnalysisBackendError(f"Invalid score value: {score!r}")
        except AnalysisBackendError as e:
            logger.warning("Sentiment backend failed, falling back", error=str(e))
            return self.fallback.analyze(text)

        logger.info("Sentiment analysis complete", sentiment=sentiment, score=score)
        return AnalysisResult(sentiment=sentiment, score=float(score), confidence=float(score), source="model")

    def analyze_feedback(self, text: str) -> FeedbackAnalysis:
        """Extract rating (1-5), category and a one-line summary."""
        prompt = (
            "Analyze this feedback and respond with ONLY JSON.\n\n"
            f"Feedback: {json.dumps(text)}\n\n"
            'Format: {"rating":4,"category":"feature","summary":"Brief summary"}\n'
            "- rating: 1-5 (1=very negative, 5=very positive)\n"
            '- category: "bug", "feature", "improvement", "complaint", "praise", or "other"\n'
            "- summary: Brief 1-sentence summary\n"
            "NO markdown, NO explanations, JSON only"
        )
        try:
            parsed = self._ask(JSON_ONLY_SYSTEM_PROMPT, prompt, temperature=0.1, max_tokens=500)
            rating = parsed.get("rating")
            if isinstance(rating, bool) or not isinstance(rating, (int, float)) or not math.isfinite(rating):
                raise AnalysisBackendError(f"Invalid rating value: {rating!r}")
        except AnalysisBackendError as e:
            logger.warning("Feedback backend failed, falling back", error=str(e))
            return self.fallback.analyze_feedback(text)

        category = parsed.get("category")
        summary = parsed.get("summary")
        analysis = FeedbackAnalysis(
            rating=max(1, min(5, int(round(rating)))),
            category=category if category in VALID_CATEGORIES else "other",
            summary=summary if isinstance(summary, str) else "Feedback analysis complete",
        )
        logger.info("Feedback analysis complete", rating=analysis.rating, category=analysis.category)
        return analysis

    def generate_insights(self, prompt: str) -> Dict[str, Any]:
        """Ask the backend for an insight report and sanitize its shape."""
        parsed = self._ask(INSIGHTS_SYSTEM_PROMPT, prompt, temperature=0.3, max_tokens=2000)
        return sanitize_insights(parsed)


def _strings(value: Any) -> List[str]:
    if not isinstance(value, list):
        return []
    return [item for item in value if isinstance(item, str)]


def sanitize_insights(data: Dict[str, Any]) -> Dict[str, Any]:
    """Keep only well-formed fields of a model-generated insight report."""
    items = data.get("insights")
    if not isinstance(items, list):
        items = []

    insights = []
    for item in items:
        if not isinstance(item, dict):
            continue
        if not all(isinstance(item.get(field), str) for field in ("type", "title", "description", "priority")):
            continue
        if item["type"] not in INSIGHT_TYPES or item["priority"] not in INSIGHT_PRIORITIES:
            continue
        insights.append({
            "type": item["type"],
            "title": item["title"],
            "description": item["description"],
            "priority": item["priority"],
        })

    summary = data.get("summary")
    return {
        "summary": summary if isinstance(summary, str) else "No summary available",
        "keyThemes": _strings(data.get("keyThemes")),
        "recommendations": _strings(data.get("recommendations")),
        "insights": insights,
    }
