"""Deterministic keyword-based analysis used when the AI backend is unavailable."""

from typing import Iterable, Sequence, Tuple

import structlog

from feedback_jobs.models import Sentiment
from feedback_jobs.schemas import AnalysisResult, FeedbackAnalysis

logger = structlog.get_logger()

POSITIVE_WORDS = (
    "good", "great", "excellent", "amazing", "love", "wonderful", "fantastic",
    "awesome", "perfect", "best", "happy", "pleased", "satisfied", "helpful",
    "easy", "intuitive", "fast", "smooth", "recommend", "nice", "cool",
    "brilliant", "superb",
)

NEGATIVE_WORDS = (
    "bad", "terrible", "awful", "hate", "worst", "horrible", "disappointed",
    "frustrating", "annoying", "useless", "broken", "bug", "issue", "problem",
    "error", "difficult", "hard", "slow", "confusing", "complicated", "sucks",
    "stupid", "fail", "crash", "freeze",
)

# Checked in order; the first category with a matching keyword wins.
CATEGORY_KEYWORDS: Tuple[Tuple[str, Sequence[str]], ...] = (
    ("bug", ("bug", "broken", "error", "crash", "freeze", "not working", "fail")),
    ("feature", ("feature", "would be nice", "wish", "please add", "request", "support for")),
    ("improvement", ("improve", "better", "faster", "slow", "easier", "confusing")),
    ("complaint", ("hate", "terrible", "awful", "worst", "disappointed", "frustrat", "annoying", "useless")),
    ("praise", ("love", "great", "excellent", "amazing", "awesome", "thank", "fantastic")),
)

SENTIMENT_RATINGS = {
    Sentiment.POSITIVE: 4,
    Sentiment.NEUTRAL: 3,
    Sentiment.NEGATIVE: 2,
}

FALLBACK_CONFIDENCE_FACTOR = 0.7


def count_matches(text: str, words: Iterable[str]) -> int:
    """Count distinct words occurring in text (case-insensitive substring match)."""
    lowered = text.lower()
    return sum(1 for word in words if word in lowered)


class KeywordSentimentFallback:
    """Keyword-count sentiment heuristic.

    Each listed word counts at most once. The side with more matches wins with
    ``score = min(0.6 + count * 0.08, 0.95)``; ties are neutral at 0.5.
    Confidence is discounted to ``score * 0.7`` so callers can tell these
    results apart from model-backed ones.
    """

    base_score = 0.6
    score_step = 0.08
    score_cap = 0.95

    def __init__(self, positive_words: Sequence[str] = POSITIVE_WORDS,
                 negative_words: Sequence[str] = NEGATIVE_WORDS):
        self.positive_words = tuple(positive_words)
        self.negative_words = tuple(negative_words)

    def analyze(self, text: str) -> AnalysisResult:
        positive_count = count_matches(text, self.positive_words)
        negative_count = count_matches(text, self.negative_words)

        sentiment = Sentiment.NEUTRAL
        score = 0.5
        if positive_count > negative_count:
            sentiment = Sentiment.POSITIVE
            score = min(self.base_score + positive_count * self.score_step, self.score_cap)
        elif negative_count > positive_count:
            sentiment = Sentiment.NEGATIVE
            score = min(self.base_score + negative_count * self.score_step, self.score_cap)

        score = round(score, 4)
        logger.debug("Using fallback sentiment analysis", sentiment=sentiment.value, score=score,
                       positive=positive_count, negative=negative_count)

        return AnalysisResult(
            sentiment=sentiment,
            score=score,
            confidence=round(score * FALLBACK_CONFIDENCE_FACTOR, 4),
            source="fallback",
        )

    def analyze_feedback(self, text: str) -> FeedbackAnalysis:
        """Rating from the heuristic sentiment, category from keyword lists."""
        sentiment = self.analyze(text)
        category = "other"
        for name, keywords in CATEGORY_KEYWORDS:
            if count_matches(text, keywords):
                category = name
                break

        return FeedbackAnalysis(
            rating=SENTIMENT_RATINGS[sentiment.sentiment],
            category=category,
            summary=text.strip()[:140] or "Feedback analysis complete",
        )
