"""Webhook notifications for urgent feedback."""

from datetime import datetime, timezone
from typing import Any, Dict, Optional

import requests
import structlog

from feedback_jobs.config import settings
from feedback_jobs.models import Feedback

logger = structlog.get_logger()

MAX_TEXT_LENGTH = 1000
ALERT_COLOR = 0xFF0000


def build_feedback_embed(feedback: Feedback) -> Dict[str, Any]:
    """Discord-style embed describing a negative or low-rated feedback."""
    rating = feedback.rating or 0
    score_percent = round((feedback.sentiment_score or 0.0) * 100)
    return {
        "title": "Negative Feedback Received",
        "description": (feedback.text or "")[:MAX_TEXT_LENGTH],
        "color": ALERT_COLOR,
        "fields": [
            {"name": "Rating", "value": f"{'⭐' * rating} ({rating}/5)", "inline": True},
            {"name": "Category", "value": feedback.category, "inline": True},
            {"name": "Sentiment", "value": f"{feedback.sentiment} ({score_percent}%)", "inline": True},
            {"name": "Feedback ID", "value": feedback.id, "inline": False},
        ],
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


class WebhookNotifier:
    """Posts feedback alerts to a project webhook.

    Delivery problems are logged and reported through the return value; they
    never raise.
    """

    def __init__(self, timeout_seconds: Optional[float] = None):
        self.timeout_seconds = timeout_seconds or settings.webhook_timeout_seconds

    def send_feedback_alert(self, feedback: Feedback, url: Optional[str]) -> bool:
        if not url:
            logger.debug("No webhook URL configured", feedback_id=feedback.id)
            return False

        try:
            response = requests.post(
                url,
                json={"embeds": [build_feedback_embed(feedback)]},
                headers={"Content-Type": "application/json"},
                timeout=self.timeout_seconds,
            )
        except requests.RequestException as e:
            logger.error("Failed to send webhook notification", feedback_id=feedback.id, error=str(e))
            return False

        if not 200 <= response.status_code < 300:
            logger.error("Webhook returned an error status", feedback_id=feedback.id,
                         status_code=response.status_code)
            return False

        logger.info("Webhook notification sent", feedback_id=feedback.id)
        return True
