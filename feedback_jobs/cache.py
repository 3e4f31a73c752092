"""Short-lived Redis cache for generated insight reports."""

import hashlib
import json
from typing import Any, Dict, Optional

import redis
import structlog

from feedback_jobs.config import settings
from feedback_jobs.schemas import InsightFilters

logger = structlog.get_logger()


def stable_hash(value: Any) -> str:
    """sha256 of the canonical JSON encoding of ``value``."""
    encoded = json.dumps(value, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(encoded.encode("utf-8")).hexdigest()


def insight_cache_key(user_id: str, project_id: Optional[str], filters: Optional[InsightFilters] = None) -> str:
    """Cache key for a ``(user_id, project_id, filters)`` request.

    Reports only cover the requesting user's projects, so the user is part
    of the key even when a project is given.
    """
    canonical = (filters or InsightFilters()).canonical()
    return stable_hash({"userId": user_id, "projectId": project_id, "filters": canonical})


class InsightCache:
    """Stores serialized insight reports with a TTL.

    The cache is an optimization only: read and write errors are logged and
    treated as a miss.
    """

    def __init__(self, redis_client: redis.Redis, prefix: Optional[str] = None,
                 ttl_seconds: Optional[int] = None):
        self.redis_client = redis_client
        self.prefix = prefix or f"{settings.queue_name}:insights-cache"
        self.ttl_seconds = ttl_seconds or settings.insight_cache_ttl_seconds

    def _key(self, cache_key: str) -> str:
        return f"{self.prefix}:{cache_key}"

    def get(self, cache_key: str) -> Optional[Dict[str, Any]]:
        try:
            raw = self.redis_client.get(self._key(cache_key))
        except redis.RedisError as e:
            logger.warning("Insight cache read failed", cache_key=cache_key, error=str(e))
            return None
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Discarding corrupt insight cache entry", cache_key=cache_key)
            return None

    def set(self, cache_key: str, value: Dict[str, Any]) -> bool:
        try:
            self.redis_client.set(self._key(cache_key), json.dumps(value), ex=self.ttl_seconds)
        except redis.RedisError as e:
            logger.warning("Insight cache write failed", cache_key=cache_key, error=str(e))
            return False
        logger.debug("Insight report cached", cache_key=cache_key, ttl=self.ttl_seconds)
        return True
