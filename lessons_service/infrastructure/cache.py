"""Best-effort Redis JSON cache; any Redis failure behaves like a miss."""
import json
from typing import Optional, Any

import redis
import structlog

from ..config import settings

logger = structlog.get_logger()

_redis_client: Optional[redis.Redis] = None


def get_redis() -> redis.Redis:
    global _redis_client
    if _redis_client is None:
        _redis_client = redis.from_url(
            settings.REDIS_URL,
            decode_responses=True,
            socket_connect_timeout=5,
            socket_timeout=5,
            retry_on_timeout=True
        )
    return _redis_client


def course_lessons_key(course_id: int) -> str:
    return f"course:{course_id}:lessons"


def get_cache(key: str) -> Optional[Any]:
    try:
        value = get_redis().get(key)
    except redis.RedisError as exc:
        logger.debug("cache_unavailable", op="get", key=key, error=str(exc))
        return None
    if value is None:
        return None
    return json.loads(value)


def set_cache(key: str, value: Any, ttl: int | None = None) -> bool:
    try:
        get_redis().setex(key, ttl or settings.CACHE_TTL, json.dumps(value, ensure_ascii=False))
    except redis.RedisError as exc:
        logger.debug("cache_unavailable", op="set", key=key, error=str(exc))
        return False
    return True


def delete_cache(key: str) -> bool:
    try:
        get_redis().delete(key)
    except redis.RedisError as exc:
        logger.debug("cache_unavailable", op="delete", key=key, error=str(exc))
        return False
    return True


def invalidate_course_lessons(course_id: int) -> bool:
    return delete_cache(course_lessons_key(course_id))
