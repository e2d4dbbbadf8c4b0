from __future__ import annotations

import logging

from fastapi import HTTPException, status
from redis import Redis
from redis.exceptions import RedisError

from docchat.config import settings

logger = logging.getLogger(__name__)

_redis_client: Redis | None = None


def _redis() -> Redis:
    global _redis_client
    if _redis_client is None:
        _redis_client = Redis.from_url(
            settings.REDIS_URL,
            decode_responses=True,
            socket_connect_timeout=1,
            socket_timeout=1,
        )
    return _redis_client


def count_request(key: str, window_seconds: int) -> int | None:
    """Bumps the fixed-window counter for ``key``; None when Redis cannot be reached."""
    try:
        count = int(_redis().incr(key))
        if count == 1:
            _redis().expire(key, window_seconds)
    except RedisError as exc:
        logger.warning("rate limiter unavailable, request allowed", extra={"key": key, "reason": str(exc)})
        return None
    return count


class UserRateLimit:
    """Per-user request quota for one operation.

    Limits are read from settings on every call so they follow runtime
    configuration. Throttling is advisory: a Redis outage lets requests
    through instead of failing uploads and chat turns.
    """

    def __init__(self, operation: str, limit_setting: str) -> None:
        self.operation = operation
        self.limit_setting = limit_setting

    @property
    def limit(self) -> int:
        return int(getattr(settings, self.limit_setting))

    def check(self, user_id: str) -> None:
        if not settings.RATE_LIMIT_ENABLED:
            return

        count = count_request(f"rate_limit:{self.operation}:{user_id}", settings.RATE_LIMIT_WINDOW_SECONDS)
        if count is not None and count > self.limit:
            raise HTTPException(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                detail=f"Rate limit exceeded for {self.operation}",
                headers={"Retry-After": str(settings.RATE_LIMIT_WINDOW_SECONDS)},
            )


upload_rate_limit = UserRateLimit("documents_upload", "UPLOAD_RATE_LIMIT")
message_rate_limit = UserRateLimit("messages_send", "MESSAGE_RATE_LIMIT")
