# =============================================================================
# Rate Limiter — Redis Sliding Window per (User, Action)
# =============================================================================
#
# Each request adds a ZSET entry scored by its timestamp. On each check,
# entries older than the window are pruned and the remaining count is
# compared against the action's limit.
#
# Actions and their per-minute limits (configurable in settings):
#   api_default     60
#   chat_message    30
#   file_upload     10
#   project_create   5
#
# If Redis is unavailable the request is allowed and a warning is logged.
# Uses Redis db 2 (db 0/1 reserved for Celery).
# =============================================================================

from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass

from fastapi import HTTPException

from grooshub.config import settings

logger = logging.getLogger(__name__)

WINDOW_SECONDS = 60

# Lazy Redis connection
_redis_client = None


def _get_rate_limit_redis():
    """Lazily create and cache the async Redis client for rate limiting."""
    global _redis_client
    if _redis_client is None:
        import redis.asyncio as aioredis
        _redis_client = aioredis.from_url(
            settings.rate_limit_redis_url,
            decode_responses=True,
        )
    return _redis_client


def action_limit(action: str) -> int:
    """Requests per minute allowed for an action; unknown actions use the default."""
    limits = {
        "api_default": settings.rate_limit_api_default,
        "chat_message": settings.rate_limit_chat_message,
        "file_upload": settings.rate_limit_file_upload,
        "project_create": settings.rate_limit_project_create,
    }
    return limits.get(action, settings.rate_limit_api_default)


@dataclass
class RateLimitStatus:
    limit: int
    remaining: int
    reset_at: int  # Unix timestamp when the window frees up

    def headers(self) -> dict[str, str]:
        return {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(self.reset_at),
        }


async def check_rate_limit(user_id: int, action: str = "api_default") -> RateLimitStatus:
    """
    Count this request against the user's window for `action`.

    Returns:
        The status after counting this request.

    Raises:
        HTTPException 429: Limit exceeded. Carries Retry-After and
        X-RateLimit-* headers.
    """
    limit = action_limit(action)
    redis_key = f"ratelimit:{action}:user:{user_id}"
    now = time.time()
    reset_at = int(now) + WINDOW_SECONDS

    try:
        r = _get_rate_limit_redis()
        window_start = now - WINDOW_SECONDS

        pipe = r.pipeline()
        pipe.zremrangebyscore(redis_key, 0, window_start)
        pipe.zcard(redis_key)
        # Unique member so concurrent requests with equal timestamps both count
        pipe.zadd(redis_key, {f"{now}:{uuid.uuid4().hex[:8]}": now})
        pipe.expire(redis_key, WINDOW_SECONDS + 10)
        results = await pipe.execute()

        current_count = results[1]  # zcard before this request

        if current_count >= limit:
            status = RateLimitStatus(limit=limit, remaining=0, reset_at=reset_at)
            raise HTTPException(
                status_code=429,
                detail=(
                    f"Rate limit exceeded for {action}. "
                    f"Limit: {limit} requests/minute."
                ),
                headers={"Retry-After": str(WINDOW_SECONDS), **status.headers()},
            )

        return RateLimitStatus(
            limit=limit,
            remaining=max(0, limit - current_count - 1),
            reset_at=reset_at,
        )

    except HTTPException:
        raise
    except Exception as e:
        logger.warning(
            "Rate limiter unavailable (Redis error): %s. Allowing request through.",
            e,
        )
        return RateLimitStatus(limit=limit, remaining=limit, reset_at=reset_at)
