"""
Per-user, per-operation fixed-window счётчики в Redis.

Отдельное хранилище (ключ ratelimit:{operation}:{user_id}), а не поля в users:
чтобы не писать в профиль на каждый запрос.
"""
import logging
import os
from dataclasses import dataclass

from redis import Redis

logger = logging.getLogger(__name__)

HOUR = 60 * 60
DAY = 24 * HOUR

# operation -> (limit, window seconds)
RATE_LIMITS: dict[str, tuple[int, int]] = {
    "create_look": (10, HOUR),
    "start_onboarding": (1, DAY),
    "generate_more_looks": (5, HOUR),
    "send_friend_request": (20, DAY),
    "send_message": (100, HOUR),
}


@dataclass
class RateLimitResult:
    ok: bool
    remaining: int
    retry_after: int = 0


def _client() -> Redis:
    redis_url = os.getenv("REDIS_URL")
    if not redis_url:
        raise RuntimeError("REDIS_URL is not set")
    return Redis.from_url(redis_url)


def _key(operation: str, user_id: str) -> str:
    return f"ratelimit:{operation}:{user_id}"


def hit(operation: str, user_id: str) -> RateLimitResult:
    """Атомарный INCR; первое попадание в окне ставит TTL."""
    if operation not in RATE_LIMITS:
        raise KeyError(f"unknown rate limited operation: {operation}")
    limit, window = RATE_LIMITS[operation]
    key = _key(operation, user_id)

    try:
        r = _client()
        count = int(r.incr(key))
        if count == 1:
            r.expire(key, window)
        ttl = int(r.ttl(key))
        if ttl < 0:
            # ключ без TTL (упали между INCR и EXPIRE): чиним окно
            r.expire(key, window)
            ttl = window
    except Exception as e:
        # лимитер не должен класть основной сценарий; допуск всё равно держит credit ledger
        logger.warning("rate limiter unavailable for %s: %s", operation, e)
        return RateLimitResult(ok=True, remaining=limit)

    if count > limit:
        return RateLimitResult(ok=False, remaining=0, retry_after=ttl)
    return RateLimitResult(ok=True, remaining=limit - count)


def reset(operation: str, user_id: str) -> None:
    _client().delete(_key(operation, user_id))
