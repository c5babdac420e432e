from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass

from fastapi import Request
from limits import RateLimitItemPerSecond
from limits.storage import MemoryStorage
from limits.strategies import FixedWindowRateLimiter

from app.core.config import settings

logger = logging.getLogger(__name__)

_storage = MemoryStorage()
_limiter = FixedWindowRateLimiter(_storage)


@dataclass(frozen=True)
class RateLimitDecision:
    limited: bool
    retry_after_seconds: int
    key: str


class RateLimitExceededError(Exception):
    def __init__(self, retry_after_seconds: int) -> None:
        super().__init__("Rate limit exceeded. Please retry shortly.")
        self.retry_after_seconds = retry_after_seconds


def client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for", "")
    first = forwarded.split(",")[0].strip()
    if first:
        return first
    real_ip = request.headers.get("x-real-ip", "").strip()
    if real_ip:
        return real_ip
    return request.client.host if request.client else "unknown"


def enforce_rate_limit(key_prefix: str, client: str, limit: int, window_seconds: int) -> RateLimitDecision:
    item = RateLimitItemPerSecond(limit, window_seconds)
    allowed = _limiter.hit(item, key_prefix, client)
    reset_at, _remaining = _limiter.get_window_stats(item, key_prefix, client)
    retry_after = max(1, math.ceil(reset_at - time.time()))
    return RateLimitDecision(limited=not allowed, retry_after_seconds=retry_after, key=f"{key_prefix}:{client}")


def reset_rate_limits() -> None:
    _storage.reset()


class RateLimiter:
    """FastAPI dependency enforcing a fixed window per route prefix and client IP."""

    def __init__(self, key_prefix: str, limit_setting: str) -> None:
        self.key_prefix = key_prefix
        self.limit_setting = limit_setting

    def __call__(self, request: Request) -> None:
        limit = int(getattr(settings, self.limit_setting))
        decision = enforce_rate_limit(
            self.key_prefix,
            client_ip(request),
            limit,
            settings.rate_limit_window_seconds,
        )
        if decision.limited:
            logger.warning(
                "rate_limit_exceeded",
                extra={"key": decision.key, "retry_after": decision.retry_after_seconds},
            )
            raise RateLimitExceededError(decision.retry_after_seconds)
