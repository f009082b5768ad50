"""Per-tenant fixed-window rate limiting for the API-key path."""

import logging
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Dict, Optional

import redis

from tenant_gateway.infra.config import config

logger = logging.getLogger(__name__)


@dataclass
class RateLimitEntry:
    """Counter for one tenant inside its current window."""
    count: int
    reset_at: float  # epoch seconds


@dataclass
class RateLimitDecision:
    """Outcome of a rate-limit check."""
    allowed: bool
    limit: int
    remaining: int
    reset_at: datetime


def _to_datetime(timestamp: float) -> datetime:
    return datetime.fromtimestamp(timestamp, tz=timezone.utc)


class FixedWindowRateLimiter:
    """
    In-process fixed-window limiter.

    A window opens on the first request for a tenant and lasts
    `window_seconds`; when it expires the entry restarts at count 1.
    Only consistent within a single process: use the Redis backend when
    running more than one instance.
    """

    def __init__(
        self,
        max_requests: int = config.RATE_LIMIT_MAX_REQUESTS,
        window_seconds: int = config.RATE_LIMIT_WINDOW_SECONDS,
        max_entries: int = config.RATE_LIMIT_MAX_ENTRIES,
        clock: Callable[[], float] = time.time,
    ):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.max_entries = max_entries
        self._clock = clock
        self._store: Dict[str, RateLimitEntry] = {}
        self._lock = threading.Lock()

    def check(self, tenant_id: str) -> RateLimitDecision:
        """Count a request for `tenant_id` and decide whether it may proceed."""
        with self._lock:
            now = self._clock()

            if len(self._store) > self.max_entries:
                self._evict_expired(now)

            entry = self._store.get(tenant_id)

            if entry is None or now >= entry.reset_at:
                entry = RateLimitEntry(count=1, reset_at=now + self.window_seconds)
                self._store[tenant_id] = entry
                return self._decision(True, entry)

            if entry.count >= self.max_requests:
                return self._decision(False, entry)

            entry.count += 1
            return self._decision(True, entry)

    def peek(self, tenant_id: str) -> Optional[RateLimitEntry]:
        """Return the live entry for a tenant without counting a request."""
        with self._lock:
            entry = self._store.get(tenant_id)
            if entry is None or self._clock() >= entry.reset_at:
                return None
            return RateLimitEntry(count=entry.count, reset_at=entry.reset_at)

    def __len__(self) -> int:
        return len(self._store)

    def _evict_expired(self, now: float) -> None:
        expired = [key for key, entry in self._store.items() if entry.reset_at <= now]
        for key in expired:
            del self._store[key]
        if expired:
            logger.debug("Evicted expired rate limit entries", extra={"evicted": len(expired)})

    def _decision(self, allowed: bool, entry: RateLimitEntry) -> RateLimitDecision:
        return RateLimitDecision(
            allowed=allowed,
            limit=self.max_requests,
            remaining=max(0, self.max_requests - entry.count),
            reset_at=_to_datetime(entry.reset_at),
        )


# Atomic check-and-increment; rejected requests do not increment.
# Returns {allowed, count, ttl_ms}.
_FIXED_WINDOW_SCRIPT = """
local current = redis.call('GET', KEYS[1])
if not current then
    redis.call('SET', KEYS[1], 1, 'PX', ARGV[2])
    return {1, 1, tonumber(ARGV[2])}
end
local ttl = redis.call('PTTL', KEYS[1])
if ttl < 0 then
    redis.call('SET', KEYS[1], 1, 'PX', ARGV[2])
    return {1, 1, tonumber(ARGV[2])}
end
local count = tonumber(current)
if count >= tonumber(ARGV[1]) then
    return {0, count, ttl}
end
count = redis.call('INCR', KEYS[1])
return {1, count, ttl}
"""


class RedisFixedWindowRateLimiter:
    """Fixed-window limiter shared by every instance through Redis."""

    def __init__(
        self,
        client: "redis.Redis",
        max_requests: int = config.RATE_LIMIT_MAX_REQUESTS,
        window_seconds: int = config.RATE_LIMIT_WINDOW_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        self.client = client
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock
        self._script = client.register_script(_FIXED_WINDOW_SCRIPT)

    def check(self, tenant_id: str) -> RateLimitDecision:
        key = f"ratelimit:tenant:{tenant_id}"
        allowed, count, ttl_ms = self._script(
            keys=[key],
            args=[self.max_requests, self.window_seconds * 1000],
        )
        reset_at = self._clock() + int(ttl_ms) / 1000.0
        return RateLimitDecision(
            allowed=bool(int(allowed)),
            limit=self.max_requests,
            remaining=max(0, self.max_requests - int(count)),
            reset_at=_to_datetime(reset_at),
        )


_rate_limiter = None
redis_client: Optional["redis.Redis"] = None


def get_rate_limiter():
    """Return the process-wide limiter for the configured backend."""
    global _rate_limiter, redis_client
    if _rate_limiter is None:
        if config.RATE_LIMIT_BACKEND == "redis":
            redis_client = redis.Redis.from_url(config.REDIS_URL, decode_responses=True)
            _rate_limiter = RedisFixedWindowRateLimiter(redis_client)
        else:
            _rate_limiter = FixedWindowRateLimiter()
    return _rate_limiter


def get_rate_limit_headers(decision: RateLimitDecision) -> Dict[str, str]:
    """
    Build X-RateLimit-* headers for a decision.

    Rejections also carry Retry-After in whole seconds.
    """
    reset_epoch = int(decision.reset_at.timestamp())
    headers = {
        "X-RateLimit-Limit": str(decision.limit),
        "X-RateLimit-Remaining": str(decision.remaining),
        "X-RateLimit-Reset": str(reset_epoch),
    }
    if not decision.allowed:
        retry_after = max(0, int(decision.reset_at.timestamp() - time.time()))
        headers["Retry-After"] = str(retry_after)
    return headers
