"""Fixed-window rate limiter for the externally billed endpoints.

Each client identity gets a window of `window_seconds`. The first request (or
the first after the window has passed) opens a new window with count=1.
Later requests increment the count until it reaches `max_requests`; past that
they are denied and the count is left alone, so repeated denials never grow
it.

Bursts straddling a window boundary can reach ~2x the ceiling. That is
accepted: this is abuse mitigation, not billing.

Backends:
- "memory" (default): process-local dict. Windows are not shared between
  server instances, so an N-instance deployment effectively allows N x the
  ceiling. Expired windows are pruned once the table exceeds
  rate_limit_max_keys.
- "redis": the same algorithm as an atomic Lua script with a TTL on each key,
  for multi-instance deployments.

Key format (redis): rl:{scope}:{identity}
Scopes: "chat" (10 / 60s) and "upload" (20 / 3600s) by default.
"""
import math
import threading
import time
from dataclasses import dataclass
from typing import Annotated, Callable, Optional

import redis.asyncio as aioredis
import structlog
from fastapi import Depends, Request

from citypulse.config import Settings, settings
from citypulse.exceptions import RateLimited
from citypulse.metrics import rate_limit_decisions

log = structlog.get_logger(__name__)

CHAT_SCOPE = "chat"
UPLOAD_SCOPE = "upload"
UNKNOWN_IDENTITY = "unknown"

DENIAL_MESSAGES = {
    CHAT_SCOPE: "Too many requests. Please wait a moment before trying again.",
    UPLOAD_SCOPE: "Upload limit exceeded. Please try again later.",
}


@dataclass
class RateDecision:
    allowed: bool
    retry_after: int  # seconds until the current window resets


@dataclass
class _Window:
    count: int
    reset_time: float


class FixedWindowRateLimiter:
    """In-process fixed-window counter keyed by client identity."""

    def __init__(
        self,
        max_requests: int,
        window_seconds: float,
        clock: Callable[[], float] = time.monotonic,
        max_keys: int = 10_000,
    ) -> None:
        if max_requests < 1:
            raise ValueError("max_requests must be at least 1")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be positive")
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.max_keys = max_keys
        self._clock = clock
        self._windows: dict[str, _Window] = {}
        self._lock = threading.Lock()

    def allow(self, identity: str) -> bool:
        return self.decide(identity).allowed

    def decide(self, identity: str) -> RateDecision:
        with self._lock:
            now = self._clock()
            window = self._windows.get(identity)

            if window is None or now > window.reset_time:
                if window is None and len(self._windows) >= self.max_keys:
                    self._prune(now)
                self._windows[identity] = _Window(count=1, reset_time=now + self.window_seconds)
                return RateDecision(allowed=True, retry_after=0)

            retry_after = max(1, math.ceil(window.reset_time - now))
            if window.count >= self.max_requests:
                return RateDecision(allowed=False, retry_after=retry_after)

            window.count += 1
            return RateDecision(allowed=True, retry_after=0)

    async def hit(self, identity: str) -> RateDecision:
        return self.decide(identity)

    def _prune(self, now: float) -> None:
        expired = [key for key, window in self._windows.items() if now > window.reset_time]
        for key in expired:
            del self._windows[key]
        if expired:
            log.info("rate_limit_windows_pruned", count=len(expired))

    def __len__(self) -> int:
        return len(self._windows)


# Lua fixed-window script, executed atomically on the Redis server.
#
# KEYS[1] = rate limit key (e.g. "rl:chat:203.0.113.7")
# ARGV[1] = max_requests (ceiling per window)
# ARGV[2] = window length in milliseconds
#
# Returns: {allowed (1|0), milliseconds until the window resets}
FIXED_WINDOW_LUA = """
local key = KEYS[1]
local max_requests = tonumber(ARGV[1])
local window_ms = tonumber(ARGV[2])

local count = redis.call('GET', key)
if not count then
    redis.call('SET', key, 1, 'PX', window_ms)
    return {1, window_ms}
end

local ttl = redis.call('PTTL', key)
if tonumber(count) >= max_requests then
    return {0, ttl}
end

-- INCR keeps the existing TTL, so the window end does not move
redis.call('INCR', key)
return {1, ttl}
"""


class RedisFixedWindowRateLimiter:
    """Fixed-window counter shared by every instance through Redis."""

    def __init__(
        self,
        redis_client: aioredis.Redis,
        scope: str,
        max_requests: int,
        window_seconds: float,
    ) -> None:
        self.redis = redis_client
        self.scope = scope
        self.max_requests = max_requests
        self.window_seconds = window_seconds

    async def hit(self, identity: str) -> RateDecision:
        allowed, ttl_ms = await self.redis.eval(
            FIXED_WINDOW_LUA,
            1,  # number of KEYS
            f"rl:{self.scope}:{identity}",
            self.max_requests,
            int(self.window_seconds * 1000),
        )
        retry_after = max(1, math.ceil(int(ttl_ms) / 1000)) if not int(allowed) else 0
        return RateDecision(allowed=bool(int(allowed)), retry_after=retry_after)

    async def allow(self, identity: str) -> bool:
        return (await self.hit(identity)).allowed


def build_rate_limiters(
    app_settings: Settings,
    redis_client: Optional[aioredis.Redis] = None,
) -> dict:
    """Create one limiter per scope from settings."""
    limits = {
        CHAT_SCOPE: (
            app_settings.chat_rate_limit_per_window,
            app_settings.chat_rate_limit_window_seconds,
        ),
        UPLOAD_SCOPE: (
            app_settings.upload_rate_limit_per_window,
            app_settings.upload_rate_limit_window_seconds,
        ),
    }
    if app_settings.rate_limit_backend == "redis":
        if redis_client is None:
            redis_client = aioredis.from_url(
                app_settings.redis_url, encoding="utf-8", decode_responses=True
            )
        return {
            scope: RedisFixedWindowRateLimiter(redis_client, scope, max_requests, window)
            for scope, (max_requests, window) in limits.items()
        }
    return {
        scope: FixedWindowRateLimiter(
            max_requests, window, max_keys=app_settings.rate_limit_max_keys
        )
        for scope, (max_requests, window) in limits.items()
    }


def client_identity(request: Request) -> str:
    """Best-effort client identity from network metadata.

    Falls back to a constant key when nothing is available, which collapses
    every such client into one shared bucket. That is a known degradation,
    not an error.
    """
    if request.client is not None and request.client.host:
        return request.client.host

    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first

    log.warning("rate_limit_identity_unavailable", path=request.url.path)
    return UNKNOWN_IDENTITY


def get_rate_limiters(request: Request) -> dict:
    """Limiters live on app.state so tests can swap in ones with a fake clock."""
    limiters = getattr(request.app.state, "rate_limiters", None)
    if limiters is None:
        limiters = build_rate_limiters(settings, getattr(request.app.state, "redis", None))
        request.app.state.rate_limiters = limiters
    return limiters


async def check_rate_limit(request: Request, scope: str) -> None:
    """Count this request against the scope's window.

    Raises:
        RateLimited: with Retry-After seconds when the window is exhausted.
    """
    limiter = get_rate_limiters(request)[scope]
    identity = client_identity(request)
    decision = await limiter.hit(identity)

    rate_limit_decisions.labels(scope=scope, allowed=str(decision.allowed).lower()).inc()
    if not decision.allowed:
        log.info("rate_limit_denied", scope=scope, identity=identity)
        raise RateLimited(DENIAL_MESSAGES[scope], retry_after=decision.retry_after)


def require_rate_limit(scope: str):
    """FastAPI dependency factory for a rate-limited scope."""

    async def _check(request: Request) -> None:
        await check_rate_limit(request, scope)

    return _check


# Annotated type aliases for endpoint signatures
ChatRateLimit = Annotated[None, Depends(require_rate_limit(CHAT_SCOPE))]
UploadRateLimit = Annotated[None, Depends(require_rate_limit(UPLOAD_SCOPE))]
