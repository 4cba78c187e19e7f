"""
Fixed window rate limiting per client.

Each client gets max_requests per window; the window starts with the
client's first request and resets once it has elapsed.
"""

import math
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional
import structlog

from fastapi import Request

from config import settings

logger = structlog.get_logger(__name__)

DEFAULT_RETRY_AFTER = 60

# Expired clients are dropped by check() at most this often
CLEANUP_INTERVAL_MS = 60_000


@dataclass
class RateLimitResult:
    allowed: bool
    limit: int
    remaining: int
    reset_time: float
    retry_after: Optional[int] = None

    @property
    def reset_iso(self) -> str:
        return datetime.fromtimestamp(self.reset_time / 1000, tz=timezone.utc).isoformat()

    def headers(self) -> dict[str, str]:
        """X-RateLimit-* headers, plus Retry-After when blocked."""
        headers = {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": self.reset_iso,
        }
        if not self.allowed:
            headers["Retry-After"] = str(self.retry_after or DEFAULT_RETRY_AFTER)
        return headers


def client_id(request: Request) -> str:
    """First x-forwarded-for hop, then x-real-ip, then the socket address."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


class RateLimiter:
    """
    In-memory fixed window counter.

    Args:
        max_requests: Requests allowed per window
        window_ms: Window length in milliseconds
        name: Label used in logs
        clock: Time source in milliseconds, injectable for tests
    """

    def __init__(
        self,
        max_requests: int = 1000,
        window_ms: int = 60_000,
        name: str = "api",
        clock: Optional[Callable[[], float]] = None,
    ):
        self.max_requests = max_requests
        self.window_ms = window_ms
        self.name = name
        self._clock = clock or (lambda: time.time() * 1000)
        self._store: dict[str, list[float]] = {}  # client -> [count, reset_time]
        self._lock = threading.Lock()
        self._last_cleanup = self._clock()

    def check(self, client: str) -> RateLimitResult:
        """Count one request for client and report whether it is allowed."""
        now = self._clock()
        with self._lock:
            if now - self._last_cleanup >= CLEANUP_INTERVAL_MS:
                self._drop_expired(now)
            entry = self._store.get(client)
            if entry is None or entry[1] < now:
                entry = [0, now + self.window_ms]
                self._store[client] = entry

            entry[0] += 1
            count, reset_time = entry

        allowed = count <= self.max_requests
        retry_after = None if allowed else math.ceil((reset_time - now) / 1000)

        if not allowed:
            logger.warning(
                "rate_limit_exceeded",
                limiter=self.name,
                client=client,
                count=int(count),
                limit=self.max_requests,
            )

        return RateLimitResult(
            allowed=allowed,
            limit=self.max_requests,
            remaining=max(0, self.max_requests - int(count)),
            reset_time=reset_time,
            retry_after=retry_after,
        )

    def check_request(self, request: Request) -> RateLimitResult:
        return self.check(client_id(request))

    def reset(self, client: str) -> None:
        with self._lock:
            self._store.pop(client, None)

    def cleanup(self) -> int:
        """Drop clients whose window has passed. Returns how many."""
        with self._lock:
            return self._drop_expired(self._clock())

    def tracked_clients(self) -> int:
        with self._lock:
            return len(self._store)

    def _drop_expired(self, now: float) -> int:
        """Caller holds the lock."""
        expired = [k for k, (_, reset_time) in self._store.items() if reset_time < now]
        for k in expired:
            del self._store[k]
        self._last_cleanup = now
        if expired:
            logger.debug("rate_limit_clients_pruned", limiter=self.name, removed=len(expired))
        return len(expired)


# ===================
# NAMED LIMITERS
# ===================

_limiters: dict[str, RateLimiter] = {}


def _build(name: str) -> RateLimiter:
    if name == "global":
        return RateLimiter(settings.rate_limit_max, settings.rate_limit_window_ms, name)
    if name == "upload":
        return RateLimiter(100, 60_000, name)
    if name == "metrics_read":
        return RateLimiter(60, 60_000, name)
    if name == "metrics_write":
        return RateLimiter(10, 60_000, name)
    if name == "metrics_delete":
        return RateLimiter(5, 5 * 60_000, name)
    if name == "health":
        return RateLimiter(50, 5 * 60_000, name)
    raise KeyError(f"Unknown rate limiter: {name}")


def get_rate_limiter(name: str = "global") -> RateLimiter:
    """Get or create one of the named limiters."""
    if name not in _limiters:
        _limiters[name] = _build(name)
    return _limiters[name]


def reset_rate_limiters() -> None:
    _limiters.clear()
