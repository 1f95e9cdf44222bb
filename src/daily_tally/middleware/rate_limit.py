"""Token bucket rate limiter for per-client submission limiting.

Uses in-memory token buckets keyed by client address.
Default: 60 submissions/min per client (configurable).
Returns 429 Too Many Requests with Retry-After header.
Uses time.monotonic() for timing (no syscall overhead).
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Dict, Iterable, Optional, Tuple

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse

logger = logging.getLogger(__name__)

# (method, path) pairs subject to the limit
DEFAULT_LIMITED_ROUTES: Tuple[Tuple[str, str], ...] = (("POST", "/api/readings"),)


@dataclass
class TokenBucket:
    """A token bucket for rate limiting."""
    capacity: float
    refill_rate: float  # tokens per second
    tokens: float = 0.0
    last_refill: float = field(default_factory=time.monotonic)

    def __post_init__(self):
        self.tokens = self.capacity

    def try_consume(self, now: Optional[float] = None) -> bool:
        """Try to consume one token.

        Returns True if the request is allowed, False if rate-limited.
        """
        if now is None:
            now = time.monotonic()

        # Refill tokens based on elapsed time
        elapsed = now - self.last_refill
        self.tokens = min(self.capacity, self.tokens + elapsed * self.refill_rate)
        self.last_refill = now

        if self.tokens >= 1.0:
            self.tokens -= 1.0
            return True
        return False

    def time_until_token(self) -> float:
        """Time in seconds until the next token is available."""
        if self.tokens >= 1.0:
            return 0.0
        deficit = 1.0 - self.tokens
        return deficit / self.refill_rate


class RateLimiter:
    """In-memory per-client rate limiter using token buckets."""

    def __init__(self, default_rpm: int = 60, max_clients: int = 10000):
        self._buckets: Dict[str, TokenBucket] = {}
        self._default_rpm = default_rpm
        self._max_clients = max_clients

    def _get_bucket(self, client_key: str) -> TokenBucket:
        """Get or create a token bucket for a client."""
        bucket = self._buckets.get(client_key)
        if bucket is None:
            if len(self._buckets) >= self._max_clients:
                self._evict_full_buckets()
            bucket = TokenBucket(
                capacity=float(self._default_rpm),
                refill_rate=self._default_rpm / 60.0,
            )
            self._buckets[client_key] = bucket
        return bucket

    def _evict_full_buckets(self):
        """Drop buckets that have refilled completely; they carry no state."""
        now = time.monotonic()
        idle = [
            key for key, bucket in self._buckets.items()
            if bucket.tokens + (now - bucket.last_refill) * bucket.refill_rate >= bucket.capacity
        ]
        for key in idle:
            del self._buckets[key]

    def try_acquire(self, client_key: str) -> tuple[bool, float]:
        """Try to acquire a rate limit token.

        Returns:
            Tuple of (allowed: bool, retry_after_seconds: float)
        """
        bucket = self._get_bucket(client_key)
        if bucket.try_consume():
            return True, 0.0
        return False, bucket.time_until_token()


class RateLimitMiddleware(BaseHTTPMiddleware):
    """FastAPI middleware limiting submissions per client address."""

    def __init__(
        self,
        app,
        rate_limiter: RateLimiter,
        routes: Iterable[Tuple[str, str]] = DEFAULT_LIMITED_ROUTES,
    ):
        super().__init__(app)
        self.rate_limiter = rate_limiter
        self.routes = {(method.upper(), path.rstrip("/")) for method, path in routes}

    async def dispatch(self, request: Request, call_next):
        key = (request.method.upper(), request.url.path.rstrip("/"))
        if key not in self.routes:
            return await call_next(request)

        client_key = self._client_key(request)
        allowed, retry_after = self.rate_limiter.try_acquire(client_key)
        if not allowed:
            logger.warning("Rate limited client %s (retry_after=%.1fs)", client_key, retry_after)
            return JSONResponse(
                status_code=429,
                content={"success": False, "message": "Too many submissions, please slow down"},
                headers={"Retry-After": str(int(retry_after) + 1)},
            )

        return await call_next(request)

    @staticmethod
    def _client_key(request: Request) -> str:
        """First X-Forwarded-For hop, else the peer address."""
        forwarded = request.headers.get("x-forwarded-for")
        if forwarded:
            first = forwarded.split(",")[0].strip()
            if first:
                return first
        if request.client is not None:
            return request.client.host
        return "unknown"
