"""HTTP plumbing around the MCP app: rate limiting, access-log filtering."""

import logging
import math
import time
from collections.abc import Callable, Iterable

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse

from .config import RATE_LIMIT_REQUESTS, RATE_LIMIT_WINDOW, TRUST_PROXY_HEADERS

logger = logging.getLogger(__name__)


class RateLimiter:
    """Sliding window request counter keyed by client.

    Tracks at most max_clients keys; when full, stale keys are dropped and
    new clients are refused until space frees up.
    """

    def __init__(
        self,
        requests: int = RATE_LIMIT_REQUESTS,
        window: float = RATE_LIMIT_WINDOW,
        max_clients: int = 10_000,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.requests = requests
        self.window = window
        self.max_clients = max_clients
        self._clock = clock
        self._hits: dict[str, list[float]] = {}
        self._last_cleanup = clock()

    def __len__(self) -> int:
        return len(self._hits)

    def _cleanup(self, now: float) -> None:
        cutoff = now - self.window
        for key in [k for k, ts in self._hits.items() if not ts or ts[-1] <= cutoff]:
            del self._hits[key]
        self._last_cleanup = now

    def hit(self, key: str) -> float:
        """Record a request. Returns 0 if allowed, else seconds until the client may retry."""
        now = self._clock()
        if now - self._last_cleanup > self.window:
            self._cleanup(now)

        if key not in self._hits and len(self._hits) >= self.max_clients:
            self._cleanup(now)
            if len(self._hits) >= self.max_clients:
                logger.warning(f"Rate limiter full ({self.max_clients} clients), refusing {key}")
                return self.window

        cutoff = now - self.window
        recent = [t for t in self._hits.get(key, []) if t > cutoff]
        if len(recent) >= self.requests:
            self._hits[key] = recent
            return recent[0] + self.window - now
        recent.append(now)
        self._hits[key] = recent
        return 0.0


def client_ip(request, trust_forwarded: bool = TRUST_PROXY_HEADERS) -> str:
    """Client address. Behind a trusted proxy, the rightmost X-Forwarded-For entry (the one our proxy appended)."""
    if trust_forwarded:
        forwarded = request.headers.get("x-forwarded-for")
        if forwarded:
            ips = [ip.strip() for ip in forwarded.split(",") if ip.strip()]
            if ips:
                return ips[-1]
    return request.client.host if request.client else "unknown"


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Per-client rate limit for the MCP endpoint; exempt paths (health checks) bypass it."""

    def __init__(
        self,
        app,
        requests_per_window: int = RATE_LIMIT_REQUESTS,
        window: float = RATE_LIMIT_WINDOW,
        exempt_paths: Iterable[str] = ("/health",),
        trust_forwarded: bool = TRUST_PROXY_HEADERS,
        limiter: RateLimiter | None = None,
    ):
        super().__init__(app)
        self.limiter = limiter or RateLimiter(requests_per_window, window)
        self.exempt_paths = frozenset(exempt_paths)
        self.trust_forwarded = trust_forwarded

    async def dispatch(self, request, call_next):
        if request.url.path in self.exempt_paths:
            return await call_next(request)

        retry_after = self.limiter.hit(client_ip(request, self.trust_forwarded))
        if retry_after:
            seconds = max(1, math.ceil(retry_after))
            return JSONResponse(
                status_code=429,
                content={"error": "Rate limit exceeded", "retry_after": seconds},
                headers={"Retry-After": str(seconds)},
            )
        return await call_next(request)


class AccessLogFilter(logging.Filter):
    """Drop access-log lines for the given paths (container healthchecks poll every few seconds)."""

    def __init__(self, paths: Iterable[str] = ("/health",)):
        super().__init__()
        self.paths = tuple(f" {p} " for p in paths)

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        return not any(p in message for p in self.paths)
