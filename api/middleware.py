"""
Operix - Built-in HTTP Middleware

- SecurityHeadersMiddleware (priority 95): hardening headers on every response
- RateLimitMiddleware (priority 90): fixed-window request limit per client
- RequestLoggingMiddleware (priority 80): structured request/response logs

Each one is registered explicitly on the application's MiddlewareManager.
"""

from __future__ import annotations

import math
import time
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, Optional

import structlog

from api.http import RequestContext
from api.router import normalize_path
from config import RateLimitConfig
from core.middleware import MiddlewareBase, Next
from observability.logging import LogContext, get_logger


class SecurityHeadersMiddleware(MiddlewareBase):
    """Adds a fixed set of security headers before the rest of the chain runs."""

    name = "security-headers"
    priority = 95

    def __init__(self, headers: Optional[Dict[str, str]] = None):
        super().__init__()
        self.headers = headers if headers is not None else {
            "X-Content-Type-Options": "nosniff",
            "X-Frame-Options": "DENY",
            "Referrer-Policy": "strict-origin-when-cross-origin",
        }

    async def execute(self, context: RequestContext, next: Next) -> None:
        for name, value in self.headers.items():
            context.response.header(name, value)
        await next()


@dataclass
class _Window:
    started_at: float
    count: int = 0


class RateLimitMiddleware(MiddlewareBase):
    """
    Fixed-window rate limiter keyed by client address.

    The client is the first ``X-Forwarded-For`` entry or the peer address.
    Over the limit the request is answered with 429 and the chain stops.
    Expired windows are purged lazily, at most once per window length.
    """

    name = "rate-limit"
    priority = 90

    def __init__(
        self,
        config: Optional[RateLimitConfig] = None,
        exempt_paths: Iterable[str] = ("/health",),
        clock: Callable[[], float] = time.monotonic,
    ):
        super().__init__()
        self.config = config or RateLimitConfig()
        self.exempt_paths = {normalize_path(path) for path in exempt_paths}
        self._clock = clock
        self._windows: Dict[str, _Window] = {}
        self._last_purge = clock()

    @property
    def window_seconds(self) -> float:
        return self.config.window_ms / 1000.0

    def _purge(self, now: float) -> None:
        if now - self._last_purge < self.window_seconds:
            return
        self._windows = {
            key: window for key, window in self._windows.items()
            if now - window.started_at < self.window_seconds
        }
        self._last_purge = now

    def tracked_clients(self) -> int:
        return len(self._windows)

    async def execute(self, context: RequestContext, next: Next) -> None:
        if not self.config.enabled or normalize_path(context.request.pathname) in self.exempt_paths:
            await next()
            return

        now = self._clock()
        self._purge(now)

        key = context.request.client_ip or "unknown"
        window = self._windows.get(key)
        if window is None or now - window.started_at >= self.window_seconds:
            window = _Window(started_at=now)
            self._windows[key] = window
        window.count += 1

        limit = self.config.max_requests
        remaining = max(0, limit - window.count)
        reset_in = max(0.0, window.started_at + self.window_seconds - now)

        response = context.response
        response.header("X-RateLimit-Limit", limit)
        response.header("X-RateLimit-Remaining", remaining)
        response.header("X-RateLimit-Reset", math.ceil(reset_in))

        if window.count > limit:
            response.header("Retry-After", max(1, math.ceil(reset_in)))
            response.status(429).json({
                "error": "Too Many Requests",
                "message": "Rate limit exceeded",
            })
            return

        await next()


class RequestLoggingMiddleware(MiddlewareBase):
    """Logs request start, completion (with status and duration) and failures."""

    name = "request-logging"
    priority = 80

    def __init__(self, logger: Optional[structlog.stdlib.BoundLogger] = None):
        super().__init__()
        self._logger = logger or get_logger("operix.http.access")

    async def execute(self, context: RequestContext, next: Next) -> None:
        request = context.request
        start = time.perf_counter()

        async with LogContext(request_id=context.request_id):
            self._logger.debug(
                "Request started",
                method=request.method,
                path=request.pathname,
                client=request.client_ip,
            )
            try:
                await next()
            except Exception as e:
                self._logger.warning(
                    "Request raised",
                    method=request.method,
                    path=request.pathname,
                    duration_ms=round((time.perf_counter() - start) * 1000, 2),
                    error=e,
                )
                raise

            self._logger.info(
                "Request completed",
                method=request.method,
                path=request.pathname,
                status=context.response.status_code,
                route=context.route.pattern if context.route else None,
                duration_ms=round((time.perf_counter() - start) * 1000, 2),
            )
