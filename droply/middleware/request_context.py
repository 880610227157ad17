"""Per-request context: request id, caller identity, rate limit, access log.

Callers are rate limited per user when they present a valid session token
and per client address otherwise.
"""

import logging
import threading
import time
import uuid
from typing import Dict, Optional, Tuple

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from ..core.config import settings
from ..core.logging_config import request_id_var, user_id_var
from ..core.token_factory import verify_token

logger = logging.getLogger(__name__)

# Health checks are never throttled.
UNTHROTTLED_PATHS = frozenset({"/", "/health"})


class RateLimiter:
    """Token bucket per caller key, refilled continuously.

    A bucket holds up to ``per_minute`` tokens and regains ``per_minute / 60``
    per second. Buckets idle for longer than ``idle_seconds`` are dropped on
    every ``sweep_every``-th call.
    """

    def __init__(self, idle_seconds: float = 120.0, sweep_every: int = 100):
        self.idle_seconds = idle_seconds
        self.sweep_every = sweep_every
        self._buckets: Dict[str, Tuple[float, float]] = {}
        self._calls = 0
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._buckets)

    def reset(self) -> None:
        with self._lock:
            self._buckets.clear()
            self._calls = 0

    def allow(self, key: str, per_minute: int, now: Optional[float] = None) -> Tuple[bool, float]:
        """Spend one token for *key*.

        Returns ``(allowed, retry_after)``. *retry_after* is the number of
        seconds until a token is available, 0.0 when allowed. A
        non-positive *per_minute* disables limiting.
        """
        if per_minute <= 0:
            return True, 0.0
        if now is None:
            now = time.monotonic()

        with self._lock:
            self._calls += 1
            if self._calls % self.sweep_every == 0:
                self._sweep(now)

            rate = per_minute / 60.0
            tokens, seen = self._buckets.get(key, (float(per_minute), now))
            tokens = min(float(per_minute), tokens + (now - seen) * rate)
            if tokens >= 1.0:
                self._buckets[key] = (tokens - 1.0, now)
                return True, 0.0
            self._buckets[key] = (tokens, now)
            return False, (1.0 - tokens) / rate

    def _sweep(self, now: float) -> None:
        cutoff = now - self.idle_seconds
        for key in [k for k, (_, seen) in self._buckets.items() if seen < cutoff]:
            del self._buckets[key]


rate_limiter = RateLimiter()


def session_subject(request: Request) -> Optional[str]:
    """User id of a valid bearer token on *request*, else None.

    Only identifies the caller for logging and rate limiting; endpoints
    still authenticate through ``require_auth``.
    """
    if not settings.auth_enabled:
        return settings.dev_user_id
    header = request.headers.get("authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token:
        return None
    claims = verify_token(token.strip(), settings.jwt_secret_key, settings.jwt_algorithm)
    return claims.sub if claims else None


def client_address(request: Request) -> str:
    """First hop of ``X-Forwarded-For``, else the peer address."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Bind request and user ids for logging, throttle, time and log the request."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        rid = request.headers.get("x-request-id") or uuid.uuid4().hex[:16]
        request_id_var.set(rid)
        subject = session_subject(request)
        user_id_var.set(subject or "")

        if request.url.path not in UNTHROTTLED_PATHS:
            key = f"user:{subject}" if subject else f"ip:{client_address(request)}"
            allowed, retry_after = rate_limiter.allow(key, settings.rate_limit_per_minute)
            if not allowed:
                logger.warning(
                    "Rate limit exceeded",
                    extra={"limit_key": key, "path": request.url.path, "retry_after": round(retry_after, 1)},
                )
                return JSONResponse(
                    status_code=429,
                    content={"error": "Too many requests"},
                    headers={"Retry-After": str(int(retry_after) + 1), "X-Request-ID": rid},
                )

        start = time.monotonic()
        response = await call_next(request)
        duration_ms = round((time.monotonic() - start) * 1000, 1)

        response.headers["X-Request-ID"] = rid
        response.headers["X-Response-Time"] = f"{duration_ms}ms"
        logger.info(
            "%s %s %s",
            request.method,
            request.url.path,
            response.status_code,
            extra={"status_code": response.status_code, "duration_ms": duration_ms},
        )
        return response
