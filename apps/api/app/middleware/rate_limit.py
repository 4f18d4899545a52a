from __future__ import annotations

import math
import threading
import time
from dataclasses import dataclass

from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from app.context import get_correlation_id, new_correlation_id
from app.core.config import get_settings

PUBLIC_TOKEN_PREFIXES = ("/api/firm-offers/public/", "/api/contracts/sign/", "/api/deals/inquiry")
SWEEP_INTERVAL_SECONDS = 60.0


@dataclass
class _BucketState:
    tokens: float
    last_refill: float
    capacity: float
    refill_rate: float

    def refill(self, now: float) -> None:
        elapsed = max(0.0, now - self.last_refill)
        self.tokens = min(self.capacity, self.tokens + elapsed * self.refill_rate)
        self.last_refill = now


class _TokenBucketLimiter:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._buckets: dict[tuple[str, str], _BucketState] = {}
        self._last_sweep: float | None = None

    def take(
        self,
        client_key: str,
        route_group: str,
        capacity: int,
        window_seconds: int,
        now: float | None = None,
    ) -> tuple[bool, int]:
        if capacity <= 0:
            return False, window_seconds

        current = time.monotonic() if now is None else now
        refill_rate = capacity / float(window_seconds)
        key = (client_key, route_group)

        with self._lock:
            self._sweep(current)
            bucket = self._buckets.get(key)
            if bucket is None:
                bucket = _BucketState(
                    tokens=float(capacity),
                    last_refill=current,
                    capacity=float(capacity),
                    refill_rate=refill_rate,
                )
                self._buckets[key] = bucket
            bucket.capacity = float(capacity)
            bucket.refill_rate = refill_rate
            bucket.refill(current)

            if bucket.tokens < 1.0:
                return False, max(1, math.ceil((1.0 - bucket.tokens) / refill_rate))

            bucket.tokens -= 1.0
            return True, 0

    def _sweep(self, now: float) -> None:
        # a bucket back at capacity is indistinguishable from a fresh one
        if self._last_sweep is None:
            self._last_sweep = now
            return
        if now - self._last_sweep < SWEEP_INTERVAL_SECONDS:
            return
        self._last_sweep = now
        for key, bucket in list(self._buckets.items()):
            bucket.refill(now)
            if bucket.tokens >= bucket.capacity:
                del self._buckets[key]

    def __len__(self) -> int:
        with self._lock:
            return len(self._buckets)

    def clear(self) -> None:
        with self._lock:
            self._buckets.clear()
            self._last_sweep = None


_limiter = _TokenBucketLimiter()


class PublicTokenRateLimitMiddleware(BaseHTTPMiddleware):
    """Throttles unauthenticated token and inquiry routes per client address."""

    async def dispatch(self, request: Request, call_next):  # type: ignore[no-untyped-def]
        settings = get_settings()
        if settings.rate_limit_disabled:
            return await call_next(request)

        route_group = _resolve_route_group(request.url.path)
        if route_group is None:
            return await call_next(request)

        allowed, retry_after = _limiter.take(
            client_key=_resolve_client_key(request),
            route_group=route_group,
            capacity=settings.rate_limit_public_tokens_per_minute,
            window_seconds=60,
        )
        if allowed:
            return await call_next(request)

        correlation_id = (
            get_correlation_id()
            or getattr(request.state, "correlation_id", None)
            or new_correlation_id()
        )
        response = JSONResponse(
            status_code=429,
            content={
                "code": "rate_limited",
                "message": "Too many requests",
                "details": None,
                "correlation_id": correlation_id,
            },
        )
        response.headers["Retry-After"] = str(retry_after)
        response.headers["x-correlation-id"] = correlation_id
        return response


def _resolve_route_group(path: str) -> str | None:
    for prefix in PUBLIC_TOKEN_PREFIXES:
        if path.startswith(prefix):
            return prefix.strip("/")
    return None


def _resolve_client_key(request: Request) -> str:
    peer = request.client.host if request.client else "unknown"
    trusted = get_settings().trusted_proxy_addresses()
    if peer not in trusted:
        return peer
    # nearest hop that is not one of our proxies
    forwarded = [hop.strip() for hop in request.headers.get("x-forwarded-for", "").split(",") if hop.strip()]
    for hop in reversed(forwarded):
        if hop not in trusted:
            return hop
    return peer


def reset_rate_limiter() -> None:
    _limiter.clear()
