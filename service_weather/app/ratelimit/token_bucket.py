"""
Token bucket rate limiter for the Weather Gateway.

One bucket per client identity, held in process memory. Buckets refill in
whole intervals: ``refill_tokens`` are added every ``refill_duration``
seconds, capped at ``capacity``.
"""

import asyncio
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from shared.errors import RateLimitError
from shared.logging import get_logger, set_client_context
from shared.metrics import MetricsCollector


@dataclass
class RateBucket:
    """Token state for a single client identity."""

    capacity: int
    refill_tokens: int
    refill_duration: float
    tokens: int
    last_refill: float
    last_seen: float = 0.0
    evicted: bool = False
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def refill(self, now: float) -> None:
        """Credit every whole interval elapsed since the last refill.

        Caller must hold ``lock``.
        """
        elapsed = now - self.last_refill
        if elapsed < self.refill_duration:
            return

        intervals = int(elapsed // self.refill_duration)
        self.tokens = min(self.capacity, self.tokens + intervals * self.refill_tokens)
        # Advance by whole intervals only; the remainder counts toward the next one
        self.last_refill += intervals * self.refill_duration

    def try_consume(self, now: float) -> bool:
        """Refill, then take one token if available. Caller must hold ``lock``."""
        self.last_seen = now
        self.refill(now)
        if self.tokens >= 1:
            self.tokens -= 1
            return True
        return False


@dataclass(frozen=True)
class Admission:
    """Outcome of an admission check."""

    allowed: bool
    identity: str
    limit: int
    remaining: int


class TokenBucketRateLimiter:
    """In-process per-identity token bucket rate limiter."""

    def __init__(
        self,
        capacity: int,
        refill_tokens: int,
        refill_duration_seconds: float,
        *,
        clock: Callable[[], float] = time.monotonic,
    ):
        if capacity < 1 or refill_tokens < 1 or refill_duration_seconds <= 0:
            raise ValueError("capacity, refill_tokens and refill_duration_seconds must be positive")

        self.capacity = capacity
        self.refill_tokens = refill_tokens
        self.refill_duration = float(refill_duration_seconds)
        self.logger = get_logger("weather.rate_limiter")
        self._clock = clock
        self._buckets: Dict[str, RateBucket] = {}
        self._buckets_lock = threading.Lock()

    def _new_bucket(self, now: float) -> RateBucket:
        return RateBucket(
            capacity=self.capacity,
            refill_tokens=self.refill_tokens,
            refill_duration=self.refill_duration,
            tokens=self.capacity,
            last_refill=now,
            last_seen=now,
        )

    def _resolve_bucket(self, identity: str) -> RateBucket:
        """Get or lazily create the bucket for an identity."""
        with self._buckets_lock:
            bucket = self._buckets.get(identity)
            if bucket is None:
                bucket = self._new_bucket(self._clock())
                self._buckets[identity] = bucket
            return bucket

    def admit(self, identity: str) -> Admission:
        """Decide whether one request from ``identity`` may proceed."""
        while True:
            bucket = self._resolve_bucket(identity)
            with bucket.lock:
                # Lost a race with the idle sweep; look the identity up again
                if bucket.evicted:
                    continue
                allowed = bucket.try_consume(self._clock())
                remaining = bucket.tokens
            break

        if allowed:
            self.logger.debug("Request admitted", identity=identity, remaining=remaining)
        else:
            self.logger.warning("Rate limit exceeded", identity=identity, limit=self.capacity)

        return Admission(allowed=allowed, identity=identity, limit=self.capacity, remaining=remaining)

    def evict_idle(self) -> int:
        """Drop buckets that are full and have been idle for a refill interval.

        A recreated bucket starts full like the one dropped, but its refill
        grid restarts at the next request, so a later refill can only arrive
        up to one interval late. Eviction never grants extra tokens.
        """
        now = self._clock()
        removed = 0
        with self._buckets_lock:
            for identity, bucket in list(self._buckets.items()):
                with bucket.lock:
                    bucket.refill(now)
                    idle = now - bucket.last_seen >= self.refill_duration
                    if bucket.tokens < self.capacity or not idle:
                        continue
                    bucket.evicted = True
                del self._buckets[identity]
                removed += 1

        if removed:
            self.logger.info("Evicted idle rate limit buckets", removed=removed, remaining=len(self._buckets))
        return removed

    async def sweep_forever(self, interval_seconds: float) -> None:
        """Run ``evict_idle`` every ``interval_seconds`` until cancelled."""
        while True:
            await asyncio.sleep(interval_seconds)
            try:
                self.evict_idle()
            except Exception as e:  # pragma: no cover - the sweep must keep running
                self.logger.error("Rate limit sweep error", error=str(e))

    def reset(self, identity: str) -> bool:
        """Forget the bucket for ``identity``."""
        with self._buckets_lock:
            bucket = self._buckets.pop(identity, None)
            if bucket is None:
                return False
            with bucket.lock:
                bucket.evicted = True

        self.logger.info("Rate limit reset", identity=identity)
        return True

    def tokens_for(self, identity: str) -> Optional[int]:
        """Current token count for ``identity`` after refill, if tracked."""
        with self._buckets_lock:
            bucket = self._buckets.get(identity)
        if bucket is None:
            return None
        with bucket.lock:
            bucket.refill(self._clock())
            return bucket.tokens

    def stats(self) -> Dict[str, Any]:
        """Get limiter configuration and bucket count."""
        with self._buckets_lock:
            tracked = len(self._buckets)
        return {
            "tracked_clients": tracked,
            "capacity": self.capacity,
            "refill_tokens": self.refill_tokens,
            "refill_duration_seconds": self.refill_duration,
        }


def get_client_identity(request: Request) -> str:
    """Extract the caller identity from proxy headers or the socket peer."""
    forwarded_for = request.headers.get('X-Forwarded-For')
    if forwarded_for:
        first = forwarded_for.split(',')[0].strip()
        if first:
            return first

    real_ip = request.headers.get('X-Real-IP')
    if real_ip and real_ip.strip():
        return real_ip.strip()

    return request.client.host if request.client else 'unknown'


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Admission control in front of every route."""

    def __init__(self, app, rate_limiter: TokenBucketRateLimiter, metrics: Optional[MetricsCollector] = None):
        super().__init__(app)
        self.rate_limiter = rate_limiter
        self.metrics = metrics
        self.logger = get_logger("weather.rate_limit_middleware")

    async def dispatch(self, request: Request, call_next):
        identity = get_client_identity(request)
        set_client_context(identity)

        admission = self.rate_limiter.admit(identity)
        if not admission.allowed:
            if self.metrics:
                self.metrics.increment_counter("rate_limit_rejections_total", endpoint=request.url.path)
            error = RateLimitError()
            return JSONResponse(
                status_code=error.status_code,
                content=error.to_response().model_dump(),
                headers={
                    "X-RateLimit-Limit": str(admission.limit),
                    "X-RateLimit-Remaining": "0",
                },
            )

        response = await call_next(request)
        response.headers["X-RateLimit-Limit"] = str(admission.limit)
        response.headers["X-RateLimit-Remaining"] = str(admission.remaining)
        return response
