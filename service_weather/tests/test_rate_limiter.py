"""
Unit tests for the token bucket admission controller.
"""

import random
import threading
from unittest.mock import MagicMock

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from service_weather.app.ratelimit.token_bucket import (
    RateLimitMiddleware,
    TokenBucketRateLimiter,
    get_client_identity,
)
from shared.metrics import MetricsCollector
from shared.test_helpers import FakeClock


class TestTokenBucketRateLimiter:
    """Test cases for TokenBucketRateLimiter."""

    @pytest.fixture
    def clock(self):
        return FakeClock()

    @pytest.fixture
    def rate_limiter(self, clock):
        """Capacity 2, one token every 10 seconds."""
        return TokenBucketRateLimiter(2, 1, 10, clock=clock)

    def test_immediate_requests_exhaust_capacity(self, rate_limiter):
        """Three immediate calls yield Allowed, Allowed, Denied."""
        decisions = [rate_limiter.admit("10.0.0.1").allowed for _ in range(3)]

        assert decisions == [True, True, False]

    def test_new_identity_starts_full(self, rate_limiter):
        admission = rate_limiter.admit("10.0.0.1")

        assert admission.allowed is True
        assert admission.limit == 2
        assert admission.remaining == 1

    def test_identities_are_independent(self, rate_limiter):
        rate_limiter.admit("10.0.0.1")
        rate_limiter.admit("10.0.0.1")

        assert rate_limiter.admit("10.0.0.1").allowed is False
        assert rate_limiter.admit("10.0.0.2").allowed is True

    def test_refill_after_interval(self, clock):
        """Capacity 5, 5 tokens per 60s: a call 61s after exhaustion is allowed."""
        limiter = TokenBucketRateLimiter(5, 5, 60, clock=clock)
        for _ in range(5):
            assert limiter.admit("client").allowed is True
        assert limiter.admit("client").allowed is False

        clock.advance(61)
        admission = limiter.admit("client")

        assert admission.allowed is True
        assert admission.remaining == 4

    def test_long_gap_never_exceeds_capacity(self, clock):
        limiter = TokenBucketRateLimiter(5, 5, 60, clock=clock)
        for _ in range(5):
            limiter.admit("client")

        clock.advance(60 * 60 * 24 * 30)

        assert limiter.tokens_for("client") == 5
        decisions = [limiter.admit("client").allowed for _ in range(6)]
        assert decisions == [True] * 5 + [False]

    def test_partial_interval_adds_nothing(self, rate_limiter, clock):
        rate_limiter.admit("client")
        rate_limiter.admit("client")

        clock.advance(9.99)

        assert rate_limiter.admit("client").allowed is False

    def test_fractional_refill_credit_is_kept(self, rate_limiter, clock):
        """The refill timestamp advances by whole intervals, not to 'now'."""
        rate_limiter.admit("client")
        rate_limiter.admit("client")

        clock.advance(15)
        assert rate_limiter.admit("client").allowed is True
        assert rate_limiter.admit("client").allowed is False

        # 20s after creation: the 5s left over from the first refill counts
        clock.advance(5)
        assert rate_limiter.admit("client").allowed is True

    def test_refill_to_full_keeps_interval_grid(self):
        """Refilling to capacity still advances the refill time by whole intervals."""
        clock = FakeClock(start=0.0)
        limiter = TokenBucketRateLimiter(2, 1, 10, clock=clock)

        assert limiter.admit("client").allowed is True

        clock.advance(25)
        assert limiter.admit("client").allowed is True
        assert limiter.admit("client").allowed is True

        # The refill at t=25 counted two intervals, so the next one is due at t=30
        clock.advance(5)
        admission = limiter.admit("client")

        assert admission.allowed is True
        assert admission.remaining == 0

    def test_full_bucket_accrues_no_extra_tokens(self, rate_limiter, clock):
        """Nine intervals of credit still cap at capacity; the grid point stays at t+90."""
        assert rate_limiter.admit("client").allowed is True

        clock.advance(95)
        decisions = [rate_limiter.admit("client").allowed for _ in range(3)]

        assert decisions == [True, True, False]

        clock.advance(5)
        assert rate_limiter.admit("client").allowed is True

    def test_tokens_stay_within_bounds(self, clock):
        limiter = TokenBucketRateLimiter(4, 3, 7, clock=clock)
        rng = random.Random(1234)

        for _ in range(500):
            clock.advance(rng.choice([0, 0, 0, 0.5, 3, 7, 15, 40]))
            limiter.admit("client")
            tokens = limiter.tokens_for("client")
            assert 0 <= tokens <= 4

    def test_concurrent_last_token_is_spent_once(self):
        """Capacity 1 and two simultaneous callers: exactly one is admitted."""
        limiter = TokenBucketRateLimiter(1, 1, 3600, clock=FakeClock())
        barrier = threading.Barrier(2)
        results = []
        results_lock = threading.Lock()

        def worker():
            barrier.wait()
            admission = limiter.admit("shared-client")
            with results_lock:
                results.append(admission.allowed)

        threads = [threading.Thread(target=worker) for _ in range(2)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert sorted(results) == [False, True]

    def test_concurrent_callers_never_overspend(self):
        limiter = TokenBucketRateLimiter(5, 1, 3600, clock=FakeClock())
        barrier = threading.Barrier(16)
        allowed = []
        allowed_lock = threading.Lock()

        def worker():
            barrier.wait()
            for _ in range(4):
                admission = limiter.admit("shared-client")
                with allowed_lock:
                    allowed.append(admission.allowed)

        threads = [threading.Thread(target=worker) for _ in range(16)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert allowed.count(True) == 5
        assert len(allowed) == 64

    def test_evict_idle_keeps_buckets_that_are_not_full(self, rate_limiter, clock):
        rate_limiter.admit("client")
        clock.advance(5)

        assert rate_limiter.evict_idle() == 0
        assert rate_limiter.stats()["tracked_clients"] == 1

    def test_evict_idle_drops_refilled_buckets(self, rate_limiter, clock):
        rate_limiter.admit("client")
        rate_limiter.admit("other")
        rate_limiter.admit("other")
        clock.advance(10)

        assert rate_limiter.evict_idle() == 1
        assert rate_limiter.tokens_for("client") is None
        assert rate_limiter.tokens_for("other") == 1

    def test_evict_idle_keeps_recently_active_buckets(self, clock):
        limiter = TokenBucketRateLimiter(2, 2, 10, clock=clock)
        limiter.admit("client")
        clock.advance(9)
        limiter.admit("client")
        clock.advance(1)

        assert limiter.tokens_for("client") == 2
        assert limiter.evict_idle() == 0

        clock.advance(9)
        assert limiter.evict_idle() == 1

    def test_eviction_never_admits_more(self, clock):
        """A recreated bucket never allows a request the retained one would deny."""
        evicting = TokenBucketRateLimiter(3, 1, 10, clock=clock)
        keeping = TokenBucketRateLimiter(3, 1, 10, clock=clock)
        rng = random.Random(99)
        evictions = 0

        for _ in range(300):
            clock.advance(rng.choice([0, 1, 4, 10, 35]))
            if rng.random() < 0.3:
                evictions += evicting.evict_idle()
            evicted_allowed = evicting.admit("client").allowed
            kept_allowed = keeping.admit("client").allowed
            assert kept_allowed or not evicted_allowed

        assert evictions > 0

    def test_reset_forgets_identity(self, rate_limiter):
        rate_limiter.admit("client")
        rate_limiter.admit("client")

        assert rate_limiter.reset("client") is True
        assert rate_limiter.admit("client").allowed is True
        assert rate_limiter.reset("unknown") is False

    def test_rejects_invalid_configuration(self):
        with pytest.raises(ValueError):
            TokenBucketRateLimiter(0, 1, 10)
        with pytest.raises(ValueError):
            TokenBucketRateLimiter(1, 1, 0)

    def test_stats(self, rate_limiter):
        rate_limiter.admit("a")
        rate_limiter.admit("b")

        stats = rate_limiter.stats()

        assert stats["tracked_clients"] == 2
        assert stats["capacity"] == 2
        assert stats["refill_tokens"] == 1
        assert stats["refill_duration_seconds"] == 10.0


class TestClientIdentity:
    """Test cases for client identity extraction."""

    def _request(self, headers, host="127.0.0.1"):
        request = MagicMock()
        request.headers = headers
        if host is None:
            request.client = None
        else:
            request.client.host = host
        return request

    def test_prefers_forwarded_for_first_entry(self):
        request = self._request({"X-Forwarded-For": " 203.0.113.7 , 10.0.0.1", "X-Real-IP": "198.51.100.2"})

        assert get_client_identity(request) == "203.0.113.7"

    def test_falls_back_to_real_ip(self):
        request = self._request({"X-Real-IP": "198.51.100.2"})

        assert get_client_identity(request) == "198.51.100.2"

    def test_falls_back_to_connection_address(self):
        request = self._request({})

        assert get_client_identity(request) == "127.0.0.1"

    def test_empty_forwarded_for_is_ignored(self):
        request = self._request({"X-Forwarded-For": "", "X-Real-IP": "198.51.100.2"})

        assert get_client_identity(request) == "198.51.100.2"

    def test_unknown_without_client(self):
        request = self._request({}, host=None)

        assert get_client_identity(request) == "unknown"


class TestRateLimitMiddleware:
    """Test cases for RateLimitMiddleware."""

    @pytest.fixture
    def metrics(self):
        return MetricsCollector("weather")

    @pytest.fixture
    def client(self, metrics):
        app = FastAPI()
        limiter = TokenBucketRateLimiter(2, 1, 60, clock=FakeClock())
        app.add_middleware(RateLimitMiddleware, rate_limiter=limiter, metrics=metrics)

        @app.get("/ping")
        async def ping():
            return {"ok": True}

        return TestClient(app)

    def test_admitted_requests_carry_headers(self, client):
        response = client.get("/ping", headers={"X-Forwarded-For": "203.0.113.7"})

        assert response.status_code == 200
        assert response.headers["X-RateLimit-Limit"] == "2"
        assert response.headers["X-RateLimit-Remaining"] == "1"

    def test_denied_request_short_circuits(self, client, metrics):
        headers = {"X-Forwarded-For": "203.0.113.7"}
        client.get("/ping", headers=headers)
        client.get("/ping", headers=headers)

        response = client.get("/ping", headers=headers)

        assert response.status_code == 429
        body = response.json()
        assert body["status"] == 429
        assert body["error"] == "RATE_LIMIT_EXCEEDED"
        assert "message" in body
        assert "Retry-After" not in response.headers
        assert metrics.get_sample_value("rate_limit_rejections_total", {"endpoint": "/ping"}) == 1.0

    def test_other_clients_unaffected(self, client):
        for _ in range(3):
            client.get("/ping", headers={"X-Forwarded-For": "203.0.113.7"})

        response = client.get("/ping", headers={"X-Forwarded-For": "203.0.113.8"})

        assert response.status_code == 200
