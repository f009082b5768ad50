"""Tests for the per-tenant fixed-window rate limiter."""

from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest

from conftest import make_tenant
from tenant_gateway.infra.rate_limiter import (
    FixedWindowRateLimiter,
    RedisFixedWindowRateLimiter,
    get_rate_limit_headers,
)
from tenant_gateway.services.api_key_service import hash_api_key

API_KEY = "tg_sk_" + "K" * 32


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class TestFixedWindowRateLimiter:
    """Window arithmetic on the in-memory backend."""

    def test_hundred_allowed_then_limited_until_reset(self):
        clock = FakeClock()
        window_start = clock.now
        limiter = FixedWindowRateLimiter(max_requests=100, window_seconds=3600, clock=clock)

        for call in range(1, 101):
            decision = limiter.check("tenant-1")
            assert decision.allowed, f"call {call} should be allowed"
            assert decision.remaining == 100 - call

        limited = limiter.check("tenant-1")
        assert not limited.allowed
        assert limited.remaining == 0
        assert limited.reset_at == datetime.fromtimestamp(window_start + 3600, tz=timezone.utc)

        clock.now = window_start + 3600
        fresh = limiter.check("tenant-1")
        assert fresh.allowed
        assert limiter.peek("tenant-1").count == 1
        assert fresh.reset_at == datetime.fromtimestamp(clock.now + 3600, tz=timezone.utc)

    def test_rejections_do_not_extend_the_count(self):
        clock = FakeClock()
        limiter = FixedWindowRateLimiter(max_requests=2, window_seconds=60, clock=clock)
        limiter.check("tenant-1")
        limiter.check("tenant-1")

        for _ in range(5):
            assert not limiter.check("tenant-1").allowed
        assert limiter.peek("tenant-1").count == 2

    def test_tenants_are_counted_separately(self):
        limiter = FixedWindowRateLimiter(max_requests=1, window_seconds=60, clock=FakeClock())

        assert limiter.check("tenant-1").allowed
        assert not limiter.check("tenant-1").allowed
        assert limiter.check("tenant-2").allowed

    def test_expired_entries_are_evicted_past_capacity(self):
        clock = FakeClock()
        limiter = FixedWindowRateLimiter(max_requests=5, window_seconds=10, max_entries=2, clock=clock)
        for tenant_id in ("a", "b", "c"):
            limiter.check(tenant_id)
        assert len(limiter) == 3

        clock.now += 11
        limiter.check("d")

        assert len(limiter) == 1
        assert limiter.peek("a") is None


class TestRateLimitHeaders:

    def test_allowed_headers(self):
        limiter = FixedWindowRateLimiter(max_requests=10, window_seconds=60, clock=FakeClock())
        headers = get_rate_limit_headers(limiter.check("tenant-1"))

        assert headers["X-RateLimit-Limit"] == "10"
        assert headers["X-RateLimit-Remaining"] == "9"
        assert headers["X-RateLimit-Reset"] == str(1_700_000_000 + 60)
        assert "Retry-After" not in headers

    def test_limited_headers_carry_retry_after(self):
        limiter = FixedWindowRateLimiter(max_requests=1, window_seconds=60)
        limiter.check("tenant-1")
        headers = get_rate_limit_headers(limiter.check("tenant-1"))

        assert headers["X-RateLimit-Remaining"] == "0"
        assert 0 <= int(headers["Retry-After"]) <= 60


class TestRedisFixedWindowRateLimiter:
    """The Redis backend delegates the window to a Lua script."""

    def test_decision_from_script_result(self):
        client = MagicMock()
        script = MagicMock(return_value=[1, 3, 30_000])
        client.register_script.return_value = script
        limiter = RedisFixedWindowRateLimiter(client, max_requests=5, window_seconds=60, clock=FakeClock())

        decision = limiter.check("tenant-1")

        script.assert_called_once_with(keys=["ratelimit:tenant:tenant-1"], args=[5, 60_000])
        assert decision.allowed
        assert decision.remaining == 2
        assert decision.reset_at == datetime.fromtimestamp(1_700_000_030, tz=timezone.utc)

    def test_limited_result(self):
        client = MagicMock()
        client.register_script.return_value = MagicMock(return_value=[0, 5, 1_000])
        limiter = RedisFixedWindowRateLimiter(client, max_requests=5, window_seconds=60, clock=FakeClock())

        decision = limiter.check("tenant-1")

        assert not decision.allowed
        assert decision.remaining == 0


class TestApiKeyRouteRateLimiting:
    """Limits applied on the bearer path only."""

    @pytest.fixture
    def api_tenant(self, tenant_store):
        return tenant_store.add(make_tenant(api_key_hash=hash_api_key(API_KEY)))

    def test_headers_on_success_and_429_after_limit(self, client, api_tenant):
        headers = {"Authorization": f"Bearer {API_KEY}"}

        for expected_remaining in ("2", "1", "0"):
            response = client.get("/v1/profile", headers=headers)
            assert response.status_code == 200
            assert response.headers["X-RateLimit-Limit"] == "3"
            assert response.headers["X-RateLimit-Remaining"] == expected_remaining

        limited = client.get("/v1/profile", headers=headers)
        assert limited.status_code == 429
        assert "Retry-After" in limited.headers
        error = limited.json()["error"]
        assert error["code"] == "RATE_LIMITED"
        assert "resetAt" in error["details"]

    def test_rejected_keys_are_not_counted(self, client, api_tenant, rate_limiter):
        response = client.get("/v1/profile", headers={"Authorization": "Bearer tg_sk_nope"})

        assert response.status_code == 401
        assert rate_limiter.peek(api_tenant.id) is None
