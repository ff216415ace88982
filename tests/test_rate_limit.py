"""Tests for the rate limiting middleware."""

import json
from unittest.mock import AsyncMock, MagicMock

import pytest
from httpx import AsyncClient

from portfolio_api.middleware.rate_limit import (
    PathRateLimitConfig,
    RateLimiter,
    RateLimitMiddleware,
)


def _request(path: str, ip: str = "192.168.1.1") -> MagicMock:
    request = MagicMock()
    request.method = "GET"
    request.url.path = path
    request.client.host = ip
    request.headers = {}
    request.state.supplied_request_id = None
    return request


class TestRateLimiter:
    """Tests for the RateLimiter class."""

    @pytest.fixture
    def rate_limiter(self):
        return RateLimiter()

    @pytest.mark.asyncio
    async def test_allows_first_request(self, rate_limiter):
        """Test that the first request is always allowed."""
        allowed, headers = await rate_limiter.check_rate_limit("192.168.1.1", "/api/test")

        assert allowed is True
        assert "X-RateLimit-Limit" in headers
        assert "X-RateLimit-Remaining" in headers

    @pytest.mark.asyncio
    async def test_rate_limit_headers(self, rate_limiter):
        _, headers = await rate_limiter.check_rate_limit("192.168.1.1", "/api/test")

        assert headers["X-RateLimit-Limit"] == "100"  # Default limit
        assert int(headers["X-RateLimit-Remaining"]) >= 0

    def test_login_path_has_tighter_limits(self, rate_limiter):
        config = rate_limiter.get_config_for_path("/api/admin/login")

        assert config.requests_per_minute == 20
        assert config.requests_per_hour == 200

    def test_default_config_for_unknown_path(self, rate_limiter):
        config = rate_limiter.get_config_for_path("/api/unknown")

        assert config.requests_per_minute == 100
        assert config.requests_per_hour == 2000

    @pytest.mark.asyncio
    async def test_separate_buckets_per_ip(self):
        """Exhausting one IP's burst leaves another IP untouched."""
        rate_limiter = RateLimiter(
            default_config=PathRateLimitConfig(requests_per_minute=60, burst_size=2),
            path_configs={},
        )
        for _ in range(2):
            allowed, _ = await rate_limiter.check_rate_limit("192.168.1.1", "/api/test")
            assert allowed

        blocked, _ = await rate_limiter.check_rate_limit("192.168.1.1", "/api/test")
        other, _ = await rate_limiter.check_rate_limit("192.168.1.2", "/api/test")

        assert blocked is False
        assert other is True

    @pytest.mark.asyncio
    async def test_burst_limiting(self, rate_limiter):
        """Test that burst limits are enforced."""
        results = []
        for _ in range(30):  # Exceed burst size
            allowed, _ = await rate_limiter.check_rate_limit("192.168.1.100", "/api/test")
            results.append(allowed)

        assert False in results

    @pytest.mark.asyncio
    async def test_minute_limit_enforced(self):
        rate_limiter = RateLimiter(
            path_configs={
                "/test/limited": PathRateLimitConfig(
                    requests_per_minute=5,
                    requests_per_hour=100,
                    burst_size=10,
                )
            }
        )

        allowed_count = 0
        for _ in range(10):
            allowed, headers = await rate_limiter.check_rate_limit("192.168.1.200", "/test/limited")
            if allowed:
                allowed_count += 1
            else:
                assert "Retry-After" in headers
                break

        assert allowed_count == 5

    @pytest.mark.asyncio
    async def test_reset_specific_ip(self):
        rate_limiter = RateLimiter(
            default_config=PathRateLimitConfig(requests_per_minute=60, burst_size=1),
            path_configs={},
        )
        await rate_limiter.check_rate_limit("192.168.1.10", "/api/test")
        await rate_limiter.check_rate_limit("192.168.1.20", "/api/test")

        await rate_limiter.reset("192.168.1.10")

        allowed_10, _ = await rate_limiter.check_rate_limit("192.168.1.10", "/api/test")
        allowed_20, _ = await rate_limiter.check_rate_limit("192.168.1.20", "/api/test")
        assert allowed_10 is True
        assert allowed_20 is False

    @pytest.mark.asyncio
    async def test_cleanup_inactive_buckets(self, rate_limiter):
        await rate_limiter.check_rate_limit("192.168.1.1", "/api/test")

        assert await rate_limiter.cleanup_inactive_buckets(inactive_seconds=86400) == 0
        assert await rate_limiter.cleanup_inactive_buckets(inactive_seconds=-1) == 1


class TestRateLimitMiddleware:
    """Tests for the rate limit middleware."""

    @pytest.fixture
    def middleware(self):
        return RateLimitMiddleware(AsyncMock(), rate_limiter=RateLimiter())

    @pytest.mark.asyncio
    async def test_excludes_health_endpoint(self, middleware):
        request = _request("/health")
        call_next = AsyncMock(return_value=MagicMock())

        await middleware.dispatch(request, call_next)

        call_next.assert_called_once_with(request)

    @pytest.mark.asyncio
    async def test_disabled_middleware_passes_through(self):
        middleware = RateLimitMiddleware(AsyncMock(), rate_limiter=RateLimiter(), enabled=False)
        request = _request("/api/test")
        call_next = AsyncMock(return_value=MagicMock())

        await middleware.dispatch(request, call_next)

        call_next.assert_called_once_with(request)

    @pytest.mark.asyncio
    async def test_adds_rate_limit_headers_to_response(self, middleware):
        response = MagicMock()
        response.headers = {}
        call_next = AsyncMock(return_value=response)

        await middleware.dispatch(_request("/api/test"), call_next)

        assert "X-RateLimit-Limit" in response.headers
        assert "X-RateLimit-Remaining" in response.headers

    @pytest.mark.asyncio
    async def test_returns_429_envelope_when_rate_limited(self):
        limiter = RateLimiter(
            path_configs={
                "/test/limited": PathRateLimitConfig(
                    requests_per_minute=1,
                    requests_per_hour=100,
                    burst_size=1,
                )
            }
        )
        middleware = RateLimitMiddleware(AsyncMock(), rate_limiter=limiter)
        response = MagicMock()
        response.headers = {}
        call_next = AsyncMock(return_value=response)

        await middleware.dispatch(_request("/test/limited"), call_next)
        result = await middleware.dispatch(_request("/test/limited"), call_next)

        assert result.status_code == 429
        body = json.loads(result.body)
        assert body["code"] == "RATE_LIMITED"
        assert body["retryAfter"] >= 1
        assert "Retry-After" in result.headers


class TestRateLimitIntegration:
    @pytest.mark.asyncio
    async def test_login_path_reports_its_own_limit(self, async_client: AsyncClient):
        """The login path has its own bucket, independent of the general limit."""
        response = await async_client.post(
            "/api/admin/login",
            json={"email": "nobody@example.com", "password": "wrong-password"},
        )
        general = await async_client.get("/api/admin/verify")

        assert response.headers["X-RateLimit-Limit"] == "20"
        assert general.headers["X-RateLimit-Limit"] == "10000"

    @pytest.mark.asyncio
    async def test_health_is_never_limited(self, app, async_client: AsyncClient):
        app.state.rate_limiter._default_config = PathRateLimitConfig(
            requests_per_minute=1, requests_per_hour=1, burst_size=1
        )
        for _ in range(5):
            response = await async_client.get("/health")
            assert response.status_code == 200
