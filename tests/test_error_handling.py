"""Tests for the uniform error envelope."""

import pytest
from httpx import ASGITransport, AsyncClient

from portfolio_api.services.errors import (
    AuthError,
    BlacklistedTokenError,
    NoTokenError,
    PortfolioError,
    RateLimitedError,
    SessionExpiredError,
    TokenExpiredError,
)


class TestErrorTaxonomy:
    @pytest.mark.parametrize(
        "error,status,code",
        [
            (NoTokenError(), 401, "NO_TOKEN"),
            (TokenExpiredError(), 401, "TOKEN_EXPIRED"),
            (BlacklistedTokenError(), 401, "TOKEN_INVALIDATED"),
            (SessionExpiredError(), 401, "SESSION_EXPIRED"),
            (RateLimitedError(), 429, "RATE_LIMITED"),
        ],
    )
    def test_status_and_code(self, error, status, code):
        assert error.status_code == status
        assert error.code == code

    def test_envelope_without_request_id(self):
        assert AuthError("nope").to_envelope() == {"error": "nope", "code": "AUTH_FAILED"}

    def test_envelope_with_request_id(self):
        envelope = NoTokenError().to_envelope("req_1")
        assert envelope["requestId"] == "req_1"

    def test_rate_limited_envelope_carries_retry_after(self):
        assert RateLimitedError(retry_after=42).to_envelope()["retryAfter"] == 42

    def test_code_override(self):
        assert PortfolioError("x", code="CUSTOM").code == "CUSTOM"
        assert PortfolioError().code == "SERVER_ERROR"


class TestHandlers:
    @pytest.mark.asyncio
    async def test_unknown_route_outside_api(self, async_client: AsyncClient):
        response = await async_client.get("/nowhere")

        assert response.status_code == 404
        assert response.json() == {"error": "Route not found", "code": "NOT_FOUND"}

    @pytest.mark.asyncio
    async def test_method_not_allowed(self, async_client: AsyncClient):
        response = await async_client.get("/api/admin/login")

        assert response.status_code == 405
        assert response.json()["code"] == "METHOD_NOT_ALLOWED"

    @pytest.mark.asyncio
    async def test_malformed_json_body(self, async_client: AsyncClient):
        response = await async_client.post(
            "/api/admin/login",
            content=b"{not json",
            headers={"Content-Type": "application/json"},
        )

        assert response.status_code == 400
        assert response.json()["code"] == "VALIDATION_ERROR"

    @pytest.mark.asyncio
    async def test_uncaught_exception_is_a_generic_500(self, app):
        @app.get("/boom")
        async def boom():
            raise RuntimeError("secret internals")

        transport = ASGITransport(app=app, raise_app_exceptions=False)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            response = await client.get("/boom", headers={"X-Request-ID": "req_boom"})

        assert response.status_code == 500
        body = response.json()
        assert body["code"] == "SERVER_ERROR"
        assert "secret internals" not in body["error"]
        assert body["requestId"] == "req_boom"
