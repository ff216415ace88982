"""Pytest configuration and fixtures for portfolio API tests.

Each test gets its own app instance (and therefore its own session store,
blacklist, login-attempt tracker and rate limiter), so no state leaks
between tests and nothing needs resetting.
"""

import os
from collections.abc import AsyncGenerator, Generator

import pytest
import pytest_asyncio
from fastapi import FastAPI
from fastapi.testclient import TestClient
from httpx import ASGITransport, AsyncClient

# Set test environment variables before importing app modules
os.environ["JWT_SECRET_KEY"] = "test-secret-" + "0" * 52
os.environ["ADMIN_EMAIL"] = "admin@example.com"
os.environ["ADMIN_PASSWORD"] = "correct-horse-battery"
os.environ["LOGIN_DELAY_MIN_SECONDS"] = "0"
os.environ["LOGIN_DELAY_MAX_SECONDS"] = "0"
# Set high rate limit for tests to prevent 429 errors
os.environ["RATE_LIMIT_REQUESTS_PER_MINUTE"] = "10000"

from portfolio_api.core.config import Settings  # noqa: E402
from portfolio_api.main import create_app  # noqa: E402

# Test admin credentials
TEST_SECRET = os.environ["JWT_SECRET_KEY"]
TEST_ADMIN_EMAIL = "admin@example.com"
TEST_ADMIN_PASSWORD = "correct-horse-battery"


def make_settings(**overrides) -> Settings:
    values = {
        "jwt_secret_key": TEST_SECRET,
        "admin_email": TEST_ADMIN_EMAIL,
        "admin_password": TEST_ADMIN_PASSWORD,
        "login_delay_min_seconds": 0.0,
        "login_delay_max_seconds": 0.0,
        "rate_limit_requests_per_minute": 10000,
    }
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
def settings_factory():
    """Build Settings from the test defaults plus keyword overrides."""
    return make_settings


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def app(settings: Settings) -> FastAPI:
    return create_app(settings)


@pytest_asyncio.fixture(scope="function")
async def async_client(app: FastAPI) -> AsyncGenerator[AsyncClient, None]:
    """Async client talking to the app in-process (lifespan not run)."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest.fixture
def sync_client(app: FastAPI) -> Generator[TestClient, None, None]:
    """Synchronous client for simple tests that don't need async."""
    with TestClient(app) as client:
        yield client


@pytest.fixture
def login_admin(async_client: AsyncClient):
    """Return a coroutine function that logs in and returns the response body."""

    async def _login(user_agent: str = "pytest") -> dict:
        response = await async_client.post(
            "/api/admin/login",
            json={"email": TEST_ADMIN_EMAIL, "password": TEST_ADMIN_PASSWORD},
            headers={"User-Agent": user_agent},
        )
        assert response.status_code == 200, response.text
        return response.json()

    return _login


@pytest_asyncio.fixture
async def admin_token(login_admin) -> str:
    data = await login_admin()
    return data["token"]


@pytest.fixture
def admin_headers(admin_token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {admin_token}"}
