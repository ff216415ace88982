"""Client-side admin session handling.

``SessionManager`` owns the stored credentials and the single in-flight
refresh. Every ``AdminApiClient`` sharing a manager (one per "tab") joins
that refresh instead of starting its own, so N requests failing with 401
at once cause exactly one call to /admin/refresh.

When a refresh fails the stored token is cleared and the re-auth
listeners fire once for that cycle; every request waiting on the refresh
fails with the 401 it originally got. A refresh that completes after
the credentials were cleared or replaced never stores its token.
"""

import asyncio
import logging
import secrets
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

import httpx
from pydantic import ValidationError

from portfolio_api.client.errors import ApiError, NetworkTimeoutError, RefreshFailedError
from portfolio_api.client.storage import (
    LOGIN_TIME_KEY,
    TOKEN_KEY,
    MemoryTokenStorage,
    TokenStorage,
)
from portfolio_api.schemas.admin import AdminInfo, VerifyResponse

logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"
UNAUTHENTICATED_PATHS = ("/admin/login", "/admin/refresh")

ReauthListener = Callable[[], None]
RefreshSender = Callable[[str | None], Awaitable[str]]


@dataclass(frozen=True)
class ClientTimeouts:
    """Per-operation timeouts in seconds."""

    login: float = 15.0
    refresh: float = 10.0
    logout: float = 5.0
    verify: float = 10.0
    default: float = 30.0
    upload: float = 120.0


class SessionManager:
    """Stored credentials plus the shared refresh slot."""

    def __init__(self, storage: TokenStorage | None = None):
        self.storage = storage if storage is not None else MemoryTokenStorage()
        self._refresh_task: asyncio.Task[str | None] | None = None
        self._listeners: list[ReauthListener] = []

    @property
    def token(self) -> str | None:
        return self.storage.get(TOKEN_KEY)

    @property
    def login_time(self) -> float | None:
        value = self.storage.get(LOGIN_TIME_KEY)
        try:
            return float(value) if value is not None else None
        except ValueError:
            return None

    @property
    def refresh_in_flight(self) -> bool:
        return self._refresh_task is not None

    def store_token(self, token: str, *, login: bool = False) -> None:
        self.storage.set(TOKEN_KEY, token)
        if login:
            self.storage.set(LOGIN_TIME_KEY, str(time.time()))

    def clear_credentials(self) -> None:
        self.storage.remove(TOKEN_KEY)
        self.storage.remove(LOGIN_TIME_KEY)

    def add_reauth_listener(self, listener: ReauthListener) -> None:
        self._listeners.append(listener)

    def remove_reauth_listener(self, listener: ReauthListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _notify_reauth_required(self) -> None:
        for listener in list(self._listeners):
            try:
                listener()
            except Exception:
                logger.exception("Re-auth listener failed")

    def refresh(self, send: RefreshSender) -> "asyncio.Future[str | None]":
        """Join the in-flight refresh, or start one using ``send``.

        The slot is filled before this returns, so callers arriving later
        in the same loop iteration see it. The returned future resolves to
        the new token, or None if the refresh failed.
        """
        if self._refresh_task is None:
            self._refresh_task = asyncio.ensure_future(self._run_refresh(send))
        # A cancelled waiter must not cancel the refresh for everyone else
        return asyncio.shield(self._refresh_task)

    async def _run_refresh(self, send: RefreshSender) -> str | None:
        sent = self.token
        try:
            token = await send(sent)
        except (ApiError, httpx.HTTPError) as e:
            if self.token != sent:
                # Logged out or in again meanwhile; this failure is stale
                logger.debug(f"Ignoring failed refresh of a replaced token: {e}")
                return self.token
            logger.warning(f"Token refresh failed: {e}")
            self.clear_credentials()
            self._notify_reauth_required()
            return None
        finally:
            self._refresh_task = None
        if self.token != sent:
            # Credentials changed while the refresh was in flight; never
            # resurrect a token after logout
            logger.debug("Discarding refreshed token for replaced credentials")
            return self.token
        self.store_token(token)
        logger.debug("Token refreshed")
        return token


class AdminApiClient:
    """HTTP client for the admin API with transparent token refresh.

    ``base_url`` points at the API root (e.g. ``https://host/api``); paths
    are relative to it. Pass ``transport`` to talk to an app in-process.
    """

    def __init__(
        self,
        base_url: str,
        manager: SessionManager | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        timeouts: ClientTimeouts | None = None,
    ):
        self.manager = manager if manager is not None else SessionManager()
        self.timeouts = timeouts or ClientTimeouts()
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            transport=transport,
            timeout=self.timeouts.default,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "AdminApiClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    @staticmethod
    def _attaches_token(path: str) -> bool:
        return not path.rstrip("/").endswith(UNAUTHENTICATED_PATHS)

    @staticmethod
    def _request_id() -> str:
        return f"req_{int(time.time() * 1000)}_{secrets.token_hex(8)}"

    async def _send(
        self,
        method: str,
        path: str,
        *,
        token: str | None,
        timeout: float | None = None,
        **kwargs: Any,
    ) -> httpx.Response:
        headers = {
            REQUEST_ID_HEADER: self._request_id(),
            "X-Requested-With": "XMLHttpRequest",
        }
        if token:
            headers["Authorization"] = f"Bearer {token}"
        try:
            return await self._client.request(
                method,
                path,
                headers=headers,
                timeout=timeout if timeout is not None else self.timeouts.default,
                **kwargs,
            )
        except httpx.TimeoutException as e:
            raise NetworkTimeoutError(f"{method} {path} timed out") from e
        except httpx.TransportError as e:
            raise ApiError(f"{method} {path} failed: {e}", code="NETWORK_ERROR") from e

    @staticmethod
    def _parse(response: httpx.Response) -> Any:
        if response.status_code >= 400:
            raise ApiError.from_response(response)
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError:
            return response.text

    async def _post_refresh(self, token: str | None) -> str:
        if not token:
            raise RefreshFailedError("No token to refresh")
        response = await self._send(
            "POST", "/admin/refresh", token=token, timeout=self.timeouts.refresh
        )
        data = self._parse(response)
        new_token = data.get("token") if isinstance(data, dict) else None
        if not new_token:
            raise RefreshFailedError("Refresh response carried no token")
        return new_token

    async def _token_after_401(self, sent_token: str | None) -> str | None:
        if self.manager.refresh_in_flight:
            return await self.manager.refresh(self._post_refresh)
        current = self.manager.token
        if current is None:
            # Logged out, or an earlier refresh already failed
            return None
        if current != sent_token:
            # Another client sharing this storage already refreshed
            return current
        return await self.manager.refresh(self._post_refresh)

    async def request(
        self,
        method: str,
        path: str,
        *,
        timeout: float | None = None,
        **kwargs: Any,
    ) -> Any:
        """Send a request; on 401 refresh once and replay it.

        Raises ApiError (the original 401 if the refresh fails) or
        NetworkTimeoutError.
        """
        token = self.manager.token if self._attaches_token(path) else None
        response = await self._send(method, path, token=token, timeout=timeout, **kwargs)

        if response.status_code != 401 or not self._attaches_token(path):
            return self._parse(response)

        original = ApiError.from_response(response)
        new_token = await self._token_after_401(token)
        if new_token is None:
            raise original

        # Replayed requests are never retried again
        response = await self._send(method, path, token=new_token, timeout=timeout, **kwargs)
        return self._parse(response)

    async def get(self, path: str, **kwargs: Any) -> Any:
        return await self.request("GET", path, **kwargs)

    async def post(self, path: str, **kwargs: Any) -> Any:
        return await self.request("POST", path, **kwargs)

    async def put(self, path: str, **kwargs: Any) -> Any:
        return await self.request("PUT", path, **kwargs)

    async def delete(self, path: str, **kwargs: Any) -> Any:
        return await self.request("DELETE", path, **kwargs)

    async def upload(self, path: str, files: Any, data: dict[str, Any] | None = None) -> Any:
        return await self.request(
            "POST", path, files=files, data=data, timeout=self.timeouts.upload
        )

    async def login(self, email: str, password: str) -> AdminInfo:
        """Log in and store the token. Returns the admin info."""
        response = await self._send(
            "POST",
            "/admin/login",
            token=None,
            timeout=self.timeouts.login,
            json={"email": email, "password": password},
        )
        data = self._parse(response)
        try:
            token = data["token"]
            admin = AdminInfo.model_validate(data["admin"])
        except (KeyError, TypeError, ValidationError) as e:
            raise ApiError(
                "Malformed login response",
                status_code=response.status_code,
                code="INVALID_RESPONSE",
                payload=data,
            ) from e
        self.manager.store_token(token, login=True)
        logger.info(f"Logged in as {admin.email}")
        return admin

    async def refresh(self) -> str:
        """Refresh explicitly, joining any refresh already in flight."""
        token = await self.manager.refresh(self._post_refresh)
        if token is None:
            raise RefreshFailedError()
        return token

    async def logout(self) -> None:
        """Tell the server, then clear local credentials whatever it said."""
        token = self.manager.token
        try:
            if token:
                response = await self._send(
                    "POST", "/admin/logout", token=token, timeout=self.timeouts.logout
                )
                if response.status_code >= 400:
                    logger.info(f"Server logout returned {response.status_code}")
        except ApiError as e:
            logger.info(f"Server logout failed: {e}")
        finally:
            self.manager.clear_credentials()

    async def restore(self) -> VerifyResponse | None:
        """Validate a stored token on startup.

        Returns the verified session, or None (with credentials cleared) if
        there is no token or the server rejects it.
        """
        token = self.manager.token
        if not token:
            return None
        try:
            response = await self._send(
                "GET", "/admin/verify", token=token, timeout=self.timeouts.verify
            )
            verified = VerifyResponse.model_validate(self._parse(response))
        except ApiError as e:
            logger.info(f"Stored session not restored: {e.code}")
            self.manager.clear_credentials()
            return None
        except ValidationError:
            logger.info("Stored session not restored: malformed verify response")
            self.manager.clear_credentials()
            return None
        return verified
