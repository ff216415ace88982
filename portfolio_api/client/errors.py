"""Errors raised by the admin API client."""

from typing import Any

import httpx


class ApiError(Exception):
    """A request failed; carries the server's error envelope when there was one."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int = 0,
        code: str = "API_ERROR",
        request_id: str | None = None,
        payload: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.code = code
        self.request_id = request_id
        self.payload = payload or {}

    @classmethod
    def from_response(cls, response: httpx.Response) -> "ApiError":
        try:
            payload = response.json()
        except ValueError:
            payload = None
        if not isinstance(payload, dict):
            return cls(
                response.text or response.reason_phrase or "Request failed",
                status_code=response.status_code,
                code="HTTP_ERROR",
            )
        return cls(
            str(payload.get("error") or "Request failed"),
            status_code=response.status_code,
            code=str(payload.get("code") or "HTTP_ERROR"),
            request_id=payload.get("requestId"),
            payload=payload,
        )

    def __repr__(self) -> str:
        return f"{type(self).__name__}(status_code={self.status_code}, code={self.code!r})"


class NetworkTimeoutError(ApiError):
    """The request did not complete within its timeout."""

    def __init__(self, message: str = "Request timed out"):
        super().__init__(message, code="NETWORK_TIMEOUT")


class RefreshFailedError(ApiError):
    """The token could not be refreshed; the user must log in again."""

    def __init__(self, message: str = "Token refresh failed"):
        super().__init__(message, status_code=401, code="REFRESH_FAILED")
