"""Error taxonomy for the admin API.

Every error carries the HTTP status and the stable machine-readable code
that ends up in the response envelope ``{error, code, requestId?}``.
"""

from typing import Any


class PortfolioError(Exception):
    """Base error with an HTTP status and a stable error code."""

    status_code: int = 500
    code: str = "SERVER_ERROR"
    default_message: str = "Internal server error"

    def __init__(self, message: str | None = None, *, code: str | None = None):
        self.message = message or self.default_message
        if code is not None:
            self.code = code
        super().__init__(self.message)

    def to_envelope(self, request_id: str | None = None) -> dict[str, Any]:
        body: dict[str, Any] = {"error": self.message, "code": self.code}
        if request_id:
            body["requestId"] = request_id
        return body


class AuthError(PortfolioError):
    """Base authentication error."""

    status_code = 401
    code = "AUTH_FAILED"
    default_message = "Authentication failed"


class NoTokenError(AuthError):
    """No bearer token was supplied."""

    code = "NO_TOKEN"
    default_message = "Access denied. No token provided."


class TokenError(AuthError):
    """JWT token error."""


class MalformedTokenError(TokenError):
    """Token cannot be decoded or fails claim validation."""

    code = "INVALID_TOKEN"
    default_message = "Invalid token"


class BadSignatureError(MalformedTokenError):
    """Token signature does not verify against the server secret."""


class TokenExpiredError(TokenError):
    """Token is past its expiry or its maximum age."""

    code = "TOKEN_EXPIRED"
    default_message = "Token expired"


class BlacklistedTokenError(TokenError):
    """Token was revoked before its natural expiry."""

    code = "TOKEN_INVALIDATED"
    default_message = "Token invalidated. Please login again."


class SessionExpiredError(AuthError):
    """Token's session has been revoked or never existed."""

    code = "SESSION_EXPIRED"
    default_message = "Session expired or invalid."


class InvalidAccountError(AuthError):
    """Token names an identity this server does not know."""

    code = "INVALID_ACCOUNT"
    default_message = "Invalid user account"


class InvalidCredentialsError(AuthError):
    """Invalid email or password."""

    code = "INVALID_CREDENTIALS"
    default_message = "Invalid credentials"


class RefreshFailedError(AuthError):
    """Token could not be exchanged for a fresh one."""

    code = "REFRESH_FAILED"
    default_message = "Token refresh failed"


class RateLimitedError(PortfolioError):
    """Too many attempts from one client."""

    status_code = 429
    code = "RATE_LIMITED"
    default_message = "Too many login attempts. Please try again later."

    def __init__(self, message: str | None = None, *, retry_after: int = 60):
        super().__init__(message)
        self.retry_after = retry_after

    def to_envelope(self, request_id: str | None = None) -> dict[str, Any]:
        body = super().to_envelope(request_id)
        body["retryAfter"] = self.retry_after
        return body


class ServerConfigError(PortfolioError):
    """Server is missing configuration it cannot run without."""

    status_code = 500
    code = "SERVER_ERROR"
    default_message = "Server configuration error"


class BadRequestError(PortfolioError):
    """Request is well-formed but not allowed."""

    status_code = 400
    code = "BAD_REQUEST"
    default_message = "Bad request"
