"""Pydantic schemas for the Portfolio API."""

from portfolio_api.schemas.admin import (
    AdminInfo,
    ErrorResponse,
    LoginRequest,
    LoginResponse,
    RefreshResponse,
    RevokeAllResponse,
    SessionInfo,
    SessionListResponse,
    SessionSummary,
    SuccessResponse,
    VerifyResponse,
)

__all__ = [
    "AdminInfo",
    "ErrorResponse",
    "LoginRequest",
    "LoginResponse",
    "RefreshResponse",
    "RevokeAllResponse",
    "SessionInfo",
    "SessionListResponse",
    "SessionSummary",
    "SuccessResponse",
    "VerifyResponse",
]
