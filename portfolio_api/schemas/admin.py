"""Pydantic schemas for the admin authentication API.

Wire names are camelCase; Python attributes stay snake_case.
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class LoginRequest(CamelModel):
    """Request for admin login."""

    email: str = Field(
        ...,
        max_length=255,
        pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$",
        description="Admin email address",
    )
    password: str = Field(..., min_length=8, max_length=128)

    @field_validator("email")
    @classmethod
    def normalize_email(cls, v: str) -> str:
        return v.strip().lower()


class AdminInfo(CamelModel):
    """The authenticated admin as seen by the client."""

    id: str
    email: str
    role: str
    session_id: str
    permissions: list[str] = Field(default_factory=list)


class SessionInfo(CamelModel):
    """Where the new session was opened from."""

    user_agent: str | None
    ip: str | None
    created_at: datetime


class LoginResponse(CamelModel):
    token: str
    admin: AdminInfo
    expires_in: int = Field(description="Token lifetime in seconds")
    session_info: SessionInfo


class RefreshResponse(CamelModel):
    token: str
    admin: AdminInfo
    expires_in: int = Field(description="Token lifetime in seconds")


class VerifyResponse(CamelModel):
    admin: AdminInfo
    permissions: list[str]
    session_valid: bool = True
    environment: str
    server_time: datetime


class SessionSummary(CamelModel):
    session_id: str
    user_agent: str | None
    ip: str | None
    created_at: datetime
    last_active: datetime
    current: bool


class SessionListResponse(CamelModel):
    sessions: list[SessionSummary]


class SuccessResponse(CamelModel):
    success: bool = True
    message: str


class RevokeAllResponse(SuccessResponse):
    revoked: int


class ErrorResponse(CamelModel):
    """Uniform error envelope."""

    error: str
    code: str
    request_id: str | None = None
    details: list[dict[str, Any]] | None = None
    retry_after: int | None = None
