"""Admin authentication API endpoints."""

import logging
from datetime import UTC, datetime

from fastapi import APIRouter, Depends, Request, status

from portfolio_api.core.request_utils import get_client_ip
from portfolio_api.middleware.admin_auth import extract_bearer_token, get_auth_context
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
from portfolio_api.services.auth import AuthContext, AuthService, IssuedToken
from portfolio_api.services.errors import RefreshFailedError
from portfolio_api.services.sessions import AdminIdentity, Session

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/admin", tags=["admin"])

UNAUTHORIZED = {
    status.HTTP_401_UNAUTHORIZED: {
        "model": ErrorResponse,
        "description": "Missing, invalid, expired or revoked token",
    },
}


def get_auth_service(request: Request) -> AuthService:
    """Dependency to get the app's auth service."""
    return request.app.state.auth_service


def _admin_info(identity: AdminIdentity, session: Session) -> AdminInfo:
    return AdminInfo(
        id=identity.id,
        email=identity.email,
        role=identity.role,
        session_id=session.session_id,
        permissions=list(session.permissions),
    )


@router.post(
    "/login",
    response_model=LoginResponse,
    responses={
        status.HTTP_400_BAD_REQUEST: {
            "model": ErrorResponse,
            "description": "Invalid request body",
        },
        status.HTTP_401_UNAUTHORIZED: {
            "model": ErrorResponse,
            "description": "Invalid credentials",
        },
        status.HTTP_429_TOO_MANY_REQUESTS: {
            "model": ErrorResponse,
            "description": "Too many login attempts",
        },
        status.HTTP_500_INTERNAL_SERVER_ERROR: {
            "model": ErrorResponse,
            "description": "Admin credentials not configured",
        },
    },
)
async def login(
    body: LoginRequest,
    request: Request,
    auth_service: AuthService = Depends(get_auth_service),
) -> LoginResponse:
    """Authenticate the admin and open a session.

    Rate limited per IP on failed attempts; both outcomes are padded to a
    randomized delay.
    """
    client_ip = get_client_ip(request, auth_service.settings.trusted_proxy_ip_set)
    issued: IssuedToken = await auth_service.login(
        body.email,
        body.password,
        client_ip=client_ip,
        user_agent=request.headers.get("User-Agent"),
    )
    return LoginResponse(
        token=issued.token,
        admin=_admin_info(issued.identity, issued.session),
        expires_in=issued.expires_in,
        session_info=SessionInfo(
            user_agent=issued.session.user_agent,
            ip=issued.session.ip,
            created_at=issued.session.created_at,
        ),
    )


@router.post("/refresh", response_model=RefreshResponse, responses=UNAUTHORIZED)
async def refresh(
    request: Request,
    auth_service: AuthService = Depends(get_auth_service),
) -> RefreshResponse:
    """Exchange a current or expired token for a new one on the same session."""
    token = extract_bearer_token(request)
    if not token:
        raise RefreshFailedError("Refresh token required")

    issued = auth_service.refresh(token)
    return RefreshResponse(
        token=issued.token,
        admin=_admin_info(issued.identity, issued.session),
        expires_in=issued.expires_in,
    )


@router.post("/logout", response_model=SuccessResponse, responses=UNAUTHORIZED)
async def logout(
    context: AuthContext = Depends(get_auth_context),
    auth_service: AuthService = Depends(get_auth_service),
) -> SuccessResponse:
    """Blacklist the current token and revoke its session."""
    auth_service.logout(context)
    return SuccessResponse(message="Logged out successfully")


@router.get("/verify", response_model=VerifyResponse, responses=UNAUTHORIZED)
async def verify(
    context: AuthContext = Depends(get_auth_context),
    auth_service: AuthService = Depends(get_auth_service),
) -> VerifyResponse:
    """Return the current identity; used by clients on page load."""
    return VerifyResponse(
        admin=_admin_info(context.identity, context.session),
        permissions=list(context.session.permissions),
        session_valid=True,
        environment=auth_service.settings.environment,
        server_time=datetime.now(UTC),
    )


@router.get("/sessions", response_model=SessionListResponse, responses=UNAUTHORIZED)
async def list_sessions(
    context: AuthContext = Depends(get_auth_context),
    auth_service: AuthService = Depends(get_auth_service),
) -> SessionListResponse:
    """List the admin's active sessions."""
    return SessionListResponse(
        sessions=[
            SessionSummary(
                session_id=s.session_id,
                user_agent=s.user_agent,
                ip=s.ip,
                created_at=s.created_at,
                last_active=s.last_active,
                current=s.session_id == context.session.session_id,
            )
            for s in auth_service.list_sessions(context)
        ]
    )


@router.post(
    "/sessions/revoke-all", response_model=RevokeAllResponse, responses=UNAUTHORIZED
)
async def revoke_all_sessions(
    context: AuthContext = Depends(get_auth_context),
    auth_service: AuthService = Depends(get_auth_service),
) -> RevokeAllResponse:
    """Sign out everywhere, including the calling session."""
    revoked = auth_service.revoke_all(context)
    return RevokeAllResponse(message=f"Revoked {revoked} session(s)", revoked=revoked)


@router.delete(
    "/sessions/{session_id}",
    response_model=SuccessResponse,
    responses={
        **UNAUTHORIZED,
        status.HTTP_400_BAD_REQUEST: {
            "model": ErrorResponse,
            "description": "Cannot revoke the current session",
        },
    },
)
async def revoke_session(
    session_id: str,
    context: AuthContext = Depends(get_auth_context),
    auth_service: AuthService = Depends(get_auth_service),
) -> SuccessResponse:
    """Revoke another session. Revoking an unknown id succeeds."""
    auth_service.revoke_session(context, session_id)
    return SuccessResponse(message="Session revoked")
