"""Admin API authentication gate.

Every request under /api/* must carry a valid bearer token, except the
endpoints that perform authentication themselves. The gate runs the
AuthService pipeline (decode, blacklist, session, identity) and attaches
the resulting AuthContext to ``request.state.auth`` for the routes.
"""

import logging

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import JSONResponse

from portfolio_api.core.request_utils import get_request_id
from portfolio_api.services.auth import AuthContext, AuthService
from portfolio_api.services.errors import AuthError, NoTokenError, PortfolioError

logger = logging.getLogger(__name__)

PROTECTED_PREFIX = "/api"

# Paths under /api that don't require a token
EXCLUDED_PATHS = [
    "/api/admin/login",  # Issues tokens
    "/api/admin/refresh",  # Accepts expired tokens and checks them itself
]


def is_excluded(path: str) -> bool:
    """Exact or segment-boundary match against EXCLUDED_PATHS."""
    return any(path == excluded or path.startswith(excluded + "/") for excluded in EXCLUDED_PATHS)


def is_protected(path: str) -> bool:
    if not (path == PROTECTED_PREFIX or path.startswith(PROTECTED_PREFIX + "/")):
        return False
    return not is_excluded(path)


def extract_bearer_token(request: Request) -> str | None:
    """Extract the token from ``Authorization: Bearer <token>``."""
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        token = auth_header[7:].strip()
        return token or None
    return None


def auth_error_response(exc: PortfolioError, request_id: str | None) -> JSONResponse:
    headers = {"WWW-Authenticate": "Bearer"} if isinstance(exc, AuthError) else None
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_envelope(request_id),
        headers=headers,
    )


class AdminAuthMiddleware(BaseHTTPMiddleware):
    """Reject unauthenticated /api/* requests with a stable error code.

    Rejections: NO_TOKEN, INVALID_TOKEN, TOKEN_EXPIRED, TOKEN_INVALIDATED,
    SESSION_EXPIRED, INVALID_ACCOUNT. No retries happen here; the client
    decides whether to refresh.
    """

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        path = request.url.path

        # CORS preflight is answered by CORSMiddleware and never carries credentials
        if request.method == "OPTIONS":
            return await call_next(request)

        if not is_protected(path):
            return await call_next(request)

        request_id = get_request_id(request)
        token = extract_bearer_token(request)
        if not token:
            logger.warning(f"Admin API request without token: {request.method} {path}")
            return auth_error_response(NoTokenError(), request_id)

        auth_service: AuthService = request.app.state.auth_service
        try:
            context = auth_service.authenticate(token)
        except AuthError as e:
            log = logger.debug if e.code == "TOKEN_EXPIRED" else logger.warning
            log(f"Rejected token ({e.code}) for: {request.method} {path}")
            return auth_error_response(e, request_id)

        request.state.auth = context
        return await call_next(request)


def get_auth_context(request: Request) -> AuthContext:
    """Dependency returning the AuthContext the gate attached.

    Raises NoTokenError if the route is somehow reachable without the gate.
    """
    context = getattr(request.state, "auth", None)
    if context is None:
        raise NoTokenError()
    return context
