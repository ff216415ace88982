"""Security headers and request correlation ids."""

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from portfolio_api.core.logging import request_id_var
from portfolio_api.core.request_utils import REQUEST_ID_HEADER, generate_request_id

_MAX_REQUEST_ID_LENGTH = 128


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Add security headers to all responses and propagate X-Request-ID.

    A caller-supplied X-Request-ID is kept on ``request.state`` so error
    envelopes can echo it; otherwise one is generated for logging and the
    response header only.
    """

    async def dispatch(self, request: Request, call_next) -> Response:
        supplied = (request.headers.get(REQUEST_ID_HEADER) or "").strip()
        supplied = supplied[:_MAX_REQUEST_ID_LENGTH] or None
        request_id = supplied or generate_request_id()
        request.state.supplied_request_id = supplied
        request.state.request_id = request_id

        ctx_token = request_id_var.set(request_id)
        try:
            response = await call_next(request)
        finally:
            request_id_var.reset(ctx_token)

        response.headers[REQUEST_ID_HEADER] = request_id
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["X-XSS-Protection"] = "1; mode=block"
        response.headers["Cache-Control"] = "no-store"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        response.headers["Content-Security-Policy"] = "default-src 'none'; frame-ancestors 'none'"
        response.headers["Permissions-Policy"] = "camera=(), microphone=(), geolocation=()"

        forwarded_proto = request.headers.get("x-forwarded-proto", "")
        if forwarded_proto == "https" or request.url.scheme == "https":
            response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"

        return response
