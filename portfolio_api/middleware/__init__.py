"""Middleware module for the Portfolio API."""

from portfolio_api.middleware.admin_auth import AdminAuthMiddleware, get_auth_context
from portfolio_api.middleware.maintenance import auth_state_sweep_loop, rate_limit_cleanup_loop
from portfolio_api.middleware.rate_limit import RateLimiter, RateLimitMiddleware
from portfolio_api.middleware.security_headers import SecurityHeadersMiddleware

__all__ = [
    "AdminAuthMiddleware",
    "RateLimiter",
    "RateLimitMiddleware",
    "SecurityHeadersMiddleware",
    "auth_state_sweep_loop",
    "get_auth_context",
    "rate_limit_cleanup_loop",
]
