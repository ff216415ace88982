"""Services module for the Portfolio API."""

from portfolio_api.services.auth import AuthContext, AuthService, LoginAttemptTracker
from portfolio_api.services.blacklist import TokenBlacklist
from portfolio_api.services.sessions import AdminIdentity, Session, SessionStore
from portfolio_api.services.tokens import TokenClaims, TokenCodec

__all__ = [
    "AdminIdentity",
    "AuthContext",
    "AuthService",
    "LoginAttemptTracker",
    "Session",
    "SessionStore",
    "TokenBlacklist",
    "TokenClaims",
    "TokenCodec",
]
