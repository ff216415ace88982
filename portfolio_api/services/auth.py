"""Authentication service for the single admin identity."""

import asyncio
import hmac
import logging
import random
import threading
import time
from collections import defaultdict
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import timedelta
from functools import cached_property

from argon2 import PasswordHasher
from argon2.exceptions import InvalidHashError, VerificationError

from portfolio_api.core.config import Settings
from portfolio_api.services.blacklist import TokenBlacklist
from portfolio_api.services.errors import (
    BadRequestError,
    BlacklistedTokenError,
    InvalidAccountError,
    InvalidCredentialsError,
    RateLimitedError,
    RefreshFailedError,
    ServerConfigError,
    SessionExpiredError,
    TokenError,
)
from portfolio_api.services.sessions import (
    ADMIN_IDENTITY_ID,
    AdminIdentity,
    Session,
    SessionStore,
)
from portfolio_api.services.tokens import TokenClaims, TokenCodec

logger = logging.getLogger(__name__)

# Argon2 password hasher with recommended parameters
# Memory: 64 MiB, Time: 3 iterations, Parallelism: 4
ph = PasswordHasher(
    time_cost=3,
    memory_cost=65536,
    parallelism=4,
    hash_len=32,
    salt_len=16,
)


def hash_password(password: str) -> str:
    """Hash a password using Argon2id."""
    return ph.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    """Verify a password against its hash using constant-time comparison."""
    try:
        ph.verify(password_hash, password)
        return True
    except (VerificationError, InvalidHashError):
        return False


class LoginAttemptTracker:
    """Sliding-window count of login attempts per client IP.

    Each attempt is counted on arrival, before its credentials are looked
    at, so concurrent requests cannot all slip under the limit. Once an IP
    has ``max_attempts`` inside ``window_seconds`` it is refused outright.
    A successful login clears the IP's history.
    """

    def __init__(
        self,
        max_attempts: int = 5,
        window_seconds: float = 900,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.max_attempts = max_attempts
        self.window_seconds = window_seconds
        self._attempts: dict[str, list[float]] = defaultdict(list)
        self._lock = threading.Lock()
        self._clock = clock

    def _recent(self, client_ip: str, now: float) -> list[float]:
        attempts = [t for t in self._attempts.get(client_ip, []) if now - t < self.window_seconds]
        if attempts:
            self._attempts[client_ip] = attempts
        else:
            self._attempts.pop(client_ip, None)
        return attempts

    def reserve(self, client_ip: str) -> float:
        """Count an attempt for ``client_ip`` and return its timestamp.

        Raises RateLimitedError, without counting anything, if the IP is
        already at the limit.
        """
        now = self._clock()
        with self._lock:
            attempts = self._recent(client_ip, now)
            if len(attempts) >= self.max_attempts:
                retry_after = max(1, int(self.window_seconds - (now - attempts[0])))
                logger.warning("Login rate limit exceeded for %s", client_ip)
                raise RateLimitedError(retry_after=retry_after)
            self._attempts[client_ip].append(now)
            return now

    def release(self, client_ip: str, stamp: float) -> None:
        """Give back one reserved attempt that never reached the credentials."""
        with self._lock:
            attempts = self._attempts.get(client_ip)
            if attempts and stamp in attempts:
                attempts.remove(stamp)
                if not attempts:
                    del self._attempts[client_ip]

    def reset(self, client_ip: str | None = None) -> None:
        with self._lock:
            if client_ip is None:
                self._attempts.clear()
            else:
                self._attempts.pop(client_ip, None)

    def prune(self) -> int:
        """Forget IPs with no attempts inside the window. Returns count removed."""
        now = self._clock()
        with self._lock:
            before = len(self._attempts)
            for client_ip in list(self._attempts):
                self._recent(client_ip, now)
            return before - len(self._attempts)


@dataclass(frozen=True)
class AuthContext:
    """What the auth gate attaches to an accepted request."""

    identity: AdminIdentity
    session: Session
    token: str
    claims: TokenClaims


@dataclass(frozen=True)
class IssuedToken:
    """A freshly signed token and the session it belongs to."""

    token: str
    identity: AdminIdentity
    session: Session
    expires_in: int


class AuthService:
    """Login, refresh, logout and per-request token validation.

    Holds references to the process-wide session store and blacklist; the
    app builds exactly one of each at startup and shares them through this
    service.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        codec: TokenCodec,
        sessions: SessionStore,
        blacklist: TokenBlacklist,
        attempts: LoginAttemptTracker | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.settings = settings
        self.codec = codec
        self.sessions = sessions
        self.blacklist = blacklist
        self.attempts = attempts or LoginAttemptTracker(
            max_attempts=settings.login_max_attempts,
            window_seconds=settings.login_window_seconds,
        )
        self._sleep = sleep
        self._hash_lock = threading.Lock()
        self.token_lifetime = timedelta(hours=settings.token_lifetime_hours)
        self.identity = AdminIdentity(id=ADMIN_IDENTITY_ID, email=settings.admin_email or "")

    @cached_property
    def _password_hash(self) -> str:
        if self.settings.admin_password_hash:
            return self.settings.admin_password_hash
        return hash_password(self.settings.admin_password or "")

    def _check_credentials(self, email: str, password: str) -> bool:
        """Compare both fields without short-circuiting on the email."""
        with self._hash_lock:
            password_hash = self._password_hash
        email_ok = hmac.compare_digest(
            email.strip().lower().encode("utf-8"),
            (self.settings.admin_email or "").encode("utf-8"),
        )
        password_ok = verify_password(password, password_hash)
        return email_ok and password_ok

    async def _pad_response(self, started: float) -> None:
        """Sleep until a random point in the configured login delay window."""
        target = random.uniform(
            self.settings.login_delay_min_seconds,
            self.settings.login_delay_max_seconds,
        )
        remaining = target - (time.monotonic() - started)
        if remaining > 0:
            await self._sleep(remaining)

    def _issue(self, session: Session) -> IssuedToken:
        claims = TokenClaims(
            identity_id=self.identity.id,
            role=self.identity.role,
            session_id=session.session_id,
            email=self.identity.email,
        )
        token = self.codec.issue(claims, self.token_lifetime)
        return IssuedToken(
            token=token,
            identity=self.identity,
            session=session,
            expires_in=int(self.token_lifetime.total_seconds()),
        )

    async def login(
        self,
        email: str,
        password: str,
        *,
        client_ip: str,
        user_agent: str | None,
    ) -> IssuedToken:
        """Authenticate the admin and open a new session.

        Raises RateLimitedError before touching the credentials when the IP
        is over its attempt budget. Success and failure both take a
        randomized 1-2s (by default) so timing reveals nothing.
        """
        # Counted before any await so concurrent attempts see each other
        stamp = self.attempts.reserve(client_ip)

        if not self.settings.admin_configured:
            self.attempts.release(client_ip, stamp)
            logger.error("Admin credentials not configured")
            raise ServerConfigError()

        started = time.monotonic()
        valid = self._check_credentials(email, password)
        await self._pad_response(started)

        if not valid:
            logger.warning(f"Failed login attempt from IP: {client_ip}")
            raise InvalidCredentialsError()

        self.attempts.reset(client_ip)
        session = self.sessions.create(self.identity, user_agent, client_ip)
        logger.info(f"Admin logged in from {client_ip}")
        return self._issue(session)

    def authenticate(self, token: str) -> AuthContext:
        """Run the gate pipeline: decode, blacklist, session, identity.

        Raises the matching AuthError subclass on the first failing step.
        """
        claims = self.codec.verify(token)

        if self.blacklist.is_blacklisted(token):
            raise BlacklistedTokenError()

        session = self.sessions.get(claims.session_id)
        if session is None or not session.is_active:
            raise SessionExpiredError()

        if claims.identity_id != self.identity.id:
            raise InvalidAccountError()

        # The session may be revoked between the lookup and the touch
        session = self.sessions.touch(claims.session_id)
        if session is None:
            raise SessionExpiredError()

        return AuthContext(identity=self.identity, session=session, token=token, claims=claims)

    def refresh(self, token: str) -> IssuedToken:
        """Exchange a (possibly expired) token for a new one on the same session."""
        try:
            claims = self.codec.verify(token, allow_expired=True)
        except TokenError as e:
            logger.warning(f"Token refresh rejected: {e}")
            raise RefreshFailedError() from e

        if self.blacklist.is_blacklisted(token):
            logger.warning("Token refresh rejected: token was revoked")
            raise RefreshFailedError()

        if claims.identity_id != self.identity.id:
            raise RefreshFailedError()

        session = self.sessions.touch(claims.session_id)
        if session is None or not session.is_active:
            raise SessionExpiredError("Session expired")

        return self._issue(session)

    def logout(self, context: AuthContext) -> None:
        """Blacklist the caller's token and close its session."""
        self.blacklist.add(context.token)
        self.sessions.revoke(context.session.session_id)
        logger.info(f"Admin logged out, session {context.session.session_id[:8]}...")

    def list_sessions(self, context: AuthContext) -> list[Session]:
        return self.sessions.list_for_identity(context.identity.id)

    def revoke_session(self, context: AuthContext, session_id: str) -> bool:
        """Revoke another session of the caller's identity.

        Unknown ids succeed silently; the caller's own session must be
        closed through logout instead.
        """
        if session_id == context.session.session_id:
            raise BadRequestError(
                "Cannot revoke current session", code="CANNOT_REVOKE_CURRENT_SESSION"
            )
        target = self.sessions.get(session_id)
        if target is None or target.identity_id != context.identity.id:
            return False
        return self.sessions.revoke(session_id)

    def revoke_all(self, context: AuthContext) -> int:
        """Close every session of the caller's identity, including this one."""
        self.blacklist.add(context.token)
        return self.sessions.revoke_all(context.identity.id)

    def run_maintenance(self) -> tuple[int, int]:
        """Evict expired blacklist entries and stale login-attempt windows."""
        return self.blacklist.sweep(), self.attempts.prune()
