"""In-memory registry of authenticated admin sessions.

Sessions live only in process memory: a restart drops every session and
all outstanding tokens then fail the gate with SESSION_EXPIRED. The client
treats that like any other failed refresh and asks for a new login.
"""

import logging
import secrets
import threading
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime

logger = logging.getLogger(__name__)

ADMIN_IDENTITY_ID = "admin"
ADMIN_ROLE = "admin"
ADMIN_PERMISSIONS: tuple[str, ...] = ("read:projects", "write:projects", "delete:projects")


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True)
class AdminIdentity:
    """The authenticated principal and its static capability set."""

    id: str
    email: str
    role: str = ADMIN_ROLE
    permissions: tuple[str, ...] = ADMIN_PERMISSIONS


@dataclass
class Session:
    """One authenticated browser context."""

    session_id: str
    identity_id: str
    user_agent: str | None
    ip: str | None
    created_at: datetime
    last_active: datetime
    is_active: bool = True
    permissions: tuple[str, ...] = field(default_factory=tuple)


class SessionStore:
    """Thread-safe map of session id -> Session.

    Revocation deletes the entry; a revoked id is indistinguishable from one
    that never existed. Callers receive copies, so the only way to mutate a
    stored session is through the store.
    """

    def __init__(self, clock: Callable[[], datetime] = _utcnow) -> None:
        self._sessions: dict[str, Session] = {}
        self._lock = threading.Lock()
        self._clock = clock

    def create(
        self,
        identity: AdminIdentity,
        user_agent: str | None,
        ip: str | None,
    ) -> Session:
        """Create and register a session with a 256-bit random id."""
        now = self._clock()
        with self._lock:
            session_id = secrets.token_hex(32)
            while session_id in self._sessions:
                session_id = secrets.token_hex(32)
            session = Session(
                session_id=session_id,
                identity_id=identity.id,
                user_agent=user_agent,
                ip=ip,
                created_at=now,
                last_active=now,
                permissions=identity.permissions,
            )
            self._sessions[session_id] = session
            active = len(self._sessions)
        logger.info(f"Session created for {identity.id} from {ip} ({active} active)")
        return replace(session)

    def get(self, session_id: str) -> Session | None:
        with self._lock:
            session = self._sessions.get(session_id)
            return replace(session) if session is not None else None

    def touch(self, session_id: str) -> Session | None:
        """Update last_active and return the session, or None if it is gone."""
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                return None
            session.last_active = self._clock()
            return replace(session)

    def revoke(self, session_id: str) -> bool:
        """Remove a session. Revoking an unknown id is not an error."""
        with self._lock:
            removed = self._sessions.pop(session_id, None) is not None
        if removed:
            logger.info(f"Session revoked: {session_id[:8]}...")
        return removed

    def revoke_all(self, identity_id: str, *, except_session_id: str | None = None) -> int:
        """Remove every session owned by ``identity_id``. Returns the count removed."""
        with self._lock:
            doomed = [
                sid
                for sid, session in self._sessions.items()
                if session.identity_id == identity_id and sid != except_session_id
            ]
            for sid in doomed:
                del self._sessions[sid]
        if doomed:
            logger.info(f"Revoked {len(doomed)} session(s) for {identity_id}")
        return len(doomed)

    def list_for_identity(self, identity_id: str) -> list[Session]:
        with self._lock:
            sessions = [replace(s) for s in self._sessions.values() if s.identity_id == identity_id]
        return sorted(sessions, key=lambda s: s.created_at)

    def clear(self) -> None:
        with self._lock:
            self._sessions.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)
