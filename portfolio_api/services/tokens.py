"""Token codec: signs and verifies the admin JWTs.

The algorithm is pinned to HS256 on both sides. Tokens carry the identity,
its role and the session id (which doubles as ``jti``), plus the standard
iss/aud/iat/nbf/exp claims.
"""

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any

import jwt
from jwt.exceptions import ExpiredSignatureError, InvalidSignatureError, PyJWTError

from portfolio_api.services.errors import (
    BadSignatureError,
    MalformedTokenError,
    ServerConfigError,
    TokenExpiredError,
)

logger = logging.getLogger(__name__)

ALGORITHM = "HS256"

# Claims every token must carry to be accepted
REQUIRED_CLAIMS = ["sub", "sid", "jti", "iat", "nbf", "exp"]

# Tolerance for nbf/iat of tokens minted by a slightly fast clock
_LEEWAY_SECONDS = 5


@dataclass(frozen=True)
class TokenClaims:
    """Identity claims carried by a token.

    The issued_at / not_before / expires_at fields are filled in by the codec
    and take no part in equality, so ``verify(issue(c)) == c``.
    """

    identity_id: str
    role: str
    session_id: str
    email: str | None = None
    issued_at: int | None = field(default=None, compare=False)
    not_before: int | None = field(default=None, compare=False)
    expires_at: int | None = field(default=None, compare=False)


class TokenCodec:
    """Issue and verify HS256 tokens with a server-held secret.

    ``max_age`` is a hard ceiling measured from ``iat`` that applies
    regardless of the ``exp`` claim.
    """

    def __init__(
        self,
        secret: str | None,
        *,
        issuer: str,
        audience: str,
        max_age: timedelta = timedelta(hours=24),
        clock: Callable[[], float] = time.time,
    ) -> None:
        if not secret:
            raise ServerConfigError("JWT secret is not configured")
        self._secret = secret
        self.issuer = issuer
        self.audience = audience
        self.max_age = max_age
        self._clock = clock

    def issue(self, claims: TokenClaims, lifetime: timedelta) -> str:
        """Sign a token for ``claims`` valid for ``lifetime``."""
        if not self._secret:
            raise ServerConfigError("JWT secret is not configured")
        if lifetime <= timedelta(0) or lifetime > self.max_age:
            raise ValueError(f"Token lifetime must be in (0, {self.max_age}], got {lifetime}")

        now = int(self._clock())
        payload: dict[str, Any] = {
            "sub": claims.identity_id,
            "role": claims.role,
            "sid": claims.session_id,
            "jti": claims.session_id,
            "iss": self.issuer,
            "aud": self.audience,
            "iat": now,
            "nbf": now,
            "exp": now + int(lifetime.total_seconds()),
        }
        if claims.email is not None:
            payload["email"] = claims.email

        token = jwt.encode(payload, self._secret, algorithm=ALGORITHM)
        # PyJWT 2.x returns str; older type stubs may declare bytes
        return str(token)

    def verify(self, token: str, *, allow_expired: bool = False) -> TokenClaims:
        """Verify ``token`` and return its claims.

        Raises:
            TokenExpiredError: past ``exp`` or older than ``max_age``
            BadSignatureError: signature does not verify
            MalformedTokenError: anything else (encoding, claims, algorithm)

        ``allow_expired`` skips both expiry checks; it is used only by token
        refresh, which re-validates the session separately.
        """
        try:
            payload = jwt.decode(
                token,
                self._secret,
                algorithms=[ALGORITHM],
                audience=self.audience,
                issuer=self.issuer,
                leeway=_LEEWAY_SECONDS,
                options={
                    "require": REQUIRED_CLAIMS,
                    "verify_exp": not allow_expired,
                },
            )
        except ExpiredSignatureError as e:
            raise TokenExpiredError("Token expired") from e
        except InvalidSignatureError as e:
            raise BadSignatureError("Invalid token signature") from e
        except PyJWTError as e:
            raise MalformedTokenError(f"Invalid token: {e}") from e

        if payload["jti"] != payload["sid"]:
            raise MalformedTokenError("Invalid token: jti does not match session")

        issued_at = int(payload["iat"])
        if not allow_expired:
            age = self._clock() - issued_at
            if age > self.max_age.total_seconds() + _LEEWAY_SECONDS:
                raise TokenExpiredError("Token exceeds maximum age")

        return TokenClaims(
            identity_id=str(payload["sub"]),
            role=str(payload.get("role", "")),
            session_id=str(payload["sid"]),
            email=payload.get("email"),
            issued_at=issued_at,
            not_before=int(payload["nbf"]),
            expires_at=int(payload["exp"]),
        )

    @staticmethod
    def peek_expiry(token: str) -> float | None:
        """Read ``exp`` without verifying the signature.

        Returns None for tokens that cannot be decoded or have no numeric exp.
        """
        try:
            payload = jwt.decode(token, options={"verify_signature": False})
        except PyJWTError:
            return None
        exp = payload.get("exp")
        if isinstance(exp, bool) or not isinstance(exp, (int, float)):
            return None
        return float(exp)
