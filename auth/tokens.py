"""
auth/tokens.py -- Session JWTs and password-reset tokens.

Security design decisions:
  Session tokens: python-jose with HS256. Tokens carry only the subject (user
       id), issued-at and expiry. They are stateless, so any worker can verify
       them without a session table. verify() raises InvalidTokenError with a
       reason; the dependency layer logs the reason and treats every failure
       identically as "not authenticated".

  Reset tokens: secrets.token_hex(32) gives 256 bits of entropy. Only the
       SHA-256 of the token is persisted, so a leaked users table does not hand
       out working reset links. SHA-256 rather than bcrypt because the input is
       already high-entropy: brute force is infeasible and the hash must be
       deterministic for lookup.

  Single use: redeem() clears the stored hash with a conditional UPDATE that
       only matches while the hash is still present. Two concurrent redeems of
       the same token cannot both succeed.

  Clock: both services take a clock callable (defaults to UTC now). Tests
       issue tokens "in the past" by passing a shifted clock.

Layer rule: no imports from api/, mail/ or core/. The secret and lifetimes are
passed in by the caller.
"""

from __future__ import annotations

import hashlib
import logging
import secrets
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

from jose import ExpiredSignatureError, JWTError, jwt
from jose.exceptions import JWTClaimsError

from auth.errors import ExpiredOrInvalidTokenError, InvalidTokenError
from auth.models import ResetTokenIssue, SessionClaims

if TYPE_CHECKING:
    from auth.models import User
    from auth.store import UserStore

logger = logging.getLogger("tourbook.auth")

_ALGORITHM = "HS256"
_RESET_TOKEN_BYTES = 32


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Session tokens
# ---------------------------------------------------------------------------


class SessionTokenService:
    """Issue and verify signed session JWTs.

    Usage:
        tokens = SessionTokenService(settings.secret_key, settings.jwt_expire_seconds)
        token = tokens.issue(user.id)
        claims = tokens.verify(token)   # raises InvalidTokenError
    """

    def __init__(
        self,
        secret_key: str,
        expire_seconds: int,
        algorithm: str = _ALGORITHM,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._secret_key = secret_key
        self.expire_seconds = expire_seconds
        self._algorithm = algorithm
        self._clock = clock

    def issue(self, user_id: str) -> str:
        """Encode a signed JWT for user_id, valid for expire_seconds."""
        now = self._clock()
        payload = {
            "sub": user_id,
            "iat": now,
            "exp": now + timedelta(seconds=self.expire_seconds),
        }
        return jwt.encode(payload, self._secret_key, algorithm=self._algorithm)

    def verify(self, token: str) -> SessionClaims:
        """Decode and verify a JWT.

        Signature and expiry are checked by jose against the real current time.
        Raises InvalidTokenError on any failure; the reason distinguishes the
        cases for logging only.
        """
        try:
            payload = jwt.decode(token, self._secret_key, algorithms=[self._algorithm])
        except ExpiredSignatureError as exc:
            raise InvalidTokenError("expired") from exc
        except JWTClaimsError as exc:
            raise InvalidTokenError("missing_claims") from exc
        except JWTError as exc:
            # jose wraps signature failures in a generic JWTError.
            reason = "bad_signature" if "signature" in str(exc).lower() else "malformed"
            raise InvalidTokenError(reason) from exc

        subject = payload.get("sub")
        issued_at = payload.get("iat")
        if not subject or not isinstance(issued_at, (int, float)):
            raise InvalidTokenError("missing_claims")
        return SessionClaims(
            subject_id=subject,
            issued_at=datetime.fromtimestamp(issued_at, tz=timezone.utc),
        )


# ---------------------------------------------------------------------------
# Password-reset tokens
# ---------------------------------------------------------------------------


class ResetTokenService:
    """Issue and redeem short-lived, single-use password-reset tokens."""

    def __init__(
        self,
        expire_seconds: int = 10 * 60,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.expire_seconds = expire_seconds
        self._clock = clock

    @staticmethod
    def hash_token(token: str) -> str:
        """Return the SHA-256 hex digest stored in place of the cleartext token."""
        return hashlib.sha256(token.encode("utf-8")).hexdigest()

    def issue(self) -> ResetTokenIssue:
        """Generate a new reset token.

        The cleartext is returned exactly once and must only travel by email.
        """
        token = secrets.token_hex(_RESET_TOKEN_BYTES)
        return ResetTokenIssue(
            token=token,
            token_hash=self.hash_token(token),
            expires_at=self._clock() + timedelta(seconds=self.expire_seconds),
        )

    def redeem(self, store: UserStore, token: str) -> User:
        """Consume a reset token and return the matching user.

        Looks up an active record whose stored hash matches and whose expiry is
        still in the future, then clears both reset fields. Raises
        ExpiredOrInvalidTokenError when no record matches or when another
        request consumed the token first.
        """
        token_hash = self.hash_token(token)
        user = store.find_by_reset_token(token_hash, now=self._clock())
        if user is None or not store.clear_reset_token(user.id, token_hash):
            raise ExpiredOrInvalidTokenError()
        user.password_reset_token = None
        user.password_reset_expires = None
        return user
