"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, near-zero logic). Stores and flows do
the work; the only behaviour here is the password-freshness comparison, which
is a property of the record itself.

Layer rule: no imports from api/, mail/ or core/.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import NamedTuple


class Role(str, Enum):
    user = "user"
    guide = "guide"
    lead_guide = "lead-guide"
    admin = "admin"


@dataclass
class User:
    """A credential record.

    hashed_password is None unless the record was loaded with
    include_secret=True. It must never be copied into a response model.

    password_reset_token holds the SHA-256 of the pending reset token, never
    the cleartext. Both reset fields are None when no reset is pending.

    active=False is a soft delete: the store excludes such records from every
    lookup, so an inactive user behaves as if it did not exist.
    """

    name: str
    email: str
    role: Role = Role.user
    id: str | None = None
    photo: str = "default.jpg"
    hashed_password: str | None = None
    password_changed_at: datetime | None = None
    password_reset_token: str | None = None
    password_reset_expires: datetime | None = None
    active: bool = True
    created_at: datetime | None = None

    def changed_password_after(self, issued_at: datetime) -> bool:
        """Return True if the password changed after a token issued at issued_at.

        JWT iat is whole seconds, so the change time is truncated to seconds
        before comparing. password_changed_at is backdated by one second at
        write time, which keeps a token issued in the same request as the
        change valid.
        """
        if self.password_changed_at is None:
            return False
        changed = int(self.password_changed_at.timestamp())
        return int(issued_at.timestamp()) < changed


@dataclass(frozen=True)
class SessionClaims:
    """Verified contents of a session token."""

    subject_id: str
    issued_at: datetime


class ResetTokenIssue(NamedTuple):
    """Result of issuing a reset token.

    token is the cleartext, handed to the caller exactly once for the email.
    token_hash and expires_at are what gets persisted.
    """

    token: str
    token_hash: str
    expires_at: datetime


@dataclass(frozen=True)
class AuthContext:
    """Request-scoped identity produced by the auth dependencies.

    user is None for an anonymous request (soft authentication only).
    """

    user: User | None = None
    claims: SessionClaims | None = None

    @property
    def is_authenticated(self) -> bool:
        return self.user is not None
