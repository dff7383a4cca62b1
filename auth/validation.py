"""
auth/validation.py -- Input rules for credential records.

Pure functions. Each raises auth.errors.ValidationError with a message that is
safe to return to the client. The store calls validate_user() before full
saves; the flows call validate_new_password() before any password mutation.

Layer rule: no imports from api/, mail/ or core/.
"""

from __future__ import annotations

import re

from auth.errors import ValidationError
from auth.models import Role, User

# Pragmatic format check: local@domain.tld, no whitespace. Deliverability is
# proven by the welcome / reset emails, not by the regex.
EMAIL_REGEX = re.compile(r"^[a-z0-9._%+\-]+@[a-z0-9.\-]+\.[a-z]{2,}$")

MIN_PASSWORD_LENGTH = 8
MAX_PASSWORD_LENGTH = 72  # bcrypt truncates beyond 72 bytes
MAX_EMAIL_LENGTH = 254


def normalize_email(email: str | None) -> str:
    """Strip and lowercase an email address. None becomes ""."""
    return (email or "").strip().lower()


def validate_email(email: str) -> str:
    """Return the normalized email or raise ValidationError."""
    normalized = normalize_email(email)
    if not normalized:
        raise ValidationError("Please provide your email.")
    if len(normalized) > MAX_EMAIL_LENGTH or not EMAIL_REGEX.match(normalized):
        raise ValidationError("Please provide a valid email.")
    return normalized


def validate_new_password(password: str | None, password_confirm: str | None) -> None:
    """Check a new password and its confirmation."""
    if not password:
        raise ValidationError("Please provide a password.")
    if not password_confirm:
        raise ValidationError("Please confirm your password.")
    if len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters.")
    if len(password.encode("utf-8")) > MAX_PASSWORD_LENGTH:
        raise ValidationError(f"Password must be at most {MAX_PASSWORD_LENGTH} bytes.")
    if password != password_confirm:
        raise ValidationError("Passwords are not the same!")


def validate_user(user: User) -> None:
    """Full-record validation run by UserStore on create and on validated saves.

    Normalizes user.email in place.
    """
    if not user.name or not user.name.strip():
        raise ValidationError("Please tell us your name.")
    user.email = validate_email(user.email)
    try:
        user.role = Role(user.role)
    except ValueError as exc:
        allowed = ", ".join(r.value for r in Role)
        raise ValidationError(f"Role must be one of: {allowed}.") from exc
