"""
auth/flows.py -- Signup, login and password lifecycle orchestration.

AuthFlows ties the store, hasher, token services and notifier together. Route
handlers call exactly one method per request and translate the returned
AuthResult into a response; every failure is one of the typed errors in
auth/errors.py.

Notification policy:
  Welcome email (signup) is best-effort. The account already exists and the
      user holds a valid session token; failing the request would leave a
      created account the client believes was never made. The failure is
      logged at WARNING.

  Reset email (forgot-password) is critical. The reset capability only means
      something if the user can receive it, so on delivery failure the token
      fields are cleared again and EmailDeliveryError (500) is raised.

Timing [C1]: login runs one bcrypt verification whether or not the email is
registered, so response time does not reveal account existence.

Layer rule: no imports from api/, mail/ or core/.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Protocol

from auth.errors import (
    EmailDeliveryError,
    InvalidCredentialsError,
    NotAuthenticatedError,
    NotFoundError,
    ValidationError,
)
from auth.models import User
from auth.store import UserStore
from auth.tokens import ResetTokenService, SessionTokenService
from auth.validation import validate_new_password

logger = logging.getLogger("tourbook.auth.flows")

RESET_PATH = "/api/v1/users/resetPassword"
WELCOME_PATH = "/me"


class Notifier(Protocol):
    """Outbound notification channel. Both methods raise on delivery failure."""

    def send_welcome(self, recipient: User, url: str) -> None: ...

    def send_password_reset(self, recipient: User, reset_url: str) -> None: ...


@dataclass
class SignupInput:
    name: str | None
    email: str | None
    password: str | None
    password_confirm: str | None


@dataclass(frozen=True)
class AuthResult:
    """An authenticated user and the freshly issued session token."""

    user: User
    token: str


class AuthFlows:
    def __init__(
        self,
        store: UserStore,
        session_tokens: SessionTokenService,
        reset_tokens: ResetTokenService,
        notifier: Notifier,
    ) -> None:
        self.store = store
        self.hasher = store.hasher
        self.session_tokens = session_tokens
        self.reset_tokens = reset_tokens
        self.notifier = notifier

    # ------------------------------------------------------------------
    # Signup / login
    # ------------------------------------------------------------------

    def signup(self, data: SignupInput, base_url: str) -> AuthResult:
        """Create an account with role "user" and log it in.

        The role is never taken from client input.
        """
        validate_new_password(data.password, data.password_confirm)
        user = self.store.create_user(User(name=data.name or "", email=data.email or ""), data.password)
        logger.info("User %s signed up", user.id)

        try:
            self.notifier.send_welcome(user, _join(base_url, WELCOME_PATH))
        except Exception:
            logger.warning("Welcome email for user %s failed; account kept", user.id, exc_info=True)

        return self._issue(user)

    def login(self, email: str | None, password: str | None) -> AuthResult:
        """Verify email + password and issue a session token.

        Unknown email and wrong password raise the same InvalidCredentialsError.
        """
        if not email or not password:
            raise ValidationError("Please provide email and password!")

        user = self.store.find_by_email(email, include_secret=True)
        if user is None or user.hashed_password is None:
            # Equalize timing -- do NOT return early before running bcrypt [C1]
            self.hasher.dummy_verify(password)
            raise InvalidCredentialsError()
        if not self.hasher.verify(password, user.hashed_password):
            raise InvalidCredentialsError()

        user.hashed_password = None
        return self._issue(user)

    # ------------------------------------------------------------------
    # Password lifecycle
    # ------------------------------------------------------------------

    def forgot_password(self, email: str | None, base_url: str) -> None:
        """Issue a reset token and email its cleartext inside a reset URL."""
        if not email:
            raise ValidationError("Please provide your email.")
        user = self.store.find_by_email(email)
        if user is None:
            raise NotFoundError("There is no user with that email address.")

        issued = self.reset_tokens.issue()
        user.password_reset_token = issued.token_hash
        user.password_reset_expires = issued.expires_at
        self.store.save(user, validate=False)

        reset_url = _join(base_url, f"{RESET_PATH}/{issued.token}")
        try:
            self.notifier.send_password_reset(user, reset_url)
        except Exception as exc:
            # Only clear our own token; a concurrent request may have replaced it.
            self.store.clear_reset_token(user.id, issued.token_hash)
            logger.error("Reset email for user %s failed; reset token withdrawn", user.id)
            raise EmailDeliveryError() from exc

        logger.info("Password reset token issued for user %s", user.id)

    def reset_password(self, token: str, password: str | None, password_confirm: str | None) -> AuthResult:
        """Redeem a reset token, set the new password and log the user in.

        The new password is validated before the token is consumed, so a typo
        in the confirmation does not burn the emailed link.
        """
        validate_new_password(password, password_confirm)
        user = self.reset_tokens.redeem(self.store, token)
        user.password_changed_at = self.store.set_password(user.id, password)
        logger.info("Password reset completed for user %s", user.id)
        return self._issue(user)

    def update_password(
        self,
        current_user: User,
        password_current: str | None,
        password: str | None,
        password_confirm: str | None,
    ) -> AuthResult:
        """Change the password of an authenticated user.

        The current password is always re-verified, even with a valid session.
        The response carries a new token; every older token becomes stale.
        """
        if not password_current:
            raise ValidationError("Please provide your current password.")

        record = self.store.find_by_id(current_user.id, include_secret=True)
        if record is None or record.hashed_password is None:
            raise NotAuthenticatedError("The user belonging to this token no longer exists.")
        if not self.hasher.verify(password_current, record.hashed_password):
            raise InvalidCredentialsError("Your current password is wrong.")

        validate_new_password(password, password_confirm)
        record.password_changed_at = self.store.set_password(record.id, password)
        record.hashed_password = None
        logger.info("Password updated for user %s", record.id)
        return self._issue(record)

    # ------------------------------------------------------------------
    # Account
    # ------------------------------------------------------------------

    def deactivate(self, current_user: User) -> None:
        """Soft-delete the caller's account. Existing tokens stop resolving."""
        self.store.deactivate(current_user.id)
        logger.info("User %s deactivated their account", current_user.id)

    def _issue(self, user: User) -> AuthResult:
        return AuthResult(user=user, token=self.session_tokens.issue(user.id))


def _join(base_url: str, path: str) -> str:
    return f"{base_url.rstrip('/')}{path}"
