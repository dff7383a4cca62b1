"""Unit tests for auth/flows.py -- signup, login and password lifecycle.

Covers:
- signup creates a hashed record, returns a token, sends a best-effort welcome
- login never distinguishes unknown email from wrong password
- forgot-password: 404 on unknown email, rollback on email failure
- reset-password: single use, validates before consuming the token
- update-password: always re-verifies the current password
"""

from __future__ import annotations

import pytest

from auth.errors import (
    DuplicateEmailError,
    EmailDeliveryError,
    ExpiredOrInvalidTokenError,
    InvalidCredentialsError,
    NotFoundError,
    ValidationError,
)
from auth.flows import AuthFlows, SignupInput
from auth.models import Role
from auth.store import UserStore
from auth.tokens import SessionTokenService

BASE_URL = "http://tours.test/"


def _signup(flows: AuthFlows, email: str = "a@x.com", password: str = "longpassword1", confirm: str | None = None):
    return flows.signup(
        SignupInput(name="Ann Walker", email=email, password=password, password_confirm=confirm or password),
        base_url=BASE_URL,
    )


# ---------------------------------------------------------------------------
# Signup
# ---------------------------------------------------------------------------


class TestSignup:
    def test_signup_creates_record_and_returns_token(self, flows, store, session_tokens) -> None:
        result = _signup(flows)

        assert result.user.email == "a@x.com"
        assert result.user.role == Role.user
        assert result.user.hashed_password is None
        assert session_tokens.verify(result.token).subject_id == result.user.id
        record = store.find_by_email("a@x.com", include_secret=True)
        assert store.hasher.verify("longpassword1", record.hashed_password)

    def test_signup_sends_welcome_with_profile_url(self, flows, notifier) -> None:
        _signup(flows, email="welcome@x.com")
        assert notifier.welcome == [("welcome@x.com", "http://tours.test/me")]

    def test_welcome_failure_keeps_account(self, flows, store, notifier) -> None:
        notifier.fail_welcome = True
        result = _signup(flows, email="nomail@x.com")
        assert result.token
        assert store.find_by_email("nomail@x.com") is not None

    def test_password_mismatch_creates_nothing(self, flows, store) -> None:
        with pytest.raises(ValidationError, match="not the same"):
            _signup(flows, email="mismatch@x.com", confirm="longpassword2")
        assert store.find_by_email("mismatch@x.com") is None

    def test_short_password_rejected(self, flows) -> None:
        with pytest.raises(ValidationError):
            _signup(flows, email="short@x.com", password="short")

    def test_duplicate_email_rejected(self, flows) -> None:
        _signup(flows, email="twice@x.com")
        with pytest.raises(DuplicateEmailError):
            _signup(flows, email="Twice@X.com")


# ---------------------------------------------------------------------------
# Login
# ---------------------------------------------------------------------------


class TestLogin:
    def test_login_success(self, flows, make_user, session_tokens) -> None:
        user = make_user("login@x.com")
        result = flows.login("LOGIN@x.com", "password123")
        assert result.user.id == user.id
        assert result.user.hashed_password is None
        assert session_tokens.verify(result.token).subject_id == user.id

    def test_unknown_email_and_wrong_password_are_indistinguishable(self, flows, make_user) -> None:
        make_user("real@x.com")

        with pytest.raises(InvalidCredentialsError) as unknown:
            flows.login("ghost@x.com", "password123")
        with pytest.raises(InvalidCredentialsError) as wrong:
            flows.login("real@x.com", "wrongpassword")

        assert type(unknown.value) is type(wrong.value)
        assert unknown.value.message == wrong.value.message
        assert unknown.value.status_code == wrong.value.status_code == 401

    @pytest.mark.parametrize("email,password", [(None, "password123"), ("a@x.com", None), ("", "")])
    def test_missing_fields(self, flows, email, password) -> None:
        with pytest.raises(ValidationError, match="Please provide email and password"):
            flows.login(email, password)

    def test_deactivated_user_cannot_log_in(self, flows, make_user) -> None:
        user = make_user("inactive@x.com")
        flows.deactivate(user)
        with pytest.raises(InvalidCredentialsError):
            flows.login("inactive@x.com", "password123")


# ---------------------------------------------------------------------------
# Forgot / reset password
# ---------------------------------------------------------------------------


class TestForgotPassword:
    def test_unknown_email_is_not_found_and_mutates_nothing(self, flows, make_user, store, notifier) -> None:
        existing = make_user("someone@x.com")
        with pytest.raises(NotFoundError):
            flows.forgot_password("nobody@x.com", BASE_URL)
        assert notifier.resets == []
        assert store.find_by_id(existing.id).password_reset_token is None

    def test_emails_reset_url_and_stores_only_hash(self, flows, make_user, store, notifier, reset_tokens) -> None:
        user = make_user("forgot@x.com")
        flows.forgot_password("forgot@x.com", BASE_URL)

        recipient, url = notifier.resets[-1]
        assert recipient == "forgot@x.com"
        assert url.startswith("http://tours.test/api/v1/users/resetPassword/")
        token = notifier.last_reset_token()

        stored = store.find_by_id(user.id)
        assert stored.password_reset_token == reset_tokens.hash_token(token)
        assert stored.password_reset_token != token
        assert stored.password_reset_expires is not None

    def test_delivery_failure_rolls_back_token(self, flows, make_user, store, notifier) -> None:
        user = make_user("bounce@x.com")
        notifier.fail_reset = True

        with pytest.raises(EmailDeliveryError) as exc_info:
            flows.forgot_password("bounce@x.com", BASE_URL)

        assert exc_info.value.status_code == 500
        assert exc_info.value.status == "error"
        stored = store.find_by_id(user.id)
        assert stored.password_reset_token is None
        assert stored.password_reset_expires is None


class TestResetPassword:
    def test_reset_sets_new_password_and_logs_in(self, flows, make_user, notifier, store, session_tokens) -> None:
        user = make_user("reset@x.com")
        flows.forgot_password("reset@x.com", BASE_URL)

        result = flows.reset_password(notifier.last_reset_token(), "brandnew123", "brandnew123")

        assert result.user.id == user.id
        assert session_tokens.verify(result.token).subject_id == user.id
        assert flows.login("reset@x.com", "brandnew123").user.id == user.id
        with pytest.raises(InvalidCredentialsError):
            flows.login("reset@x.com", "password123")
        assert store.find_by_id(user.id).password_changed_at is not None

    def test_reset_token_is_single_use(self, flows, make_user, notifier) -> None:
        make_user("once@x.com")
        flows.forgot_password("once@x.com", BASE_URL)
        token = notifier.last_reset_token()

        flows.reset_password(token, "brandnew123", "brandnew123")
        with pytest.raises(ExpiredOrInvalidTokenError):
            flows.reset_password(token, "another1234", "another1234")

    def test_bad_confirmation_does_not_burn_token(self, flows, make_user, notifier) -> None:
        make_user("typo@x.com")
        flows.forgot_password("typo@x.com", BASE_URL)
        token = notifier.last_reset_token()

        with pytest.raises(ValidationError):
            flows.reset_password(token, "brandnew123", "brandnew124")
        assert flows.reset_password(token, "brandnew123", "brandnew123").token

    def test_bogus_token_rejected(self, flows) -> None:
        with pytest.raises(ExpiredOrInvalidTokenError):
            flows.reset_password("f" * 64, "brandnew123", "brandnew123")


# ---------------------------------------------------------------------------
# Update password
# ---------------------------------------------------------------------------


class TestUpdatePassword:
    def test_wrong_current_password_rejected(self, flows, make_user, store) -> None:
        user = make_user("update-wrong@x.com")
        with pytest.raises(InvalidCredentialsError, match="current password is wrong"):
            flows.update_password(user, "not-my-password", "brandnew123", "brandnew123")
        assert store.find_by_id(user.id).password_changed_at is None

    def test_missing_current_password_rejected(self, flows, make_user) -> None:
        user = make_user("update-missing@x.com")
        with pytest.raises(ValidationError):
            flows.update_password(user, None, "brandnew123", "brandnew123")

    def test_update_changes_password_and_issues_token(self, flows, make_user, session_tokens: SessionTokenService) -> None:
        user = make_user("update-ok@x.com")
        result = flows.update_password(user, "password123", "brandnew123", "brandnew123")

        assert result.user.hashed_password is None
        assert result.user.password_changed_at is not None
        claims = session_tokens.verify(result.token)
        assert not result.user.changed_password_after(claims.issued_at)
        assert flows.login("update-ok@x.com", "brandnew123").user.id == user.id

    def test_new_password_must_be_confirmed(self, flows, make_user, store: UserStore) -> None:
        user = make_user("update-confirm@x.com")
        with pytest.raises(ValidationError):
            flows.update_password(user, "password123", "brandnew123", "brandnew999")
        assert flows.login("update-confirm@x.com", "password123").user.id == user.id
