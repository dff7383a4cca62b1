"""
API request and response models for Tourbook REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Wire field names are camelCase (passwordConfirm, passwordCurrent) to match the
existing browser client. Request fields are optional: presence and content
rules live in auth/validation.py so every client error comes back as the same
400 envelope with a human-readable message.

Only name and email are whitespace-stripped. Password fields reach the hasher
exactly as the client sent them.

UserResponse has no password field of any kind. There is no code path that
can serialize a hash into a response.
"""

from __future__ import annotations

from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field, StringConstraints

from auth.models import Role, User

# Upper bound for any password-like field. auth/validation.py enforces the
# real limit; this only stops oversized bodies at the edge.
_MAX_SECRET = 255

_Name = Annotated[str, StringConstraints(strip_whitespace=True, max_length=255)]
_Email = Annotated[str, StringConstraints(strip_whitespace=True, max_length=254)]
_Secret = Annotated[str, StringConstraints(max_length=_MAX_SECRET)]


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class _Request(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class SignupRequest(_Request):
    """Request body for POST /api/v1/users/signup."""

    name: _Name | None = None
    email: _Email | None = None
    password: _Secret | None = None
    password_confirm: _Secret | None = Field(default=None, alias="passwordConfirm")


class LoginRequest(_Request):
    """Request body for POST /api/v1/users/login."""

    email: _Email | None = None
    password: _Secret | None = None


class ForgotPasswordRequest(_Request):
    """Request body for POST /api/v1/users/forgotPassword."""

    email: _Email | None = None


class ResetPasswordRequest(_Request):
    """Request body for PATCH /api/v1/users/resetPassword/{token}."""

    password: _Secret | None = None
    password_confirm: _Secret | None = Field(default=None, alias="passwordConfirm")


class UpdatePasswordRequest(_Request):
    """Request body for PATCH /api/v1/users/updateMyPassword."""

    password_current: _Secret | None = Field(default=None, alias="passwordCurrent")
    password: _Secret | None = None
    password_confirm: _Secret | None = Field(default=None, alias="passwordConfirm")


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class UserResponse(BaseModel):
    """Public view of a user record."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    email: str
    photo: str
    role: str

    @classmethod
    def from_user(cls, user: User) -> UserResponse:
        return cls(
            id=user.id,
            name=user.name,
            email=user.email,
            photo=user.photo,
            role=Role(user.role).value,
        )


class UserData(BaseModel):
    model_config = ConfigDict(frozen=True)

    user: UserResponse


class AuthResponse(BaseModel):
    """Returned by every route that logs a user in (signup, login, reset, update)."""

    model_config = ConfigDict(frozen=True)

    status: Literal["success"] = "success"
    token: str
    data: UserData


class UserListResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    status: Literal["success"] = "success"
    results: int
    data: list[UserResponse]


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    status: Literal["success"] = "success"
    message: str | None = None


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: str | None = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses.

    status is "fail" for client errors and "error" for server errors.
    """

    model_config = ConfigDict(frozen=True)

    status: Literal["fail", "error"]
    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str]


class MeResponse(BaseModel):
    """Response for GET /api/v1/users/me."""

    model_config = ConfigDict(frozen=True)

    status: Literal["success"] = "success"
    data: UserData
