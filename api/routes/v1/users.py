"""
api/routes/v1/users.py -- Authentication and account REST endpoints.

Routes (mounted under /api/v1):
  POST   /users/signup                  -- create account; sets JWT cookie; 201
  POST   /users/login                   -- password login; sets JWT cookie
  GET    /users/logout                  -- clears cookie
  POST   /users/forgotPassword          -- email a reset link
  PATCH  /users/resetPassword/{token}   -- redeem reset link; sets JWT cookie
  PATCH  /users/updateMyPassword        -- change password (requires auth)
  GET    /users/me                      -- current user (requires auth)
  DELETE /users/deleteMe                -- soft-delete own account (requires auth)
  GET    /users                         -- list users (admin only)

Handlers are plain `def`: FastAPI runs them on its thread pool, which keeps
bcrypt hashing off the event loop.

Security:
  [H2] login and forgotPassword are rate-limited per client address.
  [C1] Login timing equalization lives in AuthFlows.login -- never inline a
       find_by_email() + verify() pair here.
  [M5] Cache-Control: no-store on every response carrying a token.
"""

# No `from __future__ import annotations`: slowapi wraps login and forgotPassword,
# and FastAPI resolves string annotations against the wrapper's module globals.
from fastapi import APIRouter, Depends, Request, Response
from fastapi.responses import JSONResponse

from api.limiter import limiter
from api.models import (
    AuthResponse,
    ForgotPasswordRequest,
    LoginRequest,
    MeResponse,
    MessageResponse,
    ResetPasswordRequest,
    SignupRequest,
    UpdatePasswordRequest,
    UserData,
    UserListResponse,
    UserResponse,
)
from auth.dependencies import RoleGuard, clear_session_cookie, protect, set_session_cookie
from auth.flows import AuthFlows, AuthResult, SignupInput
from auth.models import AuthContext, Role
from core.config import get_settings

# Auth policy:
# - signup, login, logout, forgotPassword, resetPassword: public
# - updateMyPassword, me, deleteMe: protect
# - GET /users: protect + restrict_to(admin)
router = APIRouter()

admin_only = RoleGuard(frozenset({Role.admin}))


def _login_limit() -> str:
    return get_settings().login_rate_limit


def _forgot_password_limit() -> str:
    return get_settings().forgot_password_rate_limit


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _flows(request: Request) -> AuthFlows:
    return request.app.state.auth_flows


def _send_token(request: Request, result: AuthResult, status_code: int = 200) -> JSONResponse:
    """Return the token in the body and in the jwt cookie."""
    settings = request.app.state.settings
    resp = JSONResponse(
        status_code=status_code,
        content=AuthResponse(
            token=result.token,
            data=UserData(user=UserResponse.from_user(result.user)),
        ).model_dump(),
    )
    set_session_cookie(
        resp,
        result.token,
        max_age=settings.jwt_expire_seconds,
        secure=settings.secure_cookies or request.url.scheme == "https",
    )
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@router.post("/users/signup", response_model=AuthResponse, status_code=201)
def signup(request: Request, body: SignupRequest) -> JSONResponse:
    """Create an account and log it in. The welcome email is best-effort."""
    result = _flows(request).signup(
        SignupInput(
            name=body.name,
            email=body.email,
            password=body.password,
            password_confirm=body.password_confirm,
        ),
        base_url=str(request.base_url),
    )
    return _send_token(request, result, status_code=201)


@router.post("/users/login", response_model=AuthResponse)
@limiter.limit(_login_limit)  # [H2] below @router so the registered endpoint is the limited wrapper
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with email and password.

    Unknown email and wrong password produce the same 401 "bad_credentials"
    response so the endpoint cannot be used to probe for accounts.
    """
    result = _flows(request).login(body.email, body.password)
    return _send_token(request, result)


@router.get("/users/logout", response_model=MessageResponse)
def logout() -> JSONResponse:
    """Clear the session cookie. There is no server-side revocation."""
    resp = JSONResponse(content=MessageResponse().model_dump())
    clear_session_cookie(resp)
    return resp


@router.post("/users/forgotPassword", response_model=MessageResponse)
@limiter.limit(_forgot_password_limit)  # [H2]
def forgot_password(request: Request, body: ForgotPasswordRequest) -> MessageResponse:
    """Email a single-use reset link, valid for 10 minutes by default."""
    _flows(request).forgot_password(body.email, base_url=str(request.base_url))
    return MessageResponse(message="Token sent to email!")


@router.patch("/users/resetPassword/{token}", response_model=AuthResponse)
def reset_password(request: Request, token: str, body: ResetPasswordRequest) -> JSONResponse:
    """Redeem a reset token, set the new password and log the user in."""
    result = _flows(request).reset_password(token, body.password, body.password_confirm)
    return _send_token(request, result)


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.patch("/users/updateMyPassword", response_model=AuthResponse)
def update_my_password(
    request: Request,
    body: UpdatePasswordRequest,
    ctx: AuthContext = Depends(protect),
) -> JSONResponse:
    """Change the password. The current password is always required."""
    result = _flows(request).update_password(
        ctx.user,
        body.password_current,
        body.password,
        body.password_confirm,
    )
    return _send_token(request, result)


@router.get("/users/me", response_model=MeResponse)
def me(ctx: AuthContext = Depends(protect)) -> MeResponse:
    """Return the currently authenticated user."""
    return MeResponse(data=UserData(user=UserResponse.from_user(ctx.user)))


@router.delete("/users/deleteMe", status_code=204)
def delete_me(request: Request, ctx: AuthContext = Depends(protect)) -> Response:
    """Deactivate the caller's account (soft delete) and clear the cookie."""
    _flows(request).deactivate(ctx.user)
    resp = Response(status_code=204)
    clear_session_cookie(resp)
    return resp


# ---------------------------------------------------------------------------
# Admin
# ---------------------------------------------------------------------------


@router.get("/users", response_model=UserListResponse)
def list_users(request: Request, ctx: AuthContext = Depends(admin_only)) -> UserListResponse:
    """List active users. Admin only."""
    users = request.app.state.user_store.list_users()
    return UserListResponse(results=len(users), data=[UserResponse.from_user(u) for u in users])
