"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

Every request passes through the same steps, independently of any other
request:
  1. Extract   -- Authorization: Bearer <token>, falling back to the "jwt" cookie.
  2. Verify    -- signature and expiry (SessionTokenService.verify).
  3. Resolve   -- the token subject must still be an active user.
  4. Freshness -- a password change after the token's iat makes it stale.
  5. Attach    -- the result is returned as an AuthContext value.

protect() raises NotAuthenticatedError on any failure.
is_logged_in() is the soft variant: any failure yields an anonymous context.
restrict_to() is a pure role check run on an already-authenticated identity.
RoleGuard bundles protect + restrict_to as a value usable in Depends().

All of these are plain `def`, so FastAPI runs them on its thread pool and the
store lookup never blocks the event loop.

Layer rule: no imports from api/, mail/ or core/.
  auth/dependencies.py may import from fastapi (for Request) because this
  module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass

from fastapi import Depends, Request

from auth.errors import ForbiddenError, InvalidTokenError, NotAuthenticatedError
from auth.models import AuthContext, Role, User
from auth.store import UserStore
from auth.tokens import SessionTokenService

logger = logging.getLogger("tourbook.auth")

SESSION_COOKIE = "jwt"


def set_session_cookie(response, token: str, max_age: int, secure: bool) -> None:
    """Write the session JWT as an httpOnly cookie on the response.

    httponly=True: JS cannot read the cookie (XSS mitigation).
    samesite="lax": not sent on cross-site POST -- CSRF mitigation.
    secure: only sent over HTTPS; callers pass True for TLS requests.
    max_age: matches the JWT lifetime so both expire together.
    """
    response.set_cookie(
        SESSION_COOKIE,
        value=token,
        httponly=True,
        samesite="lax",
        secure=secure,
        max_age=max_age,
    )


def clear_session_cookie(response) -> None:
    """Overwrite the session cookie with a placeholder that expires immediately.

    Logout is client-side only: a copy of the JWT held elsewhere stays valid
    until it expires or the password changes.
    """
    response.set_cookie(SESSION_COOKIE, value="loggedout", httponly=True, samesite="lax", max_age=0)


def extract_token(request: Request) -> str | None:
    """Return the raw session token from the header or cookie, if any."""
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        token = auth_header[7:].strip()
        if token:
            return token
    return request.cookies.get(SESSION_COOKIE) or None


def _authenticate(request: Request) -> AuthContext:
    store: UserStore = request.app.state.user_store
    tokens: SessionTokenService = request.app.state.session_tokens

    token = extract_token(request)
    if not token:
        raise NotAuthenticatedError()

    try:
        claims = tokens.verify(token)
    except InvalidTokenError as exc:
        logger.info("Rejected session token on %s (%s)", request.url.path, exc.reason)
        raise NotAuthenticatedError("Invalid or expired session. Please log in again.") from exc

    user = store.find_by_id(claims.subject_id)
    if user is None:
        raise NotAuthenticatedError("The user belonging to this token no longer exists.")

    if user.changed_password_after(claims.issued_at):
        logger.info("Rejected stale session token for user %s", user.id)
        raise NotAuthenticatedError("User recently changed password! Please log in again.")

    return AuthContext(user=user, claims=claims)


def protect(request: Request) -> AuthContext:
    """Require authentication. Raises NotAuthenticatedError (401) otherwise.

    Use as a FastAPI dependency:
        @router.get("/me")
        def me(ctx: AuthContext = Depends(protect)): ...
    """
    return _authenticate(request)


def get_current_user(ctx: AuthContext = Depends(protect)) -> User:
    """Convenience dependency returning the authenticated User."""
    return ctx.user


def is_logged_in(request: Request) -> AuthContext:
    """Soft authentication for optionally personalized responses.

    Never raises. Returns an anonymous AuthContext when there is no token, the
    token is invalid, expired, orphaned or stale, or the user lookup fails.
    """
    try:
        return _authenticate(request)
    except NotAuthenticatedError:
        return AuthContext()
    except Exception:
        logger.warning("Soft authentication failed on %s; continuing anonymously", request.url.path, exc_info=True)
        return AuthContext()


def restrict_to(allowed_roles: Iterable[Role | str], identity: User | None) -> User:
    """Return identity if its role is allowed, else raise ForbiddenError (403).

    Must run after authentication: it has no authentication effect of its own.
    A missing identity is a wiring bug, reported as NotAuthenticatedError so it
    can never fall through as allowed.
    """
    if identity is None:
        raise NotAuthenticatedError()
    allowed = {Role(r) for r in allowed_roles}
    if Role(identity.role) not in allowed:
        raise ForbiddenError()
    return identity


@dataclass(frozen=True)
class RoleGuard:
    """Dependency value composing protect() and restrict_to().

        admin_only = RoleGuard(frozenset({Role.admin}))

        @router.get("/")
        def list_users(ctx: AuthContext = Depends(admin_only)): ...
    """

    roles: frozenset[Role]

    def __call__(self, request: Request) -> AuthContext:
        ctx = protect(request)
        restrict_to(self.roles, ctx.user)
        return ctx
