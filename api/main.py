"""
api/main.py -- FastAPI application entry point for Tourbook.

Run with:      uvicorn asgi:app --reload

Middleware stack (outermost to innermost):
  1. log_requests        -- one access-log line per request with latency
  2. CORSMiddleware      -- adds CORS headers for allowed browser origins
  3. SlowAPIMiddleware   -- enforces per-route rate limits from api.limiter

Lifespan reads Settings once and builds every auth service from it, storing
them on app.state. Route handlers and dependencies only ever reach services
through request.app.state, so tests swap in their own by replacing the
lifespan (see tests/conftest.py).

Errors: every auth failure is an auth.errors.AppError and is rendered by one
handler into the shared ErrorResponse envelope. Unexpected exceptions become a
generic 500 with no internal detail.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException

from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.users import router as users_router
from auth.errors import AppError
from auth.flows import AuthFlows
from auth.passwords import PasswordHasher
from auth.store import UserStore
from auth.tokens import ResetTokenService, SessionTokenService
from core.config import get_settings
from mail.sender import EmailNotifier

API_VERSION = "1.0.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("tourbook.api")


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Build the auth services from Settings and tear them down on shutdown.

    Order matters: the store needs the hasher, the flows need everything else.
    """
    settings = get_settings()
    hasher = PasswordHasher(rounds=settings.bcrypt_rounds)
    user_store = UserStore(settings.database_url, hasher)
    session_tokens = SessionTokenService(settings.secret_key, settings.jwt_expire_seconds)
    reset_tokens = ResetTokenService(settings.password_reset_expire_seconds)
    notifier = EmailNotifier(
        smtp_host=settings.smtp_host,
        smtp_port=settings.smtp_port,
        smtp_user=settings.smtp_user,
        smtp_password=settings.smtp_password,
        smtp_use_tls=settings.smtp_use_tls,
        email_from=settings.email_from,
    )
    if not notifier.is_configured:
        logger.warning("SMTP_HOST not set -- emails will be logged, not sent")

    app.state.settings = settings
    app.state.user_store = user_store
    app.state.session_tokens = session_tokens
    app.state.auth_flows = AuthFlows(user_store, session_tokens, reset_tokens, notifier)
    logger.info("Tourbook API starting up (bcrypt rounds=%d)", settings.bcrypt_rounds)

    yield

    user_store.close()
    logger.info("Tourbook API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Tourbook API",
    description="Tour booking backend: accounts, sessions and password lifecycle.",
    version=API_VERSION,
    lifespan=lifespan,
)

# add_middleware() wraps the existing stack, so the last one added runs first:
# CORS answers preflight requests before SlowAPI counts them.
app.add_middleware(SlowAPIMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().cors_origins,
    allow_credentials=True,  # the session cookie must travel with browser requests
    allow_methods=["GET", "POST", "PATCH", "DELETE"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter


# ---------------------------------------------------------------------------
# Request logging middleware
# ---------------------------------------------------------------------------


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    ms = (time.perf_counter() - start) * 1000
    logger.info(
        "%s %s %d %.1fms %s",
        request.method,
        request.url.path,
        response.status_code,
        ms,
        request.client.host if request.client else "unknown",
    )
    return response


# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(users_router, prefix="/api/v1", tags=["Users"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so clients can parse
# errors uniformly: status "fail" for 4xx, "error" for 5xx.
# ---------------------------------------------------------------------------


def _error_response(status_code: int, code: str, message: str, detail: str | None = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(
            status="fail" if 400 <= status_code < 500 else "error",
            error=ErrorDetail(code=code, message=message, detail=detail),
        ).model_dump(),
    )


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    """Render an operational auth error. Its message is written for clients."""
    if exc.status_code >= 500:
        logger.error("%s on %s %s: %s", type(exc).__name__, request.method, request.url.path, exc.message)
    response = _error_response(exc.status_code, exc.code, exc.message)
    if exc.status_code == 401:
        response.headers["Cache-Control"] = "no-store"
    return response


def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with Retry-After when a rate limit is exceeded.

    Plain def: SlowAPIMiddleware calls the registered handler synchronously.
    """
    retry_after = int(getattr(exc, "retry_after", 60))
    response = _error_response(
        429,
        "rate_limited",
        "Too many requests from this IP, please try again later.",
        detail=str(exc.detail),
    )
    response.headers["Retry-After"] = str(retry_after)
    return response


app.add_exception_handler(RateLimitExceeded, rate_limit_handler)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Malformed JSON or wrong field types. Same 400 as every other input error.

    Only location and message are echoed. pydantic's error dicts also carry the
    offending input, which for these bodies is usually a password.
    """
    return _error_response(400, "validation_error", "Invalid input data.", detail=_describe_errors(exc.errors()))


def _describe_errors(errors) -> str:
    parts = []
    for err in errors:
        loc = ".".join(str(p) for p in err.get("loc", ()) if p != "body")
        parts.append(f"{loc}: {err.get('msg', 'invalid')}" if loc else err.get("msg", "invalid"))
    return "; ".join(parts)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Structured errors for framework-raised HTTP exceptions (404, 405, ...)."""
    if exc.status_code == 404 and exc.detail == "Not Found":
        return _error_response(404, "not_found", f"Can't find {request.url.path} on this server!")
    return _error_response(exc.status_code, f"http_{exc.status_code}", str(exc.detail))


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all for programmer errors.

    The raw exception goes to the log only, never to the response body.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return _error_response(500, "internal_error", "Something went very wrong!")


# ---------------------------------------------------------------------------
# Health endpoint
#
# No rate limit and no auth -- load balancers must always reach it.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", tags=["Health"])
def health(request: Request) -> HealthResponse:
    """Return liveness, version and database reachability."""
    db_ok = request.app.state.user_store.ping()
    return HealthResponse(
        version=API_VERSION,
        components={"app": "ok", "database": "ok" if db_ok else "error"},
    )
