"""
api/main.py -- FastAPI application entry point for CredKeep.

Run with:      uvicorn api.main:app --reload
               python main.py serve

Middleware stack (outermost to innermost):
  1. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  2. CORSMiddleware        -- adds CORS headers for allowed browser origins
  3. SlowAPIMiddleware     -- enforces default and per-route rate limits

Lifespan builds the store, activity log, email sender, and the auth services
on startup, hangs them on app.state, and disposes the engine on shutdown.
Route handlers reach services only through app.state.

Errors:
  AppError subclasses (core/errors.py) carry their own status and code and are
  rendered into the ErrorResponse envelope. Anything else is logged with a
  traceback and returned as a generic 500; DEBUG=true adds the exception text
  as error.detail.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException

from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.activity import router as activity_router
from api.routes.v1.api_keys import router as api_keys_router
from api.routes.v1.auth import router as auth_router
from api.routes.v1.data import router as data_router
from api.routes.v1.users import router as users_router
from auth.activity import ActivityLog
from auth.admin import AccountAdmin
from auth.api_keys import ApiKeyManager
from auth.gate import AccessGate
from auth.passwords import PasswordHasher
from auth.service import AuthService
from auth.store import AccountStore
from auth.tokens import TokenCodec
from core.clock import utc_now
from core.config import Settings, get_settings
from core.errors import AppError, RateLimited
from notify.email import EmailSender

VERSION = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("credkeep.api")


# ---------------------------------------------------------------------------
# Service wiring
# ---------------------------------------------------------------------------


def build_services(app: FastAPI, store: AccountStore, settings: Settings, mailer=None) -> None:
    """Construct every service over one store and attach them to app.state.

    Split out of lifespan so tests can wire their own store and mailer
    through the exact same graph.
    """
    codec = TokenCodec.from_settings(settings)
    activity = ActivityLog(store.engine)
    api_keys = ApiKeyManager.from_settings(store, settings)

    app.state.store = store
    app.state.activity = activity
    app.state.api_keys = api_keys
    app.state.auth_service = AuthService(
        store,
        codec,
        PasswordHasher(settings.bcrypt_rounds),
        mailer or EmailSender.from_settings(settings),
        activity,
        verification_ttl_minutes=settings.verification_token_ttl_minutes,
        reset_ttl_minutes=settings.reset_token_ttl_minutes,
    )
    app.state.admin = AccountAdmin(store, activity)
    app.state.gate = AccessGate(store, codec, api_keys)


# ---------------------------------------------------------------------------
# Lifespan -- modern startup / shutdown pattern (replaces @app.on_event)
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application-level resources across the full server lifetime.

    Everything before yield runs on startup; everything after yield runs on
    shutdown.
    """
    settings = get_settings()
    logger.info("CredKeep API starting up (environment=%s)", settings.environment)
    store = AccountStore(settings.database_url)
    build_services(app, store, settings)
    purged = store.purge_expired_sessions(utc_now())
    logger.info("Auth initialized (%d expired sessions purged)", purged)

    yield

    app.state.store.close()
    logger.info("CredKeep API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

_settings = get_settings()

app = FastAPI(
    title="CredKeep API",
    description="Credential and session management: passwords, JWT sessions, API keys.",
    version=VERSION,
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# Middleware stack
#
# Register in the order you want the request to encounter them:
# TrustedHost -> CORS -> SlowAPI.
# ---------------------------------------------------------------------------

app.add_middleware(
    TrustedHostMiddleware,
    allowed_hosts=_settings.allowed_hosts,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.cors_origins,
    allow_methods=["GET", "POST", "PATCH", "DELETE"],
    allow_headers=["Content-Type", "Authorization", "X-API-Key"],
    max_age=3600,
)

app.add_middleware(SlowAPIMiddleware)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter


# ---------------------------------------------------------------------------
# Request logging middleware
#
# Every request passes through this coroutine before reaching any route
# handler. Wall-clock time before and after call_next gives the latency.
# Only method and path are logged; query strings can carry tokens
# (verify-email?token=...).
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

app.include_router(auth_router, prefix="/api/v1", tags=["Auth"])
app.include_router(api_keys_router, prefix="/api/v1", tags=["API Keys"])
app.include_router(users_router, prefix="/api/v1", tags=["Users"])
app.include_router(activity_router, prefix="/api/v1", tags=["Activity"])
app.include_router(data_router, prefix="/api/v1", tags=["Data"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------


def _error(status_code: int, code: str, message: str, detail: str | None = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=ErrorDetail(code=code, message=message, detail=detail)).model_dump(),
    )


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    """Render a typed domain error with its own status, code, and message."""
    if exc.status_code >= 500:
        logger.error("%s on %s %s: %s", type(exc).__name__, request.method, request.url.path, exc.message)
    response = _error(exc.status_code, exc.code, exc.message)
    retry_after = getattr(exc, "retry_after_seconds", None)
    if retry_after is not None:
        response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Translate slowapi's 429 into RateLimited so it renders like any other AppError.

    Retry-After is the length of the exceeded window, an upper bound on the wait.
    """
    logger.warning("Rate limit %s exceeded on %s %s", exc.detail, request.method, request.url.path)
    return await app_error_handler(request, RateLimited(retry_after_seconds=exc.limit.limit.get_expiry()))


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 422 with structured error when request body or query params fail validation.

    Only field locations and messages are echoed; submitted values (which may
    be passwords) are not.
    """
    problems = "; ".join(
        f"{'.'.join(str(p) for p in err.get('loc', ()))}: {err.get('msg', 'invalid')}" for err in exc.errors()
    )
    return _error(422, "validation_error", "Request validation failed.", problems)


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Return a structured error for FastAPI/Starlette HTTP exceptions (404 route, 405, ...)."""
    if isinstance(exc.detail, dict):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})
    return _error(exc.status_code, f"http_{exc.status_code}", str(exc.detail))


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The raw exception goes to the log. The client gets a generic message,
    plus the exception text only when DEBUG=true.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    detail = f"{type(exc).__name__}: {exc}" if get_settings().debug else None
    return _error(500, "internal_error", "An unexpected error occurred.", detail)


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined directly in main.py (not in a router) so it is always reachable
# regardless of router registration state. Exempt from rate limiting: health
# checks from load balancers must not be throttled.
# ---------------------------------------------------------------------------


@limiter.exempt
@app.get("/api/v1/health", include_in_schema=True, tags=["Health"])
async def health(request: Request) -> JSONResponse:
    """Return API liveness, version, and database reachability."""
    try:
        db_ok = request.app.state.store.ping()
    except SQLAlchemyError:
        logger.exception("Health check database ping failed")
        db_ok = False
    body = HealthResponse(status="ok" if db_ok else "degraded", version=VERSION, database="ok" if db_ok else "error")
    return JSONResponse(status_code=200 if db_ok else 503, content=body.model_dump())
