"""
api/main.py -- FastAPI application entry point for the auth service.

A thin HTTP adapter over auth.service.SessionService and auth.users.UserService.
All security decisions live in auth/; this module maps transport to calls and
domain errors to status codes.

Run with:  uvicorn api.main:app --reload

Middleware stack (outermost to innermost):
  1. CORSMiddleware     -- adds CORS headers for allowed browser origins
  2. SlowAPIMiddleware  -- enforces per-route rate limits from api.limiter

Lifespan builds the service graph once (auth.wiring.build_services) and
starts the refresh-token sweep task; shutdown cancels the task and releases
the engine and notifier symmetrically.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.auth import router as auth_router
from api.routes.v1.users import router as users_router
from auth import errors
from auth.wiring import Services, build_services
from core.config import get_settings
from core.logging import configure_logging

VERSION = "1.0.0"

logger = logging.getLogger("procureauth.api")

# Domain error -> HTTP status. Anything not listed falls back to 400.
_STATUS_BY_ERROR: dict[type[errors.AuthError], int] = {
    errors.DuplicateEmailError: 409,
    errors.InvalidCredentialsError: 401,
    errors.InvalidRefreshTokenError: 401,
    errors.RefreshTokenExpiredOrRevokedError: 401,
    errors.InvalidOrExpiredTokenError: 401,
    errors.AccountInactiveError: 403,
    errors.IncorrectCurrentPasswordError: 400,
    errors.WrongTokenTypeError: 400,
    errors.UserNotFoundError: 404,
}


def install_services(app: FastAPI, services: Services) -> None:
    """Expose the service graph on app.state for the Depends() helpers."""
    app.state.services = services
    app.state.session_service = services.session
    app.state.user_service = services.user_admin


# ---------------------------------------------------------------------------
# Background sweep task
# ---------------------------------------------------------------------------


async def _sweep_loop(app: FastAPI, interval: int) -> None:
    """Revoke expired refresh tokens every `interval` seconds.

    Advisory housekeeping: expiry is re-checked on every refresh, so a missed
    or failed sweep never lets a token through. The store call blocks, so it
    runs in a worker thread. CancelledError from task.cancel() during shutdown
    propagates out of asyncio.sleep and unwinds the coroutine cleanly.
    """
    while True:
        await asyncio.sleep(interval)
        try:
            await asyncio.to_thread(app.state.session_service.sweep_expired_tokens)
        except errors.StoreError:
            logger.warning("Refresh token sweep failed; will retry next interval")


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Build services on startup; release them on shutdown."""
    settings = get_settings()
    configure_logging(settings.log_level)
    logger.info("Auth service starting up (%s)", settings.service_name)
    services = build_services(settings)
    install_services(app, services)
    logger.info(
        "Auth initialized (access_ttl=%ds refresh_ttl=%ds bcrypt_rounds=%d notifications=%s)",
        settings.access_token_expire,
        settings.refresh_token_expire,
        settings.bcrypt_rounds,
        "webhook" if settings.notification_webhook_url else "disabled",
    )
    sweep_task = None
    if settings.refresh_token_sweep_seconds > 0:
        sweep_task = asyncio.create_task(_sweep_loop(app, settings.refresh_token_sweep_seconds))

    yield

    if sweep_task is not None:
        sweep_task.cancel()
    services.close()
    logger.info("Auth service shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Procurement Auth Service",
    description="Credential verification, token issuance and rotation, and session revocation.",
    version=VERSION,
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# Middleware stack
# ---------------------------------------------------------------------------

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost", "http://localhost:3000", "http://127.0.0.1"],
    allow_methods=["GET", "POST", "PUT"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)

app.add_middleware(SlowAPIMiddleware)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter


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
app.include_router(users_router, prefix="/api/v1", tags=["Users"])


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


@app.exception_handler(errors.AuthError)
async def auth_error_handler(request: Request, exc: errors.AuthError) -> JSONResponse:
    """Map a domain error to its status code. The message is the class's fixed text."""
    status_code = next((s for cls, s in _STATUS_BY_ERROR.items() if isinstance(exc, cls)), 400)
    response = _error(status_code, exc.code, exc.message)
    if status_code == 401:
        response.headers["WWW-Authenticate"] = "Bearer"
    return response


@app.exception_handler(errors.StoreError)
async def store_error_handler(request: Request, exc: errors.StoreError) -> JSONResponse:
    """Infrastructure failure: retryable, and distinct from any credential verdict."""
    logger.error("Store unavailable on %s %s", request.method, request.url.path)
    response = _error(503, "store_unavailable", "Service temporarily unavailable. Retry later.")
    response.headers["Retry-After"] = "5"
    return response


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with a structured error when a rate limit is exceeded."""
    retry_after = int(getattr(exc, "retry_after", 60))
    response = _error(429, "rate_limited", "Too many requests.", str(exc))
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 422 when the body fails validation. Input values are not echoed back."""
    fields = sorted({".".join(str(p) for p in err.get("loc", ())) for err in exc.errors()})
    return _error(422, "validation_error", "Request validation failed.", ", ".join(fields))


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Structured error for FastAPI/Starlette HTTP exceptions.

    Route handlers raise HTTPException with a dict detail {code, message};
    use it directly rather than stringifying it.
    """
    if isinstance(exc.detail, dict):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})
    return _error(exc.status_code, f"http_{exc.status_code}", str(exc.detail))


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all for unexpected server errors. The traceback goes to the log only."""
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return _error(500, "internal_error", "An unexpected error occurred.")


# ---------------------------------------------------------------------------
# Health endpoint
#
# No rate limit and no auth -- load balancers and monitors must reach it.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", response_model=HealthResponse, tags=["Health"])
def health(request: Request) -> HealthResponse:
    """Return liveness, version and a database probe."""
    database_ok = request.app.state.services.database_ok()
    return HealthResponse(
        status="healthy" if database_ok else "degraded",
        version=VERSION,
        components={"app": "ok", "database": "ok" if database_ok else "error"},
    )
