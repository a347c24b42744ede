"""
api/main.py -- FastAPI application entry point for Shopfront.

Run with:      uvicorn asgi:app --reload
               python main.py serve

Lifespan builds the auth components once at startup from a single Settings
object and hangs them on app.state, where auth/dependencies.py finds them.
There is no ambient configuration lookup below this file.

Shutdown closes the store's connection pool.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.users import router as users_router
from auth.authenticator import TokenAuthenticator
from auth.credentials import CredentialVerifier
from auth.passwords import PasswordHasher
from auth.store import UserStore
from auth.tokens import Clock, TokenIssuer, utcnow
from core.config import Settings, get_settings

VERSION = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("shopfront.api")


# ---------------------------------------------------------------------------
# Component wiring
# ---------------------------------------------------------------------------


def wire_auth(app: FastAPI, settings: Settings, store: UserStore, clock: Clock = utcnow) -> None:
    """Attach the auth components to app.state.

    Called by the lifespan with the real store; tests call it with an
    in-memory store and a controllable clock.
    """
    hasher = PasswordHasher(rounds=settings.bcrypt_rounds)
    app.state.settings = settings
    app.state.user_store = store
    app.state.hasher = hasher
    app.state.verifier = CredentialVerifier(store, hasher)
    app.state.issuer = TokenIssuer(settings, store, clock=clock)
    app.state.authenticator = TokenAuthenticator(settings, store, clock=clock)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Build components on startup, release them on shutdown.

    get_settings() raises if SECRET_KEY is missing, so a misconfigured
    server fails here instead of on the first login.
    """
    settings = get_settings()
    logging.getLogger().setLevel(settings.log_level.upper())
    logger.info("Shopfront API starting up")
    store = UserStore(settings.database_url, timeout=settings.store_timeout_seconds, echo=settings.debug)
    wire_auth(app, settings, store)
    logger.info(
        "Auth initialized (ttl=%ss, max_sessions=%s)",
        settings.token_expire_seconds,
        settings.max_sessions_per_user or "unlimited",
    )

    yield

    store.close()
    logger.info("Shopfront API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Shopfront API",
    description="Storefront accounts and session tokens.",
    version=VERSION,
    lifespan=lifespan,
)


# ---------------------------------------------------------------------------
# Request logging middleware
#
# Every request passes through this coroutine before reaching any route
# handler. Only method, path, status and latency are logged -- never the
# Authorization header or request body.
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
# Error envelope
#
# Every failure leaves the API as {"error": {"code", "message", "detail"}}.
# Auth failures arrive as HTTPException with a {"code", "message"} detail
# built by auth.dependencies.failure_to_http; their headers (WWW-Authenticate,
# Cache-Control) are passed through untouched.
# ---------------------------------------------------------------------------


def _envelope(
    status_code: int,
    code: str,
    message: str,
    detail: str | None = None,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    body = ErrorResponse(error=ErrorDetail(code=code, message=message, detail=detail))
    return JSONResponse(status_code=status_code, content=body.model_dump(), headers=headers)


@app.exception_handler(RequestValidationError)
async def on_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Malformed request bodies (bad account pattern, bad email, missing fields) -> 422."""
    return _envelope(422, "validation_error", "Request validation failed.", detail=str(exc.errors()))


@app.exception_handler(HTTPException)
async def on_http_error(request: Request, exc: HTTPException) -> JSONResponse:
    if isinstance(exc.detail, dict):
        return _envelope(
            exc.status_code,
            exc.detail.get("code", f"http_{exc.status_code}"),
            exc.detail.get("message", ""),
            headers=exc.headers,
        )
    return _envelope(exc.status_code, f"http_{exc.status_code}", str(exc.detail), headers=exc.headers)


@app.exception_handler(Exception)
async def on_unhandled_error(request: Request, exc: Exception) -> JSONResponse:
    """Anything that escaped a route. The traceback goes to the log, not the client."""
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return _envelope(500, "internal_error", "An unexpected error occurred.")


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined directly in main.py (not in a router) so it is always reachable
# regardless of router registration state.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", tags=["Health"])
def health(request: Request) -> HealthResponse:
    """Return API liveness, version, and database reachability."""
    db_ok = request.app.state.user_store.ping()
    return HealthResponse(
        status="healthy" if db_ok else "degraded",
        version=VERSION,
        components={"app": "ok", "database": "ok" if db_ok else "error"},
    )
