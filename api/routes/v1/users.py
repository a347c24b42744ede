"""
api/routes/v1/users.py -- Registration, login and session management endpoints.

Routes:
  POST   /api/v1/users          -- register (public)
  POST   /api/v1/users/login    -- account + password -> bearer token (public)
  PATCH  /api/v1/users/extend   -- swap the presented token for a fresh one (expired token allowed)
  DELETE /api/v1/users/logout   -- end the presented session only (expired token allowed)
  GET    /api/v1/users/me       -- current profile (requires auth)
  GET    /api/v1/users          -- list users (admin only)

Security:
  Login returns the same invalid_credentials error for unknown account and
  wrong password; CredentialVerifier equalizes bcrypt timing between them.
  Login and extend responses carry Cache-Control: no-store.

Handlers that hash or verify passwords are plain `def` so FastAPI runs them
in its thread pool; bcrypt never blocks the event loop.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from api.models import (
    LoginRequest,
    MessageResponse,
    ProfileResponse,
    RegisterRequest,
    TokenResponse,
)
from auth.dependencies import (
    failure_to_http,
    get_current_user,
    get_extend_context,
    get_logout_context,
    require_admin,
)
from auth.models import AuthContext, AuthErrorKind, AuthFailure, PasswordValidationError, User
from auth.passwords import apply_password

logger = logging.getLogger("shopfront.api")

# Auth policy:
# - POST   /api/v1/users:         public
# - POST   /api/v1/users/login:   public
# - PATCH  /api/v1/users/extend:  live session, expiry exempt (get_extend_context)
# - DELETE /api/v1/users/logout:  live session, expiry exempt (get_logout_context)
# - GET    /api/v1/users/me:      live, unexpired session (get_current_user)
# - GET    /api/v1/users:         admin (require_admin)
router = APIRouter()


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@router.post("/users", response_model=ProfileResponse, status_code=201)
def register(request: Request, body: RegisterRequest) -> ProfileResponse:
    """Create a USER-role account. The password is validated then hashed before storage."""
    hasher = request.app.state.hasher
    store = request.app.state.user_store

    try:
        user = apply_password(User(account=body.account, email=str(body.email)), body.password, hasher)
    except PasswordValidationError as exc:
        raise failure_to_http(AuthFailure(exc.kind, str(exc))) from exc

    try:
        saved = store.save_user(user)
    except IntegrityError as exc:
        raise HTTPException(
            status_code=409,
            detail={"code": "conflict", "message": "Account or email is already registered."},
        ) from exc
    except SQLAlchemyError as exc:
        logger.exception("Registration failed")
        raise failure_to_http(AuthFailure(AuthErrorKind.UNKNOWN)) from exc

    logger.info("Registered user_id=%s", saved.id)
    return ProfileResponse.from_user(saved)


@router.post("/users/login", response_model=TokenResponse)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with account and password; return a new bearer token.

    Each login adds a separate session, so logging in from a second device
    does not sign out the first.
    """
    verified = request.app.state.verifier.verify(body.account, body.password)
    if isinstance(verified, AuthFailure):
        raise _no_store(failure_to_http(verified))

    token = request.app.state.issuer.issue(verified)
    if isinstance(token, AuthFailure):
        raise _no_store(failure_to_http(token))

    return _token_response(request, verified, token)


# ---------------------------------------------------------------------------
# Session endpoints
# ---------------------------------------------------------------------------


@router.patch("/users/extend", response_model=TokenResponse)
def extend(request: Request, context: AuthContext = Depends(get_extend_context)) -> JSONResponse:
    """Exchange the presented token, even if expired, for a fresh one.

    The presented token stops working as soon as this returns.
    """
    token = request.app.state.issuer.extend(context)
    if isinstance(token, AuthFailure):
        raise _no_store(failure_to_http(token))
    return _token_response(request, context.user, token)


@router.delete("/users/logout", response_model=MessageResponse)
def logout(request: Request, context: AuthContext = Depends(get_logout_context)) -> MessageResponse:
    """End the session the presented token belongs to. Other devices stay signed in."""
    failure = request.app.state.issuer.revoke(context)
    if failure is not None:
        raise failure_to_http(failure)
    return MessageResponse(message="Logged out.")


@router.get("/users/me", response_model=ProfileResponse)
def me(user: User = Depends(get_current_user)) -> ProfileResponse:
    """Return the profile of the authenticated user."""
    return ProfileResponse.from_user(user)


# ---------------------------------------------------------------------------
# Admin endpoints
# ---------------------------------------------------------------------------


@router.get("/users", response_model=list[ProfileResponse])
def list_users(request: Request, context: AuthContext = Depends(require_admin)) -> list[ProfileResponse]:
    """List all accounts. Admin only."""
    try:
        users = request.app.state.user_store.list_users()
    except SQLAlchemyError as exc:
        logger.exception("Listing users failed")
        raise failure_to_http(AuthFailure(AuthErrorKind.UNKNOWN)) from exc
    return [ProfileResponse.from_user(u) for u in users]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _token_response(request: Request, user: User, token: str) -> JSONResponse:
    resp = JSONResponse(
        status_code=200,
        content=TokenResponse(
            token=token,
            token_type="bearer",  # noqa: S106 # nosec B106 -- OAuth token type, not a password
            expires_in=request.app.state.issuer.ttl,
            account=user.account,
            email=user.email,
            role=user.role,
        ).model_dump(mode="json"),
    )
    resp.headers["Cache-Control"] = "no-store"
    return resp


def _no_store(exc: HTTPException) -> HTTPException:
    exc.headers = {**(exc.headers or {}), "Cache-Control": "no-store"}
    return exc
