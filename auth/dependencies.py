"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication and authorization.

Tokens arrive only as 'Authorization: Bearer <token>'. The auth components
live on app.state (wired by the lifespan in api/main.py):

  app.state.authenticator   TokenAuthenticator
  app.state.issuer          TokenIssuer
  app.state.verifier        CredentialVerifier
  app.state.hasher          PasswordHasher
  app.state.user_store      UserStore

get_auth_context() is the default guard. get_extend_context() and
get_logout_context() are the two guards that let an expired token through
(still subject to the token-list check). require_admin() adds the role gate
on top of get_auth_context().

The resolved AuthContext is also stored on request.state.auth so handlers
and middleware further down can see which session made the request.

Layer rule: this module may import from fastapi because it is part of the
FastAPI dependency injection system. Nothing else in auth/ does.
"""

from __future__ import annotations

from fastapi import HTTPException, Request

from auth.authorization import require_role
from auth.models import AuthContext, AuthErrorKind, AuthFailure, Operation, Role, User

# kind -> (status, client-facing code, client-facing message)
# UNKNOWN_ACCOUNT and BAD_PASSWORD share one entry so clients cannot probe
# which accounts exist.
_FAILURE_RESPONSES: dict[AuthErrorKind, tuple[int, str, str]] = {
    AuthErrorKind.UNKNOWN_ACCOUNT: (401, "invalid_credentials", "Invalid account or password."),
    AuthErrorKind.BAD_PASSWORD: (401, "invalid_credentials", "Invalid account or password."),
    AuthErrorKind.MISSING_TOKEN: (401, "missing_token", "Authentication required."),
    AuthErrorKind.MALFORMED_TOKEN: (401, "invalid_token", "Invalid token."),
    AuthErrorKind.EXPIRED: (401, "token_expired", "Token has expired."),
    AuthErrorKind.REVOKED: (401, "token_revoked", "Session is no longer active."),
    AuthErrorKind.FORBIDDEN: (403, "forbidden", "Admin access required."),
    AuthErrorKind.VALIDATION_ERROR: (422, "validation_error", "Request validation failed."),
    AuthErrorKind.UNKNOWN: (503, "unavailable", "Authentication is temporarily unavailable."),
}


def failure_to_http(failure: AuthFailure) -> HTTPException:
    """Translate an AuthFailure into the HTTPException the API returns for it.

    401 = not authenticated, 403 = authenticated but not allowed. Clients rely
    on that split, so every kind maps to exactly one status.
    """
    status, code, message = _FAILURE_RESPONSES[failure.kind]
    if failure.kind == AuthErrorKind.VALIDATION_ERROR and failure.message:
        message = failure.message
    headers = {"WWW-Authenticate": "Bearer"} if status == 401 else None
    return HTTPException(status_code=status, detail={"code": code, "message": message}, headers=headers)


def _authenticate(request: Request, operation: Operation) -> AuthContext:
    authenticator = request.app.state.authenticator
    result = authenticator.authenticate_header(request.headers.get("Authorization"), operation)
    if isinstance(result, AuthFailure):
        raise failure_to_http(result)
    request.state.auth = result
    return result


def get_auth_context(request: Request) -> AuthContext:
    """Require a live, unexpired session. Raises HTTP 401 otherwise.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(context: AuthContext = Depends(get_auth_context)): ...
    """
    return _authenticate(request, Operation.DEFAULT)


def get_extend_context(request: Request) -> AuthContext:
    """Like get_auth_context(), but an expired token is accepted if still registered."""
    return _authenticate(request, Operation.EXTEND)


def get_logout_context(request: Request) -> AuthContext:
    """Like get_auth_context(), but an expired token is accepted if still registered."""
    return _authenticate(request, Operation.LOGOUT)


def get_current_user(request: Request) -> User:
    """Require authentication and return just the User."""
    return get_auth_context(request).user


def require_admin(request: Request) -> AuthContext:
    """Require admin role. Raises HTTP 401 if unauthenticated, HTTP 403 if not admin.

    Use as a FastAPI dependency:
        @router.get("/admin-only")
        def route(context: AuthContext = Depends(require_admin)): ...
    """
    context = get_auth_context(request)
    denied = require_role(context, Role.ADMIN)
    if denied is not None:
        raise failure_to_http(denied)
    return context
