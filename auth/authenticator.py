"""
auth/authenticator.py -- Bearer token validation for every protected request.

A request moves through these checks in order and stops at the first one
that fails:

  1. extract   Authorization: Bearer <token>        -> MISSING_TOKEN
  2. decode    signature + sub/exp claims            -> MALFORMED_TOKEN
  3. expiry    now >= exp                            -> EXPIRED
               (skipped for Operation.EXTEND and Operation.LOGOUT)
  4. store     user with id == sub holds this token  -> REVOKED
  5. success   AuthContext(user, token)

Step 4 runs against the persisted token list on every request; there is no
in-process cache, so a logout on one replica is seen by all others on the
next request.

Layer rule: no imports from api/. core/ is only used for the Settings type.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from sqlalchemy.exc import SQLAlchemyError

from auth.models import AuthContext, AuthErrorKind, AuthFailure, Operation
from auth.tokens import Clock, decode_token, utcnow

if TYPE_CHECKING:
    from auth.store import UserRepository
    from core.config import Settings

logger = logging.getLogger("shopfront.auth")

# Operations allowed to proceed on a token whose exp has passed. A client
# must be able to trade a lapsed-but-registered token for a fresh one, or
# end the session explicitly.
EXPIRY_EXEMPT = frozenset({Operation.EXTEND, Operation.LOGOUT})


def extract_bearer(authorization: str | None) -> str | None:
    """Return the token from an 'Authorization: Bearer <token>' header value, or None."""
    if not authorization:
        return None
    scheme, _, token = authorization.strip().partition(" ")
    if scheme.lower() != "bearer":
        return None
    token = token.strip()
    return token or None


class TokenAuthenticator:
    def __init__(self, settings: Settings, store: UserRepository, clock: Clock = utcnow) -> None:
        self.settings = settings
        self.store = store
        self.clock = clock

    def authenticate_header(
        self, authorization: str | None, operation: Operation = Operation.DEFAULT
    ) -> AuthContext | AuthFailure:
        """Authenticate from a raw Authorization header value."""
        return self.authenticate(extract_bearer(authorization), operation)

    def authenticate(self, token: str | None, operation: Operation = Operation.DEFAULT) -> AuthContext | AuthFailure:
        """Run the full check sequence for token on behalf of operation."""
        if not token:
            return AuthFailure(AuthErrorKind.MISSING_TOKEN, "Bearer token required.")

        claims = decode_token(token, self.settings)
        if claims is None:
            return AuthFailure(AuthErrorKind.MALFORMED_TOKEN, "Token signature or structure is invalid.")
        try:
            user_id = int(claims["sub"])
            expires_at = int(claims["exp"])
        except (TypeError, ValueError):
            return AuthFailure(AuthErrorKind.MALFORMED_TOKEN, "Token claims are invalid.")

        expired = self.clock().timestamp() >= expires_at
        if expired and operation not in EXPIRY_EXEMPT:
            return AuthFailure(AuthErrorKind.EXPIRED, "Token has expired.")

        try:
            user = self.store.find_user(id=user_id, token=token)
        except SQLAlchemyError:
            logger.exception("Session lookup failed for user_id=%s", user_id)
            return AuthFailure(AuthErrorKind.UNKNOWN, "User store unavailable.")
        if user is None:
            logger.info("Rejected token for user_id=%s: not a live session", user_id)
            return AuthFailure(AuthErrorKind.REVOKED, "Session is no longer active.")

        return AuthContext(user=user, token=token)
