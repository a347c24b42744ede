"""
auth/tokens.py -- JWT encoding/decoding and the session token lifecycle (issue, extend, revoke).

Security design decisions:
  JWT: python-jose with HS256 (configurable to HS384/HS512). Tokens are
       signed with Settings.secret_key and carry the user id (sub), account,
       role, iat, exp and a random jti. The jti makes two logins by the same
       user in the same second produce different tokens, so each device gets
       its own revocable entry in User.tokens.

  Signature != session: a correctly signed token is only a candidate.
       TokenIssuer appends every token it mints to the user's token list
       before handing it out, and TokenAuthenticator accepts a token only
       while it is still in that list. Logout and extend remove entries,
       which is what makes a signed JWT revocable.

  Settings: passed in at construction. Nothing in this module reads
       configuration on its own.

Layer rule: no imports from api/. core/ is only used for the Settings type.
"""

from __future__ import annotations

import logging
import secrets
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

from jose import JWTError, jwt
from sqlalchemy.exc import SQLAlchemyError

from auth.models import AuthContext, AuthErrorKind, AuthFailure, User

if TYPE_CHECKING:
    from auth.store import UserRepository
    from core.config import Settings

logger = logging.getLogger("shopfront.auth")

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# JWT encode / decode
# ---------------------------------------------------------------------------


def encode_token(claims: dict, settings: Settings) -> str:
    return jwt.encode(claims, settings.secret_key, algorithm=settings.jwt_algorithm)


def decode_token(token: str, settings: Settings) -> dict | None:
    """Verify the signature and return the claims, or None on any failure.

    Expiry is deliberately NOT verified here: an expired token must still
    decode so that extend and logout can act on it. TokenAuthenticator
    applies the expiry rule itself.
    """
    try:
        claims = jwt.decode(
            token,
            settings.secret_key,
            algorithms=[settings.jwt_algorithm],
            options={"verify_exp": False},
        )
    except JWTError:
        return None
    if "sub" not in claims or "exp" not in claims:
        return None
    return claims


# ---------------------------------------------------------------------------
# Issuer
# ---------------------------------------------------------------------------


class TokenIssuer:
    """Mints session tokens and records them in the user's token list.

    Usage:
        issuer = TokenIssuer(settings, store)
        token = issuer.issue(user)            # login
        token = issuer.extend(context)        # swap context.token for a fresh one
        issuer.revoke(context)                # logout

    Every method returns an AuthFailure instead of raising when the store
    is unavailable or the session is already gone.
    """

    def __init__(self, settings: Settings, store: UserRepository, clock: Clock = utcnow) -> None:
        self.settings = settings
        self.store = store
        self.clock = clock

    @property
    def ttl(self) -> int:
        return self.settings.token_expire_seconds

    def mint(self, user: User) -> str:
        """Return a signed token for user. Does not register it -- see issue()."""
        if user.id is None:
            raise ValueError("Cannot mint a token for an unsaved user")
        now = self.clock()
        claims = {
            "sub": str(user.id),
            "account": user.account,
            "role": user.role.value,
            "iat": int(now.timestamp()),
            "exp": int((now + timedelta(seconds=self.ttl)).timestamp()),
            "jti": secrets.token_hex(16),
        }
        return encode_token(claims, self.settings)

    def issue(self, user: User) -> str | AuthFailure:
        """Mint a token for user and append it to the user's token list.

        The token is returned only after the append has been committed. When
        MAX_SESSIONS_PER_USER is set, the oldest sessions beyond the cap are
        evicted right after the append. A failed eviction does not undo the
        login: the new session is already stored, so the token is returned and
        the next login trims again.
        """
        token = self.mint(user)
        try:
            self.store.add_token(user.id, token)
        except SQLAlchemyError:
            logger.exception("Could not record new session for user_id=%s", user.id)
            return AuthFailure(AuthErrorKind.UNKNOWN, "User store unavailable.")
        logger.info("Session issued for user_id=%s", user.id)

        cap = self.settings.max_sessions_per_user
        if cap:
            try:
                evicted = self.store.trim_tokens(user.id, cap)
            except SQLAlchemyError:
                logger.exception("Could not evict old sessions for user_id=%s (cap=%d)", user.id, cap)
            else:
                if evicted:
                    logger.info("Evicted %d oldest session(s) for user_id=%s (cap=%d)", evicted, user.id, cap)
        return token

    def extend(self, context: AuthContext) -> str | AuthFailure:
        """Replace context.token with a freshly minted token.

        If context.token was removed between authentication and now (a
        concurrent logout or extend), nothing is stored and REVOKED is
        returned.
        """
        token = self.mint(context.user)
        try:
            replaced = self.store.replace_token(context.user.id, context.token, token)
        except SQLAlchemyError:
            logger.exception("Could not extend session for user_id=%s", context.user.id)
            return AuthFailure(AuthErrorKind.UNKNOWN, "User store unavailable.")
        if not replaced:
            return AuthFailure(AuthErrorKind.REVOKED, "Session is no longer active.")
        logger.info("Session extended for user_id=%s", context.user.id)
        return token

    def revoke(self, context: AuthContext) -> AuthFailure | None:
        """Remove exactly context.token from the user's sessions. Other sessions are untouched."""
        try:
            removed = self.store.remove_token(context.user.id, context.token)
        except SQLAlchemyError:
            logger.exception("Could not revoke session for user_id=%s", context.user.id)
            return AuthFailure(AuthErrorKind.UNKNOWN, "User store unavailable.")
        if not removed:
            return AuthFailure(AuthErrorKind.REVOKED, "Session is no longer active.")
        logger.info("Session revoked for user_id=%s", context.user.id)
        return None
