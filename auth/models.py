"""
auth/models.py -- Domain dataclasses and error kinds for authentication.

Pattern: Data class (pure data container, zero logic). Dataclasses own the
domain shape; stores, verifiers and routes do the work.

Failures that callers are expected to handle (bad password, expired token,
wrong role) are returned as AuthFailure values, not raised. Each component
returns either its success type or an AuthFailure; callers branch with
isinstance(). Only PasswordValidationError is raised, because hashing an
invalid password is a caller bug, not an authentication outcome.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class Role(str, Enum):
    USER = "user"
    ADMIN = "admin"


class Operation(str, Enum):
    """What the authenticated request is about to do.

    EXTEND and LOGOUT are the only operations that may proceed on an expired
    token -- see TokenAuthenticator.authenticate().
    """

    DEFAULT = "default"
    EXTEND = "extend"
    LOGOUT = "logout"


class AuthErrorKind(str, Enum):
    UNKNOWN_ACCOUNT = "unknown_account"
    BAD_PASSWORD = "bad_password"
    VALIDATION_ERROR = "validation_error"
    MISSING_TOKEN = "missing_token"
    MALFORMED_TOKEN = "malformed_token"
    EXPIRED = "expired"
    REVOKED = "revoked"
    FORBIDDEN = "forbidden"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class AuthFailure:
    """A rejected authentication or authorization step.

    message is for logs and operators. The HTTP layer decides what the
    client sees (see api/routes/v1/users.py), which is how UNKNOWN_ACCOUNT
    and BAD_PASSWORD end up indistinguishable from outside.
    """

    kind: AuthErrorKind
    message: str = ""


class PasswordValidationError(ValueError):
    """Raised by PasswordHasher.hash() when the plaintext fails the length rule."""

    kind = AuthErrorKind.VALIDATION_ERROR


@dataclass
class User:
    """A storefront customer or administrator.

    tokens is the server-side list of live session tokens in login order.
    Membership in this list, not the token's own exp claim, decides whether a
    session exists. The list is read-only from the domain's point of view:
    UserStore mutates it one token at a time (add/remove/replace) so two
    devices logging in or out concurrently never overwrite each other.
    """

    account: str
    email: str
    password_hash: str = ""
    role: Role = Role.USER
    tokens: list[str] = field(default_factory=list)
    id: int | None = None
    created_at: str | None = None
    updated_at: str | None = None


@dataclass(frozen=True)
class AuthContext:
    """The (user, token) pair attached to a request after authentication.

    logout needs the exact token string to remove; extend needs it to know
    which entry to replace.
    """

    user: User
    token: str
