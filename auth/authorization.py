"""
auth/authorization.py -- Role check for routes that need more than a live session.

require_role() only reads the user already resolved by TokenAuthenticator.
It is not an authentication mechanism and never touches the store.
"""

from __future__ import annotations

from auth.models import AuthContext, AuthErrorKind, AuthFailure, Role


def require_role(context: AuthContext, role: Role) -> AuthFailure | None:
    """Return None if context.user has role, else a FORBIDDEN failure."""
    if context.user.role != role:
        return AuthFailure(AuthErrorKind.FORBIDDEN, f"{role.value.capitalize()} access required.")
    return None
