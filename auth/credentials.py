"""
auth/credentials.py -- Account + password verification (transport independent).

CredentialVerifier.verify() returns the stored User on success and an
AuthFailure otherwise; it never raises for a wrong account or password.

Unknown account and wrong password are different AuthErrorKinds so logs can
tell them apart. They must not be told apart from outside: the login route
maps both to one "invalid credentials" response, and bcrypt runs against a
dummy hash when the account does not exist so response time does not leak
which case happened.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import logging

from sqlalchemy.exc import SQLAlchemyError

from auth.models import AuthErrorKind, AuthFailure, User
from auth.passwords import PasswordHasher
from auth.store import UserRepository

logger = logging.getLogger("shopfront.auth")


class CredentialVerifier:
    def __init__(self, store: UserRepository, hasher: PasswordHasher) -> None:
        self.store = store
        self.hasher = hasher

    def verify(self, account: str, password: str) -> User | AuthFailure:
        """Check account/password against the stored user record."""
        try:
            user = self.store.find_user(account=account)
        except SQLAlchemyError:
            logger.exception("User lookup failed during login")
            return AuthFailure(AuthErrorKind.UNKNOWN, "User store unavailable.")

        if user is None:
            # Equalize timing -- do NOT return before running bcrypt.
            self.hasher.verify(password, self.hasher.dummy_hash)
            logger.info("Login rejected: unknown account")
            return AuthFailure(AuthErrorKind.UNKNOWN_ACCOUNT, "Account does not exist.")

        if not self.hasher.verify(password, user.password_hash):
            logger.info("Login rejected: bad password for user_id=%s", user.id)
            return AuthFailure(AuthErrorKind.BAD_PASSWORD, "Password does not match.")

        return user
