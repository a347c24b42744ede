"""
auth/passwords.py -- bcrypt password hashing and the password-change pipeline step.

Using bcrypt directly rather than passlib[bcrypt] because passlib's internal
wrap-bug detection creates a password longer than 72 bytes, which bcrypt 4.x
rejects with an explicit error.

bcrypt refuses input over 72 bytes, and 20 characters of 4-byte UTF-8 is 80.
The plaintext is therefore reduced to base64(SHA-256(utf-8)), a fixed 44
bytes, before it reaches bcrypt. hash() and verify() both go through
_bcrypt_input(), so the two always agree.

Password changes go through apply_password(), called explicitly by the code
that writes the user (registration route, CLI). The length rule has to run
on the plaintext: once hashed, every password is 60 characters long.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import base64
import hashlib
import logging
from dataclasses import replace

import bcrypt

from auth.models import PasswordValidationError, User

logger = logging.getLogger("shopfront.auth")

PASSWORD_MIN_LEN = 4
PASSWORD_MAX_LEN = 20
DEFAULT_ROUNDS = 10


def _bcrypt_input(plain: str) -> bytes:
    return base64.b64encode(hashlib.sha256(plain.encode("utf-8")).digest())


def validate_password(plain: str) -> None:
    """Raise PasswordValidationError unless PASSWORD_MIN_LEN <= len(plain) <= PASSWORD_MAX_LEN."""
    if not isinstance(plain, str) or not (PASSWORD_MIN_LEN <= len(plain) <= PASSWORD_MAX_LEN):
        raise PasswordValidationError(
            f"Password must be between {PASSWORD_MIN_LEN} and {PASSWORD_MAX_LEN} characters."
        )


class PasswordHasher:
    """Salted one-way hashing with a fixed bcrypt cost factor.

    Usage:
        hasher = PasswordHasher(rounds=settings.bcrypt_rounds)
        hashed = hasher.hash("pass123")
        hasher.verify("pass123", hashed)   # True

    The cost factor is the lever for login latency vs brute-force resistance.
    It is fixed per process; existing hashes keep their own embedded cost, so
    changing BCRYPT_ROUNDS only affects newly hashed passwords.
    """

    def __init__(self, rounds: int = DEFAULT_ROUNDS) -> None:
        self.rounds = rounds
        self._dummy_hash: str | None = None

    def hash(self, plain: str) -> str:
        """Return a bcrypt hash of plain. Raises PasswordValidationError on bad length."""
        validate_password(plain)
        return bcrypt.hashpw(_bcrypt_input(plain), bcrypt.gensalt(rounds=self.rounds)).decode("utf-8")

    def verify(self, plain: str, hashed: str | None) -> bool:
        """Return True if plain matches hashed. Never raises; malformed input is a mismatch."""
        if not plain or not hashed:
            return False
        try:
            return bcrypt.checkpw(_bcrypt_input(plain), hashed.encode("utf-8"))
        except (ValueError, TypeError):
            logger.warning("Stored password hash is not a valid bcrypt hash")
            return False

    @property
    def dummy_hash(self) -> str:
        """A hash of a throwaway password at this hasher's cost factor.

        CredentialVerifier checks against it when the account does not exist
        so unknown-account and bad-password logins cost the same bcrypt work.
        Built lazily so constructing a hasher stays cheap.
        """
        if self._dummy_hash is None:
            self._dummy_hash = self.hash("shopfront-dummy")
        return self._dummy_hash


def apply_password(user: User, plain: str, hasher: PasswordHasher) -> User:
    """Return a copy of user whose password_hash is the hash of plain.

    This is the pre-persistence step for every password write: validate the
    length, then hash. Raises PasswordValidationError before any hashing.
    """
    return replace(user, password_hash=hasher.hash(plain))
