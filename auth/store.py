"""
auth/store.py -- SQLAlchemy Core persistence layer for users and their session tokens.

Pattern: Repository + Data Mapper.
UserStore is the repository; _row_to_user is the mapper. Route, verifier and
authenticator code never touches SQL directly; they depend on the
UserRepository protocol, so tests can hand them a stub that fails on demand.

Token list layout:
  The domain model embeds User.tokens as an ordered list. On disk each token
  is one row in user_tokens, ordered by its autoincrement id (= login order).
  Every mutation targets one token value:

    login   -> add_token()      INSERT one row
    logout  -> remove_token()   DELETE WHERE user_id AND token
    extend  -> replace_token()  DELETE old + INSERT new, one transaction

  save_user() writes profile columns only and never touches user_tokens, so
  two devices logging in and out at the same time cannot clobber each other
  with a stale copy of the list.

Security:
  All queries use bound parameters. No f-strings in SQL.

Timeouts:
  SQLite waits at most store_timeout_seconds for a write lock (busy timeout);
  other backends wait at most that long for a pooled connection. Either way
  the caller sees a SQLAlchemyError, which the auth components turn into
  AuthErrorKind.UNKNOWN.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Protocol

from sqlalchemy import (
    Column,
    ForeignKey,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    create_engine,
    event,
    select,
    text,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from auth.models import Role, User

logger = logging.getLogger("shopfront.store")

_DEFAULT_DB_URL = "sqlite:///shopfront_auth.db"
_DEFAULT_TIMEOUT = 5.0

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("account", String(20), nullable=False, unique=True),
    Column("email", String(320), nullable=False, unique=True),
    Column("password_hash", String(60), nullable=False),
    Column("role", String(16), nullable=False, server_default=Role.USER.value),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

_tokens = Table(
    "user_tokens",
    _metadata,
    # id order is login order -- User.tokens is read back ORDER BY id.
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True),
    Column("token", Text, nullable=False, unique=True),
    Column("created_at", String(32), nullable=False),
)

_FILTER_KEYS = frozenset({"id", "account", "email", "token"})


class UserRepository(Protocol):
    """What the auth core needs from storage.

    find_user and save_user are the two document-store operations; the token
    writes are the targeted mutations that keep concurrent sessions safe.
    """

    def find_user(self, **filters) -> User | None: ...

    def save_user(self, user: User) -> User: ...

    def add_token(self, user_id: int, token: str) -> None: ...

    def remove_token(self, user_id: int, token: str) -> bool: ...

    def replace_token(self, user_id: int, old_token: str, new_token: str) -> bool: ...

    def trim_tokens(self, user_id: int, keep: int) -> int: ...


# ---------------------------------------------------------------------------
# SQLite connection setup
# ---------------------------------------------------------------------------


def _configure_sqlite(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode and foreign keys on every new SQLite connection.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool. foreign_keys is needed for the ON DELETE
    CASCADE from users to user_tokens.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")
    dbapi_conn.execute("PRAGMA foreign_keys=ON")


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User entities and their session tokens.

    Usage:
        store = UserStore(settings.database_url, timeout=settings.store_timeout_seconds)
        user = store.save_user(User(account="alice1", email="a@example.com", password_hash=h))
        store.add_token(user.id, token)
        store.find_user(id=user.id, token=token)   # -> User with token in .tokens
        store.close()
    """

    def __init__(self, db_url: str = _DEFAULT_DB_URL, timeout: float = _DEFAULT_TIMEOUT, echo: bool = False) -> None:
        engine_args: dict = {}
        if db_url.startswith("sqlite"):
            engine_args["connect_args"] = {"check_same_thread": False, "timeout": timeout}
        else:
            engine_args["pool_timeout"] = timeout
            engine_args["pool_pre_ping"] = True
        self.engine: Engine = create_engine(db_url, echo=echo, **engine_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _configure_sqlite)
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def find_user(self, **filters) -> User | None:
        """Return the single user matching every filter, or None.

        Accepted filters: id, account, email, token. token matches when the
        value is one of the user's live session tokens, so
        find_user(id=7, token=t) answers "is t a live session of user 7".
        Unknown filter names raise ValueError rather than being ignored.
        """
        unknown = set(filters) - _FILTER_KEYS
        if unknown:
            raise ValueError(f"Unknown user filter keys: {sorted(unknown)!r}")
        if not filters:
            raise ValueError("find_user() needs at least one filter")

        query = _users.select()
        if "id" in filters:
            query = query.where(_users.c.id == filters["id"])
        if "account" in filters:
            query = query.where(_users.c.account == filters["account"])
        if "email" in filters:
            query = query.where(_users.c.email == filters["email"])
        if "token" in filters:
            query = query.where(
                _users.c.id.in_(select(_tokens.c.user_id).where(_tokens.c.token == filters["token"]))
            )

        with self.engine.connect() as conn:
            row = conn.execute(query).fetchone()
            if row is None:
                return None
            tokens = self._load_tokens(conn, row.id)
        return _row_to_user(row, tokens)

    def save_user(self, user: User) -> User:
        """Insert (id is None) or update a user's profile columns; return the stored record.

        Tokens are not written here -- use add_token/remove_token/replace_token.
        The password must already be hashed (see auth.passwords.apply_password).

        Raises sqlalchemy.exc.IntegrityError if account or email is taken.
        Callers (registration route, CLI) turn that into a conflict response.
        """
        if not user.password_hash:
            raise ValueError("save_user() requires a hashed password")
        now = _now_iso()
        values = {
            "account": user.account,
            "email": user.email,
            "password_hash": user.password_hash,
            "role": Role(user.role).value,
            "updated_at": now,
        }
        with self.engine.connect() as conn:
            if user.id is None:
                result = conn.execute(_users.insert().values(created_at=now, **values))
                user_id = result.inserted_primary_key[0]
            else:
                result = conn.execute(_users.update().where(_users.c.id == user.id).values(**values))
                if result.rowcount == 0:
                    conn.rollback()
                    raise LookupError(f"User {user.id} does not exist")
                user_id = user.id
            conn.commit()
        saved = self.find_user(id=user_id)
        if saved is None:
            raise LookupError(f"User {user_id} vanished after write")
        return saved

    def list_users(self) -> list[User]:
        """Return all users ordered by account, tokens included."""
        with self.engine.connect() as conn:
            rows = conn.execute(_users.select().order_by(_users.c.account)).fetchall()
            return [_row_to_user(r, self._load_tokens(conn, r.id)) for r in rows]

    # ------------------------------------------------------------------
    # Session tokens
    # ------------------------------------------------------------------

    def add_token(self, user_id: int, token: str) -> None:
        """Append token to the user's live sessions."""
        with self.engine.connect() as conn:
            conn.execute(_tokens.insert().values(user_id=user_id, token=token, created_at=_now_iso()))
            conn.commit()

    def remove_token(self, user_id: int, token: str) -> bool:
        """Remove exactly this token. Returns False if it was not a live session of user_id."""
        with self.engine.connect() as conn:
            result = conn.execute(
                _tokens.delete().where((_tokens.c.user_id == user_id) & (_tokens.c.token == token))
            )
            conn.commit()
        return result.rowcount > 0

    def replace_token(self, user_id: int, old_token: str, new_token: str) -> bool:
        """Swap old_token for new_token in one transaction.

        Returns False, and stores nothing, if old_token is no longer a live
        session (e.g. a concurrent logout already removed it).
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                _tokens.delete().where((_tokens.c.user_id == user_id) & (_tokens.c.token == old_token))
            )
            if result.rowcount == 0:
                conn.rollback()
                return False
            conn.execute(_tokens.insert().values(user_id=user_id, token=new_token, created_at=_now_iso()))
            conn.commit()
        return True

    def trim_tokens(self, user_id: int, keep: int) -> int:
        """Delete the oldest tokens so at most `keep` remain. Returns rows removed."""
        with self.engine.connect() as conn:
            ids = [
                r[0]
                for r in conn.execute(
                    select(_tokens.c.id).where(_tokens.c.user_id == user_id).order_by(_tokens.c.id)
                ).fetchall()
            ]
            stale = ids[: max(len(ids) - keep, 0)]
            if not stale:
                return 0
            result = conn.execute(_tokens.delete().where(_tokens.c.id.in_(stale)))
            conn.commit()
        return result.rowcount

    def revoke_all(self, user_id: int) -> int:
        """Delete every session token of the user. Returns rows removed."""
        with self.engine.connect() as conn:
            result = conn.execute(_tokens.delete().where(_tokens.c.user_id == user_id))
            conn.commit()
        return result.rowcount

    # ------------------------------------------------------------------
    # Health
    # ------------------------------------------------------------------

    def ping(self) -> bool:
        """Run a trivial query to verify the database is reachable."""
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            return True
        except SQLAlchemyError:
            logger.exception("Database ping failed")
            return False

    def close(self) -> None:
        self.engine.dispose()

    @staticmethod
    def _load_tokens(conn, user_id: int) -> list[str]:
        rows = conn.execute(
            select(_tokens.c.token).where(_tokens.c.user_id == user_id).order_by(_tokens.c.id)
        ).fetchall()
        return [r[0] for r in rows]


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row, tokens: list[str]) -> User:
    return User(
        id=row.id,
        account=row.account,
        email=row.email,
        password_hash=row.password_hash,
        role=Role(row.role),
        tokens=tokens,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )
