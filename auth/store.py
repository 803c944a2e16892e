"""
auth/store.py -- SQLAlchemy Core persistence for users and verification tokens.

Pattern: Repository + Data Mapper.
UserStore is the repository; _row_to_user is the mapper. Service and route
code never touches SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

  Username and email uniqueness is enforced by UNIQUE constraints, not by a
  read-then-write check. Two racing signups for the same name both reach the
  INSERT; the database lets exactly one commit and the loser gets
  IntegrityError, surfaced as DuplicateUser [M1].

  A user row and its verification token are written in ONE transaction
  (engine.begin()). A rejected user insert therefore never leaves an orphan
  token behind.

  Verification tokens are single-use: activate_account() deletes the token
  and enables its user in the same transaction. DELETE ... RETURNING finds
  and removes the row in one statement, so two concurrent verifications of
  the same token cannot both succeed.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, create_engine, event, func, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from auth.errors import DuplicateUser, InvalidToken, UserNotFound
from auth.models import User, VerificationToken

logger = logging.getLogger("tokengate.auth.store")

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("username", String(255), nullable=False, unique=True),
    Column("email", String(320), nullable=False, unique=True),
    Column("hashed_password", Text, nullable=False),
    Column("created_at", String(32), nullable=False),
    Column("enabled", Integer, nullable=False, server_default="0"),
)

_verification_tokens = Table(
    "verification_tokens",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("token", String(64), nullable=False, unique=True),
    Column("username", String(255), nullable=False, index=True),
    Column("created_at", String(32), nullable=False),
)


# ---------------------------------------------------------------------------
# SQLite helpers
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode so readers do not block behind writers.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def make_engine(db_url: str) -> Engine:
    """Create an engine with the SQLite settings every auth store needs."""
    connect_args: dict = {}
    if db_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    engine = create_engine(db_url, connect_args=connect_args)
    if db_url.startswith("sqlite"):
        event.listen(engine, "connect", _set_wal_mode)
    return engine


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User and VerificationToken entities.

    Usage:
        store = UserStore("sqlite:///auth.db")
        store.create_user(user, verification_token=token)
        user = store.activate_account(token)
        store.close()
    """

    def __init__(self, db_url: str) -> None:
        self.engine: Engine = make_engine(db_url)
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def create_user(self, user: User, verification_token: str | None = None) -> int:
        """Insert a new user (and optionally its verification token) atomically.

        Returns the assigned user ID.

        Raises:
            DuplicateUser: username or email is already taken. Nothing is
                written in that case -- the token insert is rolled back with
                the user insert.
        """
        created_at = user.created_at or now_iso()
        try:
            with self.engine.begin() as conn:
                result = conn.execute(
                    _users.insert().values(
                        username=user.username,
                        email=user.email,
                        hashed_password=user.hashed_password,
                        created_at=created_at,
                        enabled=1 if user.enabled else 0,
                    )
                )
                if verification_token is not None:
                    conn.execute(
                        _verification_tokens.insert().values(
                            token=verification_token,
                            username=user.username,
                            created_at=created_at,
                        )
                    )
        except IntegrityError as exc:
            logger.info("Rejected duplicate registration for username %r", user.username)
            raise DuplicateUser() from exc
        return result.inserted_primary_key[0]

    def get_by_username(self, username: str) -> User | None:
        """Look up a user by exact username (case-sensitive). Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.username == username)).fetchone()
        return _row_to_user(row) if row is not None else None

    def count_users(self, username: str | None = None) -> int:
        """Return the number of user rows, optionally for a single username.

        Inspection helper: the request path never calls it. Tests use it to
        check that rejected signups left nothing behind.
        """
        query = select(func.count()).select_from(_users)
        if username is not None:
            query = query.where(_users.c.username == username)
        with self.engine.connect() as conn:
            return conn.execute(query).scalar() or 0

    # ------------------------------------------------------------------
    # Verification tokens
    # ------------------------------------------------------------------

    def get_verification_tokens(self, username: str) -> list[VerificationToken]:
        """Return every outstanding (unconsumed) verification token for a user.

        Inspection helper: the request path never calls it.
        """
        with self.engine.connect() as conn:
            rows = conn.execute(
                _verification_tokens.select().where(_verification_tokens.c.username == username)
            ).fetchall()
        return [VerificationToken(token=r.token, username=r.username, created_at=r.created_at) for r in rows]

    def activate_account(self, token: str) -> User:
        """Consume a verification token and enable its user in one transaction.

        The DELETE runs first, so the transaction holds the write lock from
        its first statement. If anything after it fails, the rollback
        restores the token and the account can still be activated.

        Raises:
            InvalidToken: the token was never issued or has already been used.
            UserNotFound: the token is bound to a user that no longer exists.
        """
        with self.engine.begin() as conn:
            username = conn.execute(
                _verification_tokens.delete()
                .where(_verification_tokens.c.token == token)
                .returning(_verification_tokens.c.username)
            ).scalar()
            if username is None:
                raise InvalidToken()
            updated = conn.execute(_users.update().where(_users.c.username == username).values(enabled=1))
            if updated.rowcount == 0:
                logger.error("Verification token bound to missing user %r", username)
                raise UserNotFound(f"User not found: {username}")
            row = conn.execute(_users.select().where(_users.c.username == username)).fetchone()
        return _row_to_user(row)

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        username=row.username,
        email=row.email,
        hashed_password=row.hashed_password,
        created_at=row.created_at,
        enabled=bool(row.enabled),
    )
