"""
auth/refresh.py -- Refresh token store.

Refresh tokens are opaque random strings with a days-scale lifetime. Nothing
is encoded in the token: validity is decided by looking the token up and
comparing its stored created_at against the store's TTL.

Expired rows are rejected on read and removed in bulk by purge_expired(),
which the API lifespan calls periodically.

Binding: each token records the username it was issued to. validate() checks
the binding when a username is passed; AuthService passes one only while
REFRESH_TOKEN_BIND_USER is on.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timedelta, timezone

from sqlalchemy import Column, Integer, MetaData, String, Table
from sqlalchemy.engine import Engine

from auth.errors import InvalidRefreshToken, RefreshTokenExpired
from auth.models import RefreshToken
from auth.store import make_engine
from auth.tokens import generate_opaque_token

logger = logging.getLogger("tokengate.auth.refresh")

_metadata = MetaData()

_refresh_tokens = Table(
    "refresh_tokens",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("token", String(64), nullable=False, unique=True),
    Column("username", String(255), nullable=False, index=True),
    Column("created_at", String(32), nullable=False),
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RefreshTokenStore:
    """Issue, validate, and revoke refresh tokens.

    Usage:
        store = RefreshTokenStore("sqlite:///auth.db", ttl_seconds=7 * 86400)
        rt = store.generate("alice")
        store.validate(rt.token, "alice")
        store.revoke(rt.token)

    `clock` returns the current aware UTC datetime; tests inject their own.
    """

    def __init__(
        self,
        db_url: str,
        ttl_seconds: int,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.ttl = timedelta(seconds=ttl_seconds)
        self._clock = clock
        self.engine: Engine = make_engine(db_url)
        _metadata.create_all(self.engine)

    def generate(self, username: str) -> RefreshToken:
        """Create and persist a new refresh token for `username`."""
        refresh_token = RefreshToken(
            token=generate_opaque_token(),
            username=username,
            created_at=self._clock().isoformat(timespec="microseconds"),
        )
        with self.engine.begin() as conn:
            conn.execute(
                _refresh_tokens.insert().values(
                    token=refresh_token.token,
                    username=refresh_token.username,
                    created_at=refresh_token.created_at,
                )
            )
        return refresh_token

    def get(self, token: str) -> RefreshToken | None:
        with self.engine.connect() as conn:
            row = conn.execute(_refresh_tokens.select().where(_refresh_tokens.c.token == token)).fetchone()
        if row is None:
            return None
        return RefreshToken(token=row.token, username=row.username, created_at=row.created_at)

    def validate(self, token: str, username: str | None = None) -> RefreshToken:
        """Return the stored token if it may still mint access tokens.

        Raises:
            InvalidRefreshToken: unknown or revoked token, or (when `username`
                is given) a token issued to a different user.
            RefreshTokenExpired: created_at + TTL lies in the past.
        """
        refresh_token = self.get(token)
        if refresh_token is None:
            raise InvalidRefreshToken()
        if username is not None and refresh_token.username != username:
            logger.warning("Refresh token presented for a different user than it was issued to")
            raise InvalidRefreshToken()
        if self._is_expired(refresh_token):
            raise RefreshTokenExpired()
        return refresh_token

    def revoke(self, token: str) -> bool:
        """Delete a refresh token. Returns False if it did not exist."""
        with self.engine.begin() as conn:
            result = conn.execute(_refresh_tokens.delete().where(_refresh_tokens.c.token == token))
        return result.rowcount > 0

    def purge_expired(self) -> int:
        """Delete all tokens older than TTL. Returns number of rows removed.

        created_at values are fixed-width ISO-8601 UTC strings, so lexical
        comparison orders them chronologically.
        """
        cutoff = (self._clock() - self.ttl).isoformat(timespec="microseconds")
        with self.engine.begin() as conn:
            result = conn.execute(_refresh_tokens.delete().where(_refresh_tokens.c.created_at < cutoff))
        if result.rowcount:
            logger.info("Purged %d expired refresh tokens", result.rowcount)
        return result.rowcount

    def _is_expired(self, refresh_token: RefreshToken) -> bool:
        created_at = datetime.fromisoformat(refresh_token.created_at)
        return self._clock() >= created_at + self.ttl

    def close(self) -> None:
        self.engine.dispose()
