"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Stores and the
AuthService do the work; these only own the shape.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime


@dataclass
class User:
    """A registered account.

    Accounts are created disabled at signup and enabled exactly once, when the
    emailed verification token is consumed. hashed_password is a bcrypt digest;
    the plaintext is never stored.
    """

    username: str
    email: str
    hashed_password: str
    id: int | None = None
    created_at: str | None = None
    enabled: bool = False


@dataclass
class VerificationToken:
    """One-time binding between an opaque token and the user it activates."""

    token: str
    username: str
    created_at: str | None = None


@dataclass
class RefreshToken:
    """A long-lived opaque credential used to mint new access tokens.

    The token carries no claims. Expiry is computed from created_at plus the
    store's TTL, never decoded from the token itself.
    """

    token: str
    username: str
    created_at: str


@dataclass(frozen=True)
class AuthenticationResult:
    """Transient result of login and refresh.

    refresh_token is None on refresh: the existing refresh token is not
    rotated, so there is nothing new to hand back.
    """

    access_token: str
    username: str
    expires_at: datetime
    refresh_token: str | None = None


@dataclass(frozen=True)
class NotificationEmail:
    subject: str
    recipient: str
    body: str


# ---------------------------------------------------------------------------
# Session -- explicit request principal
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Anonymous:
    """Placeholder principal for requests without a valid access token."""


@dataclass(frozen=True)
class Authenticated:
    username: str
    authenticated: bool = True


Session = Anonymous | Authenticated

ANONYMOUS = Anonymous()
