"""
auth/tokens.py -- JWT access tokens, password hashing, and opaque tokens.

Security design decisions:
  JWT: python-jose with HS256. Access tokens carry only the subject
       (username) and expiry. decode_access_token() raises TokenExpired for a
       lapsed exp claim and InvalidToken for everything else (bad signature,
       malformed token, missing subject).

  Passwords: bcrypt directly. The _DUMMY_HASH constant enables timing
       equalization in authenticate_user() so response time does not reveal
       whether a username exists [C1].

  Opaque tokens: secrets.token_urlsafe(32) gives 256 bits of entropy for
       verification and refresh tokens. They are random lookup keys with no
       embedded claims.

  SECRET_KEY: sourced from core.config.get_settings() once at import. The
       key is immutable for the life of the process.

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

import bcrypt
from jose import ExpiredSignatureError, JWTError, jwt

from auth.errors import AccountDisabled, BadCredentials, InvalidToken, PasswordTooLong, TokenExpired
from core.config import get_settings

if TYPE_CHECKING:
    from auth.models import User
    from auth.store import UserStore

logger = logging.getLogger("tokengate.auth")

_settings = get_settings()

_ALGORITHM = "HS256"

# ---------------------------------------------------------------------------
# Password hashing (bcrypt -- direct usage, no passlib wrapper)
# ---------------------------------------------------------------------------


# bcrypt's input limit. Counted in UTF-8 bytes, not characters.
PASSWORD_MAX_BYTES = 72


def password_too_long(plain: str) -> bool:
    return len(plain.encode("utf-8")) > PASSWORD_MAX_BYTES


def hash_password(plain: str) -> str:
    """Return a bcrypt hash of the given plaintext password.

    Passwords longer than PASSWORD_MAX_BYTES are rejected rather than
    truncated, so two different passwords can never share a hash.

    Raises:
        PasswordTooLong: the UTF-8 encoding exceeds 72 bytes.
    """
    if password_too_long(plain):
        raise PasswordTooLong()
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash.

    Fails closed: a malformed or truncated digest returns False, and so does
    a password too long to have been hashed in the first place.
    """
    if password_too_long(plain):
        return False
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except (ValueError, TypeError):
        return False


# Timing equalization dummy hash [C1]. Computed once at module load so the
# first login attempt is not measurably slower than subsequent ones.
_DUMMY_HASH: str = hash_password("tokengate_timing_dummy")


# ---------------------------------------------------------------------------
# JWT encode / decode
# ---------------------------------------------------------------------------


def create_access_token(
    username: str,
    expire_seconds: int = 0,
    now: datetime | None = None,
) -> tuple[str, datetime]:
    """Encode a signed JWT for `username` and return (token, expires_at).

    Args:
        username:       Stored as the JWT subject claim.
        expire_seconds: Lifetime in seconds. If 0 (default), uses
                        Settings.access_token_expire_seconds.
        now:            Issue time. Defaults to the current UTC time.
    """
    duration = expire_seconds if expire_seconds > 0 else _settings.access_token_expire_seconds
    issued_at = now or datetime.now(timezone.utc)
    # The exp claim has whole-second precision; expose the same instant.
    expires_at = (issued_at + timedelta(seconds=duration)).replace(microsecond=0)
    payload = {
        "sub": username,
        "iat": issued_at,
        "exp": expires_at,
    }
    return jwt.encode(payload, _settings.secret_key, algorithm=_ALGORITHM), expires_at


def decode_access_token(token: str) -> str:
    """Verify a JWT and return its subject username.

    Raises:
        TokenExpired: the signature is valid but exp has passed.
        InvalidToken: bad signature, malformed token, or no subject.
    """
    try:
        payload = jwt.decode(token, _settings.secret_key, algorithms=[_ALGORITHM])
    except ExpiredSignatureError as exc:
        raise TokenExpired() from exc
    except JWTError as exc:
        raise InvalidToken("Invalid access token.") from exc
    subject = payload.get("sub")
    if not subject or not isinstance(subject, str):
        raise InvalidToken("Invalid access token.")
    return subject


# ---------------------------------------------------------------------------
# User authentication (constant-time) [C1]
# ---------------------------------------------------------------------------


def authenticate_user(store: UserStore, username: str, password: str) -> User:
    """Authenticate a username/password login with timing equalization.

    Always runs bcrypt whether or not the user exists:
    - Unknown username: bcrypt runs against _DUMMY_HASH (same cost as real check)
    - Wrong password: bcrypt runs against the real hash (same cost)

    The enabled check runs only after the password matched, so an unverified
    account is not revealed to someone who does not know its password.

    Raises:
        BadCredentials: unknown username or wrong password.
        AccountDisabled: correct password, account not yet verified.
    """
    user = store.get_by_username(username)
    if user is None:
        # Equalize timing -- do NOT return early before running bcrypt [C1]
        verify_password(password, _DUMMY_HASH)
        raise BadCredentials()
    if not verify_password(password, user.hashed_password):
        raise BadCredentials()
    if not user.enabled:
        raise AccountDisabled()
    return user


# ---------------------------------------------------------------------------
# Opaque tokens
# ---------------------------------------------------------------------------


def generate_opaque_token() -> str:
    """Return a URL-safe random token with 256 bits of entropy."""
    return secrets.token_urlsafe(32)


# ---------------------------------------------------------------------------
# Cookie helper
# ---------------------------------------------------------------------------


def set_auth_cookie(response, token: str, expire_seconds: int = 0) -> None:
    """Write the JWT access token as an httpOnly cookie on the response.

    httponly=True: JS cannot read the cookie (XSS mitigation).
    samesite="lax": not sent on cross-site POST -- CSRF mitigation.
    secure: only sent over HTTPS when SECURE_COOKIES=true (set in production).
    max_age: matches the JWT expiry so both expire together.
    """
    duration = expire_seconds if expire_seconds > 0 else _settings.access_token_expire_seconds
    response.set_cookie(
        "access_token",
        value=token,
        httponly=True,
        samesite="lax",
        secure=_settings.secure_cookies,
        max_age=duration,
    )
