"""
auth/service.py -- AuthService: signup, verification, login, and token refresh.

Composes the stores, the token helpers, and the mail sender into the public
authentication flows. Route handlers call these methods and nothing below
them.

Session context is explicit. current_user() and is_logged_in() receive the
request's Session value (Anonymous | Authenticated) from the caller; nothing
here reads ambient per-thread state.

Failures are AuthError subclasses (auth/errors.py). The only failure this
service absorbs is activation-mail delivery, which auth.mail.deliver() logs.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any

from auth.errors import InvalidRefreshToken, NotAuthenticated, UserNotFound
from auth.mail import MailSender, build_activation_email, deliver
from auth.models import AuthenticationResult, Authenticated, Session, User
from auth.refresh import RefreshTokenStore
from auth.store import UserStore
from auth.tokens import (
    authenticate_user,
    create_access_token,
    generate_opaque_token,
    hash_password,
)

logger = logging.getLogger("tokengate.auth")

# Signature of FastAPI's BackgroundTasks.add_task: schedule(func, *args).
Scheduler = Callable[..., Any]


def _run_now(func: Callable[..., Any], *args: Any) -> None:
    func(*args)


class AuthService:
    """Authentication flows over a UserStore and a RefreshTokenStore.

    Args:
        users:               Credential + verification token store.
        refresh_tokens:      Refresh token store.
        mailer:              Sink for activation emails.
        activation_base_url: Prefix of the link embedded in activation mails.
        bind_refresh_to_user: When True, a refresh token only mints access
            tokens for the user it was issued to. When False any valid
            refresh token is accepted for any username.
    """

    def __init__(
        self,
        users: UserStore,
        refresh_tokens: RefreshTokenStore,
        mailer: MailSender,
        activation_base_url: str,
        bind_refresh_to_user: bool = True,
    ) -> None:
        self.users = users
        self.refresh_tokens = refresh_tokens
        self.mailer = mailer
        self.activation_base_url = activation_base_url
        self.bind_refresh_to_user = bind_refresh_to_user

    # ------------------------------------------------------------------
    # Signup / verification
    # ------------------------------------------------------------------

    def signup(self, username: str, email: str, password: str, schedule: Scheduler | None = None) -> User:
        """Register a disabled account and send its activation email.

        The user row and verification token are committed together; if the
        username or email is taken, DuplicateUser propagates and nothing is
        written. Mail delivery is handed to `schedule` (the route passes
        BackgroundTasks.add_task) so it runs off the request path. Without a
        scheduler it runs inline. Either way a delivery failure is logged by
        deliver() and does not affect the result.
        """
        user = User(
            username=username,
            email=email,
            hashed_password=hash_password(password),
            created_at=datetime.now(timezone.utc).isoformat(),
            enabled=False,
        )
        token = generate_opaque_token()
        user.id = self.users.create_user(user, verification_token=token)
        logger.info("Registered user %r (pending activation)", username)

        email_message = build_activation_email(user, token, self.activation_base_url)
        (schedule or _run_now)(deliver, self.mailer, email_message)
        return user

    def verify(self, token: str) -> User:
        """Consume a verification token and enable the account it belongs to.

        Tokens are single-use. A second call with the same token raises
        InvalidToken. Consuming the token and enabling the account commit
        together, so a failure part-way leaves the token usable.

        Raises:
            InvalidToken: unknown or already-used token.
            UserNotFound: the token's user no longer exists.
        """
        user = self.users.activate_account(token)
        logger.info("Activated user %r", user.username)
        return user

    # ------------------------------------------------------------------
    # Tokens
    # ------------------------------------------------------------------

    def login(self, username: str, password: str) -> AuthenticationResult:
        """Check credentials and issue an access token plus a new refresh token.

        Raises:
            BadCredentials: unknown username or wrong password.
            AccountDisabled: the account has not been verified yet.
        """
        user = authenticate_user(self.users, username, password)
        access_token, expires_at = create_access_token(user.username)
        refresh_token = self.refresh_tokens.generate(user.username)
        logger.info("User %r logged in", user.username)
        return AuthenticationResult(
            access_token=access_token,
            username=user.username,
            expires_at=expires_at,
            refresh_token=refresh_token.token,
        )

    def refresh(self, refresh_token: str, username: str) -> AuthenticationResult:
        """Mint a fresh access token for `username` from a valid refresh token.

        The refresh token itself is not rotated.

        Raises:
            InvalidRefreshToken: unknown or revoked token, or a token issued
                to another user while binding is on.
            RefreshTokenExpired: the token is past its lifetime.
        """
        self.refresh_tokens.validate(refresh_token, username if self.bind_refresh_to_user else None)
        access_token, expires_at = create_access_token(username)
        return AuthenticationResult(access_token=access_token, username=username, expires_at=expires_at)

    def logout(self, refresh_token: str) -> None:
        """Revoke a refresh token. Raises InvalidRefreshToken if it is unknown."""
        if not self.refresh_tokens.revoke(refresh_token):
            raise InvalidRefreshToken()

    # ------------------------------------------------------------------
    # Session queries
    # ------------------------------------------------------------------

    def current_user(self, session: Session) -> User:
        """Load the User behind an authenticated session.

        Raises:
            NotAuthenticated: the session is anonymous.
            UserNotFound: the session's principal no longer exists.
        """
        if not self.is_logged_in(session):
            raise NotAuthenticated()
        user = self.users.get_by_username(session.username)
        if user is None:
            raise UserNotFound(f"Username not found: {session.username}")
        return user

    @staticmethod
    def is_logged_in(session: Session) -> bool:
        return isinstance(session, Authenticated) and session.authenticated
