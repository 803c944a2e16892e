"""
auth/errors.py -- Failure taxonomy for the authentication flows.

Every error a caller can receive is an AuthError subclass with a stable,
machine-readable `code`. The HTTP layer (api/main.py) maps each class to a
status code; auth/ itself knows nothing about HTTP.

NotificationDeliveryFailed is deliberately NOT an AuthError: it is raised by
the mail sender, logged by auth.mail.deliver(), and never reaches a caller.
"""

from __future__ import annotations


class AuthError(Exception):
    code = "auth_error"
    message = "Authentication failed."

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.message)
        self.message = message or self.message


class DuplicateUser(AuthError):
    code = "duplicate_user"
    message = "A user with that username or email already exists."


class InvalidToken(AuthError):
    code = "invalid_token"
    message = "Invalid token."


class TokenExpired(AuthError):
    code = "token_expired"
    message = "Token has expired."


class UserNotFound(AuthError):
    code = "user_not_found"
    message = "User not found."


class BadCredentials(AuthError):
    code = "bad_credentials"
    message = "Invalid username or password."


class AccountDisabled(AuthError):
    code = "account_disabled"
    message = "Account has not been activated. Check your email for the activation link."


class InvalidRefreshToken(AuthError):
    code = "invalid_refresh_token"
    message = "Invalid refresh token."


class RefreshTokenExpired(AuthError):
    code = "refresh_token_expired"
    message = "Refresh token has expired. Log in again."


class NotAuthenticated(AuthError):
    code = "not_authenticated"
    message = "Authentication required."


class PasswordTooLong(AuthError):
    code = "password_too_long"
    message = "Password must be at most 72 bytes when UTF-8 encoded."


class NotificationDeliveryFailed(Exception):
    """Outbound mail could not be handed to the transport."""
