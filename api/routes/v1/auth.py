"""
api/routes/v1/auth.py -- Account and token REST endpoints.

Routes:
  POST /api/v1/auth/signup                         -- register; sends activation mail
  GET  /api/v1/auth/accountVerification/{token}    -- activate account
  POST /api/v1/auth/login                          -- password login; returns tokens, sets cookie
  POST /api/v1/auth/refresh/token                  -- new access token from a refresh token
  POST /api/v1/auth/logout                         -- revoke refresh token, clear cookie
  GET  /api/v1/auth/me                             -- current user (requires auth)
  GET  /api/v1/auth/logged-in                      -- whether the request is authenticated

Every failure is an AuthError raised by AuthService. Handlers do not catch
them: api/main.py maps each AuthError subclass to its status code and the
shared error envelope.

Security:
  [C1] Login goes through AuthService.login() -> authenticate_user(), which
       equalizes timing for unknown usernames.
  [M5] Cache-Control: no-store on every response that carries a token.
"""

from __future__ import annotations

from fastapi import APIRouter, BackgroundTasks, Depends
from fastapi.responses import JSONResponse

from api.models import (
    AuthenticationResponse,
    LoggedInResponse,
    LoginRequest,
    LogoutRequest,
    MessageResponse,
    RefreshTokenRequest,
    SignupRequest,
    UserResponse,
)
from auth.dependencies import get_auth_service, get_session
from auth.models import Session
from auth.service import AuthService
from auth.tokens import set_auth_cookie

# Auth policy:
# - signup, accountVerification, login, refresh/token, logout, logged-in: public
# - me: requires an authenticated session (AuthService raises NotAuthenticated)
router = APIRouter()


# ---------------------------------------------------------------------------
# Registration
# ---------------------------------------------------------------------------


@router.post("/auth/signup", response_model=MessageResponse, status_code=201)
def signup(
    body: SignupRequest,
    background_tasks: BackgroundTasks,
    service: AuthService = Depends(get_auth_service),
) -> MessageResponse:
    """Create a disabled account and queue its activation email.

    The email is sent after the response is returned. Delivery failures are
    logged server-side only; the caller still gets 201.
    """
    service.signup(body.username, body.email, body.password, schedule=background_tasks.add_task)
    return MessageResponse(message="User registration successful. Check your email to activate the account.")


@router.get("/auth/accountVerification/{token}", response_model=MessageResponse)
def verify_account(token: str, service: AuthService = Depends(get_auth_service)) -> MessageResponse:
    service.verify(token)
    return MessageResponse(message="Account activated successfully.")


# ---------------------------------------------------------------------------
# Tokens
# ---------------------------------------------------------------------------


@router.post("/auth/login", response_model=AuthenticationResponse)
def login(body: LoginRequest, service: AuthService = Depends(get_auth_service)) -> JSONResponse:
    """Authenticate with username and password.

    Returns the access token, its expiry, and a new refresh token. The access
    token is also written as an httpOnly cookie for browser clients.
    Wrong username and wrong password produce the same "bad_credentials"
    error so username existence is not leaked.
    """
    result = service.login(body.username, body.password)
    resp = JSONResponse(content=AuthenticationResponse.from_result(result).model_dump(mode="json"))
    set_auth_cookie(resp, result.access_token)
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


@router.post("/auth/refresh/token", response_model=AuthenticationResponse)
def refresh_token(body: RefreshTokenRequest, service: AuthService = Depends(get_auth_service)) -> JSONResponse:
    result = service.refresh(body.refresh_token, body.username)
    resp = JSONResponse(content=AuthenticationResponse.from_result(result).model_dump(mode="json"))
    set_auth_cookie(resp, result.access_token)
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


@router.post("/auth/logout", response_model=MessageResponse)
def logout(body: LogoutRequest, service: AuthService = Depends(get_auth_service)) -> JSONResponse:
    """Revoke the refresh token and clear the access-token cookie."""
    service.logout(body.refresh_token)
    resp = JSONResponse(content=MessageResponse(message="Refresh token deleted successfully.").model_dump())
    resp.delete_cookie("access_token")
    return resp


# ---------------------------------------------------------------------------
# Session queries
# ---------------------------------------------------------------------------


@router.get("/auth/me", response_model=UserResponse)
def me(
    session: Session = Depends(get_session),
    service: AuthService = Depends(get_auth_service),
) -> UserResponse:
    """Return the account behind the request's access token."""
    return UserResponse.from_user(service.current_user(session))


@router.get("/auth/logged-in", response_model=LoggedInResponse)
def logged_in(
    session: Session = Depends(get_session),
    service: AuthService = Depends(get_auth_service),
) -> LoggedInResponse:
    return LoggedInResponse(logged_in=service.is_logged_in(session))
