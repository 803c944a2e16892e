"""
auth/dependencies.py -- FastAPI Depends() helpers for the request session.

The access token is looked up in priority order:
  1. JWT cookie ("access_token") -- set by the login route.
  2. Authorization: Bearer <token> header -- API clients.

get_session() is the soft variant: any missing, malformed, or expired token
yields the Anonymous session. Routes pass the resulting Session to
AuthService explicitly; there is no ambient "current principal".

get_auth_service() hands route handlers the AuthService built in lifespan.

Layer rule: auth/dependencies.py may import from fastapi because it is part
of the FastAPI dependency injection system. No imports from api/.
"""

from __future__ import annotations

import logging

from fastapi import Request

from auth.errors import InvalidToken, TokenExpired
from auth.models import ANONYMOUS, Authenticated, Session
from auth.service import AuthService
from auth.tokens import decode_access_token

logger = logging.getLogger("tokengate.auth")


def _request_token(request: Request) -> str | None:
    token: str | None = request.cookies.get("access_token")
    if not token:
        auth_header = request.headers.get("Authorization", "")
        if auth_header.startswith("Bearer "):
            token = auth_header[7:]
    return token or None


def get_session(request: Request) -> Session:
    """Resolve the request's access token into a Session. Never raises.

    Use as a FastAPI dependency:
        @router.get("/whoami")
        async def route(session: Session = Depends(get_session)): ...
    """
    token = _request_token(request)
    if token is None:
        return ANONYMOUS
    try:
        username = decode_access_token(token)
    except TokenExpired:
        logger.debug("Expired access token on %s", request.url.path)
        return ANONYMOUS
    except InvalidToken:
        logger.debug("Invalid access token on %s", request.url.path)
        return ANONYMOUS
    return Authenticated(username=username)


def get_auth_service(request: Request) -> AuthService:
    return request.app.state.auth_service
