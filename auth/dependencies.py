"""
FastAPI dependencies shared by the connector routes.

Provides ``get_current_user_id`` (Bearer user token) and
``get_connection_manager`` (the instance wired at startup).
"""

from __future__ import annotations

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from auth.tokens import InvalidUserToken, verify_user_token
from connectors.manager import ConnectionManager

_bearer_scheme = HTTPBearer()


async def get_current_user_id(
    credentials: HTTPAuthorizationCredentials = Depends(_bearer_scheme),
) -> str:
    """
    Extract and verify the Bearer token, returning the authenticated
    ``user_id``.
    """
    try:
        return verify_user_token(credentials.credentials)
    except InvalidUserToken as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Invalid or expired token: {exc}",
        )


def get_connection_manager(request: Request) -> ConnectionManager:
    return request.app.state.connection_manager
