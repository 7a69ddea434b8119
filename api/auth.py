"""
Bearer-token authentication.

Tokens are HS256 JWTs signed with AUTH_JWT_SECRET for audience AUTH_JWT_AUDIENCE;
the ``sub`` claim is the caller's user id.
"""

from __future__ import annotations

import logging
import os
from typing import Optional

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

logger = logging.getLogger(__name__)

AUTH_JWT_SECRET: str = os.getenv("AUTH_JWT_SECRET", "")
AUTH_JWT_AUDIENCE: str = os.getenv("AUTH_JWT_AUDIENCE", "authenticated")
JWT_ALGORITHM = "HS256"

security = HTTPBearer(auto_error=False)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def decode_user_id(token: str, secret: Optional[str] = None, audience: Optional[str] = None) -> str:
    """Verify the token and return its subject. Raises jwt.PyJWTError."""
    data = jwt.decode(
        token,
        secret if secret is not None else AUTH_JWT_SECRET,
        algorithms=[JWT_ALGORITHM],
        audience=audience if audience is not None else AUTH_JWT_AUDIENCE,
    )
    sub = data.get("sub")
    if not sub:
        raise jwt.InvalidTokenError("Token has no subject")
    return str(sub)


def get_user_id(credentials: Optional[HTTPAuthorizationCredentials] = Depends(security)) -> str:
    """FastAPI dependency: the authenticated caller's user id, or 401."""
    if credentials is None or not credentials.credentials:
        raise _unauthorized("Unauthorized")
    if not AUTH_JWT_SECRET:
        logger.error("AUTH_JWT_SECRET is not configured; rejecting request")
        raise _unauthorized("Unauthorized")
    try:
        return decode_user_id(credentials.credentials)
    except jwt.PyJWTError as e:
        logger.info("Rejected token: %s", e)
        raise _unauthorized("Invalid or expired token")
