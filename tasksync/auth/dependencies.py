"""
Authentication dependencies for FastAPI.
"""
from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from typing import Optional

from tasksync.auth.crypto import verify_token
from tasksync.errors import AuthError


security = HTTPBearer(auto_error=False)


async def get_current_account(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security)
) -> str:
    """
    Dependency to get the authenticated account from a JWT token.

    Returns:
        Username

    Raises:
        AuthError: If the token is missing, invalid or expired
    """
    if credentials is None:
        raise AuthError("Unauthorized")

    payload = verify_token(credentials.credentials)

    if not payload:
        raise AuthError("Invalid or expired token")

    if payload.get("type") != "access":
        raise AuthError("Invalid token type")

    username = payload.get("sub")
    if not username:
        raise AuthError("Invalid token payload")

    return username
