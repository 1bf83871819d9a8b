"""
Token helpers for the authentication gate.

Accounts are provisioned by the identity collaborator; this service only
issues and verifies the bearer tokens that name an account.
"""
from jose import jwt, JWTError
from datetime import datetime, timedelta
from typing import Optional, Dict, Any
import structlog

from tasksync.config import settings


logger = structlog.get_logger()


def create_access_token(username: str, expires_minutes: Optional[int] = None) -> str:
    """
    Create JWT access token.

    Args:
        username: Account the token is issued for
        expires_minutes: Override for the configured lifetime

    Returns:
        Encoded JWT token
    """
    now = datetime.utcnow()
    lifetime = expires_minutes if expires_minutes is not None else settings.access_token_expire_minutes
    expires = now + timedelta(minutes=lifetime)

    payload = {
        "sub": username,
        "exp": expires,
        "iat": now,
        "type": "access"
    }

    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def verify_token(token: str) -> Optional[Dict[str, Any]]:
    """
    Verify and decode JWT token.

    Args:
        token: JWT token string

    Returns:
        Decoded token payload or None if invalid
    """
    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=[settings.jwt_algorithm]
        )
        return payload
    except JWTError as e:
        logger.warning("token_verification_failed", error=str(e))
        return None
