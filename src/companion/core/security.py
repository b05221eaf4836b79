"""Bearer token verification for Supabase-issued JWTs.

Identity is delegated to Supabase; this module only checks the signature,
audience and expiry of the access token and extracts the user id.
"""

from __future__ import annotations

from dataclasses import dataclass

import structlog
from fastapi import HTTPException, status
from jose import JWTError, jwt

from src.companion.config import get_settings

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class AuthenticatedUser:
    """Caller identity resolved from a verified token."""

    id: str
    email: str | None = None


def verify_token(token: str) -> AuthenticatedUser:
    """Decode and validate a Supabase access token.

    Args:
        token: The raw JWT string (without the ``Bearer`` prefix).

    Returns:
        AuthenticatedUser built from the ``sub`` and ``email`` claims.

    Raises:
        HTTPException(401): If the token is invalid, expired, or has no subject.
    """
    settings = get_settings()
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Invalid or expired token",
        headers={"WWW-Authenticate": "Bearer"},
    )
    if not settings.SUPABASE_JWT_SECRET:
        logger.error("auth.secret_missing")
        raise credentials_exception

    try:
        payload = jwt.decode(
            token,
            settings.SUPABASE_JWT_SECRET,
            algorithms=[settings.JWT_ALGORITHM],
            audience=settings.JWT_AUDIENCE,
        )
    except JWTError:
        raise credentials_exception

    user_id = payload.get("sub")
    if not user_id:
        raise credentials_exception
    return AuthenticatedUser(id=str(user_id), email=payload.get("email"))
