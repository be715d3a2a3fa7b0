"""JWT authentication and password hashing.

Provides the core security primitives used by the auth endpoints and the
request dependencies to authenticate callers.

Uses bcrypt directly (not passlib) for Python 3.13 compatibility.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import bcrypt
import structlog
from fastapi import HTTPException, status
from jose import JWTError, jwt

from src.autosettle.config import get_settings

logger = structlog.get_logger(__name__)

# ── Password Hashing ──────────────────────────────────────────────────────────


def hash_password(password: str) -> str:
    """Hash a plaintext password using bcrypt."""
    salt = bcrypt.gensalt()
    return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Verify a plaintext password against its bcrypt hash."""
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        # Stored hash is not a bcrypt hash
        logger.warning("security.invalid_password_hash")
        return False


# ── JWT Token Creation ────────────────────────────────────────────────────────


def _create_token(data: dict, token_type: str, expires_delta: timedelta) -> str:
    settings = get_settings()
    to_encode = data.copy()
    now = datetime.now(timezone.utc)
    to_encode.update({
        "exp": now + expires_delta,
        "iat": now,
        "type": token_type,
    })
    return jwt.encode(to_encode, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def create_access_token(data: dict, expires_delta: timedelta | None = None) -> str:
    """Create a JWT access token.

    The data dict should contain at minimum:
    - sub: user_id (str)
    - email: user email (str)
    """
    settings = get_settings()
    return _create_token(
        data,
        "access",
        expires_delta or timedelta(minutes=settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES),
    )


def create_refresh_token(data: dict) -> str:
    """Create a JWT refresh token with longer expiry."""
    settings = get_settings()
    return _create_token(
        data,
        "refresh",
        timedelta(days=settings.JWT_REFRESH_TOKEN_EXPIRE_DAYS),
    )


# ── JWT Token Verification ────────────────────────────────────────────────────


def verify_token(token: str, token_type: str = "access") -> dict:
    """Decode and validate a JWT token.

    Args:
        token: The JWT string.
        token_type: Expected token type ("access" or "refresh").

    Returns:
        The decoded payload dict.

    Raises:
        HTTPException(401): If the token is invalid, expired, or wrong type.
    """
    settings = get_settings()
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    try:
        payload = jwt.decode(
            token,
            settings.JWT_SECRET_KEY,
            algorithms=[settings.JWT_ALGORITHM],
        )
    except JWTError:
        raise credentials_exception
    if payload.get("type") != token_type:
        raise credentials_exception
    if not payload.get("sub"):
        raise credentials_exception
    return payload
