"""FastAPI dependency injection for database sessions, repositories and auth.

These dependencies are used in endpoint function signatures to inject the
database session, the deal repository, the next-action resolver and the
authenticated user.
"""

from __future__ import annotations

import uuid
from collections.abc import AsyncGenerator
from typing import Any

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from src.autosettle.core.database import get_session
from src.autosettle.core.security import verify_token
from src.autosettle.deals.next_action import NextActionResolver, default_resolver
from src.autosettle.models.user import User


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Get a database session."""
    async for session in get_session():
        yield session


def get_deal_repository(request: Request) -> Any:
    """Retrieve DealRepository from app.state, 503 if not available."""
    repo = getattr(request.app.state, "deal_repository", None)
    if repo is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Deal management not initialized",
        )
    return repo


def get_next_action_resolver(request: Request) -> NextActionResolver:
    """Resolver configured at startup, or the default one."""
    return getattr(request.app.state, "next_action_resolver", None) or default_resolver


async def get_current_user(
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> User:
    """Extract and validate the current user from the bearer JWT.

    Raises:
        HTTPException(401): If no valid token is provided or the user is gone.
    """
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )

    payload = verify_token(auth_header[7:], token_type="access")
    try:
        user_id = uuid.UUID(payload["sub"])
    except (KeyError, TypeError, ValueError, AttributeError):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )

    result = await db.execute(
        select(User).where(
            User.id == user_id,
            User.is_active == True,  # noqa: E712
        )
    )
    user = result.scalar_one_or_none()
    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found or inactive",
        )
    return user

