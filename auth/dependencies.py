"""
FastAPI dependencies for authentication.

Provides ``db_session``, ``get_current_user_id``, ``get_current_user`` and
``require_admin``, used across all protected routes.
"""

from __future__ import annotations

from typing import AsyncGenerator, Optional

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from auth.jwt import verify_token
from config.settings import config
from database.helpers import get_user_by_id
from database.models import User
from database.session import get_db_session

# auto_error off: the web dashboard authenticates with the session cookie instead
_bearer_scheme = HTTPBearer(auto_error=False)


async def db_session(
    session: AsyncSession = Depends(get_db_session),
) -> AsyncGenerator[AsyncSession, None]:
    """Yield a DB session for route handlers."""
    yield session


async def get_current_user_id(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(_bearer_scheme),
) -> str:
    """
    Verify the Bearer token (extension) or the session cookie (web app),
    returning the authenticated ``user_id`` (UUID string).
    """
    token = credentials.credentials if credentials else request.cookies.get(config.session_cookie_name)
    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized - please log in",
        )
    return verify_token(token)


async def get_current_user(
    user_id: str = Depends(get_current_user_id),
    session: AsyncSession = Depends(db_session),
) -> User:
    user = await get_user_by_id(session, user_id)
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="User not found",
        )
    return user


async def require_admin(user: User = Depends(get_current_user)) -> User:
    """Only ``org_admin`` / ``super_admin`` may manage organization integrations."""
    if not user.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Only organization admins can manage organization integrations",
        )
    return user
