"""
Auth API routes — login, logout, current user.

Route prefix: /api/auth
"""

from __future__ import annotations

import logging
from typing import Any, Dict

from fastapi import APIRouter, Depends, HTTPException, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from auth.dependencies import db_session, get_current_user
from auth.jwt import create_token
from auth.models import AuthResponse, LoginRequest
from auth.password import verify_password
from config.settings import config
from database.helpers import get_user_by_email, log_activity
from database.models import User

logger = logging.getLogger(__name__)

router = APIRouter(tags=["auth"])


def _user_payload(user: User) -> Dict[str, Any]:
    return {
        "user_id": str(user.id),
        "email": user.email,
        "full_name": user.full_name,
        "role": user.role,
        "organization_id": str(user.organization_id) if user.organization_id else None,
    }


@router.post("/login", response_model=AuthResponse)
async def login(
    req: LoginRequest,
    response: Response,
    session: AsyncSession = Depends(db_session),
) -> Dict[str, Any]:
    """Login with email + password; sets the session cookie and returns the token."""
    user = await get_user_by_email(session, req.email)

    if user is None or not verify_password(req.password, user.password_hash):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid email or password",
        )

    token = create_token(str(user.id))
    response.set_cookie(
        config.session_cookie_name,
        token,
        max_age=config.jwt_expiry_seconds,
        httponly=True,
        samesite="lax",
        secure=not config.debug,
    )
    await log_activity(session, user.id, user.effective_organization_id, "login", "User logged in")
    logger.info("Login: %s (%s)", user.email, user.id)

    return {**_user_payload(user), "token": token}


@router.post("/logout")
async def logout(response: Response) -> Dict[str, bool]:
    response.delete_cookie(config.session_cookie_name)
    return {"ok": True}


@router.get("/me")
async def me(user: User = Depends(get_current_user)) -> Dict[str, Any]:
    return _user_payload(user)
