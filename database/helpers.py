"""
Database helper functions — user lookups and activity logging.
"""

from __future__ import annotations

import logging
import uuid
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from database.models import ActivityLog, User

logger = logging.getLogger(__name__)


def to_uuid(value: str | uuid.UUID) -> uuid.UUID:
    return uuid.UUID(value) if isinstance(value, str) else value


async def get_user_by_id(session: AsyncSession, user_id: str | uuid.UUID) -> Optional[User]:
    try:
        uid = to_uuid(user_id)
    except ValueError:
        return None
    result = await session.execute(select(User).where(User.id == uid))
    return result.scalar_one_or_none()


async def get_user_by_email(session: AsyncSession, email: str) -> Optional[User]:
    result = await session.execute(select(User).where(User.email == email.lower()))
    return result.scalar_one_or_none()


async def log_activity(
    session: AsyncSession,
    user_id: str | uuid.UUID,
    organization_id: str | uuid.UUID,
    activity_type: str,
    description: str,
    details: str | None = None,
) -> None:
    """
    Insert an ``activity_logs`` row inside a savepoint.

    Activity logging is non-critical: a failure is logged and swallowed so
    the surrounding transaction (token storage) still commits.
    """
    try:
        async with session.begin_nested():
            session.add(
                ActivityLog(
                    user_id=to_uuid(user_id),
                    organization_id=to_uuid(organization_id),
                    activity_type=activity_type,
                    description=description,
                    details=details,
                )
            )
    except SQLAlchemyError as exc:
        logger.warning("Activity log insert failed (%s): %s", activity_type, exc)
