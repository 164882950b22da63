"""
Activity Service — Records product events per user and pages through them.

Rows are added to the caller's session, so an event commits or rolls back
together with the action it describes.
"""

import logging
import uuid
from typing import Optional

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from brandpulse.models import ActivityType, UserActivityLog
from brandpulse.utils import isoformat_or_none

logger = logging.getLogger(__name__)


def record_activity(
    db: AsyncSession,
    user_id: uuid.UUID,
    activity_type: ActivityType,
    details: Optional[dict] = None,
) -> UserActivityLog:
    entry = UserActivityLog(user_id=user_id, activity_type=activity_type.value, details=details)
    db.add(entry)
    logger.debug(f"Activity {activity_type.value} recorded for user {user_id}")
    return entry


async def list_activity(db: AsyncSession, user_id: uuid.UUID, page: int, size: int) -> tuple[list[UserActivityLog], int]:
    """Newest first."""
    total = (await db.execute(
        select(func.count()).select_from(UserActivityLog).where(UserActivityLog.user_id == user_id)
    )).scalar() or 0
    result = await db.execute(
        select(UserActivityLog)
        .where(UserActivityLog.user_id == user_id)
        .order_by(UserActivityLog.occurred_at.desc(), UserActivityLog.id)
        .offset(page * size)
        .limit(size)
    )
    return list(result.scalars().all()), total


def serialize_activity(entry: UserActivityLog) -> dict:
    return {
        "id": str(entry.id),
        "activity_type": entry.activity_type,
        "occurred_at": isoformat_or_none(entry.occurred_at),
        "details": entry.details or {},
    }
