"""
Users Router — Own profile and activity history.
"""

import logging
from typing import Optional
from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, EmailStr, Field
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from brandpulse.auth import get_current_user
from brandpulse.database import get_db
from brandpulse.errors import ConflictError, ValidationError
from brandpulse.models import User
from brandpulse.services.activity_service import list_activity, serialize_activity
from brandpulse.utils import isoformat_or_none, pagination_response, utcnow, validate_pagination

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/users", tags=["Users"])


class ProfileUpdate(BaseModel):
    email: Optional[EmailStr] = None
    name: Optional[str] = Field(default=None, max_length=255)


def _profile(user: User) -> dict:
    return {
        "id": str(user.id),
        "email": user.email,
        "name": user.name,
        "plan_type": user.plan_type,
        "max_sources_allowed": user.max_sources_allowed,
        "created_at": isoformat_or_none(user.created_at),
        "updated_at": isoformat_or_none(user.updated_at),
    }


@router.get("/me")
async def get_profile(user: User = Depends(get_current_user)):
    return _profile(user)


@router.patch("/me")
async def update_profile(
    payload: ProfileUpdate,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Change email and/or display name. Email stays unique across accounts."""
    if payload.email is not None:
        email = payload.email.lower()
        if email != user.email:
            taken = await db.execute(select(User.id).where(User.email == email, User.id != user.id))
            if taken.scalar_one_or_none():
                raise ConflictError("Email already registered")
            logger.info(f"User {user.id} changed email")
            user.email = email
    if payload.name is not None:
        name = payload.name.strip()
        if not name:
            raise ValidationError("Name must not be blank")
        user.name = name
    user.updated_at = utcnow()
    await db.flush()
    return _profile(user)


@router.get("/me/activity")
async def get_activity(
    page: int = Query(0),
    size: int = Query(20),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    page, size = validate_pagination(page, size)
    entries, total = await list_activity(db, user.id, page, size)
    return {
        "activities": [serialize_activity(e) for e in entries],
        "pagination": pagination_response(page, size, total),
    }
