"""
Authentication & ownership checks.

- Users authenticate with the JWT from login/register: Authorization: Bearer <jwt>
- Brand-scoped endpoints resolve the brand and verify it belongs to the caller.
"""

import logging
import uuid
from fastapi import Depends, HTTPException
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from brandpulse.database import get_db
from brandpulse.errors import AccessDeniedError, NotFoundError
from brandpulse.models import Brand, ReviewSource, User
from brandpulse.services.auth_service import decode_access_token

logger = logging.getLogger(__name__)

_bearer_scheme = HTTPBearer(auto_error=False)


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(_bearer_scheme),
    db: AsyncSession = Depends(get_db),
) -> User:
    """Require a JWT and return the User from DB."""
    if not credentials:
        raise HTTPException(
            status_code=401,
            detail="Missing authorization. Include header: Authorization: Bearer <token>",
        )

    payload = decode_access_token(credentials.credentials)
    if not payload or not payload.get("sub"):
        raise HTTPException(status_code=401, detail="Invalid or expired token. Please log in again.")

    try:
        user_id = uuid.UUID(payload["sub"])
    except ValueError:
        raise HTTPException(status_code=401, detail="Invalid or expired token. Please log in again.")

    result = await db.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()
    if not user:
        raise HTTPException(status_code=401, detail="User not found")
    if not user.is_active:
        raise HTTPException(status_code=401, detail="Account is disabled")

    return user


async def get_owned_brand(db: AsyncSession, brand_id: uuid.UUID, user: User) -> Brand:
    """Load a brand, 404 if missing, 403 if owned by someone else."""
    brand = await db.get(Brand, brand_id)
    if not brand:
        raise NotFoundError("Brand", brand_id)
    if brand.user_id != user.id:
        raise AccessDeniedError("You do not have access to this brand")
    return brand


async def get_brand_source(db: AsyncSession, brand: Brand, source_id: uuid.UUID) -> ReviewSource:
    """Load a review source that must belong to the given brand."""
    source = await db.get(ReviewSource, source_id)
    if not source or source.brand_id != brand.id:
        raise NotFoundError("ReviewSource", source_id)
    return source
