"""
Brands Router — CRUD for the businesses a user monitors.
FREE plan accounts may own one brand.
"""

import logging
from uuid import UUID
from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func

from brandpulse.auth import get_current_user, get_owned_brand
from brandpulse.database import get_db
from brandpulse.errors import PlanLimitError, ValidationError
from brandpulse.models import Brand, ReviewSource, User
from brandpulse.services.cache import CachePort, dashboard_key, get_cache
from brandpulse.utils import isoformat_or_none

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/brands", tags=["Brands"])

FREE_PLAN_MAX_BRANDS = 1


class BrandCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)


class BrandUpdate(BaseModel):
    name: str = Field(min_length=1, max_length=255)


async def _brand_to_response(db: AsyncSession, brand: Brand) -> dict:
    source_count = (await db.execute(
        select(func.count()).select_from(ReviewSource).where(ReviewSource.brand_id == brand.id)
    )).scalar() or 0
    return {
        "id": str(brand.id),
        "name": brand.name,
        "source_count": source_count,
        "created_at": isoformat_or_none(brand.created_at),
        "updated_at": isoformat_or_none(brand.updated_at),
    }


@router.post("", status_code=201)
async def create_brand(
    payload: BrandCreate,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    existing = (await db.execute(
        select(func.count()).select_from(Brand).where(Brand.user_id == user.id)
    )).scalar() or 0
    if user.plan_type == "FREE" and existing >= FREE_PLAN_MAX_BRANDS:
        raise PlanLimitError("The free plan includes one brand")

    brand = Brand(user_id=user.id, name=payload.name.strip())
    db.add(brand)
    await db.flush()
    logger.info(f"Brand {brand.id} created for user {user.id}")
    return await _brand_to_response(db, brand)


@router.get("")
async def list_brands(user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)):
    result = await db.execute(select(Brand).where(Brand.user_id == user.id).order_by(Brand.created_at))
    return [await _brand_to_response(db, b) for b in result.scalars().all()]


@router.get("/{brand_id}")
async def get_brand(brand_id: UUID, user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)):
    brand = await get_owned_brand(db, brand_id, user)
    return await _brand_to_response(db, brand)


@router.patch("/{brand_id}")
async def update_brand(
    brand_id: UUID,
    payload: BrandUpdate,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    cache: CachePort = Depends(get_cache),
):
    brand = await get_owned_brand(db, brand_id, user)
    name = payload.name.strip()
    if not name:
        raise ValidationError("Brand name cannot be blank")
    brand.name = name
    await db.commit()
    await cache.invalidate_many([dashboard_key(brand.id)])
    return await _brand_to_response(db, brand)


@router.delete("/{brand_id}", status_code=204)
async def delete_brand(
    brand_id: UUID,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    cache: CachePort = Depends(get_cache),
):
    """Delete the brand with all its sources, jobs, reviews and summaries."""
    brand = await get_owned_brand(db, brand_id, user)
    source_ids = (await db.execute(
        select(ReviewSource.id).where(ReviewSource.brand_id == brand.id)
    )).scalars().all()
    await db.delete(brand)
    await db.commit()
    await cache.invalidate_many([dashboard_key(brand_id)] + [dashboard_key(brand_id, sid) for sid in source_ids])
    logger.info(f"Brand {brand_id} deleted by user {user.id}")
