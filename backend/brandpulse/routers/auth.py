"""
Auth Router — Register, login, whoami.
"""

import logging
from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, EmailStr
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from brandpulse.auth import get_current_user
from brandpulse.database import get_db
from brandpulse.models import ActivityType, User
from brandpulse.services.activity_service import record_activity
from brandpulse.services.auth_service import (
    hash_password,
    verify_password,
    password_problems,
    create_access_token,
    ACCESS_TOKEN_EXPIRE_MINUTES,
)
from brandpulse.utils import utcnow, isoformat_or_none

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["Auth"])


# ── Schemas ────────────────────────────────────────────────────────────

class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class RegisterRequest(BaseModel):
    email: EmailStr
    password: str
    name: str | None = None


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int = ACCESS_TOKEN_EXPIRE_MINUTES * 60
    user: dict


class WhoAmIResponse(BaseModel):
    id: str
    email: str
    name: str | None
    role: str
    plan_type: str
    max_sources_allowed: int
    is_active: bool
    created_at: str | None


def _user_dict(user: User) -> dict:
    return {
        "id": str(user.id),
        "email": user.email,
        "name": user.name,
        "role": user.role,
        "plan_type": user.plan_type,
        "max_sources_allowed": user.max_sources_allowed,
        "is_active": user.is_active,
    }


# ── Endpoints ───────────────────────────────────────────────────────────

@router.post("/register", response_model=TokenResponse, status_code=201)
async def register(payload: RegisterRequest, db: AsyncSession = Depends(get_db)):
    """Create a FREE plan account and return a JWT."""
    problems = password_problems(payload.password)
    if problems:
        raise HTTPException(status_code=400, detail="Password must contain " + ", ".join(problems))

    email = payload.email.lower()
    existing = await db.execute(select(User).where(User.email == email))
    if existing.scalar_one_or_none():
        raise HTTPException(status_code=409, detail="Email already registered")

    user = User(
        email=email,
        password_hash=hash_password(payload.password),
        name=payload.name or email.split("@")[0],
        role="user",
        plan_type="FREE",
        max_sources_allowed=1,
        is_active=True,
        last_login_at=utcnow(),
    )
    db.add(user)
    await db.flush()
    record_activity(db, user.id, ActivityType.USER_REGISTERED)
    logger.info(f"Registered user {user.id}")

    return TokenResponse(access_token=create_access_token(str(user.id), user.email), user=_user_dict(user))


@router.post("/login", response_model=TokenResponse)
async def login(payload: LoginRequest, db: AsyncSession = Depends(get_db)):
    """Login with email and password. Returns JWT."""
    result = await db.execute(select(User).where(User.email == payload.email.lower()))
    user = result.scalar_one_or_none()
    if not user or not verify_password(payload.password, user.password_hash):
        raise HTTPException(status_code=401, detail="Invalid email or password")
    if not user.is_active:
        raise HTTPException(status_code=401, detail="Account is disabled")

    user.last_login_at = utcnow()
    record_activity(db, user.id, ActivityType.LOGIN)
    await db.flush()

    return TokenResponse(access_token=create_access_token(str(user.id), user.email), user=_user_dict(user))


@router.get("/me", response_model=WhoAmIResponse)
async def whoami(user: User = Depends(get_current_user)):
    """Return current user. Requires JWT auth."""
    return WhoAmIResponse(**_user_dict(user), created_at=isoformat_or_none(user.created_at))
