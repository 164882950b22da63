"""
BrandPulse — Database Models
Users own brands, brands own review sources, and every source owns its sync
jobs, reviews, aggregate row and AI summaries (cascade on delete).
Entities reference each other by foreign-key id only; services load what they
need explicitly.
"""

import uuid
import enum
from datetime import datetime, timezone
from sqlalchemy import (
    String, Text, Float, Integer, SmallInteger, Boolean, DateTime,
    JSON, CheckConstraint, ForeignKey, Index, UniqueConstraint, Uuid, text,
)
from sqlalchemy.orm import Mapped, mapped_column
from brandpulse.database import Base


def _utcnow() -> datetime:
    """Naive UTC now; matches DB columns (TIMESTAMP WITHOUT TIME ZONE)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


# ══════════════════════════════════════════════════════════════════════
#  ENUMS
# ══════════════════════════════════════════════════════════════════════

class SourceType(str, enum.Enum):
    GOOGLE = "GOOGLE"
    FACEBOOK = "FACEBOOK"
    TRUSTPILOT = "TRUSTPILOT"


class JobType(str, enum.Enum):
    INITIAL = "INITIAL"
    SCHEDULED = "SCHEDULED"
    MANUAL = "MANUAL"


class JobStatus(str, enum.Enum):
    QUEUED = "QUEUED"
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


ACTIVE_JOB_STATUSES = (JobStatus.QUEUED.value, JobStatus.RUNNING.value)

# Allowed job transitions; terminal states have none.
JOB_TRANSITIONS = {
    JobStatus.QUEUED: {JobStatus.RUNNING, JobStatus.FAILED},
    JobStatus.RUNNING: {JobStatus.COMPLETED, JobStatus.FAILED},
    JobStatus.COMPLETED: set(),
    JobStatus.FAILED: set(),
}


class SyncStatus(str, enum.Enum):
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    IN_PROGRESS = "IN_PROGRESS"


class Sentiment(str, enum.Enum):
    POSITIVE = "POSITIVE"
    NEGATIVE = "NEGATIVE"
    NEUTRAL = "NEUTRAL"


class ChangeReason(str, enum.Enum):
    AI_INITIAL = "AI_INITIAL"
    USER_CORRECTION = "USER_CORRECTION"
    REPROCESSING = "REPROCESSING"


class ActivityType(str, enum.Enum):
    USER_REGISTERED = "USER_REGISTERED"
    LOGIN = "LOGIN"
    FIRST_SOURCE_CONFIGURED_SUCCESSFULLY = "FIRST_SOURCE_CONFIGURED_SUCCESSFULLY"
    SENTIMENT_CORRECTED = "SENTIMENT_CORRECTED"
    MANUAL_REFRESH_TRIGGERED = "MANUAL_REFRESH_TRIGGERED"


# ══════════════════════════════════════════════════════════════════════
#  USERS — Brand owners
# ══════════════════════════════════════════════════════════════════════

class User(Base):
    """Business owner account."""
    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=True)
    role: Mapped[str] = mapped_column(String(50), default="user")  # admin, user
    plan_type: Mapped[str] = mapped_column(String(20), default="FREE")
    max_sources_allowed: Mapped[int] = mapped_column(Integer, default=1)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    last_login_at: Mapped[datetime] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow, onupdate=_utcnow)

    __table_args__ = (
        Index("ix_users_email", "email"),
    )


# ══════════════════════════════════════════════════════════════════════
#  BRANDS
# ══════════════════════════════════════════════════════════════════════

class Brand(Base):
    """A business monitored by one user."""
    __tablename__ = "brands"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow, onupdate=_utcnow)

    __table_args__ = (
        Index("ix_brands_user_id", "user_id"),
    )


# ══════════════════════════════════════════════════════════════════════
#  REVIEW SOURCES — One platform profile for one brand
# ══════════════════════════════════════════════════════════════════════

class ReviewSource(Base):
    """Configured connection to one review platform for one brand."""
    __tablename__ = "review_sources"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    brand_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("brands.id", ondelete="CASCADE"), nullable=False)
    source_type: Mapped[str] = mapped_column(String(20), nullable=False)
    profile_url: Mapped[str] = mapped_column(Text, nullable=True)
    external_profile_id: Mapped[str] = mapped_column(String(255), nullable=False)
    credentials_encrypted: Mapped[str] = mapped_column(Text, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    last_sync_at: Mapped[datetime] = mapped_column(DateTime, nullable=True)
    last_sync_status: Mapped[str] = mapped_column(String(20), nullable=True)
    last_sync_error: Mapped[str] = mapped_column(Text, nullable=True)
    next_scheduled_sync_at: Mapped[datetime] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow, onupdate=_utcnow)

    __table_args__ = (
        UniqueConstraint("brand_id", "source_type", "external_profile_id", name="uq_review_source_profile"),
        Index("ix_review_sources_brand_id", "brand_id"),
        Index("ix_review_sources_next_sync", "is_active", "next_scheduled_sync_at"),
    )


# ══════════════════════════════════════════════════════════════════════
#  SYNC JOBS — One fetch/ingest attempt for a source
# ══════════════════════════════════════════════════════════════════════

class SyncJob(Base):
    """
    Execution attempt of a review sync. Status only moves forward:
    QUEUED -> RUNNING -> COMPLETED | FAILED. The partial unique index keeps
    at most one QUEUED/RUNNING job per source at the storage layer.
    """
    __tablename__ = "sync_jobs"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    review_source_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("review_sources.id", ondelete="CASCADE"), nullable=False)
    job_type: Mapped[str] = mapped_column(String(20), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=JobStatus.QUEUED.value)
    reviews_fetched: Mapped[int] = mapped_column(Integer, default=0)
    reviews_new: Mapped[int] = mapped_column(Integer, default=0)
    reviews_updated: Mapped[int] = mapped_column(Integer, default=0)
    error_message: Mapped[str] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow)
    started_at: Mapped[datetime] = mapped_column(DateTime, nullable=True)
    completed_at: Mapped[datetime] = mapped_column(DateTime, nullable=True)

    __table_args__ = (
        Index(
            "uq_sync_jobs_active_source",
            "review_source_id",
            unique=True,
            postgresql_where=text("status IN ('QUEUED', 'RUNNING')"),
            sqlite_where=text("status IN ('QUEUED', 'RUNNING')"),
        ),
        Index("ix_sync_jobs_source_created", "review_source_id", "created_at"),
        Index("ix_sync_jobs_status", "status"),
    )

    @property
    def duration_seconds(self) -> float | None:
        if not self.started_at or not self.completed_at:
            return None
        return (self.completed_at - self.started_at).total_seconds()


# ══════════════════════════════════════════════════════════════════════
#  REVIEWS
# ══════════════════════════════════════════════════════════════════════

class Review(Base):
    """Customer review ingested from a source. (source, external id) is the natural key."""
    __tablename__ = "reviews"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    review_source_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("review_sources.id", ondelete="CASCADE"), nullable=False)
    external_review_id: Mapped[str] = mapped_column(String(255), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False, default="")
    content_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    author_name: Mapped[str] = mapped_column(String(255), nullable=True)
    rating: Mapped[int] = mapped_column(SmallInteger, nullable=False)
    sentiment: Mapped[str] = mapped_column(String(20), nullable=True)  # unset when classification failed
    sentiment_corrected: Mapped[bool] = mapped_column(Boolean, default=False)
    published_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    fetched_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow, onupdate=_utcnow)

    __table_args__ = (
        UniqueConstraint("review_source_id", "external_review_id", name="uq_review_per_source"),
        CheckConstraint("rating BETWEEN 1 AND 5", name="ck_reviews_rating_range"),
        Index("ix_reviews_source_published", "review_source_id", "published_at"),
        Index("ix_reviews_source_sentiment", "review_source_id", "sentiment"),
        Index("ix_reviews_source_rating", "review_source_id", "rating"),
    )


class SentimentChange(Base):
    """Audit trail of sentiment assignments (AI and human)."""
    __tablename__ = "sentiment_changes"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    review_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("reviews.id", ondelete="CASCADE"), nullable=False)
    old_sentiment: Mapped[str] = mapped_column(String(20), nullable=True)
    new_sentiment: Mapped[str] = mapped_column(String(20), nullable=False)
    changed_by_user_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    change_reason: Mapped[str] = mapped_column(String(30), nullable=False)
    changed_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow)

    __table_args__ = (
        Index("ix_sentiment_changes_review_id", "review_id", "changed_at"),
    )


# ══════════════════════════════════════════════════════════════════════
#  DASHBOARD AGGREGATES — Derived per-source statistics (a cache)
# ══════════════════════════════════════════════════════════════════════

class DashboardAggregate(Base):
    """Precomputed statistics for one source; always rebuildable from reviews."""
    __tablename__ = "dashboard_aggregates"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    review_source_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("review_sources.id", ondelete="CASCADE"), nullable=False)
    total_reviews: Mapped[int] = mapped_column(Integer, default=0)
    avg_rating: Mapped[float] = mapped_column(Float, default=0.0)
    rating_sum: Mapped[int] = mapped_column(Integer, default=0)
    positive_count: Mapped[int] = mapped_column(Integer, default=0)
    negative_count: Mapped[int] = mapped_column(Integer, default=0)
    neutral_count: Mapped[int] = mapped_column(Integer, default=0)
    unclassified_count: Mapped[int] = mapped_column(Integer, default=0)
    positive_pct: Mapped[float] = mapped_column(Float, default=0.0)
    negative_pct: Mapped[float] = mapped_column(Float, default=0.0)
    neutral_pct: Mapped[float] = mapped_column(Float, default=0.0)
    rating_distribution: Mapped[dict] = mapped_column(JSON, default=dict)  # {"1": n, ..., "5": n}
    last_calculated_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow)

    __table_args__ = (
        UniqueConstraint("review_source_id", name="uq_dashboard_aggregate_source"),
    )


# ══════════════════════════════════════════════════════════════════════
#  AI SUMMARIES — Immutable rows, newest valid one wins
# ══════════════════════════════════════════════════════════════════════

class AISummary(Base):
    """AI-generated text summary for a source; usable only while now < valid_until."""
    __tablename__ = "ai_summaries"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    review_source_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("review_sources.id", ondelete="CASCADE"), nullable=False)
    summary_text: Mapped[str] = mapped_column(Text, nullable=False)
    model_used: Mapped[str] = mapped_column(String(100), nullable=True)
    token_count: Mapped[int] = mapped_column(Integer, nullable=True)
    generated_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow)
    valid_until: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    __table_args__ = (
        Index("ix_ai_summaries_source_generated", "review_source_id", "generated_at"),
    )


# ══════════════════════════════════════════════════════════════════════
#  USER ACTIVITY — Product events per account
# ══════════════════════════════════════════════════════════════════════

class UserActivityLog(Base):
    """Registration, logins, first source, corrections and manual refreshes."""
    __tablename__ = "user_activity_log"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    activity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    details: Mapped[dict] = mapped_column(JSON, nullable=True)
    occurred_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow)

    __table_args__ = (
        Index("ix_user_activity_log_user_id", "user_id", "occurred_at"),
    )
