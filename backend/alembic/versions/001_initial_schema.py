"""Initial BrandPulse schema: users, brands, review sources, sync jobs,
reviews, sentiment changes, dashboard aggregates and AI summaries.

Revision ID: 001
Revises:
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

ACTIVE_JOB_WHERE = sa.text("status IN ('QUEUED', 'RUNNING')")


def upgrade() -> None:
    conn = op.get_bind()
    insp = sa.inspect(conn)
    if "review_sources" in insp.get_table_names():
        return

    op.create_table(
        "users",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("password_hash", sa.String(255), nullable=False),
        sa.Column("name", sa.String(255), nullable=True),
        sa.Column("role", sa.String(50), nullable=True, server_default="user"),
        sa.Column("plan_type", sa.String(20), nullable=True, server_default="FREE"),
        sa.Column("max_sources_allowed", sa.Integer(), nullable=True, server_default="1"),
        sa.Column("is_active", sa.Boolean(), nullable=True, server_default=sa.true()),
        sa.Column("last_login_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True, server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(), nullable=True, server_default=sa.text("now()")),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("email"),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=False)

    op.create_table(
        "brands",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("user_id", sa.Uuid(), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=True, server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(), nullable=True, server_default=sa.text("now()")),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_brands_user_id", "brands", ["user_id"], unique=False)

    op.create_table(
        "review_sources",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("brand_id", sa.Uuid(), nullable=False),
        sa.Column("source_type", sa.String(20), nullable=False),
        sa.Column("profile_url", sa.Text(), nullable=True),
        sa.Column("external_profile_id", sa.String(255), nullable=False),
        sa.Column("credentials_encrypted", sa.Text(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=True, server_default=sa.true()),
        sa.Column("last_sync_at", sa.DateTime(), nullable=True),
        sa.Column("last_sync_status", sa.String(20), nullable=True),
        sa.Column("last_sync_error", sa.Text(), nullable=True),
        sa.Column("next_scheduled_sync_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True, server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(), nullable=True, server_default=sa.text("now()")),
        sa.ForeignKeyConstraint(["brand_id"], ["brands.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("brand_id", "source_type", "external_profile_id", name="uq_review_source_profile"),
    )
    op.create_index("ix_review_sources_brand_id", "review_sources", ["brand_id"], unique=False)
    op.create_index("ix_review_sources_next_sync", "review_sources", ["is_active", "next_scheduled_sync_at"], unique=False)

    op.create_table(
        "sync_jobs",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("review_source_id", sa.Uuid(), nullable=False),
        sa.Column("job_type", sa.String(20), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="QUEUED"),
        sa.Column("reviews_fetched", sa.Integer(), nullable=True, server_default="0"),
        sa.Column("reviews_new", sa.Integer(), nullable=True, server_default="0"),
        sa.Column("reviews_updated", sa.Integer(), nullable=True, server_default="0"),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True, server_default=sa.text("now()")),
        sa.Column("started_at", sa.DateTime(), nullable=True),
        sa.Column("completed_at", sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(["review_source_id"], ["review_sources.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    # At most one QUEUED/RUNNING job per source
    op.create_index(
        "uq_sync_jobs_active_source", "sync_jobs", ["review_source_id"],
        unique=True, postgresql_where=ACTIVE_JOB_WHERE,
    )
    op.create_index("ix_sync_jobs_source_created", "sync_jobs", ["review_source_id", "created_at"], unique=False)
    op.create_index("ix_sync_jobs_status", "sync_jobs", ["status"], unique=False)

    op.create_table(
        "reviews",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("review_source_id", sa.Uuid(), nullable=False),
        sa.Column("external_review_id", sa.String(255), nullable=False),
        sa.Column("content", sa.Text(), nullable=False, server_default=""),
        sa.Column("content_hash", sa.String(64), nullable=False),
        sa.Column("author_name", sa.String(255), nullable=True),
        sa.Column("rating", sa.SmallInteger(), nullable=False),
        sa.Column("sentiment", sa.String(20), nullable=True),
        sa.Column("sentiment_corrected", sa.Boolean(), nullable=True, server_default=sa.false()),
        sa.Column("published_at", sa.DateTime(), nullable=False),
        sa.Column("fetched_at", sa.DateTime(), nullable=True, server_default=sa.text("now()")),
        sa.Column("created_at", sa.DateTime(), nullable=True, server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(), nullable=True, server_default=sa.text("now()")),
        sa.ForeignKeyConstraint(["review_source_id"], ["review_sources.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("review_source_id", "external_review_id", name="uq_review_per_source"),
        sa.CheckConstraint("rating BETWEEN 1 AND 5", name="ck_reviews_rating_range"),
    )
    op.create_index("ix_reviews_source_published", "reviews", ["review_source_id", "published_at"], unique=False)
    op.create_index("ix_reviews_source_sentiment", "reviews", ["review_source_id", "sentiment"], unique=False)
    op.create_index("ix_reviews_source_rating", "reviews", ["review_source_id", "rating"], unique=False)

    op.create_table(
        "sentiment_changes",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("review_id", sa.Uuid(), nullable=False),
        sa.Column("old_sentiment", sa.String(20), nullable=True),
        sa.Column("new_sentiment", sa.String(20), nullable=False),
        sa.Column("changed_by_user_id", sa.Uuid(), nullable=True),
        sa.Column("change_reason", sa.String(30), nullable=False),
        sa.Column("changed_at", sa.DateTime(), nullable=True, server_default=sa.text("now()")),
        sa.ForeignKeyConstraint(["review_id"], ["reviews.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["changed_by_user_id"], ["users.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_sentiment_changes_review_id", "sentiment_changes", ["review_id", "changed_at"], unique=False)

    op.create_table(
        "dashboard_aggregates",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("review_source_id", sa.Uuid(), nullable=False),
        sa.Column("total_reviews", sa.Integer(), nullable=True, server_default="0"),
        sa.Column("avg_rating", sa.Float(), nullable=True, server_default="0"),
        sa.Column("rating_sum", sa.Integer(), nullable=True, server_default="0"),
        sa.Column("positive_count", sa.Integer(), nullable=True, server_default="0"),
        sa.Column("negative_count", sa.Integer(), nullable=True, server_default="0"),
        sa.Column("neutral_count", sa.Integer(), nullable=True, server_default="0"),
        sa.Column("unclassified_count", sa.Integer(), nullable=True, server_default="0"),
        sa.Column("positive_pct", sa.Float(), nullable=True, server_default="0"),
        sa.Column("negative_pct", sa.Float(), nullable=True, server_default="0"),
        sa.Column("neutral_pct", sa.Float(), nullable=True, server_default="0"),
        sa.Column("rating_distribution", sa.JSON(), nullable=True),
        sa.Column("last_calculated_at", sa.DateTime(), nullable=True, server_default=sa.text("now()")),
        sa.ForeignKeyConstraint(["review_source_id"], ["review_sources.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("review_source_id", name="uq_dashboard_aggregate_source"),
    )

    op.create_table(
        "ai_summaries",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("review_source_id", sa.Uuid(), nullable=False),
        sa.Column("summary_text", sa.Text(), nullable=False),
        sa.Column("model_used", sa.String(100), nullable=True),
        sa.Column("token_count", sa.Integer(), nullable=True),
        sa.Column("generated_at", sa.DateTime(), nullable=True, server_default=sa.text("now()")),
        sa.Column("valid_until", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["review_source_id"], ["review_sources.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_ai_summaries_source_generated", "ai_summaries", ["review_source_id", "generated_at"], unique=False)


def downgrade() -> None:
    op.drop_table("ai_summaries")
    op.drop_table("dashboard_aggregates")
    op.drop_table("sentiment_changes")
    op.drop_table("reviews")
    op.drop_table("sync_jobs")
    op.drop_table("review_sources")
    op.drop_table("brands")
    op.drop_table("users")
