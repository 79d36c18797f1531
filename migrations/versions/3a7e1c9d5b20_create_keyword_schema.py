"""create keyword schema

Revision ID: 3a7e1c9d5b20
Revises:
Create Date: 2026-03-02 09:00:00

Purpose:
- introduce the keyword management tables and the scraped data tables
- add check constraints, partial unique indexes and lookup indexes
- enable row level security (rls) with owner-only policies

Touched tables / objects:
- keywords_v2, data_scraping_google_maps_v2, instagram_hashtags, instagram_posts,
  keyword_instagram_assignments_v2, keyword_google_maps_assignments_v2,
  keyword_scraping_jobs_v2, keyword_analytics_v2
- partial unique indexes scoped to live rows (deleted_at is null)
- required extensions: pgcrypto

Operational notes:
- owner policies compare user_id with the per-connection setting app.user_id;
  the api connects with a role that bypasses rls and scopes queries itself
- instagram_posts and instagram_hashtags are shared across users, so they allow
  rows without an owner
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision = "3a7e1c9d5b20"
down_revision = None
branch_labels = None
depends_on = None


APP_USER_ID = "nullif(current_setting('app.user_id', true), '')::uuid"

OWNED_TABLES = (
    "keywords_v2",
    "data_scraping_google_maps_v2",
    "keyword_instagram_assignments_v2",
    "keyword_google_maps_assignments_v2",
    "keyword_scraping_jobs_v2",
    "keyword_analytics_v2",
)
SHARED_TABLES = ("instagram_hashtags", "instagram_posts")


def _enable_rls(table_name: str) -> None:
    op.execute(
        f"""
-- enable rls for table {table_name}
alter table public.{table_name} enable row level security;
"""
    )


def _create_policy(
    table_name: str,
    role_name: str,
    operation: str,
    using_expr: str | None,
    check_expr: str | None,
    comment: str,
) -> None:
    policy_name = f"rls_{table_name}_{operation}_{role_name}"
    clauses = {
        "select": f"using ({using_expr})",
        "delete": f"using ({using_expr})",
        "insert": f"with check ({check_expr})",
        "update": f"using ({using_expr})\n  with check ({check_expr})",
    }
    if operation not in clauses:
        raise ValueError(f"unsupported operation for rls policy: {operation}")
    op.execute(
        f"""
-- {comment}
create policy {policy_name} on public.{table_name}
  for {operation}
  to {role_name}
  {clauses[operation]};
"""
    )


def _create_owner_policies(table_name: str, allow_unowned: bool = False) -> None:
    owner = f"user_id = {APP_USER_ID}"
    readable = f"user_id is null or {owner}" if allow_unowned else owner
    for operation in ("select", "insert", "update", "delete"):
        _create_policy(
            table_name,
            "anon",
            operation,
            "false",
            "false",
            f"deny anon {operation} access",
        )
    _create_policy(table_name, "authenticated", "select", readable, None, "owners read their rows")
    _create_policy(table_name, "authenticated", "insert", None, readable, "owners insert their rows")
    _create_policy(table_name, "authenticated", "update", owner, owner, "owners update their rows")
    _create_policy(table_name, "authenticated", "delete", owner, None, "owners delete their rows")


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    ]


def upgrade() -> None:
    op.execute(
        """
-- required for gen_random_uuid()
create extension if not exists pgcrypto;
"""
    )

    # ensure application roles exist; requires sufficient privileges
    op.execute(
        """
 do $$
begin
  if not exists (select 1 from pg_roles where rolname = 'anon') then
    create role anon;
  end if;
  if not exists (select 1 from pg_roles where rolname = 'authenticated') then
    create role authenticated;
  end if;
end$$;
"""
    )

    op.create_table(
        "keywords_v2",
        sa.Column("id", sa.BigInteger(), sa.Identity(), nullable=False),
        sa.Column("keyword", sa.Text(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("category", sa.Text(), server_default="general", nullable=False),
        sa.Column("status", sa.Text(), server_default="active", nullable=False),
        sa.Column("priority", sa.Integer(), server_default="1", nullable=False),
        sa.Column("tags", postgresql.ARRAY(sa.Text()), server_default="{}", nullable=False),
        sa.Column("search_volume", sa.Integer(), nullable=True),
        sa.Column("competition_score", sa.Float(), nullable=True),
        sa.Column("performance_metrics", postgresql.JSONB(), server_default="{}", nullable=False),
        sa.Column("metadata", postgresql.JSONB(), server_default="{}", nullable=False),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("gmail", sa.Text(), nullable=False),
        sa.Column("created_by", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("updated_by", postgresql.UUID(as_uuid=True), nullable=True),
        *_timestamps(),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint(
            "status in ('active', 'inactive', 'archived', 'pending')",
            name="ck_keywords_v2_status",
        ),
        sa.CheckConstraint("priority between 1 and 5", name="ck_keywords_v2_priority"),
        sa.CheckConstraint("char_length(trim(keyword)) > 0", name="ck_keywords_v2_keyword_not_empty"),
        sa.CheckConstraint("search_volume is null or search_volume >= 0", name="ck_keywords_v2_search_volume"),
        sa.CheckConstraint(
            "competition_score is null or (competition_score >= 0 and competition_score <= 1)",
            name="ck_keywords_v2_competition_score",
        ),
    )

    op.create_table(
        "data_scraping_google_maps_v2",
        sa.Column("id", sa.BigInteger(), sa.Identity(), nullable=False),
        sa.Column("input_url", sa.Text(), nullable=True),
        sa.Column("place_id", sa.Text(), nullable=True),
        sa.Column("place_name", sa.Text(), nullable=False),
        sa.Column("address", sa.Text(), nullable=True),
        sa.Column("phone_number", sa.Text(), nullable=True),
        sa.Column("website", sa.Text(), nullable=True),
        sa.Column("rating", sa.Float(), nullable=True),
        sa.Column("review_count", sa.Integer(), server_default="0", nullable=False),
        sa.Column("category", sa.Text(), nullable=True),
        sa.Column("hours", postgresql.JSONB(), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("coordinates", postgresql.JSONB(), nullable=True),
        sa.Column("image_url", sa.Text(), nullable=True),
        sa.Column("price_range", sa.Text(), nullable=True),
        sa.Column("search_query", sa.Text(), nullable=True),
        sa.Column("scraping_session_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("quality_score", sa.Integer(), nullable=True),
        sa.Column("metadata", postgresql.JSONB(), server_default="{}", nullable=False),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("gmail", sa.Text(), nullable=False),
        *_timestamps(),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint("rating is null or (rating >= 0 and rating <= 5)", name="ck_google_maps_v2_rating"),
        sa.CheckConstraint("review_count >= 0", name="ck_google_maps_v2_review_count"),
        sa.CheckConstraint(
            "quality_score is null or quality_score between 1 and 5",
            name="ck_google_maps_v2_quality_score",
        ),
    )

    op.create_table(
        "instagram_hashtags",
        sa.Column("id", sa.BigInteger(), sa.Identity(), nullable=False),
        sa.Column("hashtag_name", sa.Text(), nullable=False),
        sa.Column("posts_count", sa.BigInteger(), nullable=True),
        sa.Column("hashtag_url", sa.Text(), nullable=True),
        sa.Column("search_query", sa.Text(), nullable=True),
        sa.Column("metadata", postgresql.JSONB(), server_default="{}", nullable=False),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("hashtag_name", name="uq_instagram_hashtags_name"),
    )

    op.create_table(
        "instagram_posts",
        sa.Column("id", sa.BigInteger(), sa.Identity(), nullable=False),
        sa.Column("instagram_id", sa.Text(), nullable=False),
        sa.Column("short_code", sa.Text(), nullable=True),
        sa.Column("post_url", sa.Text(), nullable=True),
        sa.Column("input_url", sa.Text(), nullable=True),
        sa.Column("post_type", sa.Text(), nullable=True),
        sa.Column("caption", sa.Text(), nullable=True),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=True),
        sa.Column("display_url", sa.Text(), nullable=True),
        sa.Column("video_url", sa.Text(), nullable=True),
        sa.Column("likes_count", sa.Integer(), server_default="0", nullable=False),
        sa.Column("comments_count", sa.Integer(), server_default="0", nullable=False),
        sa.Column("video_play_count", sa.Integer(), nullable=True),
        sa.Column("owner_id", sa.Text(), nullable=True),
        sa.Column("owner_username", sa.Text(), nullable=True),
        sa.Column("owner_full_name", sa.Text(), nullable=True),
        sa.Column("is_sponsored", sa.Boolean(), server_default=sa.text("false"), nullable=False),
        sa.Column("latest_comments", postgresql.JSONB(), nullable=True),
        sa.Column("hashtags", postgresql.ARRAY(sa.Text()), server_default="{}", nullable=False),
        sa.Column("hashtag_id", sa.BigInteger(), nullable=True),
        sa.Column("metadata", postgresql.JSONB(), server_default="{}", nullable=False),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["hashtag_id"], ["instagram_hashtags.id"], ondelete="SET NULL"),
        sa.UniqueConstraint("instagram_id", name="uq_instagram_posts_instagram_id"),
        sa.UniqueConstraint("short_code", name="uq_instagram_posts_short_code"),
        sa.CheckConstraint(
            "post_type is null or post_type in ('Image', 'Video', 'Sidecar', 'Reel')",
            name="ck_instagram_posts_type",
        ),
    )

    for table_name, target_column, target_table, extra in (
        ("keyword_instagram_assignments_v2", "instagram_id", "instagram_posts", []),
        (
            "keyword_google_maps_assignments_v2",
            "google_maps_id",
            "data_scraping_google_maps_v2",
            [sa.Column("relevance_score", sa.Float(), nullable=True)],
        ),
    ):
        short = "instagram" if target_column == "instagram_id" else "google_maps"
        op.create_table(
            table_name,
            sa.Column("id", sa.BigInteger(), sa.Identity(), nullable=False),
            sa.Column("keyword_id", sa.BigInteger(), nullable=False),
            sa.Column(target_column, sa.BigInteger(), nullable=False),
            sa.Column("assignment_type", sa.Text(), server_default="manual", nullable=False),
            sa.Column("confidence_score", sa.Float(), nullable=True),
            *extra,
            sa.Column("assignment_notes", sa.Text(), nullable=True),
            sa.Column("metadata", postgresql.JSONB(), server_default="{}", nullable=False),
            sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=False),
            sa.Column("gmail", sa.Text(), nullable=False),
            sa.Column("assigned_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
            *_timestamps(),
            sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
            sa.PrimaryKeyConstraint("id"),
            sa.ForeignKeyConstraint(["keyword_id"], ["keywords_v2.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint([target_column], [f"{target_table}.id"], ondelete="CASCADE"),
            sa.CheckConstraint(
                "assignment_type in ('manual', 'automatic', 'bulk')",
                name=f"ck_keyword_{short}_assignment_type",
            ),
            sa.CheckConstraint(
                "confidence_score is null or (confidence_score >= 0 and confidence_score <= 1)",
                name=f"ck_keyword_{short}_confidence",
            ),
        )
    op.create_check_constraint(
        "ck_keyword_google_maps_relevance",
        "keyword_google_maps_assignments_v2",
        "relevance_score is null or (relevance_score >= 0 and relevance_score <= 1)",
    )

    op.create_table(
        "keyword_scraping_jobs_v2",
        sa.Column("id", sa.BigInteger(), sa.Identity(), nullable=False),
        sa.Column("keyword_id", sa.BigInteger(), nullable=True),
        sa.Column("job_type", sa.Text(), nullable=False),
        sa.Column("job_priority", sa.Integer(), server_default="5", nullable=False),
        sa.Column("status", sa.Text(), server_default="pending", nullable=False),
        sa.Column("results_count", sa.Integer(), server_default="0", nullable=False),
        sa.Column("expected_results", sa.Integer(), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("actual_duration", sa.Integer(), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("error_code", sa.Text(), nullable=True),
        sa.Column("retry_count", sa.Integer(), server_default="0", nullable=False),
        sa.Column("max_retries", sa.Integer(), server_default="3", nullable=False),
        sa.Column("job_config", postgresql.JSONB(), server_default="{}", nullable=False),
        sa.Column("job_results", postgresql.JSONB(), server_default="{}", nullable=False),
        sa.Column("external_job_id", sa.Text(), nullable=True),
        sa.Column("rq_id", sa.Text(), nullable=True),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("gmail", sa.Text(), nullable=False),
        *_timestamps(),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["keyword_id"], ["keywords_v2.id"], ondelete="SET NULL"),
        sa.CheckConstraint(
            "status in ('pending', 'queued', 'running', 'completed', 'failed', 'cancelled')",
            name="ck_keyword_scraping_jobs_status",
        ),
        sa.CheckConstraint("job_type in ('instagram', 'google_maps')", name="ck_keyword_scraping_jobs_type"),
        sa.CheckConstraint("job_priority between 1 and 10", name="ck_keyword_scraping_jobs_priority"),
        sa.CheckConstraint("results_count >= 0", name="ck_keyword_scraping_jobs_results"),
        sa.CheckConstraint("retry_count >= 0", name="ck_keyword_scraping_jobs_retry"),
    )

    op.create_table(
        "keyword_analytics_v2",
        sa.Column("id", sa.BigInteger(), sa.Identity(), nullable=False),
        sa.Column("keyword_id", sa.BigInteger(), nullable=False),
        sa.Column("period_start", sa.Date(), nullable=False),
        sa.Column("period_end", sa.Date(), nullable=False),
        sa.Column("period_type", sa.Text(), server_default="daily", nullable=False),
        sa.Column("instagram_posts_count", sa.Integer(), server_default="0", nullable=False),
        sa.Column("instagram_avg_likes", sa.Float(), server_default="0", nullable=False),
        sa.Column("instagram_avg_comments", sa.Float(), server_default="0", nullable=False),
        sa.Column("instagram_total_engagement", sa.BigInteger(), server_default="0", nullable=False),
        sa.Column("google_maps_places_count", sa.Integer(), server_default="0", nullable=False),
        sa.Column("google_maps_avg_rating", sa.Float(), nullable=True),
        sa.Column("google_maps_total_reviews", sa.BigInteger(), server_default="0", nullable=False),
        sa.Column("total_scraping_jobs", sa.Integer(), server_default="0", nullable=False),
        sa.Column("successful_scraping_jobs", sa.Integer(), server_default="0", nullable=False),
        sa.Column("failed_scraping_jobs", sa.Integer(), server_default="0", nullable=False),
        sa.Column("avg_job_duration", sa.Float(), nullable=True),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=False),
        *_timestamps(),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["keyword_id"], ["keywords_v2.id"], ondelete="CASCADE"),
        sa.CheckConstraint(
            "period_type in ('daily', 'weekly', 'monthly', 'quarterly')",
            name="ck_keyword_analytics_period_type",
        ),
        sa.CheckConstraint("period_end >= period_start", name="ck_keyword_analytics_period"),
    )

    # partial unique indexes: uniqueness only applies to live rows
    op.create_index(
        "uq_keywords_v2_user_keyword",
        "keywords_v2",
        ["user_id", sa.text("lower(keyword)")],
        unique=True,
        postgresql_where=sa.text("deleted_at is null"),
    )
    op.create_index(
        "uq_keyword_instagram_assignment_live",
        "keyword_instagram_assignments_v2",
        ["keyword_id", "instagram_id"],
        unique=True,
        postgresql_where=sa.text("deleted_at is null"),
    )
    op.create_index(
        "uq_keyword_google_maps_assignment_live",
        "keyword_google_maps_assignments_v2",
        ["keyword_id", "google_maps_id"],
        unique=True,
        postgresql_where=sa.text("deleted_at is null"),
    )
    op.create_index(
        "uq_keyword_analytics_period",
        "keyword_analytics_v2",
        ["keyword_id", "period_start", "period_end", "period_type"],
        unique=True,
        postgresql_where=sa.text("deleted_at is null"),
    )

    # lookup indexes for list endpoints and the dispatcher
    op.create_index("ix_keywords_v2_user_status", "keywords_v2", ["user_id", "status", "created_at"])
    op.create_index("ix_keywords_v2_category", "keywords_v2", ["category"])
    op.create_index("ix_keywords_v2_tags_gin", "keywords_v2", ["tags"], postgresql_using="gin")
    op.create_index(
        "ix_keyword_scraping_jobs_v2_dispatch",
        "keyword_scraping_jobs_v2",
        ["status", "job_priority", "created_at"],
    )
    op.create_index(
        "ix_keyword_scraping_jobs_v2_user_created",
        "keyword_scraping_jobs_v2",
        ["user_id", "created_at"],
    )
    op.create_index("ix_keyword_scraping_jobs_v2_keyword", "keyword_scraping_jobs_v2", ["keyword_id"])
    op.create_index(
        "ix_data_scraping_google_maps_v2_user_created",
        "data_scraping_google_maps_v2",
        ["user_id", "created_at"],
    )
    op.create_index("ix_instagram_posts_hashtag_id", "instagram_posts", ["hashtag_id"])
    op.create_index("ix_instagram_posts_user_created", "instagram_posts", ["user_id", "created_at"])

    for table_name in OWNED_TABLES:
        _enable_rls(table_name)
        _create_owner_policies(table_name)
    for table_name in SHARED_TABLES:
        _enable_rls(table_name)
        _create_owner_policies(table_name, allow_unowned=True)


def downgrade() -> None:
    # destructive rollback; extensions and roles are left in place since they may be shared
    op.drop_index("ix_instagram_posts_user_created", table_name="instagram_posts")
    op.drop_index("ix_instagram_posts_hashtag_id", table_name="instagram_posts")
    op.drop_index("ix_data_scraping_google_maps_v2_user_created", table_name="data_scraping_google_maps_v2")
    op.drop_index("ix_keyword_scraping_jobs_v2_keyword", table_name="keyword_scraping_jobs_v2")
    op.drop_index("ix_keyword_scraping_jobs_v2_user_created", table_name="keyword_scraping_jobs_v2")
    op.drop_index("ix_keyword_scraping_jobs_v2_dispatch", table_name="keyword_scraping_jobs_v2")
    op.drop_index("ix_keywords_v2_tags_gin", table_name="keywords_v2")
    op.drop_index("ix_keywords_v2_category", table_name="keywords_v2")
    op.drop_index("ix_keywords_v2_user_status", table_name="keywords_v2")
    op.drop_index("uq_keyword_analytics_period", table_name="keyword_analytics_v2")
    op.drop_index("uq_keyword_google_maps_assignment_live", table_name="keyword_google_maps_assignments_v2")
    op.drop_index("uq_keyword_instagram_assignment_live", table_name="keyword_instagram_assignments_v2")
    op.drop_index("uq_keywords_v2_user_keyword", table_name="keywords_v2")

    # dropping a table drops its rls policies
    op.drop_table("keyword_analytics_v2")
    op.drop_table("keyword_scraping_jobs_v2")
    op.drop_table("keyword_google_maps_assignments_v2")
    op.drop_table("keyword_instagram_assignments_v2")
    op.drop_table("instagram_posts")
    op.drop_table("instagram_hashtags")
    op.drop_table("data_scraping_google_maps_v2")
    op.drop_table("keywords_v2")
