from __future__ import annotations

from datetime import UTC, date, datetime
from uuid import UUID

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    Text,
    func,
)
from sqlalchemy.dialects.postgresql import ARRAY, JSONB, UUID as PGUUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base


JOB_STATUSES = ("pending", "queued", "running", "completed", "failed", "cancelled")
TERMINAL_JOB_STATUSES = ("completed", "failed", "cancelled")
JOB_TYPES = ("instagram", "google_maps")
PERIOD_TYPES = ("daily", "weekly", "monthly", "quarterly")


def _utcnow() -> datetime:
    return datetime.now(UTC)


class Keyword(Base):
    __tablename__ = "keywords_v2"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    keyword: Mapped[str] = mapped_column(Text)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    category: Mapped[str] = mapped_column(Text, default="general")
    status: Mapped[str] = mapped_column(Text, default="active")
    priority: Mapped[int] = mapped_column(Integer, default=1)
    tags: Mapped[list[str]] = mapped_column(ARRAY(Text), default=list)
    search_volume: Mapped[int | None] = mapped_column(Integer, nullable=True)
    competition_score: Mapped[float | None] = mapped_column(Float, nullable=True)
    performance_metrics: Mapped[dict] = mapped_column(JSONB, default=dict)
    meta: Mapped[dict] = mapped_column("metadata", JSONB, default=dict)
    user_id: Mapped[UUID] = mapped_column(PGUUID(as_uuid=True))
    gmail: Mapped[str] = mapped_column(Text)
    created_by: Mapped[UUID | None] = mapped_column(PGUUID(as_uuid=True), nullable=True)
    updated_by: Mapped[UUID | None] = mapped_column(PGUUID(as_uuid=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    instagram_assignments: Mapped[list["KeywordInstagramAssignment"]] = relationship(
        back_populates="keyword"
    )
    google_maps_assignments: Mapped[list["KeywordGoogleMapsAssignment"]] = relationship(
        back_populates="keyword"
    )
    scraping_jobs: Mapped[list["KeywordScrapingJob"]] = relationship(back_populates="keyword")

    __table_args__ = (
        CheckConstraint(
            "status in ('active', 'inactive', 'archived', 'pending')",
            name="ck_keywords_v2_status",
        ),
        CheckConstraint("priority between 1 and 5", name="ck_keywords_v2_priority"),
        CheckConstraint("char_length(trim(keyword)) > 0", name="ck_keywords_v2_keyword_not_empty"),
        CheckConstraint(
            "search_volume is null or search_volume >= 0",
            name="ck_keywords_v2_search_volume",
        ),
        CheckConstraint(
            "competition_score is null or (competition_score >= 0 and competition_score <= 1)",
            name="ck_keywords_v2_competition_score",
        ),
    )


Index(
    "uq_keywords_v2_user_keyword",
    Keyword.user_id,
    func.lower(Keyword.keyword),
    unique=True,
    postgresql_where=Keyword.deleted_at.is_(None),
)


class GoogleMapsPlace(Base):
    __tablename__ = "data_scraping_google_maps_v2"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    input_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    place_id: Mapped[str | None] = mapped_column(Text, nullable=True)
    place_name: Mapped[str] = mapped_column(Text)
    address: Mapped[str | None] = mapped_column(Text, nullable=True)
    phone_number: Mapped[str | None] = mapped_column(Text, nullable=True)
    website: Mapped[str | None] = mapped_column(Text, nullable=True)
    rating: Mapped[float | None] = mapped_column(Float, nullable=True)
    review_count: Mapped[int] = mapped_column(Integer, default=0)
    category: Mapped[str | None] = mapped_column(Text, nullable=True)
    hours: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    coordinates: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
    image_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    price_range: Mapped[str | None] = mapped_column(Text, nullable=True)
    search_query: Mapped[str | None] = mapped_column(Text, nullable=True)
    scraping_session_id: Mapped[UUID | None] = mapped_column(PGUUID(as_uuid=True), nullable=True)
    quality_score: Mapped[int | None] = mapped_column(Integer, nullable=True)
    meta: Mapped[dict] = mapped_column("metadata", JSONB, default=dict)
    user_id: Mapped[UUID] = mapped_column(PGUUID(as_uuid=True))
    gmail: Mapped[str] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        CheckConstraint(
            "rating is null or (rating >= 0 and rating <= 5)",
            name="ck_google_maps_v2_rating",
        ),
        CheckConstraint("review_count >= 0", name="ck_google_maps_v2_review_count"),
        CheckConstraint(
            "quality_score is null or quality_score between 1 and 5",
            name="ck_google_maps_v2_quality_score",
        ),
    )


class InstagramHashtag(Base):
    __tablename__ = "instagram_hashtags"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    hashtag_name: Mapped[str] = mapped_column(Text, unique=True)
    posts_count: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    hashtag_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    search_query: Mapped[str | None] = mapped_column(Text, nullable=True)
    meta: Mapped[dict] = mapped_column("metadata", JSONB, default=dict)
    user_id: Mapped[UUID | None] = mapped_column(PGUUID(as_uuid=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )

    posts: Mapped[list["InstagramPost"]] = relationship(back_populates="hashtag")


class InstagramPost(Base):
    __tablename__ = "instagram_posts"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    instagram_id: Mapped[str] = mapped_column(Text, unique=True)
    short_code: Mapped[str | None] = mapped_column(Text, unique=True, nullable=True)
    post_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    input_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    post_type: Mapped[str | None] = mapped_column(Text, nullable=True)
    caption: Mapped[str | None] = mapped_column(Text, nullable=True)
    posted_at: Mapped[datetime | None] = mapped_column(
        "timestamp", DateTime(timezone=True), nullable=True
    )
    display_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    video_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    likes_count: Mapped[int] = mapped_column(Integer, default=0)
    comments_count: Mapped[int] = mapped_column(Integer, default=0)
    video_play_count: Mapped[int | None] = mapped_column(Integer, nullable=True)
    owner_id: Mapped[str | None] = mapped_column(Text, nullable=True)
    owner_username: Mapped[str | None] = mapped_column(Text, nullable=True)
    owner_full_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_sponsored: Mapped[bool] = mapped_column(Boolean, default=False)
    latest_comments: Mapped[list | None] = mapped_column(JSONB, nullable=True)
    hashtags: Mapped[list[str]] = mapped_column(ARRAY(Text), default=list)
    hashtag_id: Mapped[int | None] = mapped_column(
        BigInteger,
        ForeignKey("instagram_hashtags.id", ondelete="SET NULL"),
        nullable=True,
    )
    meta: Mapped[dict] = mapped_column("metadata", JSONB, default=dict)
    user_id: Mapped[UUID | None] = mapped_column(PGUUID(as_uuid=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )

    hashtag: Mapped[InstagramHashtag | None] = relationship(back_populates="posts")

    __table_args__ = (
        CheckConstraint(
            "post_type is null or post_type in ('Image', 'Video', 'Sidecar', 'Reel')",
            name="ck_instagram_posts_type",
        ),
    )


class KeywordInstagramAssignment(Base):
    __tablename__ = "keyword_instagram_assignments_v2"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    keyword_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("keywords_v2.id", ondelete="CASCADE")
    )
    instagram_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("instagram_posts.id", ondelete="CASCADE")
    )
    assignment_type: Mapped[str] = mapped_column(Text, default="manual")
    confidence_score: Mapped[float | None] = mapped_column(Float, nullable=True)
    assignment_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    meta: Mapped[dict] = mapped_column("metadata", JSONB, default=dict)
    user_id: Mapped[UUID] = mapped_column(PGUUID(as_uuid=True))
    gmail: Mapped[str] = mapped_column(Text)
    assigned_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    keyword: Mapped[Keyword] = relationship(back_populates="instagram_assignments")
    post: Mapped[InstagramPost] = relationship()

    __table_args__ = (
        CheckConstraint(
            "assignment_type in ('manual', 'automatic', 'bulk')",
            name="ck_keyword_instagram_assignment_type",
        ),
        CheckConstraint(
            "confidence_score is null or (confidence_score >= 0 and confidence_score <= 1)",
            name="ck_keyword_instagram_confidence",
        ),
    )


Index(
    "uq_keyword_instagram_assignment_live",
    KeywordInstagramAssignment.keyword_id,
    KeywordInstagramAssignment.instagram_id,
    unique=True,
    postgresql_where=KeywordInstagramAssignment.deleted_at.is_(None),
)


class KeywordGoogleMapsAssignment(Base):
    __tablename__ = "keyword_google_maps_assignments_v2"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    keyword_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("keywords_v2.id", ondelete="CASCADE")
    )
    google_maps_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("data_scraping_google_maps_v2.id", ondelete="CASCADE")
    )
    assignment_type: Mapped[str] = mapped_column(Text, default="manual")
    confidence_score: Mapped[float | None] = mapped_column(Float, nullable=True)
    relevance_score: Mapped[float | None] = mapped_column(Float, nullable=True)
    assignment_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    meta: Mapped[dict] = mapped_column("metadata", JSONB, default=dict)
    user_id: Mapped[UUID] = mapped_column(PGUUID(as_uuid=True))
    gmail: Mapped[str] = mapped_column(Text)
    assigned_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    keyword: Mapped[Keyword] = relationship(back_populates="google_maps_assignments")
    place: Mapped[GoogleMapsPlace] = relationship()

    __table_args__ = (
        CheckConstraint(
            "assignment_type in ('manual', 'automatic', 'bulk')",
            name="ck_keyword_google_maps_assignment_type",
        ),
        CheckConstraint(
            "confidence_score is null or (confidence_score >= 0 and confidence_score <= 1)",
            name="ck_keyword_google_maps_confidence",
        ),
        CheckConstraint(
            "relevance_score is null or (relevance_score >= 0 and relevance_score <= 1)",
            name="ck_keyword_google_maps_relevance",
        ),
    )


Index(
    "uq_keyword_google_maps_assignment_live",
    KeywordGoogleMapsAssignment.keyword_id,
    KeywordGoogleMapsAssignment.google_maps_id,
    unique=True,
    postgresql_where=KeywordGoogleMapsAssignment.deleted_at.is_(None),
)


class KeywordScrapingJob(Base):
    __tablename__ = "keyword_scraping_jobs_v2"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    keyword_id: Mapped[int | None] = mapped_column(
        BigInteger,
        ForeignKey("keywords_v2.id", ondelete="SET NULL"),
        nullable=True,
    )
    job_type: Mapped[str] = mapped_column(Text)
    job_priority: Mapped[int] = mapped_column(Integer, default=5)
    status: Mapped[str] = mapped_column(Text, default="pending")
    results_count: Mapped[int] = mapped_column(Integer, default=0)
    expected_results: Mapped[int | None] = mapped_column(Integer, nullable=True)
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    actual_duration: Mapped[int | None] = mapped_column(Integer, nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    error_code: Mapped[str | None] = mapped_column(Text, nullable=True)
    retry_count: Mapped[int] = mapped_column(Integer, default=0)
    max_retries: Mapped[int] = mapped_column(Integer, default=3)
    job_config: Mapped[dict] = mapped_column(JSONB, default=dict)
    job_results: Mapped[dict] = mapped_column(JSONB, default=dict)
    external_job_id: Mapped[str | None] = mapped_column(Text, nullable=True)
    rq_id: Mapped[str | None] = mapped_column(Text, nullable=True)
    user_id: Mapped[UUID] = mapped_column(PGUUID(as_uuid=True))
    gmail: Mapped[str] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    keyword: Mapped[Keyword | None] = relationship(back_populates="scraping_jobs")

    __table_args__ = (
        CheckConstraint(
            "status in ('pending', 'queued', 'running', 'completed', 'failed', 'cancelled')",
            name="ck_keyword_scraping_jobs_status",
        ),
        CheckConstraint(
            "job_type in ('instagram', 'google_maps')",
            name="ck_keyword_scraping_jobs_type",
        ),
        CheckConstraint("job_priority between 1 and 10", name="ck_keyword_scraping_jobs_priority"),
        CheckConstraint("results_count >= 0", name="ck_keyword_scraping_jobs_results"),
        CheckConstraint("retry_count >= 0", name="ck_keyword_scraping_jobs_retry"),
    )


class KeywordAnalytics(Base):
    __tablename__ = "keyword_analytics_v2"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    keyword_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("keywords_v2.id", ondelete="CASCADE")
    )
    period_start: Mapped[date] = mapped_column(Date)
    period_end: Mapped[date] = mapped_column(Date)
    period_type: Mapped[str] = mapped_column(Text, default="daily")
    instagram_posts_count: Mapped[int] = mapped_column(Integer, default=0)
    instagram_avg_likes: Mapped[float] = mapped_column(Float, default=0)
    instagram_avg_comments: Mapped[float] = mapped_column(Float, default=0)
    instagram_total_engagement: Mapped[int] = mapped_column(BigInteger, default=0)
    google_maps_places_count: Mapped[int] = mapped_column(Integer, default=0)
    google_maps_avg_rating: Mapped[float | None] = mapped_column(Float, nullable=True)
    google_maps_total_reviews: Mapped[int] = mapped_column(BigInteger, default=0)
    total_scraping_jobs: Mapped[int] = mapped_column(Integer, default=0)
    successful_scraping_jobs: Mapped[int] = mapped_column(Integer, default=0)
    failed_scraping_jobs: Mapped[int] = mapped_column(Integer, default=0)
    avg_job_duration: Mapped[float | None] = mapped_column(Float, nullable=True)
    user_id: Mapped[UUID] = mapped_column(PGUUID(as_uuid=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        CheckConstraint(
            "period_type in ('daily', 'weekly', 'monthly', 'quarterly')",
            name="ck_keyword_analytics_period_type",
        ),
        CheckConstraint("period_end >= period_start", name="ck_keyword_analytics_period"),
    )


Index(
    "uq_keyword_analytics_period",
    KeywordAnalytics.keyword_id,
    KeywordAnalytics.period_start,
    KeywordAnalytics.period_end,
    KeywordAnalytics.period_type,
    unique=True,
    postgresql_where=KeywordAnalytics.deleted_at.is_(None),
)
