from __future__ import annotations

from datetime import UTC, date, datetime, time, timedelta
import logging
import time as _time

from sqlalchemy import case, func, select

from db.models import (
    PERIOD_TYPES,
    GoogleMapsPlace,
    InstagramPost,
    Keyword,
    KeywordAnalytics,
    KeywordGoogleMapsAssignment,
    KeywordInstagramAssignment,
    KeywordScrapingJob,
)
from keywords.service import KeywordNotFound


logger = logging.getLogger(__name__)


def _bounds(period_start: date, period_end: date) -> tuple[datetime, datetime]:
    start = datetime.combine(period_start, time.min, tzinfo=UTC)
    end = datetime.combine(period_end + timedelta(days=1), time.min, tzinfo=UTC)
    return start, end


def instagram_metrics(session, keyword_id: int, period_start: date, period_end: date) -> dict:
    start, end = _bounds(period_start, period_end)
    row = session.execute(
        select(
            func.count(InstagramPost.id),
            func.avg(InstagramPost.likes_count),
            func.avg(InstagramPost.comments_count),
            func.sum(InstagramPost.likes_count + InstagramPost.comments_count),
        )
        .select_from(KeywordInstagramAssignment)
        .join(InstagramPost, InstagramPost.id == KeywordInstagramAssignment.instagram_id)
        .where(
            KeywordInstagramAssignment.keyword_id == keyword_id,
            KeywordInstagramAssignment.deleted_at.is_(None),
            InstagramPost.created_at >= start,
            InstagramPost.created_at < end,
        )
    ).one()
    count, avg_likes, avg_comments, engagement = row
    return {
        "instagram_posts_count": int(count or 0),
        "instagram_avg_likes": float(avg_likes or 0),
        "instagram_avg_comments": float(avg_comments or 0),
        "instagram_total_engagement": int(engagement or 0),
    }


def google_maps_metrics(session, keyword_id: int, period_start: date, period_end: date) -> dict:
    start, end = _bounds(period_start, period_end)
    row = session.execute(
        select(
            func.count(GoogleMapsPlace.id),
            func.avg(GoogleMapsPlace.rating),
            func.sum(GoogleMapsPlace.review_count),
        )
        .select_from(KeywordGoogleMapsAssignment)
        .join(GoogleMapsPlace, GoogleMapsPlace.id == KeywordGoogleMapsAssignment.google_maps_id)
        .where(
            KeywordGoogleMapsAssignment.keyword_id == keyword_id,
            KeywordGoogleMapsAssignment.deleted_at.is_(None),
            GoogleMapsPlace.deleted_at.is_(None),
            GoogleMapsPlace.created_at >= start,
            GoogleMapsPlace.created_at < end,
        )
    ).one()
    count, avg_rating, reviews = row
    return {
        "google_maps_places_count": int(count or 0),
        "google_maps_avg_rating": float(avg_rating) if avg_rating is not None else None,
        "google_maps_total_reviews": int(reviews or 0),
    }


def job_metrics(session, keyword_id: int, period_start: date, period_end: date) -> dict:
    start, end = _bounds(period_start, period_end)
    row = session.execute(
        select(
            func.count(KeywordScrapingJob.id),
            func.sum(case((KeywordScrapingJob.status == "completed", 1), else_=0)),
            func.sum(case((KeywordScrapingJob.status == "failed", 1), else_=0)),
            func.avg(KeywordScrapingJob.actual_duration),
        ).where(
            KeywordScrapingJob.keyword_id == keyword_id,
            KeywordScrapingJob.deleted_at.is_(None),
            KeywordScrapingJob.created_at >= start,
            KeywordScrapingJob.created_at < end,
        )
    ).one()
    total, completed, failed, avg_duration = row
    return {
        "total_scraping_jobs": int(total or 0),
        "successful_scraping_jobs": int(completed or 0),
        "failed_scraping_jobs": int(failed or 0),
        "avg_job_duration": float(avg_duration) if avg_duration is not None else None,
    }


def compute_keyword_analytics(
    session,
    keyword_id: int,
    period_start: date,
    period_end: date,
    period_type: str = "daily",
) -> KeywordAnalytics:
    """Recompute and upsert one analytics row for a keyword and period."""
    if period_type not in PERIOD_TYPES:
        raise ValueError(f"Unsupported period type: {period_type}")
    if period_end < period_start:
        raise ValueError("period_end must not be before period_start")
    keyword = session.get(Keyword, keyword_id)
    if keyword is None or keyword.deleted_at is not None:
        raise KeywordNotFound(keyword_id)

    values: dict = {}
    values.update(instagram_metrics(session, keyword_id, period_start, period_end))
    values.update(google_maps_metrics(session, keyword_id, period_start, period_end))
    values.update(job_metrics(session, keyword_id, period_start, period_end))

    row = session.execute(
        select(KeywordAnalytics).where(
            KeywordAnalytics.keyword_id == keyword_id,
            KeywordAnalytics.period_start == period_start,
            KeywordAnalytics.period_end == period_end,
            KeywordAnalytics.period_type == period_type,
            KeywordAnalytics.deleted_at.is_(None),
        )
    ).scalar_one_or_none()
    if row is None:
        row = KeywordAnalytics(
            keyword_id=keyword_id,
            period_start=period_start,
            period_end=period_end,
            period_type=period_type,
            user_id=keyword.user_id,
        )
    for name, value in values.items():
        setattr(row, name, value)
    row.updated_at = datetime.now(UTC)
    session.add(row)
    return row


def batch_compute_daily_analytics(session, day: date | None = None) -> dict:
    target = day or (datetime.now(UTC).date() - timedelta(days=1))
    started = _time.monotonic()
    keyword_ids = session.execute(
        select(Keyword.id).where(Keyword.status == "active", Keyword.deleted_at.is_(None))
    ).scalars().all()
    processed = 0
    for keyword_id in keyword_ids:
        compute_keyword_analytics(session, keyword_id, target, target, "daily")
        processed += 1
    elapsed = round(_time.monotonic() - started, 3)
    logger.info("Computed daily analytics for %s keywords on %s in %ss", processed, target, elapsed)
    return {"processed": processed, "day": target.isoformat(), "elapsed_s": elapsed}
