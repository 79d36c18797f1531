from __future__ import annotations

from datetime import UTC, datetime, timedelta
import logging
from typing import Any
from uuid import uuid4

from rq.job import Job as RQJob
from sqlalchemy import and_, select

from db.models import (
    GoogleMapsPlace,
    InstagramHashtag,
    InstagramPost,
    Keyword,
    KeywordGoogleMapsAssignment,
    KeywordInstagramAssignment,
    KeywordScrapingJob,
    TERMINAL_JOB_STATUSES,
)
from db.session import SessionLocal
from keywords.validation import sanitize_keyword
from scrapers.apify import ActorRun, build_run_input, is_http_url, load_apify_config, normalize_post, run_actor
from scrapers.errors import ScrapingError
from scrapers.google_maps import Coordinates, load_google_maps_config, search_places


logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(UTC)


def update_job_status(
    session,
    job_id: int,
    status: str,
    *,
    results_count: int | None = None,
    job_results: dict | None = None,
    error_message: str | None = None,
    error_code: str | None = None,
    external_job_id: str | None = None,
) -> KeywordScrapingJob:
    job = session.get(KeywordScrapingJob, job_id)
    if job is None:
        raise RuntimeError(f"Scraping job not found: {job_id}")
    now = _utc_now()
    job.status = status
    if status == "running" and job.started_at is None:
        job.started_at = now
    if status in TERMINAL_JOB_STATUSES:
        job.completed_at = now
        if status in {"completed", "failed"} and job.started_at is not None:
            job.actual_duration = max(0, int((now - job.started_at).total_seconds()))
    if results_count is not None:
        job.results_count = results_count
    if job_results is not None:
        job.job_results = job_results
    if error_message is not None:
        job.error_message = error_message
    if error_code is not None:
        job.error_code = error_code
    if external_job_id is not None:
        job.external_job_id = external_job_id
    job.updated_at = now
    session.add(job)
    return job


def rq_on_failure(job: RQJob, connection, exc_type, exc_value, traceback) -> None:  # type: ignore[no-untyped-def]
    session = SessionLocal()
    try:
        job_id = job.args[0] if job.args else None
        if job_id is None:
            return
        row = session.get(KeywordScrapingJob, int(job_id))
        if row is None or row.status in TERMINAL_JOB_STATUSES:
            return
        update_job_status(
            session,
            int(job_id),
            "failed",
            error_message=str(exc_value),
            error_code=getattr(exc_value, "code", None) or "worker_error",
        )
        session.commit()
    finally:
        session.close()


def rq_on_success(job: RQJob, connection, result, *args, **kwargs) -> None:  # type: ignore[no-untyped-def]
    session = SessionLocal()
    try:
        job_id = job.args[0] if job.args else None
        if job_id is None:
            return
        row = session.get(KeywordScrapingJob, int(job_id))
        if row is None or row.status in TERMINAL_JOB_STATUSES:
            return
        update_job_status(session, int(job_id), "completed")
        session.commit()
    finally:
        session.close()


def _start_job(session, job_id: int) -> KeywordScrapingJob:
    job = session.get(KeywordScrapingJob, job_id)
    if job is None:
        raise RuntimeError(f"Scraping job not found: {job_id}")
    if job.status == "cancelled":
        return job
    update_job_status(session, job_id, "running")
    session.commit()
    return job


def _fail_job(session, job_id: int, exc: Exception) -> None:
    session.rollback()
    job = session.get(KeywordScrapingJob, job_id)
    if job is not None:
        job.retry_count = (job.retry_count or 0) + 1
    update_job_status(
        session,
        job_id,
        "failed",
        error_message=str(exc),
        error_code=exc.code if isinstance(exc, ScrapingError) else "internal_error",
    )
    session.commit()


def _hashtag_for(session, job: KeywordScrapingJob, target: str) -> InstagramHashtag | None:
    if is_http_url(target):
        return None
    name = target.strip().lstrip("#").lower()
    hashtag = session.execute(
        select(InstagramHashtag).where(InstagramHashtag.hashtag_name == name)
    ).scalar_one_or_none()
    if hashtag is None:
        hashtag = InstagramHashtag(
            hashtag_name=name,
            hashtag_url=f"https://www.instagram.com/explore/tags/{name}/",
            search_query=target,
            user_id=job.user_id,
            meta={},
        )
        session.add(hashtag)
        session.flush()
    return hashtag


def store_instagram_posts(session, job: KeywordScrapingJob, target: str, run: ActorRun) -> list[InstagramPost]:
    hashtag = _hashtag_for(session, job, target)
    stored: dict[str, InstagramPost] = {}
    for item in run.items:
        values = normalize_post(item)
        if values is None:
            continue
        post = stored.get(values["instagram_id"])
        if post is None:
            post = session.execute(
                select(InstagramPost).where(InstagramPost.instagram_id == values["instagram_id"])
            ).scalar_one_or_none()
        if post is None:
            post = InstagramPost(user_id=job.user_id, meta={}, **values)
        else:
            for name, value in values.items():
                setattr(post, name, value)
            post.updated_at = _utc_now()
        if hashtag is not None:
            post.hashtag_id = hashtag.id
        post.meta = {**(post.meta or {}), "scraping_job_id": job.id, "apify_run_id": run.run_id}
        session.add(post)
        stored[values["instagram_id"]] = post
    session.flush()
    return list(stored.values())


def _post_confidence(keyword: Keyword, post: InstagramPost) -> float:
    tag = sanitize_keyword(keyword.keyword).replace(" ", "").lstrip("#")
    tags = {str(item).lower().lstrip("#") for item in post.hashtags or []}
    if tag and tag in tags:
        return 1.0
    if tag and tag in (post.caption or "").lower():
        return 0.8
    return 0.5


def assign_instagram_posts(session, job: KeywordScrapingJob, posts: list[InstagramPost]) -> int:
    if job.keyword_id is None or not posts:
        return 0
    keyword = session.get(Keyword, job.keyword_id)
    if keyword is None or keyword.deleted_at is not None:
        return 0
    created = 0
    for post in posts:
        existing = session.execute(
            select(KeywordInstagramAssignment).where(
                KeywordInstagramAssignment.keyword_id == keyword.id,
                KeywordInstagramAssignment.instagram_id == post.id,
                KeywordInstagramAssignment.deleted_at.is_(None),
            )
        ).scalar_one_or_none()
        if existing is not None:
            continue
        session.add(
            KeywordInstagramAssignment(
                keyword_id=keyword.id,
                instagram_id=post.id,
                assignment_type="automatic",
                confidence_score=_post_confidence(keyword, post),
                user_id=job.user_id,
                gmail=job.gmail,
                meta={"scraping_job_id": job.id},
            )
        )
        created += 1
    return created


def relevance_score(keyword: str, row: dict[str, Any]) -> float:
    """Share of keyword terms found in the place name or category."""
    terms = [term for term in sanitize_keyword(keyword).replace("#", "").split() if term]
    if not terms:
        return 0.0
    haystack = f"{row.get('place_name') or ''} {row.get('category') or ''}".lower()
    hits = sum(1 for term in terms if term in haystack)
    return round(hits / len(terms), 2)


def store_google_maps_places(
    session,
    job: KeywordScrapingJob,
    rows: list[dict[str, Any]],
) -> list[GoogleMapsPlace]:
    keyword = session.get(Keyword, job.keyword_id) if job.keyword_id is not None else None
    if keyword is not None and keyword.deleted_at is not None:
        keyword = None
    places: list[GoogleMapsPlace] = []
    scraping_session_id = uuid4()
    for row in rows:
        place = GoogleMapsPlace(
            user_id=job.user_id,
            gmail=job.gmail,
            scraping_session_id=scraping_session_id,
            **{**row, "meta": {**row.get("meta", {}), "scraping_job_id": job.id}},
        )
        session.add(place)
        places.append(place)
    session.flush()
    if keyword is not None:
        for place, row in zip(places, rows, strict=True):
            session.add(
                KeywordGoogleMapsAssignment(
                    keyword_id=keyword.id,
                    google_maps_id=place.id,
                    assignment_type="automatic",
                    relevance_score=relevance_score(keyword.keyword, row),
                    user_id=job.user_id,
                    gmail=job.gmail,
                    meta={"scraping_job_id": job.id},
                )
            )
    return places


def scrape_instagram_job(job_id: int) -> dict:
    session = SessionLocal()
    try:
        job = _start_job(session, job_id)
        if job.status == "cancelled":
            logger.info("Skipping cancelled job %s", job_id)
            return {"job_id": job_id, "status": "cancelled"}
        config = job.job_config or {}
        target = str(config.get("target") or "")
        max_results = int(config.get("max_results") or 1)

        run = run_actor(load_apify_config(), build_run_input(target, max_results))
        posts = store_instagram_posts(session, job, target, run)
        assigned = assign_instagram_posts(session, job, posts)
        update_job_status(
            session,
            job_id,
            "completed",
            results_count=len(posts),
            external_job_id=run.run_id,
            job_results={
                "post_ids": [post.id for post in posts],
                "assignments_created": assigned,
                "dataset_id": run.dataset_id,
            },
        )
        session.commit()
        logger.info("Instagram job %s stored %s posts", job_id, len(posts))
        return {"job_id": job_id, "results_count": len(posts)}
    except Exception as exc:
        logger.exception("Instagram job %s failed", job_id)
        _fail_job(session, job_id, exc)
        raise
    finally:
        session.close()


def scrape_google_maps_job(job_id: int) -> dict:
    session = SessionLocal()
    try:
        job = _start_job(session, job_id)
        if job.status == "cancelled":
            logger.info("Skipping cancelled job %s", job_id)
            return {"job_id": job_id, "status": "cancelled"}
        config = job.job_config or {}
        target = str(config.get("target") or "")
        max_results = int(config.get("max_results") or 1)
        coords = config.get("coordinates") or None
        coordinates = Coordinates(lat=float(coords["lat"]), lng=float(coords["lng"])) if coords else None

        url, rows = search_places(
            load_google_maps_config(),
            target,
            coordinates=coordinates,
            max_results=max_results,
        )
        places = store_google_maps_places(session, job, rows)
        update_job_status(
            session,
            job_id,
            "completed",
            results_count=len(places),
            job_results={"place_ids": [place.id for place in places], "search_url": url},
        )
        session.commit()
        logger.info("Google Maps job %s stored %s places", job_id, len(places))
        return {"job_id": job_id, "results_count": len(places)}
    except Exception as exc:
        logger.exception("Google Maps job %s failed", job_id)
        _fail_job(session, job_id, exc)
        raise
    finally:
        session.close()


JOB_FUNCTIONS = {
    "instagram": scrape_instagram_job,
    "google_maps": scrape_google_maps_job,
}


def mark_stale_jobs(session, older_min: int) -> int:
    cutoff = _utc_now() - timedelta(minutes=older_min)
    stmt = select(KeywordScrapingJob).where(
        and_(KeywordScrapingJob.status == "running", KeywordScrapingJob.updated_at < cutoff)
    )
    jobs = session.execute(stmt).scalars().all()
    for job in jobs:
        update_job_status(
            session,
            job.id,
            "failed",
            error_message=f"auto-cleanup: running > {older_min} min",
            error_code="stale_job",
        )
    return len(jobs)
