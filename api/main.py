from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
import logging
from os import getenv
import re
import time
from typing import Any, Literal, Optional
from uuid import UUID

from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from sqlalchemy import desc, func, or_, select, text
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from analytics import batch_compute_daily_analytics, compute_keyword_analytics
from config import configure_logging, load_app_config
from db.models import (
    JOB_STATUSES,
    JOB_TYPES,
    GoogleMapsPlace,
    InstagramPost,
    Keyword,
    KeywordAnalytics,
    KeywordGoogleMapsAssignment,
    KeywordInstagramAssignment,
    KeywordScrapingJob,
)
from db.session import SessionLocal, database_configured
from keywords import (
    BulkOperationRequest,
    KeywordConflict,
    KeywordCreate,
    KeywordImportRequest,
    KeywordNotFound,
    KeywordUpdate,
    UserContext,
    apply_bulk_operation,
    archive_old_keywords,
    bulk_insert_keywords,
    calculate_keyword_difficulty,
    create_keyword,
    keyword_stats,
    list_keywords,
    paginate,
    soft_delete_keyword,
    update_keyword,
    validate_instagram_keyword,
)
from keywords.service import find_owned_keyword
from pipeline.jobs import mark_stale_jobs, update_job_status
from pipeline.queue import (
    QueueUnavailable,
    create_scraping_job,
    dispatch_pending_jobs,
    enqueue_scraping_job,
)
from scrapers.apify import is_http_url

configure_logging()
logger = logging.getLogger(__name__)

_config = load_app_config()
_STARTED_AT = time.monotonic()
NO_CACHE_HEADERS = {
    "Cache-Control": "no-cache, no-store, must-revalidate",
    "Pragma": "no-cache",
    "Expires": "0",
}
MAX_SCRAPE_RESULTS = 200
URL_SCHEME_PATTERN = re.compile(r"^([a-zA-Z][a-zA-Z0-9+.-]*):(//)?")
UNSAFE_URL_SCHEMES = {"javascript", "data", "file", "vbscript", "ftp", "mailto"}

app = FastAPI(title=_config.service_name, version=_config.version)

app.add_middleware(
    CORSMiddleware,
    allow_origins=list(_config.cors_origins),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(RequestValidationError)
async def _validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = [
        {
            "field": ".".join(str(part) for part in err.get("loc", ()) if part != "body"),
            "message": err.get("msg", "invalid value"),
        }
        for err in exc.errors()
    ]
    return JSONResponse(status_code=400, content={"detail": "validation_error", "errors": errors})


@app.exception_handler(SQLAlchemyError)
async def _database_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    logger.exception("Database error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"detail": "database_error"})


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _require_operator(x_operator_token: str | None = Header(default=None)) -> None:
    expected = getenv("OPERATOR_TOKEN", "")
    if not expected:
        if getenv("ALLOW_OPS_WITHOUT_TOKEN", "0") == "1":
            return
        raise HTTPException(status_code=503, detail="operator_token_missing")
    if x_operator_token != expected:
        raise HTTPException(status_code=401, detail="operator_token_required")


def _resolve_user(user_id: str | None, user_email: str | None) -> UserContext:
    if not user_id or not user_email or not user_email.strip():
        raise HTTPException(status_code=401, detail="user_context_required")
    try:
        parsed = UUID(str(user_id).strip())
    except ValueError:
        raise HTTPException(status_code=401, detail="user_context_invalid")
    return UserContext(id=parsed, email=user_email.strip())


def _current_user(
    x_user_id: str | None = Header(default=None),
    x_user_email: str | None = Header(default=None),
) -> UserContext:
    return _resolve_user(x_user_id, x_user_email)


def _not_found(exc: KeywordNotFound) -> HTTPException:
    return HTTPException(status_code=404, detail=str(exc))


def _worker_state() -> dict:
    try:
        from rq import Worker
        from pipeline.queue import get_queue, get_redis

        redis = get_redis()
        redis.ping()
        queue = get_queue()
        workers = Worker.all(connection=redis)
        return {
            "redis_ok": True,
            "online": len(workers) > 0,
            "worker_count": len(workers),
            "queue_depth": queue.count,
        }
    except Exception:
        return {
            "redis_ok": False,
            "online": False,
            "worker_count": 0,
            "queue_depth": None,
        }


def _service_status(name: str, ok: bool, details: str | None = None) -> dict:
    return {
        "service": name,
        "status": "ok" if ok else "down",
        "details": details,
    }


def _repo_counts(session, model, status_col=None) -> dict:
    total = session.execute(select(func.count()).select_from(model)).scalar_one()
    payload = {"total": int(total), "by_status": {}}
    if status_col is not None:
        rows = session.execute(select(status_col, func.count()).group_by(status_col)).all()
        payload["by_status"] = {str(status or "unknown"): int(count) for status, count in rows}
    return payload


def _keyword_row(keyword: Keyword) -> dict:
    return jsonable_encoder(
        {
            "id": keyword.id,
            "keyword": keyword.keyword,
            "description": keyword.description,
            "category": keyword.category,
            "status": keyword.status,
            "priority": keyword.priority,
            "tags": keyword.tags or [],
            "search_volume": keyword.search_volume,
            "competition_score": keyword.competition_score,
            "difficulty": calculate_keyword_difficulty(keyword.search_volume, keyword.competition_score),
            "performance_metrics": keyword.performance_metrics or {},
            "metadata": keyword.meta or {},
            "user_id": keyword.user_id,
            "gmail": keyword.gmail,
            "created_at": keyword.created_at,
            "updated_at": keyword.updated_at,
        }
    )


def _job_row(job: KeywordScrapingJob) -> dict:
    return jsonable_encoder(
        {
            "id": job.id,
            "keyword_id": job.keyword_id,
            "job_type": job.job_type,
            "job_priority": job.job_priority,
            "status": job.status,
            "results_count": job.results_count,
            "expected_results": job.expected_results,
            "started_at": job.started_at,
            "completed_at": job.completed_at,
            "actual_duration": job.actual_duration,
            "error_message": job.error_message,
            "error_code": job.error_code,
            "retry_count": job.retry_count,
            "job_config": job.job_config or {},
            "job_results": job.job_results or {},
            "external_job_id": job.external_job_id,
            "created_at": job.created_at,
            "updated_at": job.updated_at,
        }
    )


def _post_row(post: InstagramPost) -> dict:
    return jsonable_encoder(
        {
            "id": post.id,
            "instagram_id": post.instagram_id,
            "short_code": post.short_code,
            "post_url": post.post_url,
            "post_type": post.post_type,
            "caption": post.caption,
            "timestamp": post.posted_at,
            "display_url": post.display_url,
            "video_url": post.video_url,
            "likes_count": post.likes_count,
            "comments_count": post.comments_count,
            "video_play_count": post.video_play_count,
            "owner_username": post.owner_username,
            "owner_full_name": post.owner_full_name,
            "is_sponsored": post.is_sponsored,
            "hashtags": post.hashtags or [],
            "created_at": post.created_at,
        }
    )


def _visible_posts(user: UserContext):
    """Posts the caller stored, has a live assignment to, or got from one of their jobs."""
    assigned = select(KeywordInstagramAssignment.instagram_id).where(
        KeywordInstagramAssignment.user_id == user.id,
        KeywordInstagramAssignment.deleted_at.is_(None),
    ).correlate(None)
    scraped = (
        select(KeywordScrapingJob.id)
        .where(
            KeywordScrapingJob.user_id == user.id,
            KeywordScrapingJob.job_type == "instagram",
            KeywordScrapingJob.deleted_at.is_(None),
            KeywordScrapingJob.job_results["post_ids"].contains(func.jsonb_build_array(InstagramPost.id)),
        )
        .exists()
    )
    return or_(InstagramPost.user_id == user.id, InstagramPost.id.in_(assigned), scraped)


def _place_row(place: GoogleMapsPlace) -> dict:
    return jsonable_encoder(
        {
            "id": place.id,
            "place_id": place.place_id,
            "place_name": place.place_name,
            "address": place.address,
            "phone_number": place.phone_number,
            "website": place.website,
            "rating": place.rating,
            "review_count": place.review_count,
            "category": place.category,
            "coordinates": place.coordinates,
            "image_url": place.image_url,
            "price_range": place.price_range,
            "search_query": place.search_query,
            "input_url": place.input_url,
            "quality_score": place.quality_score,
            "created_at": place.created_at,
        }
    )


def _assignment_row(assignment, kind: str) -> dict:
    target_id = assignment.instagram_id if kind == "instagram" else assignment.google_maps_id
    return jsonable_encoder(
        {
            "id": assignment.id,
            "kind": kind,
            "keyword_id": assignment.keyword_id,
            "target_id": target_id,
            "assignment_type": assignment.assignment_type,
            "confidence_score": assignment.confidence_score,
            "relevance_score": getattr(assignment, "relevance_score", None),
            "assignment_notes": assignment.assignment_notes,
            "assigned_at": assignment.assigned_at,
        }
    )


def _analytics_row(row: KeywordAnalytics) -> dict:
    return jsonable_encoder(
        {
            "id": row.id,
            "keyword_id": row.keyword_id,
            "period_start": row.period_start,
            "period_end": row.period_end,
            "period_type": row.period_type,
            "instagram_posts_count": row.instagram_posts_count,
            "instagram_avg_likes": row.instagram_avg_likes,
            "instagram_avg_comments": row.instagram_avg_comments,
            "instagram_total_engagement": row.instagram_total_engagement,
            "google_maps_places_count": row.google_maps_places_count,
            "google_maps_avg_rating": row.google_maps_avg_rating,
            "google_maps_total_reviews": row.google_maps_total_reviews,
            "total_scraping_jobs": row.total_scraping_jobs,
            "successful_scraping_jobs": row.successful_scraping_jobs,
            "failed_scraping_jobs": row.failed_scraping_jobs,
            "avg_job_duration": row.avg_job_duration,
            "updated_at": row.updated_at,
        }
    )


def _coerce_max_results(value: Any) -> int:
    if value is None or isinstance(value, bool):
        return 1
    if isinstance(value, float) and not value.is_integer():
        return 1
    try:
        parsed = int(value)
    except (TypeError, ValueError, OverflowError):
        return 1
    if parsed <= 0:
        return 1
    return min(parsed, MAX_SCRAPE_RESULTS)


def _foreign_url(target: str) -> bool:
    """True for URL-shaped targets that are not plain http(s) links."""
    match = URL_SCHEME_PATTERN.match(target)
    if match is None or is_http_url(target):
        return False
    scheme = match.group(1).lower()
    return bool(match.group(2)) or scheme in UNSAFE_URL_SCHEMES


def _normalize_scraping_type(value: str | None) -> str | None:
    raw = (value or "instagram").strip().lower().replace("-", "_")
    return raw if raw in JOB_TYPES else None


class CoordinatesIn(BaseModel):
    lat: float = Field(ge=-90, le=90)
    lng: float = Field(ge=-180, le=180)


class ScrapingRequest(BaseModel):
    url: Optional[str] = None
    max_results: Any = Field(default=1, alias="maxResults")
    user_email: Optional[str] = Field(default=None, alias="userEmail")
    userid: Optional[str] = None
    scraping_type: Optional[str] = Field(default="instagram", alias="scrapingType")
    keyword_id: Optional[int] = Field(default=None, alias="keywordId")
    coordinates: Optional[CoordinatesIn] = None
    priority: int = Field(default=5, ge=1, le=10)

    model_config = {"populate_by_name": True}


class AssignmentRequest(BaseModel):
    kind: Literal["instagram", "google_maps"]
    target_id: int = Field(gt=0)
    assignment_type: Literal["manual", "automatic", "bulk"] = "manual"
    confidence_score: Optional[float] = Field(default=None, ge=0, le=1)
    relevance_score: Optional[float] = Field(default=None, ge=0, le=1)
    notes: Optional[str] = Field(default=None, max_length=1000)


class CleanupRequest(BaseModel):
    older_min: int = Field(30, ge=1, le=10080)


class DispatchRequest(BaseModel):
    limit: int = Field(10, ge=1, le=100)


class ArchiveRequest(BaseModel):
    days_old: int = Field(365, ge=1)


class AnalyticsComputeRequest(BaseModel):
    keyword_id: Optional[int] = Field(default=None, gt=0)
    period_start: Optional[date] = None
    period_end: Optional[date] = None
    period_type: Literal["daily", "weekly", "monthly", "quarterly"] = "daily"


@app.get("/health")
@app.get("/api/health")
def health() -> JSONResponse:
    configured = database_configured()
    payload = {
        "status": "healthy",
        "timestamp": _utc_now().isoformat(),
        "service": _config.service_name,
        "version": _config.version,
        "environment": _config.environment,
        "checks": {
            "database": {
                "status": "configured" if configured else "missing_config",
                "url_configured": configured,
            },
            "server": {
                "status": "running",
                "uptime_s": round(time.monotonic() - _STARTED_AT, 3),
            },
        },
    }
    return JSONResponse(content=payload, headers=NO_CACHE_HEADERS)


@app.get("/system/status")
def system_status() -> dict:
    partial_failures: list[str] = []
    worker = _worker_state()
    services = [
        _service_status("api", True),
        _service_status("redis", bool(worker.get("redis_ok")), None if worker.get("redis_ok") else "ping_failed"),
        _service_status("worker", bool(worker.get("online")), f"count={worker.get('worker_count', 0)}"),
    ]
    repo_counts: dict[str, dict] = {
        "keywords": {"total": None, "by_status": {}},
        "scraping_jobs": {"total": None, "by_status": {}},
        "instagram_posts": {"total": None, "by_status": {}},
        "google_maps_places": {"total": None, "by_status": {}},
    }

    session = SessionLocal()
    try:
        session.execute(text("select 1"))
        services.append(_service_status("postgres", True))
        repo_counts["keywords"] = _repo_counts(session, Keyword, Keyword.status)
        repo_counts["scraping_jobs"] = _repo_counts(session, KeywordScrapingJob, KeywordScrapingJob.status)
        repo_counts["instagram_posts"] = _repo_counts(session, InstagramPost)
        repo_counts["google_maps_places"] = _repo_counts(session, GoogleMapsPlace)
    except Exception as exc:
        services.append(_service_status("postgres", False, "query_failed"))
        partial_failures.append(f"postgres_unavailable:{type(exc).__name__}")
    finally:
        session.close()

    return jsonable_encoder(
        {
            "service_status": services,
            "repo_counts": repo_counts,
            "worker": worker,
            "updated_at": _utc_now(),
            "partial_failures": partial_failures,
        }
    )


@app.get("/api/keywords")
def get_keywords(
    action: Optional[str] = None,
    page: int = 1,
    limit: int = 10,
    search: Optional[str] = None,
    status: Optional[str] = None,
    category: Optional[str] = None,
    priority: Optional[int] = None,
    sortBy: str = "created_at",
    sortOrder: str = "desc",
    user: UserContext = Depends(_current_user),
) -> dict:
    if action == "stats":
        return get_keyword_stats(user=user)
    page, limit = paginate(page, limit)
    session = SessionLocal()
    try:
        rows, total = list_keywords(
            session,
            user,
            page=page,
            limit=limit,
            search=search,
            status=status,
            category=category,
            priority=priority,
            sort_by=sortBy,
            sort_order=sortOrder,
        )
        return {
            "keywords": [_keyword_row(row) for row in rows],
            "total": total,
            "page": page,
            "limit": limit,
            "total_pages": (total + limit - 1) // limit if total else 0,
        }
    finally:
        session.close()


@app.get("/api/keywords/stats")
def get_keyword_stats(user: UserContext = Depends(_current_user)) -> dict:
    session = SessionLocal()
    try:
        return keyword_stats(session, user)
    finally:
        session.close()


@app.get("/api/keywords/{keyword_id}")
def get_keyword(keyword_id: int, user: UserContext = Depends(_current_user)) -> dict:
    session = SessionLocal()
    try:
        keyword = find_owned_keyword(session, user, keyword_id)
        if keyword is None:
            raise _not_found(KeywordNotFound(keyword_id))
        return {"keyword": _keyword_row(keyword)}
    finally:
        session.close()


@app.post("/api/keywords", status_code=201)
def create_keyword_endpoint(request: KeywordCreate, user: UserContext = Depends(_current_user)) -> dict:
    session = SessionLocal()
    try:
        try:
            keyword = create_keyword(session, user, request)
            session.commit()
        except KeywordConflict:
            session.rollback()
            raise HTTPException(status_code=409, detail="keyword_already_exists")
        except IntegrityError:
            session.rollback()
            raise HTTPException(status_code=409, detail="keyword_already_exists")
        return {"success": True, "keyword": _keyword_row(keyword)}
    finally:
        session.close()


@app.put("/api/keywords")
def update_keyword_endpoint(request: KeywordUpdate, user: UserContext = Depends(_current_user)) -> dict:
    session = SessionLocal()
    try:
        try:
            keyword = update_keyword(session, user, request)
            session.commit()
        except KeywordNotFound as exc:
            session.rollback()
            raise _not_found(exc)
        except (KeywordConflict, IntegrityError):
            session.rollback()
            raise HTTPException(status_code=409, detail="keyword_already_exists")
        return {"success": True, "keyword": _keyword_row(keyword)}
    finally:
        session.close()


@app.delete("/api/keywords")
def delete_keyword_endpoint(
    id: int = Query(..., gt=0),
    user: UserContext = Depends(_current_user),
) -> dict:
    session = SessionLocal()
    try:
        try:
            soft_delete_keyword(session, user, id)
            session.commit()
        except KeywordNotFound as exc:
            session.rollback()
            raise _not_found(exc)
        return {"success": True, "message": "Keyword deleted successfully", "id": id}
    finally:
        session.close()


@app.post("/api/keywords/bulk")
def bulk_keywords(request: BulkOperationRequest, user: UserContext = Depends(_current_user)) -> dict:
    session = SessionLocal()
    try:
        result = apply_bulk_operation(session, user, request)
        session.commit()
        queue_errors: list[dict] = []
        for job in result.jobs:
            try:
                enqueue_scraping_job(session, job)
            except QueueUnavailable as exc:
                queue_errors.append({"job_id": job.id, "error": str(exc)})
        return {
            "success": result.success,
            "operation": result.operation,
            "requested": result.requested,
            "affected": result.affected,
            "failed": result.failed,
            "jobs": [_job_row(job) for job in result.jobs],
            "queue_errors": queue_errors,
            "message": f"{result.affected} of {result.requested} keywords updated",
        }
    finally:
        session.close()


@app.post("/api/keywords/import", status_code=201)
def import_keywords(request: KeywordImportRequest, user: UserContext = Depends(_current_user)) -> dict:
    session = SessionLocal()
    try:
        try:
            result = bulk_insert_keywords(session, user, request.keywords)
            session.commit()
        except IntegrityError:
            session.rollback()
            raise HTTPException(status_code=409, detail="keyword_already_exists")
        return {
            "inserted": result["inserted"],
            "failed": result["failed"],
            "errors": result["errors"],
            "keywords": [_keyword_row(row) for row in result["keywords"]],
        }
    finally:
        session.close()


@app.get("/api/keywords/{keyword_id}/assignments")
def list_assignments(keyword_id: int, user: UserContext = Depends(_current_user)) -> dict:
    session = SessionLocal()
    try:
        if find_owned_keyword(session, user, keyword_id) is None:
            raise _not_found(KeywordNotFound(keyword_id))
        instagram = session.execute(
            select(KeywordInstagramAssignment)
            .where(
                KeywordInstagramAssignment.keyword_id == keyword_id,
                KeywordInstagramAssignment.deleted_at.is_(None),
            )
            .order_by(desc(KeywordInstagramAssignment.assigned_at))
        ).scalars().all()
        google_maps = session.execute(
            select(KeywordGoogleMapsAssignment)
            .where(
                KeywordGoogleMapsAssignment.keyword_id == keyword_id,
                KeywordGoogleMapsAssignment.deleted_at.is_(None),
            )
            .order_by(desc(KeywordGoogleMapsAssignment.assigned_at))
        ).scalars().all()
        return {
            "keyword_id": keyword_id,
            "instagram": [_assignment_row(row, "instagram") for row in instagram],
            "google_maps": [_assignment_row(row, "google_maps") for row in google_maps],
        }
    finally:
        session.close()


@app.post("/api/keywords/{keyword_id}/assignments", status_code=201)
def create_assignment(
    keyword_id: int,
    request: AssignmentRequest,
    user: UserContext = Depends(_current_user),
) -> dict:
    session = SessionLocal()
    try:
        if find_owned_keyword(session, user, keyword_id) is None:
            raise _not_found(KeywordNotFound(keyword_id))
        if request.kind == "instagram":
            target = session.execute(
                select(InstagramPost).where(
                    InstagramPost.id == request.target_id,
                    or_(InstagramPost.user_id.is_(None), _visible_posts(user)),
                )
            ).scalar_one_or_none()
            if target is None:
                raise HTTPException(status_code=404, detail="instagram post not found")
            model, column = KeywordInstagramAssignment, KeywordInstagramAssignment.instagram_id
        else:
            target = session.get(GoogleMapsPlace, request.target_id)
            if target is None or target.deleted_at is not None or target.user_id != user.id:
                raise HTTPException(status_code=404, detail="google maps place not found")
            model, column = KeywordGoogleMapsAssignment, KeywordGoogleMapsAssignment.google_maps_id

        existing = session.execute(
            select(model).where(
                model.keyword_id == keyword_id,
                column == request.target_id,
                model.deleted_at.is_(None),
            )
        ).scalar_one_or_none()
        if existing is not None:
            raise HTTPException(status_code=409, detail="assignment_exists")

        values = {
            "keyword_id": keyword_id,
            "assignment_type": request.assignment_type,
            "confidence_score": request.confidence_score,
            "assignment_notes": request.notes,
            "user_id": user.id,
            "gmail": user.email,
            "meta": {},
        }
        if request.kind == "instagram":
            assignment = KeywordInstagramAssignment(instagram_id=request.target_id, **values)
        else:
            assignment = KeywordGoogleMapsAssignment(
                google_maps_id=request.target_id,
                relevance_score=request.relevance_score,
                **values,
            )
        session.add(assignment)
        try:
            session.commit()
        except IntegrityError:
            session.rollback()
            raise HTTPException(status_code=409, detail="assignment_exists")
        return {"success": True, "assignment": _assignment_row(assignment, request.kind)}
    finally:
        session.close()


@app.delete("/api/keywords/{keyword_id}/assignments/{kind}/{assignment_id}")
def delete_assignment(
    keyword_id: int,
    kind: Literal["instagram", "google_maps"],
    assignment_id: int,
    user: UserContext = Depends(_current_user),
) -> dict:
    model = KeywordInstagramAssignment if kind == "instagram" else KeywordGoogleMapsAssignment
    session = SessionLocal()
    try:
        assignment = session.get(model, assignment_id)
        if (
            assignment is None
            or assignment.keyword_id != keyword_id
            or assignment.user_id != user.id
            or assignment.deleted_at is not None
        ):
            raise HTTPException(status_code=404, detail="assignment not found")
        assignment.deleted_at = _utc_now()
        session.add(assignment)
        session.commit()
        return {"success": True, "id": assignment_id}
    finally:
        session.close()


@app.get("/api/keywords/{keyword_id}/analytics")
def get_keyword_analytics(
    keyword_id: int,
    period_type: Optional[str] = None,
    limit: int = Query(30, ge=1, le=365),
    user: UserContext = Depends(_current_user),
) -> dict:
    session = SessionLocal()
    try:
        if find_owned_keyword(session, user, keyword_id) is None:
            raise _not_found(KeywordNotFound(keyword_id))
        stmt = select(KeywordAnalytics).where(
            KeywordAnalytics.keyword_id == keyword_id,
            KeywordAnalytics.deleted_at.is_(None),
        )
        if period_type:
            stmt = stmt.where(KeywordAnalytics.period_type == period_type)
        rows = session.execute(
            stmt.order_by(desc(KeywordAnalytics.period_start)).limit(limit)
        ).scalars().all()
        return {"keyword_id": keyword_id, "analytics": [_analytics_row(row) for row in rows]}
    finally:
        session.close()


@app.post("/api/scraping")
def start_scraping(
    request: ScrapingRequest,
    x_user_id: str | None = Header(default=None),
    x_user_email: str | None = Header(default=None),
) -> dict:
    user = _resolve_user(x_user_id or request.userid, x_user_email or request.user_email)
    target = (request.url or "").strip()
    if not target:
        raise HTTPException(status_code=400, detail="url_required")
    job_type = _normalize_scraping_type(request.scraping_type)
    if job_type is None:
        raise HTTPException(status_code=400, detail="invalid_scraping_type")
    if _foreign_url(target):
        raise HTTPException(status_code=400, detail="invalid_url")
    if job_type == "instagram" and not is_http_url(target):
        try:
            validate_instagram_keyword(target)
        except ValueError:
            raise HTTPException(status_code=400, detail="invalid_url")
    max_results = _coerce_max_results(request.max_results)

    session = SessionLocal()
    try:
        if request.keyword_id is not None and find_owned_keyword(session, user, request.keyword_id) is None:
            raise _not_found(KeywordNotFound(request.keyword_id))
        job = create_scraping_job(
            session,
            user,
            job_type=job_type,
            target=target,
            keyword_id=request.keyword_id,
            max_results=max_results,
            job_priority=request.priority,
            source="api",
            coordinates=request.coordinates.model_dump() if request.coordinates else None,
        )
        session.commit()
        try:
            enqueue_scraping_job(session, job)
        except QueueUnavailable:
            raise HTTPException(status_code=500, detail="queue_unavailable")
        logger.info("Scraping job %s (%s) queued for user %s", job.id, job_type, user.id)
        return {"success": True, "message": "Scraping job queued", "job": _job_row(job)}
    finally:
        session.close()


@app.get("/api/scraping/jobs")
def list_scraping_jobs(
    status: Optional[str] = None,
    job_type: Optional[str] = None,
    keyword_id: Optional[int] = None,
    page: int = 1,
    limit: int = 10,
    user: UserContext = Depends(_current_user),
) -> dict:
    if status and status not in JOB_STATUSES:
        raise HTTPException(status_code=400, detail="invalid_status")
    page, limit = paginate(page, limit)
    session = SessionLocal()
    try:
        stmt = select(KeywordScrapingJob).where(
            KeywordScrapingJob.user_id == user.id,
            KeywordScrapingJob.deleted_at.is_(None),
        )
        if status:
            stmt = stmt.where(KeywordScrapingJob.status == status)
        if job_type:
            stmt = stmt.where(KeywordScrapingJob.job_type == job_type)
        if keyword_id is not None:
            stmt = stmt.where(KeywordScrapingJob.keyword_id == keyword_id)
        total = session.execute(select(func.count()).select_from(stmt.subquery())).scalar_one()
        rows = session.execute(
            stmt.order_by(desc(KeywordScrapingJob.created_at)).limit(limit).offset((page - 1) * limit)
        ).scalars().all()
        return {"jobs": [_job_row(row) for row in rows], "total": int(total or 0), "page": page, "limit": limit}
    finally:
        session.close()


def _owned_job(session, user: UserContext, job_id: int) -> KeywordScrapingJob:
    job = session.get(KeywordScrapingJob, job_id)
    if job is None or job.deleted_at is not None or job.user_id != user.id:
        raise HTTPException(status_code=404, detail="scraping job not found")
    return job


@app.get("/api/scraping/jobs/{job_id}")
def get_scraping_job(job_id: int, user: UserContext = Depends(_current_user)) -> dict:
    session = SessionLocal()
    try:
        return _job_row(_owned_job(session, user, job_id))
    finally:
        session.close()


@app.post("/api/scraping/jobs/{job_id}/cancel")
def cancel_scraping_job(job_id: int, user: UserContext = Depends(_current_user)) -> dict:
    session = SessionLocal()
    try:
        job = _owned_job(session, user, job_id)
        if job.status not in {"pending", "queued"}:
            raise HTTPException(status_code=409, detail="job_not_cancellable")
        if job.rq_id:
            try:
                from rq.job import Job as RQJob
                from pipeline.queue import get_redis

                RQJob.fetch(job.rq_id, connection=get_redis()).cancel()
            except Exception as exc:
                logger.warning("Could not cancel queued job %s: %s", job.rq_id, exc)
        update_job_status(session, job.id, "cancelled", error_code="cancelled_by_user")
        session.commit()
        return _job_row(job)
    finally:
        session.close()


@app.get("/api/scraped/instagram-posts")
def list_instagram_posts(
    keyword_id: Optional[int] = None,
    page: int = 1,
    limit: int = 10,
    user: UserContext = Depends(_current_user),
) -> dict:
    page, limit = paginate(page, limit)
    session = SessionLocal()
    try:
        stmt = select(InstagramPost).where(_visible_posts(user))
        if keyword_id is not None:
            stmt = stmt.join(
                KeywordInstagramAssignment,
                KeywordInstagramAssignment.instagram_id == InstagramPost.id,
            ).where(
                KeywordInstagramAssignment.keyword_id == keyword_id,
                KeywordInstagramAssignment.user_id == user.id,
                KeywordInstagramAssignment.deleted_at.is_(None),
            )
        total = session.execute(select(func.count()).select_from(stmt.subquery())).scalar_one()
        rows = session.execute(
            stmt.order_by(desc(InstagramPost.created_at)).limit(limit).offset((page - 1) * limit)
        ).scalars().all()
        return {"posts": [_post_row(row) for row in rows], "total": int(total or 0), "page": page, "limit": limit}
    finally:
        session.close()


@app.get("/api/scraped/google-maps-places")
def list_google_maps_places(
    keyword_id: Optional[int] = None,
    page: int = 1,
    limit: int = 10,
    user: UserContext = Depends(_current_user),
) -> dict:
    page, limit = paginate(page, limit)
    session = SessionLocal()
    try:
        stmt = select(GoogleMapsPlace).where(
            GoogleMapsPlace.user_id == user.id,
            GoogleMapsPlace.deleted_at.is_(None),
        )
        if keyword_id is not None:
            stmt = stmt.join(
                KeywordGoogleMapsAssignment,
                KeywordGoogleMapsAssignment.google_maps_id == GoogleMapsPlace.id,
            ).where(
                KeywordGoogleMapsAssignment.keyword_id == keyword_id,
                KeywordGoogleMapsAssignment.deleted_at.is_(None),
            )
        total = session.execute(select(func.count()).select_from(stmt.subquery())).scalar_one()
        rows = session.execute(
            stmt.order_by(desc(GoogleMapsPlace.created_at)).limit(limit).offset((page - 1) * limit)
        ).scalars().all()
        return {"places": [_place_row(row) for row in rows], "total": int(total or 0), "page": page, "limit": limit}
    finally:
        session.close()


@app.post("/ops/cleanup-jobs")
def ops_cleanup_jobs(request: CleanupRequest, _guard: None = Depends(_require_operator)) -> dict:
    session = SessionLocal()
    try:
        marked = mark_stale_jobs(session, request.older_min)
        session.commit()
        return {"marked_failed": marked}
    finally:
        session.close()


@app.post("/ops/dispatch-pending")
def ops_dispatch_pending(request: DispatchRequest, _guard: None = Depends(_require_operator)) -> dict:
    session = SessionLocal()
    try:
        return dispatch_pending_jobs(session, request.limit)
    finally:
        session.close()


@app.post("/ops/analytics/compute")
def ops_compute_analytics(
    request: AnalyticsComputeRequest,
    _guard: None = Depends(_require_operator),
) -> dict:
    session = SessionLocal()
    try:
        if request.keyword_id is None:
            result = batch_compute_daily_analytics(session, request.period_start)
            session.commit()
            return result
        end = request.period_end or request.period_start or (_utc_now().date() - timedelta(days=1))
        start = request.period_start or end
        try:
            row = compute_keyword_analytics(session, request.keyword_id, start, end, request.period_type)
        except KeywordNotFound as exc:
            session.rollback()
            raise _not_found(exc)
        except ValueError as exc:
            session.rollback()
            raise HTTPException(status_code=400, detail=str(exc))
        session.commit()
        return {"analytics": _analytics_row(row)}
    finally:
        session.close()


@app.post("/ops/keywords/archive-old")
def ops_archive_old_keywords(request: ArchiveRequest, _guard: None = Depends(_require_operator)) -> dict:
    session = SessionLocal()
    try:
        ids = archive_old_keywords(session, days_old=request.days_old)
        session.commit()
        return {"archived": len(ids), "keyword_ids": ids}
    finally:
        session.close()
