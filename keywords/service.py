from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
import logging
from typing import Any, Iterable, Optional
from uuid import UUID

from sqlalchemy import and_, asc, desc, func, or_, select
from sqlalchemy.sql import Select

from db.models import Keyword, KeywordScrapingJob

from .schemas import BulkOperationRequest, KeywordCreate, KeywordUpdate
from .validation import (
    calculate_priority_score,
    format_keyword_stats,
    priority_from_score,
    validate_instagram_keyword,
)


logger = logging.getLogger(__name__)

DEFAULT_PAGE = 1
DEFAULT_LIMIT = 10
MAX_LIMIT = 100

SORTABLE_COLUMNS = {
    "created_at": Keyword.created_at,
    "updated_at": Keyword.updated_at,
    "keyword": Keyword.keyword,
    "priority": Keyword.priority,
    "status": Keyword.status,
    "category": Keyword.category,
    "search_volume": Keyword.search_volume,
    "competition_score": Keyword.competition_score,
}

BULK_STATUS_CHANGES = {
    "activate": "active",
    "deactivate": "inactive",
    "archive": "archived",
}


@dataclass(frozen=True)
class UserContext:
    id: UUID
    email: str


class KeywordNotFound(LookupError):
    def __init__(self, keyword_id: Any) -> None:
        super().__init__(
            f"Keyword {keyword_id} not found or you do not have permission to access it"
        )
        self.keyword_id = keyword_id


class KeywordConflict(ValueError):
    def __init__(self, keyword: str) -> None:
        super().__init__(f"Keyword '{keyword}' already exists")
        self.keyword = keyword


@dataclass
class BulkResult:
    operation: str
    requested: int
    affected: int = 0
    failed: list[dict] = field(default_factory=list)
    jobs: list[KeywordScrapingJob] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.affected > 0


def _utc_now() -> datetime:
    return datetime.now(UTC)


def paginate(page: Optional[int], limit: Optional[int]) -> tuple[int, int]:
    if page is None or page <= 0:
        page = DEFAULT_PAGE
    if limit is None or limit <= 0:
        limit = DEFAULT_LIMIT
    return page, min(limit, MAX_LIMIT)


def _owned(user: UserContext):
    return and_(Keyword.user_id == user.id, Keyword.deleted_at.is_(None))


def build_keyword_query(
    user: UserContext,
    *,
    search: Optional[str] = None,
    status: Optional[str] = None,
    category: Optional[str] = None,
    priority: Optional[int] = None,
) -> Select:
    stmt = select(Keyword).where(_owned(user))
    if search and search.strip():
        term = f"%{search.strip()}%"
        stmt = stmt.where(or_(Keyword.keyword.ilike(term), Keyword.description.ilike(term)))
    if status:
        stmt = stmt.where(Keyword.status == status)
    if category:
        stmt = stmt.where(Keyword.category == category)
    if priority is not None:
        stmt = stmt.where(Keyword.priority == priority)
    return stmt


def list_keywords(
    session,
    user: UserContext,
    *,
    page: int,
    limit: int,
    search: Optional[str] = None,
    status: Optional[str] = None,
    category: Optional[str] = None,
    priority: Optional[int] = None,
    sort_by: str = "created_at",
    sort_order: str = "desc",
) -> tuple[list[Keyword], int]:
    page, limit = paginate(page, limit)
    stmt = build_keyword_query(
        user, search=search, status=status, category=category, priority=priority
    )
    total = session.execute(
        select(func.count()).select_from(stmt.subquery())
    ).scalar_one()
    column = SORTABLE_COLUMNS.get(sort_by, Keyword.created_at)
    order = asc(column) if (sort_order or "").lower() == "asc" else desc(column)
    rows = (
        session.execute(
            stmt.order_by(order, desc(Keyword.id)).limit(limit).offset((page - 1) * limit)
        )
        .scalars()
        .all()
    )
    return list(rows), int(total or 0)


def find_owned_keyword(session, user: UserContext, keyword_id: int) -> Keyword | None:
    keyword = session.get(Keyword, keyword_id)
    if keyword is None or keyword.deleted_at is not None:
        return None
    if keyword.user_id != user.id:
        return None
    return keyword


def get_owned_keyword(session, user: UserContext, keyword_id: int) -> Keyword:
    keyword = find_owned_keyword(session, user, keyword_id)
    if keyword is None:
        raise KeywordNotFound(keyword_id)
    return keyword


def find_duplicate_keyword(
    session,
    user: UserContext,
    text: str,
    exclude_id: Optional[int] = None,
) -> Keyword | None:
    stmt = select(Keyword).where(
        _owned(user),
        func.lower(Keyword.keyword) == text.strip().lower(),
    )
    if exclude_id is not None:
        stmt = stmt.where(Keyword.id != exclude_id)
    return session.execute(stmt.limit(1)).scalars().first()


def create_keyword(session, user: UserContext, payload: KeywordCreate) -> Keyword:
    if find_duplicate_keyword(session, user, payload.keyword) is not None:
        raise KeywordConflict(payload.keyword)
    now = _utc_now()
    keyword = Keyword(
        keyword=payload.keyword,
        description=payload.description,
        category=payload.category,
        status=payload.status,
        priority=payload.priority,
        tags=payload.tags or [],
        search_volume=payload.search_volume,
        competition_score=payload.competition_score,
        performance_metrics={},
        meta=payload.metadata or {},
        user_id=user.id,
        gmail=user.email,
        created_by=user.id,
        updated_by=user.id,
        created_at=now,
        updated_at=now,
    )
    session.add(keyword)
    session.flush()
    logger.info("Created keyword %s for user %s", keyword.id, user.id)
    return keyword


def update_keyword(session, user: UserContext, payload: KeywordUpdate) -> Keyword:
    keyword = get_owned_keyword(session, user, payload.id)
    changes = payload.changes()
    new_text = changes.get("keyword")
    if new_text and new_text.lower() != keyword.keyword.lower():
        if find_duplicate_keyword(session, user, new_text, exclude_id=keyword.id) is not None:
            raise KeywordConflict(new_text)

    for name, value in changes.items():
        if name == "metadata":
            keyword.meta = value or {}
        elif name == "tags":
            keyword.tags = value or []
        elif name in {"keyword", "category", "status", "priority"} and value is None:
            continue
        else:
            setattr(keyword, name, value)

    if "performance_metrics" in changes and "priority" not in changes:
        score = calculate_priority_score(
            keyword.search_volume,
            keyword.competition_score,
            keyword.performance_metrics,
        )
        keyword.priority = priority_from_score(score)

    keyword.updated_by = user.id
    keyword.updated_at = _utc_now()
    session.add(keyword)
    return keyword


def soft_delete_keyword(session, user: UserContext, keyword_id: int) -> Keyword:
    keyword = get_owned_keyword(session, user, keyword_id)
    now = _utc_now()
    keyword.deleted_at = now
    keyword.updated_at = now
    keyword.updated_by = user.id
    session.add(keyword)
    logger.info("Soft-deleted keyword %s for user %s", keyword_id, user.id)
    return keyword


def keyword_stats(session, user: UserContext) -> dict:
    rows = session.execute(
        select(Keyword.status, Keyword.priority, Keyword.category).where(_owned(user))
    ).all()
    summary = format_keyword_stats(rows)
    categories: dict[str, int] = {}
    for row in rows:
        categories[row.category] = categories.get(row.category, 0) + 1
    since = _utc_now() - timedelta(days=7)
    recent_jobs = session.execute(
        select(func.count())
        .select_from(KeywordScrapingJob)
        .where(
            KeywordScrapingJob.user_id == user.id,
            KeywordScrapingJob.deleted_at.is_(None),
            KeywordScrapingJob.created_at >= since,
        )
    ).scalar_one()
    by_status = summary["by_status"]
    return {
        "total": summary["total"],
        "active": by_status.get("active", 0),
        "inactive": by_status.get("inactive", 0),
        "archived": by_status.get("archived", 0),
        "pending": by_status.get("pending", 0),
        "by_status": by_status,
        "by_priority": summary["by_priority"],
        "average_priority": summary["average_priority"],
        "categories": categories,
        "recent_jobs": int(recent_jobs or 0),
    }


def apply_bulk_operation(session, user: UserContext, request: BulkOperationRequest) -> BulkResult:
    """Apply one bulk operation to each id the caller owns.

    Ids that do not exist, are already deleted, or belong to another user are
    reported in ``failed`` and never touched, as are Instagram scrapes of
    keywords that are not valid hashtags. Scrape operations only create
    ``pending`` job rows here; the caller enqueues them once committed.
    """
    from pipeline.queue import create_scraping_job

    ids = list(dict.fromkeys(request.keyword_ids))
    result = BulkResult(operation=request.operation, requested=len(ids))
    now = _utc_now()
    for keyword_id in ids:
        keyword = find_owned_keyword(session, user, keyword_id)
        if keyword is None:
            result.failed.append({"id": keyword_id, "error": "keyword not found"})
            continue
        if request.operation in BULK_STATUS_CHANGES:
            keyword.status = BULK_STATUS_CHANGES[request.operation]
        elif request.operation == "delete":
            keyword.deleted_at = now
        elif request.operation == "scrape":
            job_type = request.scraping_type or "instagram"
            if job_type == "instagram":
                try:
                    validate_instagram_keyword(keyword.keyword)
                except ValueError as exc:
                    result.failed.append({"id": keyword_id, "error": str(exc)})
                    continue
            job = create_scraping_job(
                session,
                user,
                job_type=job_type,
                target=keyword.keyword,
                keyword_id=keyword.id,
                max_results=request.max_results,
                job_priority=keyword.priority,
                source="bulk",
            )
            result.jobs.append(job)
        keyword.updated_at = now
        keyword.updated_by = user.id
        session.add(keyword)
        result.affected += 1

    logger.info(
        "Bulk %s for user %s: %s/%s affected",
        request.operation,
        user.id,
        result.affected,
        result.requested,
    )
    return result


def bulk_insert_keywords(
    session,
    user: UserContext,
    payloads: Iterable[KeywordCreate],
) -> dict:
    inserted: list[Keyword] = []
    errors: list[dict] = []
    seen: set[str] = set()
    for payload in payloads:
        key = payload.keyword.lower()
        if key in seen:
            errors.append({"keyword": payload.keyword, "error": "Keyword already exists"})
            continue
        seen.add(key)
        try:
            inserted.append(create_keyword(session, user, payload))
        except KeywordConflict:
            errors.append({"keyword": payload.keyword, "error": "Keyword already exists"})
    return {
        "inserted": len(inserted),
        "failed": len(errors),
        "errors": errors,
        "keywords": inserted,
    }


def archive_old_keywords(
    session,
    *,
    days_old: int = 365,
    user: Optional[UserContext] = None,
) -> list[int]:
    cutoff = _utc_now() - timedelta(days=days_old)
    stmt = select(Keyword).where(
        Keyword.status == "active",
        Keyword.deleted_at.is_(None),
        Keyword.created_at < cutoff,
    )
    if user is not None:
        stmt = stmt.where(Keyword.user_id == user.id)
    rows = session.execute(stmt).scalars().all()
    now = _utc_now()
    for keyword in rows:
        keyword.status = "archived"
        keyword.updated_at = now
        session.add(keyword)
    logger.info("Archived %s keywords older than %s days", len(rows), days_old)
    return [keyword.id for keyword in rows]
