from __future__ import annotations

import logging
import os
from typing import Any
from uuid import uuid4

from redis import Redis
from rq import Queue
from sqlalchemy import select

from config import env_int
from db.models import KeywordScrapingJob
from pipeline.jobs import JOB_FUNCTIONS, rq_on_failure, rq_on_success, update_job_status


logger = logging.getLogger(__name__)


class QueueUnavailable(RuntimeError):
    pass


def _redis_url() -> str:
    return os.getenv("REDIS_URL", "redis://localhost:6379/0")


def _queue_name() -> str:
    return os.getenv("RQ_QUEUE", "scraping")


def _timeout_seconds() -> int:
    return env_int("RQ_JOB_TIMEOUT", 300)


def get_redis() -> Redis:
    return Redis.from_url(_redis_url())


def get_queue(name: str | None = None) -> Queue:
    return Queue(name or _queue_name(), connection=get_redis())


def create_scraping_job(
    session,
    user,
    *,
    job_type: str,
    target: str,
    keyword_id: int | None = None,
    max_results: int = 1,
    job_priority: int = 5,
    source: str = "api",
    coordinates: dict[str, float] | None = None,
) -> KeywordScrapingJob:
    job_config: dict[str, Any] = {
        "target": target,
        "max_results": max_results,
        "source": source,
    }
    if coordinates:
        job_config["coordinates"] = coordinates
    job = KeywordScrapingJob(
        keyword_id=keyword_id,
        job_type=job_type,
        job_priority=max(1, min(10, job_priority)),
        status="pending",
        results_count=0,
        expected_results=max_results,
        retry_count=0,
        max_retries=3,
        job_config=job_config,
        job_results={},
        user_id=user.id,
        gmail=user.email,
    )
    session.add(job)
    session.flush()
    return job


def _mark_queued(session, job: KeywordScrapingJob) -> str:
    if job.job_type not in JOB_FUNCTIONS:
        raise ValueError(f"Unsupported job type: {job.job_type}")
    job.rq_id = str(uuid4())
    update_job_status(session, job.id, "queued")
    return job.rq_id


def _push(queue: Queue, job_id: int, job_type: str, rq_id: str) -> None:
    queue.enqueue(
        JOB_FUNCTIONS[job_type],
        job_id,
        job_id=rq_id,
        job_timeout=_timeout_seconds(),
        on_failure=rq_on_failure,
        on_success=rq_on_success,
    )


def _mark_unavailable(session, job_id: int, exc: Exception) -> None:
    logger.error("Failed to enqueue scraping job %s: %s", job_id, exc)
    update_job_status(
        session,
        job_id,
        "failed",
        error_message=f"queue unavailable: {exc}",
        error_code="queue_unavailable",
    )


def enqueue_scraping_job(session, job: KeywordScrapingJob, queue: Queue | None = None) -> str:
    """Mark a job row ``queued``, commit it, then push it onto the queue.

    The row is committed before the push so a fast worker never has its
    ``running``/``completed`` status overwritten. On a queue error the row is
    marked ``failed`` with ``queue_unavailable`` and ``QueueUnavailable`` is
    raised.
    """
    rq_id = _mark_queued(session, job)
    job_id, job_type = job.id, job.job_type
    session.commit()
    try:
        _push(queue or get_queue(), job_id, job_type, rq_id)
    except Exception as exc:
        _mark_unavailable(session, job_id, exc)
        session.commit()
        raise QueueUnavailable(str(exc)) from exc
    logger.info("Enqueued %s job %s as %s", job_type, job_id, rq_id)
    return rq_id


def next_pending_jobs(session, limit: int = 10) -> list[KeywordScrapingJob]:
    """Claim pending rows, highest priority (lowest number) and oldest first."""
    stmt = (
        select(KeywordScrapingJob)
        .where(
            KeywordScrapingJob.status == "pending",
            KeywordScrapingJob.deleted_at.is_(None),
        )
        .order_by(KeywordScrapingJob.job_priority.asc(), KeywordScrapingJob.created_at.asc())
        .limit(limit)
        .with_for_update(skip_locked=True)
    )
    return list(session.execute(stmt).scalars().all())


def dispatch_pending_jobs(session, limit: int = 10) -> dict:
    """Claim pending rows, commit them as ``queued``, then push each one."""
    jobs = next_pending_jobs(session, limit)
    if not jobs:
        return {"dispatched": 0, "failed": 0, "job_ids": []}
    queue = get_queue()
    claimed = [(job.id, job.job_type, _mark_queued(session, job)) for job in jobs]
    session.commit()

    dispatched: list[int] = []
    failed = 0
    for job_id, job_type, rq_id in claimed:
        try:
            _push(queue, job_id, job_type, rq_id)
            dispatched.append(job_id)
        except Exception as exc:
            _mark_unavailable(session, job_id, exc)
            failed += 1
    if failed:
        session.commit()
    return {"dispatched": len(dispatched), "failed": failed, "job_ids": dispatched}
