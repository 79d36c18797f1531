#!/usr/bin/env python3
from __future__ import annotations

from argparse import ArgumentParser

from sqlalchemy import desc, func, select

from db.models import KeywordScrapingJob
from db.session import SessionLocal


def main() -> None:
    parser = ArgumentParser(description="Show recent scraping job statuses")
    parser.add_argument("--limit", type=int, default=10)
    parser.add_argument("--summary", action="store_true")
    parser.add_argument("--failed", action="store_true", help="Show failed jobs with error details")
    parser.add_argument("--type", choices=["instagram", "google_maps"], default=None)
    args = parser.parse_args()

    session = SessionLocal()
    try:
        if args.summary:
            stmt = select(KeywordScrapingJob.job_type, KeywordScrapingJob.status, func.count()).group_by(
                KeywordScrapingJob.job_type, KeywordScrapingJob.status
            )
            for job_type, status, count in session.execute(stmt).all():
                print(f"[summary] {job_type} {status}: {count}")
            return
        stmt = select(KeywordScrapingJob).where(KeywordScrapingJob.deleted_at.is_(None))
        if args.failed:
            stmt = stmt.where(KeywordScrapingJob.status == "failed")
        if args.type:
            stmt = stmt.where(KeywordScrapingJob.job_type == args.type)
        stmt = stmt.order_by(desc(KeywordScrapingJob.created_at)).limit(args.limit)
        for job in session.execute(stmt).scalars().all():
            print(
                f"[job] id={job.id} type={job.job_type} status={job.status} priority={job.job_priority} "
                f"results={job.results_count} rq_id={job.rq_id}"
            )
            if args.failed and job.error_code:
                print(f"[job] error={job.error_code}: {job.error_message} retries={job.retry_count}")
    finally:
        session.close()


if __name__ == "__main__":
    main()
