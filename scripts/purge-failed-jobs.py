#!/usr/bin/env python3
from __future__ import annotations

from argparse import ArgumentParser
from datetime import datetime, timedelta, timezone

from sqlalchemy import select, update

from db.models import KeywordScrapingJob
from db.session import SessionLocal


def main() -> None:
    parser = ArgumentParser(description="Soft-delete failed scraping jobs older than N days")
    parser.add_argument("--older-days", type=int, default=30)
    args = parser.parse_args()

    now = datetime.now(timezone.utc)
    cutoff = now - timedelta(days=args.older_days)
    session = SessionLocal()
    try:
        stmt = select(KeywordScrapingJob.id).where(
            KeywordScrapingJob.status == "failed",
            KeywordScrapingJob.updated_at < cutoff,
            KeywordScrapingJob.deleted_at.is_(None),
        )
        ids = [row[0] for row in session.execute(stmt).all()]
        if not ids:
            print("[purge] removed 0 job(s)")
            return
        session.execute(
            update(KeywordScrapingJob).where(KeywordScrapingJob.id.in_(ids)).values(deleted_at=now)
        )
        session.commit()
        print(f"[purge] removed {len(ids)} job(s)")
    finally:
        session.close()


if __name__ == "__main__":
    main()
