#!/usr/bin/env python3
from __future__ import annotations

from argparse import ArgumentParser
from uuid import UUID

from db.session import SessionLocal
from keywords import UserContext
from pipeline.queue import create_scraping_job, enqueue_scraping_job


def main() -> None:
    parser = ArgumentParser(description="Create and enqueue a scraping job")
    parser.add_argument("target", help="Hashtag, Instagram URL or Google Maps search query")
    parser.add_argument("--type", choices=["instagram", "google_maps"], default="instagram")
    parser.add_argument("--user-id", type=UUID, required=True)
    parser.add_argument("--user-email", required=True)
    parser.add_argument("--keyword-id", type=int, default=None)
    parser.add_argument("--max-results", type=int, default=1)
    parser.add_argument("--priority", type=int, default=5, help="1 = highest, 10 = lowest")
    parser.add_argument("--lat", type=float, default=None)
    parser.add_argument("--lng", type=float, default=None)
    args = parser.parse_args()

    coordinates = None
    if args.lat is not None and args.lng is not None:
        coordinates = {"lat": args.lat, "lng": args.lng}

    session = SessionLocal()
    try:
        job = create_scraping_job(
            session,
            UserContext(id=args.user_id, email=args.user_email),
            job_type=args.type,
            target=args.target,
            keyword_id=args.keyword_id,
            max_results=max(1, args.max_results),
            job_priority=args.priority,
            source="script",
            coordinates=coordinates,
        )
        session.commit()
        rq_id = enqueue_scraping_job(session, job)
        print("[enqueue] job_id:", job.id)
        print("[enqueue] rq_id:", rq_id)
    finally:
        session.close()


if __name__ == "__main__":
    main()
