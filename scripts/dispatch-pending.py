#!/usr/bin/env python3
from __future__ import annotations

from argparse import ArgumentParser

from db.session import SessionLocal
from pipeline.queue import dispatch_pending_jobs


def main() -> None:
    parser = ArgumentParser(description="Enqueue pending scraping jobs by priority")
    parser.add_argument("--limit", type=int, default=10)
    args = parser.parse_args()

    session = SessionLocal()
    try:
        result = dispatch_pending_jobs(session, args.limit)
        print(f"[dispatch] dispatched={result['dispatched']} failed={result['failed']}")
        for job_id in result["job_ids"]:
            print(f"[dispatch] job_id={job_id}")
    finally:
        session.close()


if __name__ == "__main__":
    main()
