#!/usr/bin/env python3
from __future__ import annotations

from argparse import ArgumentParser

from db.session import SessionLocal
from pipeline.jobs import mark_stale_jobs


def main() -> None:
    parser = ArgumentParser(description="Mark stale running scraping jobs as failed")
    parser.add_argument("--older-min", type=int, default=30)
    args = parser.parse_args()

    session = SessionLocal()
    try:
        marked = mark_stale_jobs(session, args.older_min)
        session.commit()
        print(f"[cleanup] marked {marked} job(s) as failed")
    finally:
        session.close()


if __name__ == "__main__":
    main()
