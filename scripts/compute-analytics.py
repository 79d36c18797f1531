#!/usr/bin/env python3
from __future__ import annotations

from argparse import ArgumentParser
from datetime import date

from analytics import batch_compute_daily_analytics, compute_keyword_analytics
from config import configure_logging
from db.session import SessionLocal


def main() -> None:
    parser = ArgumentParser(description="Compute keyword analytics")
    parser.add_argument("--day", type=date.fromisoformat, default=None, help="Day for the batch run (YYYY-MM-DD)")
    parser.add_argument("--keyword-id", type=int, default=None)
    parser.add_argument("--start", type=date.fromisoformat, default=None)
    parser.add_argument("--end", type=date.fromisoformat, default=None)
    parser.add_argument(
        "--period-type",
        choices=["daily", "weekly", "monthly", "quarterly"],
        default="daily",
    )
    args = parser.parse_args()

    configure_logging()
    session = SessionLocal()
    try:
        if args.keyword_id is None:
            result = batch_compute_daily_analytics(session, args.day)
            session.commit()
            print(f"[analytics] processed={result['processed']} day={result['day']} elapsed_s={result['elapsed_s']}")
            return
        if args.start is None or args.end is None:
            parser.error("--keyword-id requires --start and --end")
        row = compute_keyword_analytics(session, args.keyword_id, args.start, args.end, args.period_type)
        session.commit()
        print(
            f"[analytics] keyword_id={row.keyword_id} period={row.period_start}..{row.period_end} "
            f"posts={row.instagram_posts_count} places={row.google_maps_places_count} "
            f"jobs={row.total_scraping_jobs}"
        )
    finally:
        session.close()


if __name__ == "__main__":
    main()
