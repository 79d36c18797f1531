#!/usr/bin/env python3
from __future__ import annotations

from argparse import ArgumentParser

from db.session import SessionLocal
from keywords import archive_old_keywords


def main() -> None:
    parser = ArgumentParser(description="Archive keywords not updated for N days")
    parser.add_argument("--days-old", type=int, default=365)
    parser.add_argument("--dry-run", action="store_true")
    args = parser.parse_args()

    session = SessionLocal()
    try:
        ids = archive_old_keywords(session, days_old=args.days_old)
        if args.dry_run:
            session.rollback()
            print(f"[archive] would archive {len(ids)} keyword(s)")
            return
        session.commit()
        print(f"[archive] archived {len(ids)} keyword(s)")
    finally:
        session.close()


if __name__ == "__main__":
    main()
