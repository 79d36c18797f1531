#!/usr/bin/env python3
from __future__ import annotations

from argparse import ArgumentParser
import os

from rq import SimpleWorker, Worker

from config import configure_logging, env_flag
from db.session import engine
from pipeline.queue import get_queue, get_redis


def main() -> None:
    parser = ArgumentParser(description="Start RQ scraping worker")
    parser.add_argument("--queue", default=os.getenv("RQ_QUEUE", "scraping"))
    parser.add_argument("--burst", action="store_true", help="Process queued jobs and exit")
    args = parser.parse_args()

    configure_logging()
    if hasattr(os, "register_at_fork"):
        os.register_at_fork(after_in_child=lambda: engine.dispose())

    queue = get_queue(args.queue)
    worker_cls = SimpleWorker if env_flag("RQ_SIMPLE_WORKER", True) else Worker
    worker = worker_cls([queue], connection=get_redis())
    print(f"[worker] listening on queue={args.queue} burst={args.burst}")
    worker.work(with_scheduler=False, burst=args.burst)


if __name__ == "__main__":
    main()
