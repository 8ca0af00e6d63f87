"""
Standalone screening worker.

    python -m scripts.run_worker            # poll forever
    python -m scripts.run_worker --once     # drain due tasks and exit
"""
import argparse
import logging
import signal
import threading

from screener.core.config import settings
from screener.core.logging import setup_logging
from screener.database import SessionLocal, init_db
from screener.services.screening import build_screening_services

logger = logging.getLogger("scripts.run_worker")


def main():
    parser = argparse.ArgumentParser(description="Run screening workers")
    parser.add_argument("--once", action="store_true", help="process due tasks, then exit")
    parser.add_argument("--concurrency", type=int, default=settings.screening.worker_concurrency)
    args = parser.parse_args()

    setup_logging()
    init_db()
    services = build_screening_services(SessionLocal, concurrency=args.concurrency)
    pool = services.worker_pool

    if args.once:
        handled = pool.run_pending()
        print(f"Processed {handled} task(s). Queue: {services.queue.stats()}")
        return

    stopped = threading.Event()
    signal.signal(signal.SIGINT, lambda *_: stopped.set())
    signal.signal(signal.SIGTERM, lambda *_: stopped.set())

    pool.start()
    logger.info(f"Worker running with concurrency {args.concurrency}; Ctrl+C to stop")
    stopped.wait()
    pool.stop(timeout=settings.screening.lock_seconds)


if __name__ == "__main__":
    main()
