"""
Background worker that reclaims orphaned blobs.

Runs a reconciliation sweep every RECONCILE_INTERVAL_SECONDS. Blobs newer
than RECONCILE_GRACE_SECONDS are never touched, so an upload whose row has
not been committed yet is safe.

Usage:
    python -m filedrive.worker            # loop forever
    python -m filedrive.worker --once     # single sweep, then exit
    python -m filedrive.worker --dry-run  # report orphans, remove nothing
"""

import argparse
import logging
import time
from datetime import timedelta
from typing import List, Optional

from .core.config import settings
from .core.logging_config import setup_logging
from .database import SessionLocal, init_db
from .services.reconciliation_service import BlobReconciler, SweepResult
from .storage import build_blob_store
from .storage.base import BlobStore

logger = logging.getLogger("filedrive.worker")


def run_sweep(blob_store: BlobStore, grace_seconds: int, dry_run: bool = False) -> SweepResult:
    """Run one sweep in its own database session."""
    db = SessionLocal()
    try:
        return BlobReconciler(db, blob_store).sweep(timedelta(seconds=grace_seconds), dry_run=dry_run)
    finally:
        db.close()


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="filedrive.worker", description="Reclaim orphaned blobs")
    parser.add_argument("--once", action="store_true", help="run a single sweep and exit")
    parser.add_argument("--dry-run", action="store_true", help="report orphans without removing them")
    parser.add_argument(
        "--interval",
        type=int,
        default=settings.reconcile_interval_seconds,
        help="seconds between sweeps (default: %(default)s)",
    )
    parser.add_argument(
        "--grace",
        type=int,
        default=settings.reconcile_grace_seconds,
        help="minimum blob age in seconds before it may be swept (default: %(default)s)",
    )
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    """Sweep once or forever. Returns a process exit code."""
    args = parse_args(argv)
    setup_logging(log_level=settings.log_level, log_format=settings.log_format)
    init_db()
    blob_store = build_blob_store(settings)

    logger.info(
        "Worker started",
        extra={"interval_seconds": args.interval, "grace_seconds": args.grace, "dry_run": args.dry_run},
    )
    try:
        if args.once:
            result = run_sweep(blob_store, args.grace, args.dry_run)
            return 1 if result.failed else 0

        while True:
            try:
                run_sweep(blob_store, args.grace, args.dry_run)
            except Exception:
                logger.exception("Sweep failed, retrying next interval")
            time.sleep(args.interval)
    except KeyboardInterrupt:
        logger.info("Worker shutting down")
        return 0
    finally:
        blob_store.close()


if __name__ == "__main__":
    raise SystemExit(main())
