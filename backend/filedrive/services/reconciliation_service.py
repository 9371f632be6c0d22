"""Service for reclaiming orphaned blobs.

A blob is orphaned when no FILE node references its storage key. That
happens when a process dies between writing the blob and inserting its
row, or when post-commit removal after a delete fails. Neither path loses
metadata, so sweeping is purely a space reclamation job.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from sqlalchemy.orm import Session

from ..repositories.node_repository import NodeRepository
from ..storage.base import BlobInfo, BlobStore

logger = logging.getLogger(__name__)

# Storage keys looked up per database query.
LOOKUP_BATCH_SIZE = 500


@dataclass
class SweepResult:
    """Counts from one reconciliation pass."""
    scanned: int = 0
    orphaned: int = 0
    removed: int = 0
    failed: int = 0
    orphan_keys: List[str] = field(default_factory=list)


class BlobReconciler:
    """
    Finds blobs that no node references and removes them.

    Blobs younger than the grace period are skipped: an upload in progress
    has its blob written before its row is committed, and must not be
    swept in between.
    """

    def __init__(self, db: Session, blob_store: BlobStore):
        self.db = db
        self.repo = NodeRepository(db)
        self.blobs = blob_store

    def sweep(
        self,
        grace_period: timedelta,
        dry_run: bool = False,
        now: Optional[datetime] = None,
    ) -> SweepResult:
        """
        Scan the blob store once and remove unreferenced blobs.

        Args:
            grace_period: Minimum age before a blob may be swept
            dry_run: Report orphans without removing them
            now: Reference time (defaults to the current UTC time)

        Returns:
            SweepResult with scanned/orphaned/removed/failed counts
        """
        cutoff = (now or datetime.now(timezone.utc)) - grace_period
        result = SweepResult()
        batch: List[BlobInfo] = []

        for info in self.blobs.iter_blobs():
            result.scanned += 1
            if info.modified_at > cutoff:
                continue
            batch.append(info)
            if len(batch) >= LOOKUP_BATCH_SIZE:
                self._process_batch(batch, dry_run, result)
                batch = []
        if batch:
            self._process_batch(batch, dry_run, result)

        logger.info(
            "Blob sweep finished",
            extra={
                "scanned": result.scanned,
                "orphaned": result.orphaned,
                "removed": result.removed,
                "failed": result.failed,
                "dry_run": dry_run,
            },
        )
        return result

    def _process_batch(self, batch: List[BlobInfo], dry_run: bool, result: SweepResult) -> None:
        try:
            referenced = self.repo.find_referenced_keys(info.key for info in batch)
            # End the read transaction so writers are not held up between batches.
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        for info in batch:
            if info.key in referenced:
                continue
            result.orphaned += 1
            result.orphan_keys.append(info.key)
            if dry_run:
                logger.info("Orphaned blob (dry run)", extra={"storage_key": info.key, "size": info.size})
                continue
            try:
                self.blobs.remove(info.key)
                result.removed += 1
                logger.info("Removed orphaned blob", extra={"storage_key": info.key, "size": info.size})
            except Exception:
                result.failed += 1
                logger.exception("Failed to remove orphaned blob", extra={"storage_key": info.key})
