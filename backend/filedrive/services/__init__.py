"""Business logic services."""

from .reconciliation_service import BlobReconciler, SweepResult
from .tree_service import DeleteResult, TreeService

__all__ = ["BlobReconciler", "SweepResult", "DeleteResult", "TreeService"]
