"""Custom exception hierarchy for filedrive."""

from enum import Enum
from typing import Optional, Dict, Any


class ErrorCode(str, Enum):
    """Standardized error codes for API responses."""

    # Tree errors
    NODE_NOT_FOUND = "NODE_NOT_FOUND"
    INVALID_PARENT = "INVALID_PARENT"
    INVALID_NAME = "INVALID_NAME"
    CYCLE = "CYCLE"

    # Blob store errors
    BLOB_NOT_FOUND = "BLOB_NOT_FOUND"
    BLOB_IO_ERROR = "BLOB_IO_ERROR"
    STORE_FULL = "STORE_FULL"
    FILE_TOO_LARGE = "FILE_TOO_LARGE"

    # Concurrency errors
    TRANSACTION_CONFLICT = "TRANSACTION_CONFLICT"
    CANCELLED = "CANCELLED"

    # Identity
    UNAUTHORIZED = "UNAUTHORIZED"

    # Database errors
    DATABASE_ERROR = "DATABASE_ERROR"


class DriveException(Exception):
    """
    Base exception for all filedrive errors.

    Provides structured error responses with:
    - Human-readable message
    - Machine-readable error code
    - HTTP status code
    - Optional additional details
    """

    def __init__(
        self,
        message: str,
        error_code: ErrorCode,
        status_code: int = 500,
        details: Optional[Dict[str, Any]] = None
    ):
        """
        Initialize exception.

        Args:
            message: Human-readable error message
            error_code: Machine-readable error code
            status_code: HTTP status code to return
            details: Optional additional context/details
        """
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert exception to dictionary for JSON response.

        Returns:
            Dictionary with error, message, and details fields
        """
        return {
            "error": self.error_code.value,
            "message": self.message,
            "details": self.details
        }


class NodeNotFoundError(DriveException):
    """Node is absent or owned by someone else.

    The two cases are deliberately indistinguishable so that callers cannot
    probe for the existence of other owners' nodes.
    """

    def __init__(self, node_id: str):
        super().__init__(
            f"Node not found: {node_id}",
            ErrorCode.NODE_NOT_FOUND,
            status_code=404,
            details={"node_id": node_id}
        )


class InvalidParentError(DriveException):
    """Parent is missing, not a folder, or belongs to another owner."""

    def __init__(self, parent_id: str):
        super().__init__(
            f"Invalid parent folder: {parent_id}",
            ErrorCode.INVALID_PARENT,
            status_code=400,
            details={"parent_id": parent_id}
        )


class InvalidNameError(DriveException):
    """Node name is empty, blank, or too long."""

    def __init__(self, message: str = "Name cannot be empty"):
        super().__init__(
            message,
            ErrorCode.INVALID_NAME,
            status_code=400,
            details={"field": "name"}
        )


class CycleError(DriveException):
    """Moving the node would make it its own ancestor."""

    def __init__(self, node_id: str, new_parent_id: str):
        super().__init__(
            f"Cannot move {node_id} into its own subtree ({new_parent_id})",
            ErrorCode.CYCLE,
            status_code=409,
            details={"node_id": node_id, "new_parent_id": new_parent_id}
        )


class BlobNotFoundError(DriveException):
    """No bytes stored under the given storage key."""

    def __init__(self, storage_key: str):
        super().__init__(
            f"Blob not found: {storage_key}",
            ErrorCode.BLOB_NOT_FOUND,
            status_code=404,
            details={"storage_key": storage_key}
        )


class BlobStoreIOError(DriveException):
    """Underlying blob storage failed."""

    def __init__(self, message: str, original_error: Optional[Exception] = None):
        details = {}
        if original_error:
            details["original_error"] = str(original_error)

        super().__init__(
            message,
            ErrorCode.BLOB_IO_ERROR,
            status_code=502,
            details=details
        )


class StoreFullError(DriveException):
    """Blob storage has no space left."""

    def __init__(self, message: str = "Blob store is full"):
        super().__init__(
            message,
            ErrorCode.STORE_FULL,
            status_code=507,
        )


class FileTooLargeError(DriveException):
    """Upload exceeded the configured size cap."""

    def __init__(self, max_bytes: int):
        super().__init__(
            f"File exceeds the maximum upload size of {max_bytes} bytes",
            ErrorCode.FILE_TOO_LARGE,
            status_code=413,
            details={"max_bytes": max_bytes}
        )


class TransactionConflictError(DriveException):
    """Concurrent writers collided. The whole operation may be retried."""

    def __init__(self, message: str = "Concurrent modification, retry the operation"):
        super().__init__(
            message,
            ErrorCode.TRANSACTION_CONFLICT,
            status_code=409,
            details={"retryable": True}
        )


class OperationCancelledError(DriveException):
    """Operation was cancelled before commit; nothing was changed."""

    def __init__(self, node_id: str):
        super().__init__(
            f"Operation cancelled for node: {node_id}",
            ErrorCode.CANCELLED,
            status_code=409,
            details={"node_id": node_id}
        )


class AuthenticationError(DriveException):
    """Request carries no owner identity."""

    def __init__(self, message: str = "Missing owner identity"):
        super().__init__(
            message,
            ErrorCode.UNAUTHORIZED,
            status_code=401,
        )


class DatabaseError(DriveException):
    """Database operation failed."""

    def __init__(self, message: str, original_error: Optional[Exception] = None):
        details = {}
        if original_error:
            details["original_error"] = str(original_error)

        super().__init__(
            message,
            ErrorCode.DATABASE_ERROR,
            status_code=500,
            details=details
        )
