"""Blob store contract shared by all backends.

A blob store knows nothing about owners or folders: it maps opaque storage
keys to bytes. Keys are generated by the store itself on ``put`` and are
never reused or overwritten.
"""

import re
import secrets
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import BinaryIO, Iterator, Optional

from ..exceptions import BlobNotFoundError, FileTooLargeError

# Bytes per read when streaming into the store.
CHUNK_SIZE = 64 * 1024

_KEY_PATTERN = re.compile(r"^[0-9a-f]{32}$")


@dataclass(frozen=True)
class BlobInfo:
    """Listing entry used by the reconciliation sweep."""
    key: str
    size: int
    modified_at: datetime


def generate_key() -> str:
    """Fresh random storage key (128 bits, lowercase hex)."""
    return secrets.token_hex(16)


def is_valid_key(storage_key: str) -> bool:
    return bool(_KEY_PATTERN.match(storage_key or ""))


def require_valid_key(storage_key: str) -> str:
    """Reject anything that is not a key this store could have generated.

    Keeps caller-controlled strings away from filesystem paths and object keys.
    """
    if not is_valid_key(storage_key):
        raise BlobNotFoundError(storage_key)
    return storage_key


class BoundedReader:
    """Wraps a stream and raises FileTooLargeError past ``max_bytes``."""

    def __init__(self, stream: BinaryIO, max_bytes: Optional[int]):
        self._stream = stream
        self._max_bytes = max_bytes
        self.bytes_read = 0

    def read(self, size: int = -1) -> bytes:
        chunk = self._stream.read(size)
        self.bytes_read += len(chunk)
        if self._max_bytes is not None and self.bytes_read > self._max_bytes:
            raise FileTooLargeError(self._max_bytes)
        return chunk


class BlobStore(ABC):
    """Durable byte storage addressed by opaque keys."""

    @abstractmethod
    def put(self, stream: BinaryIO, max_bytes: Optional[int] = None) -> str:
        """Write ``stream`` under a fresh key and return the key.

        The key becomes visible only once every byte is durable; on any
        failure no key is left behind.

        Raises:
            FileTooLargeError: stream is longer than ``max_bytes``.
            StoreFullError: storage has no space left.
            BlobStoreIOError: any other storage failure.
        """

    @abstractmethod
    def open(self, storage_key: str) -> BinaryIO:
        """Readable stream over the blob. Raises BlobNotFoundError."""

    @abstractmethod
    def remove(self, storage_key: str) -> None:
        """Delete the blob. Removing a missing key is not an error."""

    @abstractmethod
    def iter_blobs(self) -> Iterator[BlobInfo]:
        """Every stored blob, in no particular order."""

    def exists(self, storage_key: str) -> bool:
        try:
            stream = self.open(storage_key)
        except BlobNotFoundError:
            return False
        stream.close()
        return True

    def close(self) -> None:
        """Release backend resources at process shutdown."""
