"""Filesystem blob store.

Layout: ``<root>/<key[:2]>/<key>`` with in-flight uploads under
``<root>/.incoming/``. A finished upload is hard-linked into place, which
fails instead of overwriting if the key somehow exists, and then the
temporary name is unlinked. Readers therefore never see a partial blob.
"""

import errno
import logging
import os
import shutil
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import BinaryIO, Iterator, Optional

from ..exceptions import BlobNotFoundError, BlobStoreIOError, DriveException, StoreFullError
from .base import CHUNK_SIZE, BlobInfo, BlobStore, BoundedReader, generate_key, is_valid_key, require_valid_key

logger = logging.getLogger(__name__)

_INCOMING_DIR = ".incoming"
_MAX_KEY_ATTEMPTS = 5
_FULL_ERRNOS = frozenset({errno.ENOSPC, getattr(errno, "EDQUOT", errno.ENOSPC)})


def _translate_os_error(message: str, error: OSError) -> DriveException:
    if error.errno in _FULL_ERRNOS:
        return StoreFullError(f"{message}: {error.strerror}")
    return BlobStoreIOError(message, original_error=error)


class LocalBlobStore(BlobStore):
    """Blob store rooted at a local directory."""

    def __init__(self, root: Path):
        self.root = Path(root).resolve()
        self._incoming = self.root / _INCOMING_DIR
        try:
            self._incoming.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise _translate_os_error(f"Cannot create blob root {self.root}", e) from e
        logger.info("Local blob store ready", extra={"blob_root": str(self.root)})

    def _path_for(self, storage_key: str) -> Path:
        return self.root / storage_key[:2] / storage_key

    def put(self, stream: BinaryIO, max_bytes: Optional[int] = None) -> str:
        reader = BoundedReader(stream, max_bytes)
        try:
            fd, tmp_name = tempfile.mkstemp(dir=self._incoming)
        except OSError as e:
            raise _translate_os_error("Failed to start blob upload", e) from e
        tmp_path = Path(tmp_name)
        try:
            with os.fdopen(fd, "wb") as out:
                shutil.copyfileobj(reader, out, CHUNK_SIZE)
                out.flush()
                os.fsync(out.fileno())
            storage_key = self._link_into_place(tmp_path)
        except OSError as e:
            raise _translate_os_error("Failed to write blob", e) from e
        finally:
            tmp_path.unlink(missing_ok=True)

        logger.debug("Stored blob", extra={"storage_key": storage_key, "size": reader.bytes_read})
        return storage_key

    def _link_into_place(self, tmp_path: Path) -> str:
        for _ in range(_MAX_KEY_ATTEMPTS):
            storage_key = generate_key()
            target = self._path_for(storage_key)
            target.parent.mkdir(exist_ok=True)
            try:
                os.link(tmp_path, target)
            except FileExistsError:
                logger.warning("Storage key collision, regenerating", extra={"storage_key": storage_key})
                continue
            return storage_key
        raise BlobStoreIOError("Could not allocate a unique storage key")

    def open(self, storage_key: str) -> BinaryIO:
        path = self._path_for(require_valid_key(storage_key))
        try:
            return path.open("rb")
        except FileNotFoundError as e:
            raise BlobNotFoundError(storage_key) from e
        except OSError as e:
            raise _translate_os_error(f"Failed to open blob {storage_key}", e) from e

    def remove(self, storage_key: str) -> None:
        if not is_valid_key(storage_key):
            logger.warning("Ignoring removal of malformed storage key", extra={"storage_key": storage_key})
            return
        path = self._path_for(storage_key)
        try:
            path.unlink()
        except FileNotFoundError:
            logger.debug("Blob already absent", extra={"storage_key": storage_key})
        except OSError as e:
            raise _translate_os_error(f"Failed to remove blob {storage_key}", e) from e

    def iter_blobs(self) -> Iterator[BlobInfo]:
        for shard in self.root.iterdir():
            if not shard.is_dir() or shard.name == _INCOMING_DIR:
                continue
            for path in shard.iterdir():
                if not is_valid_key(path.name):
                    continue
                try:
                    stat = path.stat()
                except FileNotFoundError:
                    # Removed while listing.
                    continue
                yield BlobInfo(
                    key=path.name,
                    size=stat.st_size,
                    modified_at=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
                )
