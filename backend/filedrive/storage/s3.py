"""S3-compatible blob store (AWS S3, MinIO, Cloudflare R2) built on boto3."""

import logging
import shutil
import tempfile
from typing import Any, BinaryIO, Iterator, Optional

from boto3.exceptions import S3UploadFailedError
from botocore.exceptions import BotoCoreError, ClientError

from ..exceptions import BlobNotFoundError, BlobStoreIOError
from .base import CHUNK_SIZE, BlobInfo, BlobStore, BoundedReader, generate_key, is_valid_key, require_valid_key

logger = logging.getLogger(__name__)

_NOT_FOUND_CODES = frozenset({"404", "NoSuchKey", "NotFound"})
_MAX_KEY_ATTEMPTS = 5
# Uploads up to this size are buffered in memory before being sent.
_SPOOL_MAX_MEMORY = 8 * 1024 * 1024


def _is_not_found(error: ClientError) -> bool:
    return error.response.get("Error", {}).get("Code") in _NOT_FOUND_CODES


class S3BlobStore(BlobStore):
    """Blob store backed by one bucket and a key prefix."""

    def __init__(self, client: Any, bucket: str, prefix: str = ""):
        self.client = client
        self.bucket = bucket
        self.prefix = prefix

    def _object_key(self, storage_key: str) -> str:
        return f"{self.prefix}{storage_key}"

    def put(self, stream: BinaryIO, max_bytes: Optional[int] = None) -> str:
        # Buffer first so an oversized or failing source stream aborts before
        # anything reaches the bucket.
        with tempfile.SpooledTemporaryFile(max_size=_SPOOL_MAX_MEMORY) as spool:
            try:
                shutil.copyfileobj(BoundedReader(stream, max_bytes), spool, CHUNK_SIZE)
            except OSError as e:
                logger.exception("Failed to buffer upload stream")
                raise BlobStoreIOError("Failed to read upload stream", original_error=e) from e
            spool.seek(0)

            storage_key = self._allocate_key()
            object_key = self._object_key(storage_key)
            try:
                logger.info("Uploading blob to bucket", extra={"bucket": self.bucket, "storage_key": storage_key})
                self.client.upload_fileobj(spool, self.bucket, object_key)
            except (BotoCoreError, ClientError, S3UploadFailedError) as e:
                logger.exception("Failed to upload blob", extra={"storage_key": storage_key})
                raise BlobStoreIOError("Failed to write blob", original_error=e) from e
        return storage_key

    def _allocate_key(self) -> str:
        for _ in range(_MAX_KEY_ATTEMPTS):
            storage_key = generate_key()
            try:
                self.client.head_object(Bucket=self.bucket, Key=self._object_key(storage_key))
            except ClientError as e:
                if _is_not_found(e):
                    return storage_key
                raise BlobStoreIOError("Failed to check storage key", original_error=e) from e
            except BotoCoreError as e:
                raise BlobStoreIOError("Failed to check storage key", original_error=e) from e
            logger.warning("Storage key collision, regenerating", extra={"storage_key": storage_key})
        raise BlobStoreIOError("Could not allocate a unique storage key")

    def open(self, storage_key: str) -> BinaryIO:
        object_key = self._object_key(require_valid_key(storage_key))
        try:
            response = self.client.get_object(Bucket=self.bucket, Key=object_key)
        except ClientError as e:
            if _is_not_found(e):
                raise BlobNotFoundError(storage_key) from e
            raise BlobStoreIOError(f"Failed to open blob {storage_key}", original_error=e) from e
        except BotoCoreError as e:
            raise BlobStoreIOError(f"Failed to open blob {storage_key}", original_error=e) from e
        return response["Body"]

    def remove(self, storage_key: str) -> None:
        if not is_valid_key(storage_key):
            logger.warning("Ignoring removal of malformed storage key", extra={"storage_key": storage_key})
            return
        try:
            # DeleteObject succeeds for missing keys.
            self.client.delete_object(Bucket=self.bucket, Key=self._object_key(storage_key))
        except (BotoCoreError, ClientError) as e:
            raise BlobStoreIOError(f"Failed to remove blob {storage_key}", original_error=e) from e

    def iter_blobs(self) -> Iterator[BlobInfo]:
        paginator = self.client.get_paginator("list_objects_v2")
        try:
            for page in paginator.paginate(Bucket=self.bucket, Prefix=self.prefix):
                for obj in page.get("Contents", []):
                    storage_key = obj["Key"][len(self.prefix):]
                    if not is_valid_key(storage_key):
                        continue
                    yield BlobInfo(key=storage_key, size=obj["Size"], modified_at=obj["LastModified"])
        except (BotoCoreError, ClientError) as e:
            raise BlobStoreIOError("Failed to list blobs", original_error=e) from e
