"""Blob storage backends.

``build_blob_store`` is called once at process startup; the resulting store
is handed to whoever needs it. Nothing else reads the storage settings.
"""

from pathlib import Path

import boto3

from ..core.config import Settings
from .base import BlobInfo, BlobStore
from .local import LocalBlobStore
from .s3 import S3BlobStore


def build_blob_store(config: Settings) -> BlobStore:
    """Create the blob store selected by ``config.blob_backend``."""
    if config.blob_backend == "s3":
        client = boto3.client(
            "s3",
            endpoint_url=config.s3_endpoint_url,
            region_name=config.s3_region,
        )
        return S3BlobStore(client, config.s3_bucket, config.s3_prefix)
    return LocalBlobStore(Path(config.blob_root))


__all__ = ["BlobInfo", "BlobStore", "LocalBlobStore", "S3BlobStore", "build_blob_store"]
