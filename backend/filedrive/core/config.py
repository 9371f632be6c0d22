"""Application configuration with validation."""

from enum import Enum
from pathlib import Path
from pydantic_settings import BaseSettings
from pydantic import Field, field_validator
from typing import List, Optional


class Environment(str, Enum):
    """Application environment."""
    DEVELOPMENT = "development"
    PRODUCTION = "production"


class ConfigurationError(Exception):
    """Raised when application configuration is invalid for the environment."""
    pass


class Settings(BaseSettings):
    """
    Application settings with validation.

    Uses Pydantic for configuration validation. Blob store settings are
    consumed once by ``build_blob_store`` at process startup; nothing else
    reads them.
    """

    # Environment
    environment: Environment = Field(
        default=Environment.DEVELOPMENT,
        description="Application environment (development/production)"
    )

    # CORS Configuration
    cors_allowed_origins: str = Field(
        default="http://localhost:3000",
        description="Allowed CORS origins (comma-separated)"
    )

    # Database Configuration
    database_url: str = Field(
        default="sqlite:///./filedrive.db",
        description="Database connection URL"
    )
    # Connection pool tuning (PostgreSQL only; ignored for SQLite).
    db_pool_size: int = Field(
        default=5,
        description="Number of persistent database connections"
    )
    db_max_overflow: int = Field(
        default=10,
        description="Extra connections allowed during traffic bursts"
    )
    db_pool_timeout: int = Field(
        default=30,
        description="Seconds to wait for a connection from the pool before raising"
    )
    db_pool_recycle: int = Field(
        default=1800,
        description="Seconds before a connection is recycled"
    )

    # Access boundary
    # The upstream gateway authenticates the caller and forwards the owner id
    # in this header. The API trusts it unconditionally.
    owner_header: str = Field(
        default="X-Owner-Id",
        description="Header carrying the already-authenticated owner id"
    )

    # Blob Store Configuration
    blob_backend: str = Field(
        default="local",
        description="Blob store backend: 'local' filesystem or 's3'"
    )
    blob_root: str = Field(
        default="./storage",
        description="Root directory for the local blob store"
    )
    s3_bucket: str = Field(default="", description="Bucket for the s3 blob store")
    s3_prefix: str = Field(default="blobs/", description="Key prefix inside the bucket")
    s3_endpoint_url: Optional[str] = Field(
        default=None,
        description="Custom endpoint for S3-compatible stores (MinIO, R2)"
    )
    s3_region: str = Field(default="us-east-1")

    # Upload limit (100 MiB)
    max_upload_bytes: int = Field(
        default=100 * 1024 * 1024,
        description="Maximum accepted size of a single uploaded file"
    )

    # Recursive delete
    delete_batch_size: int = Field(
        default=500,
        description="Rows enumerated/deleted per batch; cancellation is checked between batches"
    )

    # Orphaned blob reconciliation
    reconcile_grace_seconds: int = Field(
        default=24 * 60 * 60,
        description="Blobs younger than this are never swept"
    )
    reconcile_interval_seconds: int = Field(
        default=60 * 60,
        description="Seconds between sweeps in the worker loop"
    )
    reconcile_on_startup: bool = Field(
        default=False,
        description="Run one reconciliation sweep when the API starts"
    )

    # Logging Configuration
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)"
    )
    log_format: str = Field(
        default="json",
        description="Log output format: 'json' for structured, 'text' for human-readable"
    )

    def get_cors_origins(self) -> List[str]:
        """
        Get CORS origins as a list.

        Parses comma-separated string and validates no wildcards.
        """
        origins = [origin.strip() for origin in self.cors_allowed_origins.split(',') if origin.strip()]

        if "*" in origins:
            raise ValueError(
                "Wildcard CORS (*) not allowed. "
                "Specify explicit origins in CORS_ALLOWED_ORIGINS"
            )

        return origins

    @field_validator('log_level')
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level is one of the standard Python logging levels."""
        valid_levels = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
        v_upper = v.upper()
        if v_upper not in valid_levels:
            raise ValueError(f"Invalid log level. Must be one of: {valid_levels}")
        return v_upper

    @field_validator('blob_backend')
    @classmethod
    def validate_blob_backend(cls, v: str) -> str:
        """Only the local filesystem and S3 backends exist."""
        v_lower = v.lower()
        if v_lower not in ('local', 's3'):
            raise ValueError("BLOB_BACKEND must be 'local' or 's3'")
        return v_lower

    def validate_production_config(self) -> None:
        """Validate configuration for production environment.

        In production, fails startup on settings that would lose data or
        leave the API open to browsers on localhost. In development this is
        a no-op; main.py logs warnings instead.

        Raises:
            ConfigurationError: If production config is unsafe.
        """
        errors: list[str] = []

        if self.blob_backend == "local" and not Path(self.blob_root).is_absolute():
            errors.append(
                f"BLOB_ROOT is relative ({self.blob_root}). "
                "Use an absolute path so blobs survive a working-directory change."
            )

        if self.blob_backend == "s3" and not self.s3_bucket:
            errors.append("BLOB_BACKEND is 's3' but S3_BUCKET is empty.")

        origins = self.get_cors_origins()
        localhost_origins = [o for o in origins if "localhost" in o or "127.0.0.1" in o]
        if localhost_origins:
            errors.append(
                f"CORS allows localhost origins: {localhost_origins}. "
                "Remove localhost origins for production."
            )

        if errors and self.environment == Environment.PRODUCTION:
            raise ConfigurationError(
                "Production configuration is unsafe:\n  - " + "\n  - ".join(errors)
            )

    class Config:
        """Pydantic configuration."""
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False


# Global settings instance
settings = Settings()
