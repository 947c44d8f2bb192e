"""Application configuration loaded from environment variables."""

from __future__ import annotations

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """blobsync application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Core
    debug: bool = False
    admin_token: str = ""

    # Server
    host: str = "0.0.0.0"
    port: int = Field(default=8000, ge=1, le=65535)

    # Local database
    database_path: Path = Path("./data/app.db")
    backup_dir: Path = Path("./data/backups")
    statement_cache_size: int = Field(default=256, ge=1)
    integrity_timeout_seconds: float = Field(default=0.5, gt=0)

    # Object storage (empty bucket disables remote sync)
    storage_bucket: str = ""
    storage_endpoint_url: str | None = None
    storage_region: str | None = None
    storage_db_key: str = "app.db"
    storage_backup_key: str = "app_backup.db"
    storage_request_timeout_seconds: float = Field(default=30.0, gt=0)

    # Bootstrap recovery (no local file at startup)
    bootstrap_max_attempts: int = Field(default=5, ge=1)
    bootstrap_attempt_timeout_seconds: float = Field(default=30.0, gt=0)
    bootstrap_retry_delay_seconds: float = Field(default=2.0, ge=0)

    # Write sync
    write_sync_max_attempts: int = Field(default=3, ge=1)
    write_sync_retry_delay_seconds: float = Field(default=1.0, ge=0)

    @property
    def database_url(self) -> str:
        """SQLAlchemy async URL for the local database file."""
        return f"sqlite+aiosqlite:///{self.database_path}"

    def validate_runtime_security(self) -> None:
        """Validate security-critical production settings."""
        if self.debug:
            return

        violations: list[str] = []
        if len(self.admin_token) < 32:
            violations.append(
                "ADMIN_TOKEN must be set to a high-entropy value (>=32 chars) in production"
            )
        if self.storage_db_key == self.storage_backup_key:
            violations.append("STORAGE_DB_KEY and STORAGE_BACKUP_KEY must differ")

        if violations:
            joined = "; ".join(violations)
            raise ValueError(f"Insecure production configuration: {joined}")
