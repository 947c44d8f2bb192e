"""Admin database API request/response schemas."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel


class SyncReportResponse(BaseModel):
    """Outcome of one sync round or operator action."""

    outcome: str
    action: str
    finished_at: datetime
    detail: str = ""


class LocalFileResponse(BaseModel):
    path: str
    exists: bool
    size: int | None = None
    last_modified: datetime | None = None


class RemoteBlobResponse(BaseModel):
    key: str
    exists: bool
    size: int | None = None
    last_modified: datetime | None = None
    checksum: str | None = None
    error: str | None = None


class SyncStatusResponse(BaseModel):
    """Remote configuration, both copies of the database and sync history."""

    remote_configured: bool
    bucket: str | None = None
    provider_state: str
    startup_decision: str | None = None
    startup_detail: str | None = None
    bootstrap_outcome: str | None = None
    uploads_suspended: bool = False
    suspension_reason: str = ""
    local: LocalFileResponse
    remote: RemoteBlobResponse | None = None
    last_sync: SyncReportResponse | None = None


class DatabaseStatsResponse(BaseModel):
    tables: dict[str, int]
    file_size: int
    page_count: int
    page_size: int
    freelist_count: int
    database_size: int


class BackupResponse(BaseModel):
    path: str
    size: int


class OptimizeResponse(BaseModel):
    pages_before: int
    pages_after: int
    page_size: int
    sync: SyncReportResponse


class VerifyResponse(BaseModel):
    status: str
    detail: str
