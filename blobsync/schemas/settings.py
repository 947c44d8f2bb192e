"""Application settings request/response schemas."""

from __future__ import annotations

from pydantic import BaseModel, Field

from blobsync.schemas.admin import SyncReportResponse


class SettingResponse(BaseModel):
    key: str
    value: str
    category: str | None = None
    description: str | None = None
    updated_at: str


class SettingsListResponse(BaseModel):
    settings: list[SettingResponse]


class SettingUpdate(BaseModel):
    """Request to change one setting."""

    value: str = Field(max_length=10000)


class SettingUpdateResponse(BaseModel):
    """The stored setting plus the outcome of propagating the write."""

    setting: SettingResponse
    sync: SyncReportResponse
