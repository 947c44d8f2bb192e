"""Application settings API endpoints."""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from blobsync.api.deps import get_handle, get_session, get_sync_service, require_admin
from blobsync.database import DatabaseHandle
from blobsync.schemas.admin import SyncReportResponse
from blobsync.schemas.settings import (
    SettingResponse,
    SettingsListResponse,
    SettingUpdate,
    SettingUpdateResponse,
)
from blobsync.services.settings_service import get_setting, list_settings, update_setting
from blobsync.services.write_sync_service import WriteSyncService

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/settings",
    tags=["settings"],
    dependencies=[Depends(require_admin)],
)


@router.get("", response_model=SettingsListResponse)
async def read_settings(
    session: Annotated[AsyncSession, Depends(get_session)],
    handle: Annotated[DatabaseHandle, Depends(get_handle)],
    category: Annotated[str | None, Query(max_length=100)] = None,
) -> SettingsListResponse:
    """List settings, optionally filtered by category."""
    rows = await list_settings(session, handle, category=category)
    return SettingsListResponse(settings=[SettingResponse(**row) for row in rows])


@router.get("/{key}", response_model=SettingResponse)
async def read_setting(
    key: str,
    session: Annotated[AsyncSession, Depends(get_session)],
    handle: Annotated[DatabaseHandle, Depends(get_handle)],
) -> SettingResponse:
    row = await get_setting(session, handle, key)
    if row is None:
        raise HTTPException(status_code=404, detail="Setting not found")
    return SettingResponse(**row)


@router.put("/{key}", response_model=SettingUpdateResponse)
async def write_setting(
    key: str,
    body: SettingUpdate,
    session: Annotated[AsyncSession, Depends(get_session)],
    handle: Annotated[DatabaseHandle, Depends(get_handle)],
    sync_service: Annotated[WriteSyncService, Depends(get_sync_service)],
) -> SettingUpdateResponse:
    """Store a setting and propagate the write.

    The write is committed locally before syncing, so a failed upload is
    reported in the response rather than failing the request.
    """
    row = await update_setting(session, handle, key, body.value)
    report = await sync_service.notify_write_committed()
    if not report.succeeded:
        logger.warning("Setting %s saved locally but not synced: %s", key, report.outcome)
    return SettingUpdateResponse(
        setting=SettingResponse(**row),
        sync=SyncReportResponse(
            outcome=report.outcome.value,
            action=report.action,
            finished_at=report.finished_at,
            detail=report.detail,
        ),
    )
