"""Admin database API endpoints: sync status, manual sync, maintenance."""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import Annotated, Literal

from fastapi import APIRouter, Depends, HTTPException, Query, status

from blobsync.api.deps import (
    get_gateway,
    get_handle,
    get_provider,
    get_settings,
    get_sync_service,
    get_tracker,
    require_admin,
)
from blobsync.config import Settings
from blobsync.database import DatabaseHandle, DatabaseProvider
from blobsync.schemas.admin import (
    BackupResponse,
    DatabaseStatsResponse,
    LocalFileResponse,
    OptimizeResponse,
    RemoteBlobResponse,
    SyncReportResponse,
    SyncStatusResponse,
    VerifyResponse,
)
from blobsync.services.maintenance_service import (
    collect_stats,
    create_local_backup,
    optimize,
    verify_live,
)
from blobsync.services.sync_status import SyncOutcome, SyncReport, SyncStatusTracker
from blobsync.services.write_sync_service import WriteSyncService
from blobsync.storage.local_file import stat_local
from blobsync.storage.object_store import ObjectStoreGateway, StoreStatus

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/admin/database",
    tags=["admin"],
    dependencies=[Depends(require_admin)],
)


def _report_response(report: SyncReport) -> SyncReportResponse:
    return SyncReportResponse(
        outcome=report.outcome.value,
        action=report.action,
        finished_at=report.finished_at,
        detail=report.detail,
    )


def _raise_for_report(report: SyncReport) -> None:
    if report.outcome is SyncOutcome.FAILED:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=f"Sync failed: {report.detail or 'object storage unavailable'}",
        )
    if report.outcome is SyncOutcome.SKIPPED_SUSPENDED:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Uploads are suspended ({report.detail}); use force to override",
        )
    if report.outcome is SyncOutcome.SKIPPED_CORRUPT:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Local database failed its integrity check: {report.detail}",
        )


@router.get("/sync", response_model=SyncStatusResponse)
async def get_sync_status(
    settings: Annotated[Settings, Depends(get_settings)],
    provider: Annotated[DatabaseProvider, Depends(get_provider)],
    gateway: Annotated[ObjectStoreGateway, Depends(get_gateway)],
    tracker: Annotated[SyncStatusTracker, Depends(get_tracker)],
) -> SyncStatusResponse:
    """Report remote configuration and the state of both copies."""
    local = stat_local(settings.database_path)
    local_response = LocalFileResponse(
        path=str(settings.database_path),
        exists=local is not None,
        size=local.size if local is not None else None,
        last_modified=(
            datetime.fromtimestamp(local.last_modified, tz=UTC) if local is not None else None
        ),
    )

    remote_response: RemoteBlobResponse | None = None
    if gateway.configured:
        head = await gateway.metadata(settings.storage_db_key)
        meta = head.value
        remote_response = RemoteBlobResponse(
            key=settings.storage_db_key,
            exists=head.ok,
            size=meta.size if meta is not None else None,
            last_modified=meta.last_modified if meta is not None else None,
            checksum=meta.checksum if meta is not None else None,
            error=head.error if head.status is StoreStatus.TRANSIENT_FAILURE else None,
        )

    startup = tracker.startup
    return SyncStatusResponse(
        remote_configured=provider.is_remote_configured(),
        bucket=gateway.bucket or None,
        provider_state=provider.state.value,
        startup_decision=startup.decision.value if startup is not None else None,
        startup_detail=startup.detail if startup is not None else None,
        bootstrap_outcome=(
            startup.bootstrap.outcome.value
            if startup is not None and startup.bootstrap is not None
            else None
        ),
        uploads_suspended=tracker.uploads_suspended,
        suspension_reason=tracker.suspension_reason,
        local=local_response,
        remote=remote_response,
        last_sync=_report_response(tracker.last_sync) if tracker.last_sync is not None else None,
    )


@router.post("/sync", response_model=SyncReportResponse)
async def run_sync(
    sync_service: Annotated[WriteSyncService, Depends(get_sync_service)],
    action: Annotated[Literal["upload", "download", "restore-backup"], Query()] = "upload",
    force: Annotated[bool, Query()] = False,
) -> SyncReportResponse:
    """Run a manual upload, download or restore from the backup copy."""
    logger.info("Manual database sync requested: %s (force=%s)", action, force)
    if action == "upload":
        report = await sync_service.force_upload(override_suspension=force)
    else:
        report = await sync_service.force_download(from_backup=action == "restore-backup")
    _raise_for_report(report)
    return _report_response(report)


@router.get("/stats", response_model=DatabaseStatsResponse)
async def get_stats(
    handle: Annotated[DatabaseHandle, Depends(get_handle)],
) -> DatabaseStatsResponse:
    """Row counts per table and storage statistics."""
    stats = await collect_stats(handle)
    return DatabaseStatsResponse(**stats)


@router.post("/backup", response_model=BackupResponse, status_code=201)
async def create_backup(
    handle: Annotated[DatabaseHandle, Depends(get_handle)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> BackupResponse:
    """Write a timestamped snapshot of the live database to the backup directory."""
    path = await create_local_backup(handle, settings.backup_dir)
    return BackupResponse(path=str(path), size=path.stat().st_size)


@router.post("/optimize", response_model=OptimizeResponse)
async def optimize_database(
    handle: Annotated[DatabaseHandle, Depends(get_handle)],
    sync_service: Annotated[WriteSyncService, Depends(get_sync_service)],
) -> OptimizeResponse:
    """VACUUM and ANALYZE the live database, then propagate the rewritten file."""
    result = await optimize(handle)
    report = await sync_service.notify_write_committed()
    return OptimizeResponse(**result, sync=_report_response(report))


@router.post("/verify", response_model=VerifyResponse)
async def verify_database(
    handle: Annotated[DatabaseHandle, Depends(get_handle)],
) -> VerifyResponse:
    """Run a thorough integrity check of the live database."""
    report = await verify_live(handle)
    return VerifyResponse(status=report.status.value, detail=report.detail)
