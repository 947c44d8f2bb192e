"""Write-sync trigger: propagate committed writes to object storage.

Each round checkpoints the write-ahead log, verifies the local file, then
uploads it to the primary key and the backup key. Remote failures are logged
and reported, never raised: the write that triggered the round has already
been committed locally and must not be failed because of the network.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from sqlalchemy.exc import DBAPIError

from blobsync.exceptions import CheckpointIncompleteError, SyncUnavailableError
from blobsync.services.sync_status import SyncOutcome, SyncReport
from blobsync.services.transfer import UploadOutcome, stage_verified_copy, upload_snapshot

if TYPE_CHECKING:
    from blobsync.config import Settings
    from blobsync.database import DatabaseProvider
    from blobsync.services.sync_status import SyncStatusTracker
    from blobsync.storage.object_store import ObjectStoreGateway

logger = logging.getLogger(__name__)

_UPLOAD_OUTCOMES = {
    UploadOutcome.UPLOADED: SyncOutcome.UPLOADED,
    UploadOutcome.UNCHANGED: SyncOutcome.UPLOADED,
    UploadOutcome.CORRUPT: SyncOutcome.SKIPPED_CORRUPT,
    UploadOutcome.FAILED: SyncOutcome.FAILED,
    UploadOutcome.NOT_CONFIGURED: SyncOutcome.SKIPPED_NOT_CONFIGURED,
}


class WriteSyncService:
    """Uploads the database after writes and runs operator sync actions."""

    def __init__(
        self,
        provider: DatabaseProvider,
        gateway: ObjectStoreGateway,
        tracker: SyncStatusTracker,
        settings: Settings,
    ) -> None:
        self.provider = provider
        self.gateway = gateway
        self.tracker = tracker
        self.settings = settings
        self._lock = asyncio.Lock()

    async def notify_write_committed(self) -> SyncReport:
        """Propagate the current local state to object storage.

        Raises ``LocalStorageError`` when the local file itself is unusable.
        """
        if not self.gateway.configured:
            return SyncReport(SyncOutcome.SKIPPED_NOT_CONFIGURED)
        if self.tracker.uploads_suspended:
            logger.warning(
                "Skipping upload while automatic uploads are suspended: %s",
                self.tracker.suspension_reason,
            )
            return self.tracker.record_sync(
                SyncReport(SyncOutcome.SKIPPED_SUSPENDED, detail=self.tracker.suspension_reason)
            )
        async with self._lock:
            return self.tracker.record_sync(await self._upload())

    async def force_upload(self, *, override_suspension: bool = False) -> SyncReport:
        """Upload now, as an operator action.

        ``override_suspension`` deliberately replaces the remote copy even
        after a failed bootstrap recovery.
        """
        if not self.gateway.configured:
            raise SyncUnavailableError("Object storage is not configured")
        async with self._lock:
            if self.tracker.uploads_suspended and not override_suspension:
                return self.tracker.record_sync(
                    SyncReport(
                        SyncOutcome.SKIPPED_SUSPENDED, detail=self.tracker.suspension_reason
                    )
                )
            report = await self._upload()
            if report.outcome is SyncOutcome.UPLOADED and self.tracker.uploads_suspended:
                logger.warning("Remote database deliberately replaced by operator upload")
                self.tracker.resume()
            return self.tracker.record_sync(report)

    async def force_download(self, *, from_backup: bool = False) -> SyncReport:
        """Replace the live database with the remote primary (or backup) copy."""
        if not self.gateway.configured:
            raise SyncUnavailableError("Object storage is not configured")
        key = self.settings.storage_backup_key if from_backup else self.settings.storage_db_key
        action = "restore-backup" if from_backup else "download"
        async with self._lock:
            await self.provider.get_handle()
            staged = await stage_verified_copy(
                self.gateway,
                key,
                self.provider.path,
                integrity_timeout=self.settings.integrity_timeout_seconds,
            )
            if not staged.verified:
                logger.error("Could not fetch %s (%s): %s", key, staged.outcome, staged.detail)
                return self.tracker.record_sync(
                    SyncReport(
                        SyncOutcome.FAILED,
                        action=action,
                        detail=f"{staged.outcome}: {staged.detail}",
                    )
                )
            await self.provider.replace_database(staged)
            self.tracker.resume()
            logger.info("Database restored from %s", key)
            return self.tracker.record_sync(SyncReport(SyncOutcome.DOWNLOADED, action=action))

    async def _upload(self) -> SyncReport:
        handle = await self.provider.get_handle()
        try:
            await handle.checkpoint()
        except CheckpointIncompleteError as exc:
            logger.warning("Sync round abandoned: %s", exc)
            return SyncReport(SyncOutcome.FAILED, detail=str(exc))
        except DBAPIError as exc:
            logger.error("WAL checkpoint failed: %s", exc.orig)
            return SyncReport(SyncOutcome.FAILED, detail=f"checkpoint failed: {exc.orig}")

        result = await upload_snapshot(
            self.gateway,
            handle.path,
            primary_key=self.settings.storage_db_key,
            backup_key=self.settings.storage_backup_key,
            integrity_timeout=self.settings.integrity_timeout_seconds,
            attempts=self.settings.write_sync_max_attempts,
            retry_delay=self.settings.write_sync_retry_delay_seconds,
        )
        return SyncReport(_UPLOAD_OUTCOMES[result.outcome], detail=result.detail)
