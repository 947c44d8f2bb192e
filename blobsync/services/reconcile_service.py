"""Startup reconciler: decide once per process which copy of the database wins.

Decision table (ties favor the local copy, it is the one about to be mutated):

    local  remote  remote newer  decision
    -----  ------  ------------  -------------------------------------------
    no     no      -             fresh-create
    no     yes     -             download (through the bootstrap guard)
    yes    no      -             upload (seed the remote copy)
    yes    yes     yes           download, replacing local after verification
    yes    yes     no            upload (keep local, refresh remote)

Failures degrade to "keep local" and never to "discard local". The one exception
is a local file that fails verification while a remote copy exists: it is moved
aside (not deleted) and replaced by the verified remote copy.
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING

from blobsync.exceptions import LocalStorageError
from blobsync.services.bootstrap_service import BootstrapGuard, BootstrapOutcome, BootstrapReport
from blobsync.services.transfer import (
    DOWNLOADED_MTIME_OFFSET_SECONDS,
    UploadOutcome,
    install_staged_copy,
    stage_verified_copy,
    upload_snapshot,
)
from blobsync.storage.local_file import (
    align_mtime,
    checkpoint_file,
    discard,
    hash_file,
    quarantine,
    stat_local,
)
from blobsync.storage.object_store import StoreStatus

if TYPE_CHECKING:
    from pathlib import Path

    from blobsync.config import Settings
    from blobsync.storage.local_file import LocalFileInfo
    from blobsync.storage.object_store import BlobMetadata, ObjectStoreGateway

logger = logging.getLogger(__name__)


class SyncDecision(StrEnum):
    DOWNLOAD = "download"
    UPLOAD = "upload"
    NONE = "none"
    FRESH_CREATE = "fresh-create"


@dataclass
class ReconcileReport:
    """What the reconciler decided and whether a transfer actually happened."""

    decision: SyncDecision
    transferred: bool = False
    detail: str = ""
    bootstrap: BootstrapReport | None = None


def decide_startup_action(
    local_modified: float | None, remote_modified: float | None
) -> SyncDecision:
    """Map local/remote presence and timestamps to a decision.

    ``None`` means the copy does not exist. Equal timestamps keep the local copy.
    """
    if local_modified is None:
        return SyncDecision.FRESH_CREATE if remote_modified is None else SyncDecision.DOWNLOAD
    if remote_modified is None:
        return SyncDecision.UPLOAD
    if remote_modified > local_modified:
        return SyncDecision.DOWNLOAD
    return SyncDecision.UPLOAD


class StartupReconciler:
    def __init__(
        self,
        gateway: ObjectStoreGateway,
        guard: BootstrapGuard,
        *,
        db_path: Path,
        primary_key: str,
        backup_key: str,
        integrity_timeout: float = 0.5,
    ) -> None:
        self.gateway = gateway
        self.guard = guard
        self.db_path = db_path
        self.primary_key = primary_key
        self.backup_key = backup_key
        self.integrity_timeout = integrity_timeout

    @classmethod
    def from_settings(cls, settings: Settings, gateway: ObjectStoreGateway) -> StartupReconciler:
        return cls(
            gateway,
            BootstrapGuard.from_settings(settings, gateway),
            db_path=settings.database_path,
            primary_key=settings.storage_db_key,
            backup_key=settings.storage_backup_key,
            integrity_timeout=settings.integrity_timeout_seconds,
        )

    async def reconcile(self) -> ReconcileReport:
        """Bring the local file in line with the remote copy before it is opened."""
        local = stat_local(self.db_path)

        if not self.gateway.configured:
            logger.info("Object storage not configured, using local database only")
            decision = SyncDecision.NONE if local is not None else SyncDecision.FRESH_CREATE
            return ReconcileReport(decision, detail="remote not configured")

        remote = await self.gateway.metadata(self.primary_key)
        if remote.status is StoreStatus.TRANSIENT_FAILURE:
            if local is None:
                logger.warning(
                    "Could not reach object storage (%s); starting bootstrap recovery",
                    remote.error,
                )
                return await self._bootstrap()
            logger.warning(
                "Could not compare with remote copy (%s); keeping local database, skipping upload",
                remote.error,
            )
            return ReconcileReport(SyncDecision.NONE, detail=f"remote unavailable: {remote.error}")

        remote_meta = remote.value if remote.ok else None
        decision = decide_startup_action(
            local.last_modified if local is not None else None,
            remote_meta.last_modified.timestamp() if remote_meta is not None else None,
        )
        logger.info("Startup sync decision: %s", decision)

        if decision is SyncDecision.FRESH_CREATE:
            logger.info("No database found locally or remotely, a new one will be created")
            return ReconcileReport(decision)
        if decision is SyncDecision.DOWNLOAD:
            if local is None or remote_meta is None:
                return await self._bootstrap()
            return await self._replace_local(local, remote_meta)
        return await self._seed_remote(remote_meta)

    async def _bootstrap(self) -> ReconcileReport:
        report = await self.guard.recover()
        if report.outcome is BootstrapOutcome.REMOTE_MISSING:
            return ReconcileReport(SyncDecision.FRESH_CREATE, bootstrap=report)
        return ReconcileReport(
            SyncDecision.DOWNLOAD,
            transferred=report.restored,
            detail=report.outcome.value,
            bootstrap=report,
        )

    async def _replace_local(self, local: LocalFileInfo, remote: BlobMetadata) -> ReconcileReport:
        decision = SyncDecision.DOWNLOAD
        try:
            local_checksum = await asyncio.to_thread(hash_file, local.path)
        except OSError as exc:
            logger.warning("Could not hash local database: %s", exc)
            local_checksum = None
        if remote.checksum is not None and remote.checksum == local_checksum:
            align_mtime(
                local.path, remote.last_modified.timestamp() - DOWNLOADED_MTIME_OFFSET_SECONDS
            )
            logger.info("Local database already matches remote copy, skipping download")
            return ReconcileReport(decision, detail="unchanged")

        logger.info("Remote database is newer, downloading %s", self.primary_key)
        staged = await stage_verified_copy(
            self.gateway,
            self.primary_key,
            self.db_path,
            integrity_timeout=self.integrity_timeout,
        )
        if not staged.verified:
            logger.error(
                "Remote database is newer but could not be fetched (%s: %s); "
                "keeping local copy and skipping upload",
                staged.outcome,
                staged.detail,
            )
            return ReconcileReport(decision, detail=f"download {staged.outcome}")
        install_staged_copy(staged, self.db_path)
        return ReconcileReport(decision, transferred=True)

    async def _seed_remote(self, remote: BlobMetadata | None) -> ReconcileReport:
        decision = SyncDecision.UPLOAD
        try:
            await asyncio.to_thread(checkpoint_file, self.db_path)
        except sqlite3.OperationalError as exc:
            logger.error("Could not checkpoint local database before upload: %s", exc)
            return ReconcileReport(decision, detail=f"checkpoint failed: {exc}")
        except sqlite3.DatabaseError as exc:
            if remote is not None:
                return await self._restore_over_corrupt(str(exc))
            logger.error("Could not checkpoint local database before upload: %s", exc)
            return ReconcileReport(decision, detail=f"checkpoint failed: {exc}")

        result = await upload_snapshot(
            self.gateway,
            self.db_path,
            primary_key=self.primary_key,
            backup_key=self.backup_key,
            integrity_timeout=self.integrity_timeout,
            remote=remote,
        )
        if result.outcome is UploadOutcome.CORRUPT and remote is not None:
            return await self._restore_over_corrupt(result.detail)
        return ReconcileReport(
            decision,
            transferred=result.outcome is UploadOutcome.UPLOADED,
            detail=result.detail or result.outcome.value,
        )

    async def _restore_over_corrupt(self, reason: str) -> ReconcileReport:
        # The local file cannot be opened, so the remote copy wins regardless of age.
        logger.warning("Local database is corrupt (%s), restoring remote copy", reason)
        staged = await stage_verified_copy(
            self.gateway,
            self.primary_key,
            self.db_path,
            integrity_timeout=self.integrity_timeout,
        )
        if not staged.verified:
            logger.error(
                "Could not restore remote copy over corrupt local database (%s: %s)",
                staged.outcome,
                staged.detail,
            )
            return ReconcileReport(
                SyncDecision.UPLOAD, detail=f"local corrupt, download {staged.outcome}"
            )
        try:
            moved = quarantine(self.db_path)
        except OSError as exc:
            if staged.path is not None:
                discard(staged.path)
            msg = f"Could not move corrupt database {self.db_path} aside: {exc}"
            raise LocalStorageError(msg) from exc
        logger.warning("Moved corrupt local database to %s", moved)
        install_staged_copy(staged, self.db_path)
        return ReconcileReport(
            SyncDecision.DOWNLOAD, transferred=True, detail="replaced corrupt local copy"
        )
