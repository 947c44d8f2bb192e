"""Verified transfers between the local database file and the object store.

Both directions enforce the integrity discipline: a downloaded copy is staged
beside the database and only installed after it passes verification, and the
local file is verified before any byte of it is uploaded.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING

from blobsync.exceptions import LocalStorageError
from blobsync.storage.integrity import verify_database
from blobsync.storage.local_file import align_mtime, discard, hash_file, promote, staging_path
from blobsync.storage.object_store import DATABASE_CONTENT_TYPE, StoreStatus

if TYPE_CHECKING:
    import threading
    from pathlib import Path

    from blobsync.storage.object_store import BlobMetadata, ObjectStoreGateway, StoreResult

logger = logging.getLogger(__name__)

# A freshly installed download is marked this much older than its source, so
# a restart without intervening writes reaches the same decision again.
DOWNLOADED_MTIME_OFFSET_SECONDS = 1.0


class FetchOutcome(StrEnum):
    VERIFIED = "verified"
    NOT_FOUND = "not_found"
    NOT_CONFIGURED = "not_configured"
    TRANSPORT_FAILURE = "transport_failure"
    CORRUPT = "corrupt"
    TIMEOUT = "timeout"


@dataclass(frozen=True)
class StagedCopy:
    """A downloaded copy waiting beside the database file."""

    outcome: FetchOutcome
    path: Path | None = None
    metadata: BlobMetadata | None = None
    detail: str = ""

    @property
    def verified(self) -> bool:
        return self.outcome is FetchOutcome.VERIFIED


class UploadOutcome(StrEnum):
    UPLOADED = "uploaded"
    UNCHANGED = "unchanged"
    CORRUPT = "corrupt"
    FAILED = "failed"
    NOT_CONFIGURED = "not_configured"


@dataclass(frozen=True)
class UploadResult:
    outcome: UploadOutcome
    detail: str = ""


_FETCH_OUTCOMES = {
    StoreStatus.NOT_FOUND: FetchOutcome.NOT_FOUND,
    StoreStatus.NOT_CONFIGURED: FetchOutcome.NOT_CONFIGURED,
    StoreStatus.TRANSIENT_FAILURE: FetchOutcome.TRANSPORT_FAILURE,
}


async def stage_verified_copy(
    gateway: ObjectStoreGateway,
    key: str,
    db_path: Path,
    *,
    integrity_timeout: float,
    cancel: threading.Event | None = None,
) -> StagedCopy:
    """Download *key* to a staging file beside *db_path* and verify it.

    Unverified or partial staging files are always removed, including when the
    caller cancels this coroutine.
    """
    staged = staging_path(db_path, "download")
    try:
        result = await gateway.download(key, staged, cancel=cancel)
        if not result.ok:
            discard(staged)
            return StagedCopy(_FETCH_OUTCOMES[result.status], detail=result.error or "")
        report = await asyncio.to_thread(
            verify_database, staged, timeout=integrity_timeout, immutable=True
        )
    except asyncio.CancelledError:
        discard(staged)
        raise
    if not report.usable:
        discard(staged)
        return StagedCopy(FetchOutcome.CORRUPT, detail=report.detail)
    return StagedCopy(FetchOutcome.VERIFIED, path=staged, metadata=result.value)


def install_staged_copy(staged: StagedCopy, db_path: Path) -> None:
    """Promote a verified staged copy to be the local database."""
    if not staged.verified or staged.path is None:
        msg = f"Refusing to install unverified copy ({staged.outcome})"
        raise ValueError(msg)
    mtime = None
    if staged.metadata is not None:
        mtime = staged.metadata.last_modified.timestamp() - DOWNLOADED_MTIME_OFFSET_SECONDS
    try:
        promote(staged.path, db_path, mtime=mtime)
    except OSError as exc:
        discard(staged.path)
        msg = f"Could not install downloaded database at {db_path}: {exc}"
        raise LocalStorageError(msg) from exc
    logger.info("Installed downloaded database at %s", db_path)


async def _upload_with_retries(
    gateway: ObjectStoreGateway,
    key: str,
    src_path: Path,
    checksum: str,
    attempts: int,
    retry_delay: float,
) -> StoreResult[None]:
    result = await gateway.upload(key, src_path, DATABASE_CONTENT_TYPE, checksum=checksum)
    attempt = 1
    while result.status is StoreStatus.TRANSIENT_FAILURE and attempt < attempts:
        logger.warning(
            "Upload of %s failed (attempt %d/%d): %s", key, attempt, attempts, result.error
        )
        await asyncio.sleep(retry_delay)
        attempt += 1
        result = await gateway.upload(key, src_path, DATABASE_CONTENT_TYPE, checksum=checksum)
    return result


async def upload_snapshot(
    gateway: ObjectStoreGateway,
    db_path: Path,
    *,
    primary_key: str,
    backup_key: str,
    integrity_timeout: float,
    remote: BlobMetadata | None = None,
    attempts: int = 1,
    retry_delay: float = 0.0,
) -> UploadResult:
    """Verify the local database and upload it to the primary and backup keys.

    When *remote* carries the same checksum as the local file the transfer is
    skipped. Raises ``LocalStorageError`` if the local file cannot be read.
    """
    if not gateway.configured:
        return UploadResult(UploadOutcome.NOT_CONFIGURED)
    if not db_path.is_file():
        msg = f"Local database {db_path} does not exist"
        raise LocalStorageError(msg)

    report = await asyncio.to_thread(verify_database, db_path, timeout=integrity_timeout)
    if not report.usable:
        logger.error("Refusing to upload corrupt database %s: %s", db_path, report.detail)
        return UploadResult(UploadOutcome.CORRUPT, report.detail)

    try:
        checksum = await asyncio.to_thread(hash_file, db_path)
    except OSError as exc:
        msg = f"Could not read local database {db_path}: {exc}"
        raise LocalStorageError(msg) from exc

    if remote is not None and remote.checksum == checksum:
        align_mtime(db_path, remote.last_modified.timestamp())
        logger.info("Remote copy %s already matches local database, skipping upload", primary_key)
        return UploadResult(UploadOutcome.UNCHANGED)

    primary = await _upload_with_retries(
        gateway, primary_key, db_path, checksum, attempts, retry_delay
    )
    if not primary.ok:
        logger.error("Database upload to %s failed: %s", primary_key, primary.error)
        return UploadResult(UploadOutcome.FAILED, primary.error or "upload failed")

    detail = ""
    backup = await _upload_with_retries(
        gateway, backup_key, db_path, checksum, attempts, retry_delay
    )
    if not backup.ok:
        logger.warning("Backup upload to %s failed: %s", backup_key, backup.error)
        detail = f"backup upload failed: {backup.error}"

    head = await gateway.metadata(primary_key)
    if head.ok and head.value is not None:
        align_mtime(db_path, head.value.last_modified.timestamp())
    logger.info("Database uploaded to %s (backup: %s)", primary_key, "ok" if backup.ok else "failed")
    return UploadResult(UploadOutcome.UPLOADED, detail)
