"""In-memory stand-in for ObjectStoreGateway with failure injection."""

from __future__ import annotations

import asyncio
import hashlib
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

from blobsync.storage.object_store import (
    DATABASE_CONTENT_TYPE,
    BlobMetadata,
    StoreResult,
    StoreStatus,
)

if TYPE_CHECKING:
    import threading
    from pathlib import Path


@dataclass
class StoredBlob:
    data: bytes
    last_modified: datetime
    checksum: str | None
    content_type: str = DATABASE_CONTENT_TYPE


def _now() -> datetime:
    # S3 reports LastModified with one-second resolution.
    return datetime.now(UTC).replace(microsecond=0)


class FakeObjectStore:
    """Mimics the gateway's async API over a dict of blobs.

    ``failures[operation]`` counts how many upcoming calls of that operation
    return a transient failure. ``download_delay`` stalls every download and
    uploads to ``broken_upload_keys`` always fail.
    """

    def __init__(self, bucket: str = "test-bucket") -> None:
        self.bucket = bucket
        self.blobs: dict[str, StoredBlob] = {}
        self.failures: dict[str, int] = {}
        self.download_delay = 0.0
        self.broken_upload_keys: set[str] = set()
        self.calls: list[tuple[str, str]] = []
        self.closed = False

    @property
    def configured(self) -> bool:
        return bool(self.bucket)

    def close(self) -> None:
        self.closed = True

    # ── Test helpers ─────────────────────────────────

    def put_blob(
        self,
        key: str,
        data: bytes,
        *,
        last_modified: datetime | None = None,
        age: timedelta | None = None,
        with_checksum: bool = True,
    ) -> StoredBlob:
        if last_modified is None:
            last_modified = _now() - (age or timedelta())
        blob = StoredBlob(
            data=data,
            last_modified=last_modified,
            checksum=hashlib.sha256(data).hexdigest() if with_checksum else None,
        )
        self.blobs[key] = blob
        return blob

    def fail(self, operation: str, times: int = 1) -> None:
        self.failures[operation] = self.failures.get(operation, 0) + times

    def count(self, operation: str, key: str | None = None) -> int:
        return sum(1 for op, k in self.calls if op == operation and (key is None or k == key))

    def _should_fail(self, operation: str) -> bool:
        remaining = self.failures.get(operation, 0)
        if remaining > 0:
            self.failures[operation] = remaining - 1
            return True
        return False

    def _meta(self, key: str, blob: StoredBlob) -> BlobMetadata:
        return BlobMetadata(
            key=key,
            last_modified=blob.last_modified,
            size=len(blob.data),
            checksum=blob.checksum,
            content_type=blob.content_type,
        )

    # ── Gateway API ──────────────────────────────────

    async def exists(self, key: str) -> StoreResult[bool]:
        result = await self.metadata(key)
        if result.status is StoreStatus.NOT_FOUND:
            return StoreResult(StoreStatus.OK, False)
        if result.ok:
            return StoreResult(StoreStatus.OK, True)
        return StoreResult(result.status, error=result.error)

    async def metadata(self, key: str) -> StoreResult[BlobMetadata]:
        if not self.configured:
            return StoreResult(StoreStatus.NOT_CONFIGURED)
        self.calls.append(("metadata", key))
        if self._should_fail("metadata"):
            return StoreResult(StoreStatus.TRANSIENT_FAILURE, error="injected metadata failure")
        blob = self.blobs.get(key)
        if blob is None:
            return StoreResult(StoreStatus.NOT_FOUND, error=f"{key} not found")
        return StoreResult(StoreStatus.OK, self._meta(key, blob))

    async def download(
        self, key: str, dest_path: Path, *, cancel: threading.Event | None = None
    ) -> StoreResult[BlobMetadata]:
        if not self.configured:
            return StoreResult(StoreStatus.NOT_CONFIGURED)
        self.calls.append(("download", key))
        if self.download_delay:
            await asyncio.sleep(self.download_delay)
        if self._should_fail("download"):
            return StoreResult(StoreStatus.TRANSIENT_FAILURE, error="injected download failure")
        blob = self.blobs.get(key)
        if blob is None:
            return StoreResult(StoreStatus.NOT_FOUND, error=f"{key} not found")
        dest_path.write_bytes(blob.data)
        return StoreResult(StoreStatus.OK, self._meta(key, blob))

    async def upload(
        self,
        key: str,
        src_path: Path,
        content_type: str = DATABASE_CONTENT_TYPE,
        *,
        checksum: str | None = None,
    ) -> StoreResult[None]:
        if not self.configured:
            return StoreResult(StoreStatus.NOT_CONFIGURED)
        self.calls.append(("upload", key))
        if key in self.broken_upload_keys or self._should_fail("upload"):
            return StoreResult(StoreStatus.TRANSIENT_FAILURE, error="injected upload failure")
        self.blobs[key] = StoredBlob(
            data=src_path.read_bytes(),
            last_modified=_now(),
            checksum=checksum,
            content_type=content_type,
        )
        return StoreResult(StoreStatus.OK)
