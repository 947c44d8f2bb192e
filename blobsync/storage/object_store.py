"""Object store gateway: single-blob operations against an S3-compatible bucket.

Every public operation is a coroutine that runs the blocking boto3 call on a
single-worker thread pool owned by the gateway. Transfers are therefore
serialized: at most one download or upload is in flight from this process at
any time. Failures never raise; they come back as a tagged ``StoreResult`` so
callers can fall back to local-only operation. Retry policy belongs to the
callers.
"""

from __future__ import annotations

import asyncio
import logging
import os
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from enum import StrEnum
from functools import partial
from typing import TYPE_CHECKING, Any, Generic, TypeVar

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from blobsync.storage.local_file import discard

if TYPE_CHECKING:
    from collections.abc import Callable
    from datetime import datetime
    from pathlib import Path

    from blobsync.config import Settings

logger = logging.getLogger(__name__)

T = TypeVar("T")

DATABASE_CONTENT_TYPE = "application/x-sqlite3"
CACHE_CONTROL = "no-cache"
CHECKSUM_METADATA_KEY = "sha256"

_CHUNK_SIZE = 1024 * 1024
_NOT_FOUND_CODES = frozenset({"404", "NoSuchKey", "NotFound"})


class StoreStatus(StrEnum):
    """Outcome tag of a gateway operation."""

    OK = "ok"
    NOT_FOUND = "not_found"
    NOT_CONFIGURED = "not_configured"
    TRANSIENT_FAILURE = "transient_failure"


@dataclass(frozen=True)
class StoreResult(Generic[T]):
    """Tagged result of a gateway operation."""

    status: StoreStatus
    value: T | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.status is StoreStatus.OK


@dataclass(frozen=True)
class BlobMetadata:
    """Server-side attributes of a stored blob."""

    key: str
    last_modified: datetime
    size: int
    checksum: str | None = None
    content_type: str | None = None


class TransferCancelledError(Exception):
    """Raised inside a download loop once the caller has abandoned the transfer."""


class ObjectStoreGateway:
    """Thin wrapper over one S3-compatible bucket."""

    def __init__(
        self,
        bucket: str,
        *,
        endpoint_url: str | None = None,
        region: str | None = None,
        timeout_seconds: float = 30.0,
        client: Any | None = None,
    ) -> None:
        self.bucket = bucket.strip()
        self.endpoint_url = endpoint_url
        self.region = region
        self.timeout_seconds = timeout_seconds
        self._client = client
        self._client_lock = threading.Lock()
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="object-store")

    @classmethod
    def from_settings(cls, settings: Settings) -> ObjectStoreGateway:
        return cls(
            settings.storage_bucket.strip(),
            endpoint_url=settings.storage_endpoint_url,
            region=settings.storage_region,
            timeout_seconds=settings.storage_request_timeout_seconds,
        )

    @property
    def configured(self) -> bool:
        """Whether a bucket is set. An unconfigured gateway turns every call into a no-op."""
        return bool(self.bucket)

    def close(self) -> None:
        """Stop accepting work; queued transfers are cancelled."""
        self._executor.shutdown(wait=False, cancel_futures=True)

    # ── Public async API ─────────────────────────────

    async def exists(self, key: str) -> StoreResult[bool]:
        """Check whether *key* exists in the bucket."""
        return await self._submit(partial(self._exists_blocking, key))

    async def metadata(self, key: str) -> StoreResult[BlobMetadata]:
        """Fetch last-modified, size and checksum of *key*."""
        return await self._submit(partial(self._head_blocking, key))

    async def download(
        self,
        key: str,
        dest_path: Path,
        *,
        cancel: threading.Event | None = None,
    ) -> StoreResult[BlobMetadata]:
        """Stream *key* into *dest_path* and return the downloaded blob's metadata.

        *dest_path* must be a staging path chosen by the caller; the gateway
        never knows about the final database location. Setting *cancel* stops
        the transfer before the next chunk is written.
        """
        return await self._submit(partial(self._download_blocking, key, dest_path, cancel))

    async def upload(
        self,
        key: str,
        src_path: Path,
        content_type: str = DATABASE_CONTENT_TYPE,
        *,
        checksum: str | None = None,
    ) -> StoreResult[None]:
        """Upload *src_path* to *key* with no-cache semantics."""
        return await self._submit(
            partial(self._upload_blocking, key, src_path, content_type, checksum)
        )

    # ── Blocking implementations (executor thread) ───

    async def _submit(self, fn: Callable[[], StoreResult[T]]) -> StoreResult[T]:
        if not self.configured:
            return StoreResult(StoreStatus.NOT_CONFIGURED, error="Object storage is not configured")
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(self._executor, fn)
        except RuntimeError as exc:
            # Raised when the executor has already been shut down.
            return StoreResult(StoreStatus.TRANSIENT_FAILURE, error=str(exc))

    def _get_client(self) -> Any:
        if self._client is None:
            with self._client_lock:
                if self._client is None:
                    self._client = boto3.client(
                        "s3",
                        endpoint_url=self.endpoint_url,
                        region_name=self.region,
                        config=BotoConfig(
                            connect_timeout=self.timeout_seconds,
                            read_timeout=self.timeout_seconds,
                            retries={"max_attempts": 1, "mode": "standard"},
                        ),
                    )
        return self._client

    def _exists_blocking(self, key: str) -> StoreResult[bool]:
        head = self._head_blocking(key)
        if head.status is StoreStatus.NOT_FOUND:
            return StoreResult(StoreStatus.OK, False)
        if head.ok:
            return StoreResult(StoreStatus.OK, True)
        return StoreResult(head.status, error=head.error)

    def _head_blocking(self, key: str) -> StoreResult[BlobMetadata]:
        try:
            resp = self._get_client().head_object(Bucket=self.bucket, Key=key)
        except ClientError as exc:
            return _client_error_result("metadata", key, exc)
        except (BotoCoreError, OSError) as exc:
            return _transient_result("metadata", key, exc)
        return StoreResult(StoreStatus.OK, _metadata_from_response(key, resp))

    def _download_blocking(
        self, key: str, dest_path: Path, cancel: threading.Event | None
    ) -> StoreResult[BlobMetadata]:
        # dest_path survives only an OK result: a caller that timed out has
        # already given up on it and will not clean it up.
        written = 0
        try:
            resp = self._get_client().get_object(Bucket=self.bucket, Key=key)
            body = resp["Body"]
            try:
                _check_cancelled(key, cancel)
                with open(dest_path, "wb") as fh:
                    for chunk in body.iter_chunks(_CHUNK_SIZE):
                        _check_cancelled(key, cancel)
                        fh.write(chunk)
                        written += len(chunk)
                    fh.flush()
                    os.fsync(fh.fileno())
                _check_cancelled(key, cancel)
            finally:
                body.close()
        except TransferCancelledError as exc:
            discard(dest_path)
            logger.info("%s after %d bytes", exc, written)
            return StoreResult(StoreStatus.TRANSIENT_FAILURE, error=str(exc))
        except ClientError as exc:
            discard(dest_path)
            return _client_error_result("download", key, exc)
        except (BotoCoreError, OSError) as exc:
            discard(dest_path)
            return _transient_result("download", key, exc)

        expected = resp.get("ContentLength")
        if expected is not None and written != int(expected):
            discard(dest_path)
            msg = f"Short read for {key}: got {written} of {expected} bytes"
            logger.warning(msg)
            return StoreResult(StoreStatus.TRANSIENT_FAILURE, error=msg)
        logger.debug("Downloaded %s (%d bytes) to %s", key, written, dest_path)
        return StoreResult(StoreStatus.OK, _metadata_from_response(key, resp, size=written))

    def _upload_blocking(
        self, key: str, src_path: Path, content_type: str, checksum: str | None
    ) -> StoreResult[None]:
        extra: dict[str, Any] = {"ContentType": content_type, "CacheControl": CACHE_CONTROL}
        if checksum is not None:
            extra["Metadata"] = {CHECKSUM_METADATA_KEY: checksum}
        try:
            with open(src_path, "rb") as fh:
                self._get_client().put_object(Bucket=self.bucket, Key=key, Body=fh, **extra)
        except ClientError as exc:
            return _client_error_result("upload", key, exc)
        except (BotoCoreError, OSError) as exc:
            return _transient_result("upload", key, exc)
        logger.debug("Uploaded %s to %s", src_path, key)
        return StoreResult(StoreStatus.OK)


def _metadata_from_response(
    key: str, resp: dict[str, Any], *, size: int | None = None
) -> BlobMetadata:
    user_metadata = resp.get("Metadata") or {}
    return BlobMetadata(
        key=key,
        last_modified=resp["LastModified"],
        size=size if size is not None else int(resp.get("ContentLength", 0)),
        checksum=user_metadata.get(CHECKSUM_METADATA_KEY),
        content_type=resp.get("ContentType"),
    )


def _client_error_result(operation: str, key: str, exc: ClientError) -> StoreResult[Any]:
    code = str(exc.response.get("Error", {}).get("Code", ""))
    if code in _NOT_FOUND_CODES:
        return StoreResult(StoreStatus.NOT_FOUND, error=f"{key} not found")
    return _transient_result(operation, key, exc)


def _transient_result(operation: str, key: str, exc: Exception) -> StoreResult[Any]:
    logger.warning("Object store %s failed for %s: %s", operation, key, exc)
    return StoreResult(StoreStatus.TRANSIENT_FAILURE, error=f"{type(exc).__name__}: {exc}")


def _check_cancelled(key: str, cancel: threading.Event | None) -> None:
    if cancel is not None and cancel.is_set():
        raise TransferCancelledError(f"Download of {key} cancelled")
