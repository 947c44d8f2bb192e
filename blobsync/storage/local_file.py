"""Local database file helpers: timestamps, checksums, staging and promotion."""

from __future__ import annotations

import hashlib
import logging
import os
import sqlite3
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from pathlib import Path

logger = logging.getLogger(__name__)

_SIDECAR_SUFFIXES = ("-wal", "-shm", "-journal")


@dataclass(frozen=True)
class LocalFileInfo:
    """Snapshot of the local database file's attributes."""

    path: Path
    size: int
    last_modified: float


def sidecar_paths(db_path: Path) -> list[Path]:
    """Return the journal files SQLite may keep next to *db_path*."""
    return [db_path.with_name(db_path.name + suffix) for suffix in _SIDECAR_SUFFIXES]


def wal_path(db_path: Path) -> Path:
    return db_path.with_name(db_path.name + "-wal")


def stat_local(db_path: Path) -> LocalFileInfo | None:
    """Return size and last-modified of the local database, or None if absent.

    Committed transactions in WAL mode only touch the ``-wal`` file until the
    next checkpoint, so a non-empty WAL counts towards last-modified.
    """
    try:
        stat = db_path.stat()
    except FileNotFoundError:
        return None
    last_modified = stat.st_mtime
    try:
        wal_stat = wal_path(db_path).stat()
    except FileNotFoundError:
        pass
    else:
        if wal_stat.st_size > 0:
            last_modified = max(last_modified, wal_stat.st_mtime)
    return LocalFileInfo(path=db_path, size=stat.st_size, last_modified=last_modified)


def checkpoint_file(db_path: Path, *, timeout: float = 5.0) -> None:
    """Fold a leftover ``-wal`` into the main file before it is read as a snapshot.

    Only for use while no engine has the database open (startup). Raises
    ``sqlite3.Error`` if the checkpoint could not complete.
    """
    wal = wal_path(db_path)
    if not wal.exists() or wal.stat().st_size == 0:
        return
    conn = sqlite3.connect(db_path, timeout=timeout)
    try:
        row = conn.execute("PRAGMA wal_checkpoint(TRUNCATE)").fetchone()
    finally:
        conn.close()
    if row is not None and row[0] != 0:
        msg = f"WAL checkpoint of {db_path} did not complete"
        raise sqlite3.OperationalError(msg)
    logger.info("Checkpointed leftover write-ahead log of %s", db_path)


def hash_file(file_path: Path) -> str:
    """Compute SHA-256 hash of a file."""
    sha = hashlib.sha256()
    with open(file_path, "rb") as f:
        for chunk in iter(lambda: f.read(65536), b""):
            sha.update(chunk)
    return sha.hexdigest()


def staging_path(db_path: Path, label: str) -> Path:
    """Return a fresh hidden path beside *db_path* so promotion is a same-directory rename."""
    return db_path.with_name(f".{db_path.name}.{label}-{uuid.uuid4().hex[:8]}")


def discard(path: Path) -> None:
    """Remove a staging file and any sidecars SQLite left next to it."""
    for candidate in (path, *sidecar_paths(path)):
        try:
            candidate.unlink(missing_ok=True)
        except OSError as exc:
            logger.warning("Could not remove staging file %s: %s", candidate, exc)


def quarantine(db_path: Path) -> Path:
    """Move a damaged *db_path* and its journal files aside and return the new path.

    The file keeps a visible name so an operator can inspect it later. Raises
    ``OSError`` if the rename fails.
    """
    stamp = datetime.now(UTC).strftime("%Y%m%dT%H%M%SZ")
    target = db_path.with_name(f"{db_path.name}.corrupt-{stamp}")
    os.replace(db_path, target)
    for sidecar, moved in zip(sidecar_paths(db_path), sidecar_paths(target), strict=True):
        if sidecar.exists():
            os.replace(sidecar, moved)
    return target


def align_mtime(path: Path, timestamp: float) -> None:
    """Set *path*'s mtime so the next startup comparison sees a tie with the remote copy."""
    os.utime(path, (timestamp, timestamp))


def promote(candidate: Path, target: Path, *, mtime: float | None = None) -> None:
    """Atomically move a verified *candidate* into place as *target*.

    Stale journal files of the previous target are removed first; SQLite would
    otherwise replay them against the new file. The caller must make sure no
    connection has *target* open.
    """
    for sidecar in sidecar_paths(target):
        sidecar.unlink(missing_ok=True)
    os.replace(candidate, target)
    for sidecar in sidecar_paths(candidate):
        sidecar.unlink(missing_ok=True)
    dir_fd = os.open(target.parent, os.O_RDONLY)
    try:
        os.fsync(dir_fd)
    finally:
        os.close(dir_fd)
    if mtime is not None:
        align_mtime(target, mtime)
