"""Integrity verifier: classify a candidate SQLite file as usable or corrupt.

The check is intentionally cheap so it can sit on the startup and write-sync
paths: a header sanity check (which catches truncated downloads) followed by
one read of the schema catalog through a read-only connection. Nothing here
ever writes to the file under test.
"""

from __future__ import annotations

import logging
import sqlite3
import time
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from pathlib import Path

logger = logging.getLogger(__name__)

SQLITE_HEADER_MAGIC = b"SQLite format 3\x00"
SQLITE_HEADER_SIZE = 100

_PROGRESS_INTERVAL_OPS = 1000


class IntegrityStatus(StrEnum):
    USABLE = "usable"
    CORRUPT = "corrupt"


@dataclass(frozen=True)
class IntegrityReport:
    """Result of verifying one file."""

    path: Path
    status: IntegrityStatus
    detail: str = "ok"

    @property
    def usable(self) -> bool:
        return self.status is IntegrityStatus.USABLE


def _check_header(path: Path) -> str | None:
    """Return a description of the first structural problem, or None."""
    size = path.stat().st_size
    if size < SQLITE_HEADER_SIZE:
        return f"file too small to be a database ({size} bytes)"
    with open(path, "rb") as fh:
        header = fh.read(SQLITE_HEADER_SIZE)
    if header[:16] != SQLITE_HEADER_MAGIC:
        return "missing SQLite header"

    page_size = int.from_bytes(header[16:18], "big")
    if page_size == 1:
        page_size = 65536
    if page_size < 512 or page_size & (page_size - 1):
        return f"invalid page size {page_size}"
    if size % page_size:
        return f"file size {size} is not a multiple of page size {page_size}"

    # The in-header page count is only trustworthy when the version-valid-for
    # number matches the change counter.
    change_counter = header[24:28]
    page_count = int.from_bytes(header[28:32], "big")
    version_valid_for = header[92:96]
    if page_count and change_counter == version_valid_for and size < page_count * page_size:
        return f"truncated: {size} bytes on disk, header declares {page_count * page_size}"
    return None


def verify_database(
    path: Path,
    *,
    timeout: float = 0.5,
    thorough: bool = False,
    immutable: bool = False,
) -> IntegrityReport:
    """Verify that *path* is a readable SQLite database.

    Set *immutable* for staged candidates that no connection has open; SQLite
    then skips locking and never creates ``-wal``/``-shm`` siblings. The live
    database must be checked without it. *thorough* adds ``PRAGMA quick_check``
    and should come with a larger *timeout*.
    """
    try:
        if not path.is_file():
            return IntegrityReport(path, IntegrityStatus.CORRUPT, "file does not exist")
        problem = _check_header(path)
    except OSError as exc:
        return IntegrityReport(path, IntegrityStatus.CORRUPT, f"unreadable: {exc}")
    if problem is not None:
        logger.warning("Integrity check failed for %s: %s", path, problem)
        return IntegrityReport(path, IntegrityStatus.CORRUPT, problem)

    uri = f"{path.resolve().as_uri()}?mode=ro"
    if immutable:
        uri += "&immutable=1"
    deadline = time.monotonic() + timeout
    try:
        conn = sqlite3.connect(uri, uri=True, timeout=timeout, check_same_thread=False)
        try:
            conn.set_progress_handler(
                lambda: int(time.monotonic() > deadline), _PROGRESS_INTERVAL_OPS
            )
            conn.execute("SELECT count(*) FROM sqlite_master").fetchone()
            if thorough:
                rows = conn.execute("PRAGMA quick_check").fetchall()
                messages = [str(row[0]) for row in rows]
                if messages != ["ok"]:
                    detail = "; ".join(messages[:5])
                    logger.warning("quick_check failed for %s: %s", path, detail)
                    return IntegrityReport(path, IntegrityStatus.CORRUPT, detail)
        finally:
            conn.close()
    except sqlite3.Error as exc:
        logger.warning("Integrity check failed for %s: %s", path, exc)
        return IntegrityReport(path, IntegrityStatus.CORRUPT, str(exc))
    return IntegrityReport(path, IntegrityStatus.USABLE)
