"""Maintenance operations on the live database: stats, local backups, optimize, verify."""

from __future__ import annotations

import asyncio
import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import inspect

from blobsync.exceptions import LocalStorageError
from blobsync.storage.integrity import IntegrityReport, verify_database

if TYPE_CHECKING:
    from pathlib import Path

    from blobsync.database import DatabaseHandle

logger = logging.getLogger(__name__)

_VERIFY_TIMEOUT_SECONDS = 30.0


def _quote_identifier(name: str) -> str:
    return '"' + name.replace('"', '""') + '"'


async def collect_stats(handle: DatabaseHandle) -> dict[str, Any]:
    """Row counts per table plus file and page statistics."""
    async with handle.engine.connect() as conn:
        tables = await conn.run_sync(lambda sync_conn: inspect(sync_conn).get_table_names())
        counts: dict[str, int] = {}
        for table in sorted(tables):
            result = await conn.execute(
                handle.statement(f"SELECT COUNT(*) FROM {_quote_identifier(table)}")
            )
            counts[table] = int(result.scalar_one())
    pages = await handle.page_stats()
    try:
        file_size = handle.path.stat().st_size
    except OSError as exc:
        msg = f"Could not stat local database {handle.path}: {exc}"
        raise LocalStorageError(msg) from exc
    return {
        "tables": counts,
        "file_size": file_size,
        "page_count": pages["page_count"],
        "page_size": pages["page_size"],
        "freelist_count": pages["freelist_count"],
        "database_size": pages["page_count"] * pages["page_size"],
    }


async def create_local_backup(handle: DatabaseHandle, backup_dir: Path) -> Path:
    """Write a consistent timestamped snapshot of the live database into *backup_dir*."""
    try:
        backup_dir.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        msg = f"Could not create backup directory {backup_dir}: {exc}"
        raise LocalStorageError(msg) from exc
    stamp = datetime.now(UTC).strftime("%Y%m%dT%H%M%S%fZ")
    target = backup_dir / f"{handle.path.stem}-{stamp}{handle.path.suffix or '.db'}"
    async with handle.engine.connect() as conn:
        conn = await conn.execution_options(isolation_level="AUTOCOMMIT")
        await conn.exec_driver_sql("VACUUM INTO ?", (str(target),))
    logger.info("Local backup written to %s", target)
    return target


async def optimize(handle: DatabaseHandle) -> dict[str, int]:
    """Rebuild the file with VACUUM and refresh planner statistics.

    Returns the page statistics before and after.
    """
    before = await handle.page_stats()
    async with handle.engine.connect() as conn:
        conn = await conn.execution_options(isolation_level="AUTOCOMMIT")
        await conn.exec_driver_sql("VACUUM")
        await conn.exec_driver_sql("ANALYZE")
    after = await handle.page_stats()
    handle.statements.clear()
    logger.info(
        "Database optimized: %d -> %d pages", before["page_count"], after["page_count"]
    )
    return {
        "pages_before": before["page_count"],
        "pages_after": after["page_count"],
        "page_size": after["page_size"],
    }


async def verify_live(handle: DatabaseHandle) -> IntegrityReport:
    """Run the thorough integrity check against the live file."""
    return await asyncio.to_thread(
        verify_database, handle.path, timeout=_VERIFY_TIMEOUT_SECONDS, thorough=True
    )
