"""Tests for database maintenance operations."""

from __future__ import annotations

import sqlite3
from contextlib import closing
from typing import TYPE_CHECKING

import pytest

from blobsync.database import DatabaseProvider
from blobsync.models import DEFAULT_SETTINGS
from blobsync.services.maintenance_service import (
    collect_stats,
    create_local_backup,
    optimize,
    verify_live,
)
from blobsync.services.settings_service import update_setting
from blobsync.services.sync_status import SyncStatusTracker
from blobsync.storage.integrity import IntegrityStatus

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

    from blobsync.config import Settings
    from blobsync.database import DatabaseHandle
    from tests.fake_object_store import FakeObjectStore


@pytest.fixture
async def handle(
    local_only_settings: Settings, unconfigured_store: FakeObjectStore
) -> AsyncGenerator[DatabaseHandle]:
    provider = DatabaseProvider(
        local_only_settings,
        unconfigured_store,  # type: ignore[arg-type]
        SyncStatusTracker(),
    )
    yield await provider.get_handle()
    await provider.close()


class TestCollectStats:
    @pytest.mark.asyncio
    async def test_counts_rows_per_table(self, handle: DatabaseHandle) -> None:
        stats = await collect_stats(handle)
        assert stats["tables"] == {"settings": len(DEFAULT_SETTINGS)}
        assert stats["database_size"] == stats["page_count"] * stats["page_size"]
        assert stats["file_size"] > 0


class TestLocalBackup:
    @pytest.mark.asyncio
    async def test_backup_is_a_consistent_copy(
        self, handle: DatabaseHandle, local_only_settings: Settings
    ) -> None:
        async with handle.session_factory() as session:
            await update_setting(session, handle, "theme", "dark")

        path = await create_local_backup(handle, local_only_settings.backup_dir)

        assert path.parent == local_only_settings.backup_dir
        assert path.name.startswith("app-")
        assert path.suffix == ".db"
        with closing(sqlite3.connect(path)) as conn:
            row = conn.execute("SELECT value FROM settings WHERE key = 'theme'").fetchone()
        assert row == ("dark",)

    @pytest.mark.asyncio
    async def test_successive_backups_do_not_collide(
        self, handle: DatabaseHandle, local_only_settings: Settings
    ) -> None:
        first = await create_local_backup(handle, local_only_settings.backup_dir)
        second = await create_local_backup(handle, local_only_settings.backup_dir)
        assert first != second
        assert first.exists()
        assert second.exists()


class TestOptimize:
    @pytest.mark.asyncio
    async def test_reclaims_free_pages(self, handle: DatabaseHandle) -> None:
        async with handle.session_factory() as session:
            for i in range(50):
                await update_setting(session, handle, f"bulk_{i}", "x" * 4000)
        async with handle.engine.begin() as conn:
            await conn.exec_driver_sql("DELETE FROM settings WHERE key LIKE 'bulk_%'")
        await handle.checkpoint()

        result = await optimize(handle)

        assert result["pages_after"] < result["pages_before"]
        assert result["page_size"] > 0
        assert len(handle.statements) == 0


class TestVerifyLive:
    @pytest.mark.asyncio
    async def test_healthy_database_is_ok(self, handle: DatabaseHandle) -> None:
        report = await verify_live(handle)
        assert report.status is IntegrityStatus.USABLE
        assert report.usable
