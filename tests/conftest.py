"""Shared test fixtures for blobsync."""

from __future__ import annotations

import sqlite3
from contextlib import asynccontextmanager, closing
from typing import TYPE_CHECKING

import pytest
from httpx import ASGITransport, AsyncClient

from blobsync.config import Settings
from blobsync.main import create_app
from tests.fake_object_store import FakeObjectStore

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator
    from pathlib import Path

    from fastapi import FastAPI

TEST_ADMIN_TOKEN = "test-admin-token-with-at-least-32-characters"
AUTH_HEADERS = {"Authorization": f"Bearer {TEST_ADMIN_TOKEN}"}


def make_database(path: Path, *notes: str) -> Path:
    """Create a small SQLite database at *path* holding *notes*."""
    path.parent.mkdir(parents=True, exist_ok=True)
    with closing(sqlite3.connect(path)) as conn:
        conn.execute("CREATE TABLE IF NOT EXISTS notes (id INTEGER PRIMARY KEY, body TEXT)")
        conn.executemany("INSERT INTO notes (body) VALUES (?)", [(note,) for note in notes])
        conn.commit()
    return path


def database_bytes(tmp_path: Path, *notes: str) -> bytes:
    """Return the bytes of a fresh database holding *notes*."""
    scratch = tmp_path / "scratch"
    scratch.mkdir(exist_ok=True)
    path = scratch / f"db-{len(list(scratch.iterdir()))}.db"
    return make_database(path, *notes).read_bytes()


def read_notes(path: Path) -> list[str]:
    with closing(sqlite3.connect(path)) as conn:
        return [row[0] for row in conn.execute("SELECT body FROM notes ORDER BY id")]


@asynccontextmanager
async def create_test_app(
    settings: Settings, gateway: FakeObjectStore
) -> AsyncGenerator[FastAPI]:
    """Create an app with its database provider initialized.

    Performs the work of the application lifespan because ASGITransport does
    not trigger it.
    """
    app = create_app(settings, gateway=gateway)  # type: ignore[arg-type]
    settings.validate_runtime_security()
    await app.state.provider.get_handle()
    try:
        yield app
    finally:
        await app.state.provider.close()


@asynccontextmanager
async def create_test_client(
    settings: Settings, gateway: FakeObjectStore
) -> AsyncGenerator[AsyncClient]:
    """Create an HTTP test client with a fully initialized app."""
    async with (
        create_test_app(settings, gateway) as app,
        AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac,
    ):
        yield ac


@pytest.fixture
def test_settings(tmp_path: Path) -> Settings:
    """Create test settings with temporary paths and fast retry timings."""
    return Settings(
        _env_file=None,  # type: ignore[call-arg]
        debug=True,
        admin_token=TEST_ADMIN_TOKEN,
        database_path=tmp_path / "data" / "app.db",
        backup_dir=tmp_path / "backups",
        storage_bucket="test-bucket",
        bootstrap_max_attempts=3,
        bootstrap_attempt_timeout_seconds=1.0,
        bootstrap_retry_delay_seconds=0.0,
        write_sync_max_attempts=2,
        write_sync_retry_delay_seconds=0.0,
    )


@pytest.fixture
def local_only_settings(test_settings: Settings) -> Settings:
    return test_settings.model_copy(update={"storage_bucket": ""})


@pytest.fixture
def fake_store() -> FakeObjectStore:
    return FakeObjectStore()


@pytest.fixture
def unconfigured_store() -> FakeObjectStore:
    return FakeObjectStore(bucket="")
