"""Integration tests for the settings endpoints."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from tests.conftest import AUTH_HEADERS, create_test_client

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

    from httpx import AsyncClient

    from blobsync.config import Settings
    from tests.fake_object_store import FakeObjectStore


@pytest.fixture
async def client(
    test_settings: Settings, fake_store: FakeObjectStore
) -> AsyncGenerator[AsyncClient]:
    async with create_test_client(test_settings, fake_store) as ac:
        yield ac


class TestReadSettings:
    @pytest.mark.asyncio
    async def test_requires_admin(self, client: AsyncClient) -> None:
        resp = await client.get("/api/settings")
        assert resp.status_code == 401

    @pytest.mark.asyncio
    async def test_list_all(self, client: AsyncClient) -> None:
        resp = await client.get("/api/settings", headers=AUTH_HEADERS)
        assert resp.status_code == 200
        keys = {s["key"] for s in resp.json()["settings"]}
        assert {"ai_model", "default_tone"} <= keys

    @pytest.mark.asyncio
    async def test_list_by_category(self, client: AsyncClient) -> None:
        resp = await client.get(
            "/api/settings", params={"category": "generation"}, headers=AUTH_HEADERS
        )
        assert resp.status_code == 200
        assert {s["category"] for s in resp.json()["settings"]} == {"generation"}

    @pytest.mark.asyncio
    async def test_get_one(self, client: AsyncClient) -> None:
        resp = await client.get("/api/settings/default_tone", headers=AUTH_HEADERS)
        assert resp.status_code == 200
        assert resp.json()["value"] == "professional"

    @pytest.mark.asyncio
    async def test_get_missing_is_404(self, client: AsyncClient) -> None:
        resp = await client.get("/api/settings/missing", headers=AUTH_HEADERS)
        assert resp.status_code == 404


class TestWriteSetting:
    @pytest.mark.asyncio
    async def test_write_is_synced(
        self, client: AsyncClient, fake_store: FakeObjectStore, test_settings: Settings
    ) -> None:
        resp = await client.put(
            "/api/settings/default_tone", json={"value": "casual"}, headers=AUTH_HEADERS
        )

        assert resp.status_code == 200
        data = resp.json()
        assert data["setting"]["value"] == "casual"
        assert data["sync"]["outcome"] == "uploaded"
        assert test_settings.storage_db_key in fake_store.blobs

    @pytest.mark.asyncio
    async def test_sync_failure_does_not_fail_write(
        self, client: AsyncClient, fake_store: FakeObjectStore, test_settings: Settings
    ) -> None:
        fake_store.broken_upload_keys.add(test_settings.storage_db_key)

        resp = await client.put(
            "/api/settings/theme", json={"value": "dark"}, headers=AUTH_HEADERS
        )

        assert resp.status_code == 200
        assert resp.json()["sync"]["outcome"] == "failed"
        stored = await client.get("/api/settings/theme", headers=AUTH_HEADERS)
        assert stored.json()["value"] == "dark"

    @pytest.mark.asyncio
    async def test_oversized_value_is_422(self, client: AsyncClient) -> None:
        resp = await client.put(
            "/api/settings/theme", json={"value": "x" * 10001}, headers=AUTH_HEADERS
        )
        assert resp.status_code == 422
        assert resp.json()["detail"][0]["field"] == "value"

    @pytest.mark.asyncio
    async def test_local_only_write_is_skipped(
        self, local_only_settings: Settings, unconfigured_store: FakeObjectStore
    ) -> None:
        async with create_test_client(local_only_settings, unconfigured_store) as ac:
            resp = await ac.put(
                "/api/settings/theme", json={"value": "dark"}, headers=AUTH_HEADERS
            )
        assert resp.status_code == 200
        assert resp.json()["sync"]["outcome"] == "skipped_not_configured"
