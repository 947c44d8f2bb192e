"""Application settings stored in the synced database."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from blobsync.exceptions import InternalServerError

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from blobsync.database import DatabaseHandle

_COLUMNS = "key, value, category, description, updated_at"

_SELECT_ALL = f"SELECT {_COLUMNS} FROM settings ORDER BY category, key"
_SELECT_CATEGORY = f"SELECT {_COLUMNS} FROM settings WHERE category = :category ORDER BY key"
_SELECT_ONE = f"SELECT {_COLUMNS} FROM settings WHERE key = :key"
_UPSERT = (
    "INSERT INTO settings (key, value, updated_at) VALUES (:key, :value, CURRENT_TIMESTAMP) "
    "ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at = CURRENT_TIMESTAMP"
)


async def list_settings(
    session: AsyncSession, handle: DatabaseHandle, *, category: str | None = None
) -> list[dict[str, Any]]:
    """Return all settings, optionally restricted to one category."""
    if category is None:
        result = await session.execute(handle.statement(_SELECT_ALL))
    else:
        result = await session.execute(handle.statement(_SELECT_CATEGORY), {"category": category})
    return [dict(row) for row in result.mappings()]


async def get_setting(
    session: AsyncSession, handle: DatabaseHandle, key: str
) -> dict[str, Any] | None:
    result = await session.execute(handle.statement(_SELECT_ONE), {"key": key})
    row = result.mappings().first()
    return dict(row) if row is not None else None


async def update_setting(
    session: AsyncSession, handle: DatabaseHandle, key: str, value: str
) -> dict[str, Any]:
    """Insert or overwrite *key* and commit. Returns the stored row."""
    await session.execute(handle.statement(_UPSERT), {"key": key, "value": value})
    row = await get_setting(session, handle, key)
    if row is None:
        await session.rollback()
        msg = f"Setting {key!r} vanished after update"
        raise InternalServerError(msg)
    await session.commit()
    return row
