"""Shared API dependencies: settings, database handle, sync services, admin auth."""

from __future__ import annotations

import secrets
from collections.abc import AsyncGenerator
from typing import Annotated

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from blobsync.config import Settings
from blobsync.database import DatabaseHandle, DatabaseProvider
from blobsync.services.sync_status import SyncStatusTracker
from blobsync.services.write_sync_service import WriteSyncService
from blobsync.storage.object_store import ObjectStoreGateway

security = HTTPBearer(auto_error=False)


def get_settings(request: Request) -> Settings:
    """Get application settings from app state."""
    settings: Settings = request.app.state.settings
    return settings


def get_provider(request: Request) -> DatabaseProvider:
    provider: DatabaseProvider = request.app.state.provider
    return provider


def get_gateway(request: Request) -> ObjectStoreGateway:
    gateway: ObjectStoreGateway = request.app.state.gateway
    return gateway


def get_tracker(request: Request) -> SyncStatusTracker:
    tracker: SyncStatusTracker = request.app.state.sync_tracker
    return tracker


def get_sync_service(request: Request) -> WriteSyncService:
    service: WriteSyncService = request.app.state.sync_service
    return service


async def get_handle(
    provider: Annotated[DatabaseProvider, Depends(get_provider)],
) -> DatabaseHandle:
    """Get the live database handle, waiting for startup reconciliation if needed."""
    return await provider.get_handle()


async def get_session(
    handle: Annotated[DatabaseHandle, Depends(get_handle)],
) -> AsyncGenerator[AsyncSession]:
    """Get a database session."""
    async with handle.session_factory() as session:
        yield session


async def require_admin(
    settings: Annotated[Settings, Depends(get_settings)],
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)] = None,
) -> None:
    """Require the admin bearer token. Raises 401 if missing, 403 if wrong."""
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    expected = settings.admin_token
    if not expected or not secrets.compare_digest(
        credentials.credentials.encode(), expected.encode()
    ):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required",
        )
