"""Health check endpoint."""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from blobsync.api.deps import get_provider
from blobsync.database import DatabaseProvider, ProviderState

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


class HealthResponse(BaseModel):
    status: str
    version: str
    database: str
    remote_configured: bool


@router.get("/api/health", response_model=HealthResponse)
async def health_check(
    provider: Annotated[DatabaseProvider, Depends(get_provider)],
) -> HealthResponse:
    """Health check endpoint for monitoring and load balancers.

    Never waits for startup reconciliation; reports "initializing" until the
    database handle is ready.
    """
    if provider.state is not ProviderState.READY:
        return HealthResponse(
            status="initializing",
            version="0.1.0",
            database=provider.state.value,
            remote_configured=provider.is_remote_configured(),
        )

    db_status = "ok"
    try:
        handle = await provider.get_handle()
        async with handle.engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except SQLAlchemyError:
        logger.warning("Health check database query failed", exc_info=True)
        db_status = "error"

    return HealthResponse(
        status="ok" if db_status == "ok" else "degraded",
        version="0.1.0",
        database=db_status,
        remote_configured=provider.is_remote_configured(),
    )
