"""Database engine, handle and the process-wide handle provider."""

from __future__ import annotations

import asyncio
import logging
from collections import OrderedDict
from enum import StrEnum
from typing import TYPE_CHECKING, Any

from sqlalchemy import event, insert, text
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from blobsync.exceptions import CheckpointIncompleteError, LocalStorageError
from blobsync.models import DEFAULT_SETTINGS, Base, Setting
from blobsync.services.reconcile_service import StartupReconciler
from blobsync.services.transfer import install_staged_copy

if TYPE_CHECKING:
    from pathlib import Path

    from sqlalchemy.sql.elements import TextClause

    from blobsync.config import Settings
    from blobsync.services.sync_status import SyncStatusTracker
    from blobsync.services.transfer import StagedCopy
    from blobsync.storage.object_store import ObjectStoreGateway

logger = logging.getLogger(__name__)

_BUSY_TIMEOUT_MS = 5000


def _set_sqlite_pragmas(dbapi_connection: Any, _connection_record: Any) -> None:
    cursor = dbapi_connection.cursor()
    try:
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.execute(f"PRAGMA busy_timeout={_BUSY_TIMEOUT_MS}")
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA synchronous=NORMAL")
        cursor.execute("PRAGMA cache_size=-64000")
        cursor.execute("PRAGMA temp_store=MEMORY")
    finally:
        cursor.close()


def create_engine(
    settings: Settings,
) -> tuple[
    AsyncEngine,
    async_sessionmaker[AsyncSession],
]:
    """Create async engine and session factory.

    Returns (engine, session_factory) tuple.
    """
    engine = create_async_engine(
        settings.database_url,
        echo=settings.debug,
    )
    event.listen(engine.sync_engine, "connect", _set_sqlite_pragmas)
    session_factory = async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )
    return engine, session_factory


async def init_schema(engine: AsyncEngine) -> None:
    """Create missing tables and seed default settings."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
        await conn.execute(
            insert(Setting).prefix_with("OR IGNORE"),
            [
                {"key": key, "value": value, "category": category, "description": description}
                for key, value, category, description in DEFAULT_SETTINGS
            ],
        )


class StatementCache:
    """LRU cache of prepared statements keyed by their SQL text."""

    def __init__(self, max_size: int = 256) -> None:
        self.max_size = max_size
        self._entries: OrderedDict[str, TextClause] = OrderedDict()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, sql: object) -> bool:
        return sql in self._entries

    def get(self, sql: str) -> TextClause:
        stmt = self._entries.get(sql)
        if stmt is not None:
            self._entries.move_to_end(sql)
            return stmt
        stmt = text(sql)
        self._entries[sql] = stmt
        if len(self._entries) > self.max_size:
            self._entries.popitem(last=False)
        return stmt

    def clear(self) -> None:
        self._entries.clear()


class DatabaseHandle:
    """Live, queryable access to the local database."""

    def __init__(
        self,
        engine: AsyncEngine,
        session_factory: async_sessionmaker[AsyncSession],
        path: Path,
        statements: StatementCache,
    ) -> None:
        self.engine = engine
        self.session_factory = session_factory
        self.path = path
        self.statements = statements

    def statement(self, sql: str) -> TextClause:
        """Return the cached prepared statement for *sql*."""
        return self.statements.get(sql)

    async def checkpoint(self) -> None:
        """Fold the write-ahead log into the main file.

        Raises ``CheckpointIncompleteError`` when a concurrent reader kept
        frames in the log.
        """
        async with self.engine.connect() as conn:
            conn = await conn.execution_options(isolation_level="AUTOCOMMIT")
            row = (await conn.exec_driver_sql("PRAGMA wal_checkpoint(TRUNCATE)")).fetchone()
        if row is not None and row[0] != 0:
            msg = f"WAL checkpoint of {self.path} was blocked (log={row[1]}, done={row[2]})"
            raise CheckpointIncompleteError(msg)

    async def page_stats(self) -> dict[str, int]:
        """Return page count, page size and free-list length."""
        stats: dict[str, int] = {}
        async with self.engine.connect() as conn:
            for pragma in ("page_count", "page_size", "freelist_count"):
                stats[pragma] = int((await conn.exec_driver_sql(f"PRAGMA {pragma}")).scalar_one())
        return stats


class ProviderState(StrEnum):
    UNINITIALIZED = "uninitialized"
    RECONCILING = "reconciling"
    READY = "ready"


class DatabaseProvider:
    """Process-wide owner of the database handle.

    The first ``get_handle()`` call runs startup reconciliation exactly once;
    concurrent callers wait on the same lock until it resolves.
    """

    def __init__(
        self,
        settings: Settings,
        gateway: ObjectStoreGateway,
        tracker: SyncStatusTracker,
        *,
        reconciler: StartupReconciler | None = None,
    ) -> None:
        self.settings = settings
        self.gateway = gateway
        self.tracker = tracker
        self._reconciler = reconciler or StartupReconciler.from_settings(settings, gateway)
        self._lock = asyncio.Lock()
        self._handle: DatabaseHandle | None = None
        self.state = ProviderState.UNINITIALIZED

    @property
    def path(self) -> Path:
        return self.settings.database_path

    def is_remote_configured(self) -> bool:
        return self.gateway.configured

    async def get_handle(self) -> DatabaseHandle:
        """Return the live handle, reconciling with the remote copy on first use.

        Raises ``LocalStorageError`` if the local file cannot be opened; the
        next call then retries initialization from scratch.
        """
        if self._handle is not None:
            return self._handle
        async with self._lock:
            if self._handle is not None:
                return self._handle
            self.state = ProviderState.RECONCILING
            try:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                report = await self._reconciler.reconcile()
                self.tracker.record_startup(report)
                handle = await self._open()
            except OSError as exc:
                self.state = ProviderState.UNINITIALIZED
                msg = f"Local database directory {self.path.parent} is not usable: {exc}"
                raise LocalStorageError(msg) from exc
            except BaseException:
                self.state = ProviderState.UNINITIALIZED
                raise
            self._handle = handle
            self.state = ProviderState.READY
            logger.info(
                "Database ready at %s (startup decision: %s)", self.path, report.decision
            )
        return handle

    async def _open(self) -> DatabaseHandle:
        engine, session_factory = create_engine(self.settings)
        try:
            await init_schema(engine)
        except DBAPIError as exc:
            await engine.dispose()
            msg = f"Could not open local database {self.path}: {exc.orig}"
            raise LocalStorageError(msg) from exc
        return DatabaseHandle(
            engine,
            session_factory,
            self.path,
            StatementCache(self.settings.statement_cache_size),
        )

    async def replace_database(self, staged: StagedCopy) -> DatabaseHandle:
        """Swap a verified downloaded copy in for the live database.

        Pooled connections are closed first so no connection keeps the old
        file open; the same handle keeps working against the new file.
        """
        async with self._lock:
            handle = self._handle
            if handle is not None:
                await handle.engine.dispose()
            install_staged_copy(staged, self.path)
            if handle is None:
                handle = await self._open()
                self._handle = handle
                self.state = ProviderState.READY
            else:
                try:
                    await init_schema(handle.engine)
                except DBAPIError as exc:
                    msg = f"Could not open replaced database {self.path}: {exc.orig}"
                    raise LocalStorageError(msg) from exc
                handle.statements.clear()
            source = staged.metadata.key if staged.metadata is not None else "remote copy"
            logger.info("Live database replaced from %s", source)
        return handle

    async def close(self) -> None:
        async with self._lock:
            if self._handle is not None:
                await self._handle.engine.dispose()
                self._handle = None
            self.state = ProviderState.UNINITIALIZED
