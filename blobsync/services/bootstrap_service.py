"""Bootstrap guard: recover the remote database when no local copy exists.

This runs only on a genuinely empty disk, the one situation where starting
with a fresh database could make the application believe its data is gone and
later overwrite the remote history. The caller is therefore held until either
a verified copy has been installed or every attempt has been exhausted.

Worst-case duration is ``max_attempts * (attempt_timeout + retry_delay)``.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING

from blobsync.services.transfer import (
    FetchOutcome,
    StagedCopy,
    install_staged_copy,
    stage_verified_copy,
)

if TYPE_CHECKING:
    from pathlib import Path

    from blobsync.config import Settings
    from blobsync.storage.object_store import ObjectStoreGateway

logger = logging.getLogger(__name__)


class BootstrapOutcome(StrEnum):
    RESTORED = "restored"
    REMOTE_MISSING = "remote_missing"
    NOT_CONFIGURED = "not_configured"
    EXHAUSTED = "exhausted"


@dataclass(frozen=True)
class BootstrapAttemptRecord:
    attempt: int
    elapsed_seconds: float
    outcome: FetchOutcome
    detail: str = ""


@dataclass
class BootstrapReport:
    outcome: BootstrapOutcome
    attempts: list[BootstrapAttemptRecord] = field(default_factory=list)

    @property
    def restored(self) -> bool:
        return self.outcome is BootstrapOutcome.RESTORED


class BootstrapGuard:
    """Bounded-retry download of the primary blob into an empty local path."""

    def __init__(
        self,
        gateway: ObjectStoreGateway,
        *,
        db_path: Path,
        key: str,
        max_attempts: int = 5,
        attempt_timeout: float = 30.0,
        retry_delay: float = 2.0,
        integrity_timeout: float = 0.5,
    ) -> None:
        self.gateway = gateway
        self.db_path = db_path
        self.key = key
        self.max_attempts = max_attempts
        self.attempt_timeout = attempt_timeout
        self.retry_delay = retry_delay
        self.integrity_timeout = integrity_timeout

    @classmethod
    def from_settings(cls, settings: Settings, gateway: ObjectStoreGateway) -> BootstrapGuard:
        return cls(
            gateway,
            db_path=settings.database_path,
            key=settings.storage_db_key,
            max_attempts=settings.bootstrap_max_attempts,
            attempt_timeout=settings.bootstrap_attempt_timeout_seconds,
            retry_delay=settings.bootstrap_retry_delay_seconds,
            integrity_timeout=settings.integrity_timeout_seconds,
        )

    async def _attempt(self) -> StagedCopy:
        cancel = threading.Event()
        try:
            return await asyncio.wait_for(
                stage_verified_copy(
                    self.gateway,
                    self.key,
                    self.db_path,
                    integrity_timeout=self.integrity_timeout,
                    cancel=cancel,
                ),
                timeout=self.attempt_timeout,
            )
        except TimeoutError:
            cancel.set()
            return StagedCopy(
                FetchOutcome.TIMEOUT, detail=f"no result within {self.attempt_timeout:g}s"
            )

    async def recover(self) -> BootstrapReport:
        """Block until the remote copy is installed or recovery is given up."""
        if not self.gateway.configured:
            return BootstrapReport(BootstrapOutcome.NOT_CONFIGURED)

        report = BootstrapReport(BootstrapOutcome.EXHAUSTED)
        logger.info(
            "No local database at %s; recovering %s from object storage", self.db_path, self.key
        )
        for attempt in range(1, self.max_attempts + 1):
            started = time.monotonic()
            staged = await self._attempt()
            record = BootstrapAttemptRecord(
                attempt=attempt,
                elapsed_seconds=round(time.monotonic() - started, 3),
                outcome=staged.outcome,
                detail=staged.detail,
            )
            report.attempts.append(record)

            if staged.verified:
                install_staged_copy(staged, self.db_path)
                logger.info(
                    "Recovered database from %s on attempt %d/%d",
                    self.key,
                    attempt,
                    self.max_attempts,
                )
                report.outcome = BootstrapOutcome.RESTORED
                return report
            if staged.outcome is FetchOutcome.NOT_FOUND:
                logger.info("No remote copy at %s; a new database will be created", self.key)
                report.outcome = BootstrapOutcome.REMOTE_MISSING
                return report
            if staged.outcome is FetchOutcome.NOT_CONFIGURED:
                report.outcome = BootstrapOutcome.NOT_CONFIGURED
                return report

            logger.warning(
                "Bootstrap attempt %d/%d for %s failed (%s): %s",
                attempt,
                self.max_attempts,
                self.key,
                staged.outcome,
                staged.detail,
            )
            if attempt < self.max_attempts:
                await asyncio.sleep(self.retry_delay)

        logger.critical(
            "BOOTSTRAP RECOVERY FAILED: could not restore %s after %d attempts. "
            "Starting with an EMPTY database at %s. The remote copy has NOT been "
            "restored and automatic uploads are suspended so it is not overwritten. "
            "Check object storage credentials and connectivity, then run "
            "'blobsync-admin pull' (or 'restore-backup') to restore it, or "
            "'blobsync-admin push --force' to deliberately replace it.",
            self.key,
            self.max_attempts,
            self.db_path,
        )
        return report
