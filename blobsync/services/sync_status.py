"""In-memory record of the process's sync history for the admin view."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import TYPE_CHECKING

from blobsync.services.bootstrap_service import BootstrapOutcome

if TYPE_CHECKING:
    from blobsync.services.reconcile_service import ReconcileReport

logger = logging.getLogger(__name__)


class SyncOutcome(StrEnum):
    UPLOADED = "uploaded"
    DOWNLOADED = "downloaded"
    SKIPPED_NOT_CONFIGURED = "skipped_not_configured"
    SKIPPED_CORRUPT = "skipped_corrupt"
    SKIPPED_SUSPENDED = "skipped_suspended"
    FAILED = "failed"


@dataclass(frozen=True)
class SyncReport:
    """Result of one write-sync round or operator action."""

    outcome: SyncOutcome
    action: str = "upload"
    finished_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    detail: str = ""

    @property
    def succeeded(self) -> bool:
        return self.outcome in (SyncOutcome.UPLOADED, SyncOutcome.DOWNLOADED)


class SyncStatusTracker:
    """Startup decision, last sync report and upload suspension state."""

    def __init__(self) -> None:
        self.startup: ReconcileReport | None = None
        self.last_sync: SyncReport | None = None
        self.uploads_suspended = False
        self.suspension_reason = ""

    def record_startup(self, report: ReconcileReport) -> None:
        self.startup = report
        bootstrap = report.bootstrap
        if bootstrap is not None and bootstrap.outcome is BootstrapOutcome.EXHAUSTED:
            self.suspend(
                f"bootstrap recovery exhausted after {len(bootstrap.attempts)} attempts"
            )

    def record_sync(self, report: SyncReport) -> SyncReport:
        self.last_sync = report
        return report

    def suspend(self, reason: str) -> None:
        self.uploads_suspended = True
        self.suspension_reason = reason
        logger.warning("Automatic uploads suspended: %s", reason)

    def resume(self) -> None:
        if self.uploads_suspended:
            logger.info("Automatic uploads resumed")
        self.uploads_suspended = False
        self.suspension_reason = ""
