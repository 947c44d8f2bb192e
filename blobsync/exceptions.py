"""Application-level exception types.

Convention:
- ``InternalServerError``: for errors whose details must never reach clients
  (local disk failures, config validation, etc.). The global handler logs the
  full message at ERROR and returns a generic "Internal server error" (500).
- ``LocalStorageError``: the local database file cannot be read or written
  at all. No sync policy compensates for a broken local disk, so it always
  propagates to the caller of ``get_handle()`` / ``notify_write_committed()``.
- ``SyncUnavailableError``: a manual sync was requested while no remote
  bucket is configured. Safe to forward to clients (400).

Remote transport failures and corrupt payloads are *not* exceptions: they are
reported as tagged results (``StoreResult``, ``IntegrityReport``,
``SyncReport``) so callers can degrade to local-only operation.
"""

from __future__ import annotations


class InternalServerError(Exception):
    """Raised for internal errors whose details must not be exposed to clients.

    The global exception handler in ``blobsync/main.py`` catches this, logs
    the full message server-side, and returns HTTP 500 with a generic
    ``"Internal server error"`` detail.
    """


class LocalStorageError(InternalServerError):
    """The local database path cannot be read or written."""


class SyncUnavailableError(Exception):
    """Remote sync was requested but no bucket is configured."""


class CheckpointIncompleteError(Exception):
    """A WAL checkpoint could not fold every frame into the main file.

    Usually another connection holds a read transaction. Uploading at this
    point would ship a snapshot without the latest commits, so the sync round
    is abandoned and retried on the next write.
    """
