"""SQLAlchemy ORM models for blobsync."""

from blobsync.models.base import Base
from blobsync.models.setting import DEFAULT_SETTINGS, Setting

__all__ = [
    "DEFAULT_SETTINGS",
    "Base",
    "Setting",
]
