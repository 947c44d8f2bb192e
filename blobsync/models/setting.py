"""Application settings table."""

from __future__ import annotations

from sqlalchemy import Text, text
from sqlalchemy.orm import Mapped, mapped_column

from blobsync.models.base import Base


class Setting(Base):
    """A runtime-editable key/value setting stored in the synced database."""

    __tablename__ = "settings"

    key: Mapped[str] = mapped_column(Text, primary_key=True)
    value: Mapped[str] = mapped_column(Text, nullable=False, default="")
    category: Mapped[str | None] = mapped_column(Text, nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    updated_at: Mapped[str] = mapped_column(
        Text, nullable=False, server_default=text("CURRENT_TIMESTAMP")
    )


# Seeded on first schema creation; existing rows are never overwritten.
DEFAULT_SETTINGS: tuple[tuple[str, str, str, str], ...] = (
    ("ai_model", "gemini-pro", "ai", "Model used for all generation requests"),
    ("temperature_extract", "0.3", "ai", "Temperature for extraction"),
    ("temperature_match", "0.5", "ai", "Temperature for matching"),
    ("temperature_generate", "0.7", "ai", "Temperature for generation"),
    ("default_tone", "professional", "generation", "Default tone"),
    ("default_focus", "skills", "generation", "Default focus"),
    ("cover_letter_min_words", "300", "generation", "Minimum cover letter length (words)"),
    ("cover_letter_max_words", "400", "generation", "Maximum cover letter length (words)"),
)
