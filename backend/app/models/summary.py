"""
DocDigest Backend: SummaryRecord SQLAlchemy Model
===================================================

What:  ORM model representing the `summaries` table.
How:   Inherits from the shared DeclarativeBase; Alembic reads this for migrations.
Who:   Written by SummaryService on successful authenticated processing;
       read back (owner only) by the history routes.

Table Design:
    - UUID primary key: non-sequential, cannot be enumerated
    - summary_tier: the *effective* tier actually used, never the requested one,
      so that exports match what the user received
    - List sections (key points, dates, ...) are JSON arrays of strings
    - extraction_degraded: true when the ODT fallback path produced the text
    - Rows are written once and never updated

    Index on (user_id, created_at):
        Serves the only list query, "this user's most recent summaries",
        scanned backwards for ORDER BY created_at DESC.
"""

import uuid
from datetime import datetime, timezone
from typing import List

from sqlalchemy import JSON, Boolean, DateTime, Index, Integer, String, Text, Uuid, false, text
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base


class SummaryRecord(Base):
    """A persisted, immutable document summary owned by one user."""

    __tablename__ = "summaries"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )

    user_id: Mapped[str] = mapped_column(
        String(128),
        nullable=False,
        comment="Owner; the only user allowed to read this summary",
    )

    # ── Source document metadata ──────────────────────────────────────────
    original_filename: Mapped[str] = mapped_column(String(255), nullable=False)
    file_type: Mapped[str] = mapped_column(
        String(16),
        nullable=False,
        comment="Normalized format: pdf, docx, txt, rtf, odt",
    )
    file_size: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    page_count: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        comment="Pages charged to the ledger for this document",
    )
    extraction_degraded: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        server_default=false(),
    )

    # ── Summary content ───────────────────────────────────────────────────
    summary_tier: Mapped[str] = mapped_column(
        String(16),
        nullable=False,
        comment="Effective tier used: short, medium, long",
    )
    executive_summary: Mapped[str] = mapped_column(Text, nullable=False)
    key_points: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)
    action_items: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)
    important_dates: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)
    relevant_names: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)
    places: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)
    raw_response: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        default="",
        comment="Unparsed summarizer reply, kept for debugging parse issues",
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        server_default=text("CURRENT_TIMESTAMP"),
    )

    __table_args__ = (
        Index("idx_summaries_user_created_at", "user_id", "created_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<SummaryRecord(id={self.id}, user_id='{self.user_id}', "
            f"tier='{self.summary_tier}', created_at='{self.created_at}')>"
        )
