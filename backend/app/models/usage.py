"""
DocDigest Backend: UsageRecord SQLAlchemy Model
=================================================

What:  ORM model for the `usage_records` table, the usage ledger's backing store.
Who:   Written only by UsageLedger.increment_usage; read by the ledger's queries.

Table Design:
    - One row per (user_id, period); the unique constraint is the conflict
      target of the atomic upsert-and-increment.
    - period is "YYYY-MM" (UTC), so string order equals chronological order.
    - Rows are never deleted and never decremented by the application.
"""

from datetime import datetime, timezone

from sqlalchemy import DateTime, Integer, String, UniqueConstraint, text
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base


class UsageRecord(Base):
    """Documents and pages processed by one user in one billing period."""

    __tablename__ = "usage_records"

    id: Mapped[int] = mapped_column(
        Integer,
        primary_key=True,
        autoincrement=True,
    )

    # Opaque identifier supplied by the identity provider
    user_id: Mapped[str] = mapped_column(
        String(128),
        nullable=False,
        comment="Opaque user identifier from the identity provider",
    )

    period: Mapped[str] = mapped_column(
        String(7),
        nullable=False,
        comment="Billing period key, YYYY-MM in UTC",
    )

    document_count: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        server_default=text("0"),
        comment="Successfully processed documents in this period",
    )

    page_count: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        server_default=text("0"),
        comment="Pages (exact or estimated) of successfully processed documents",
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        server_default=text("CURRENT_TIMESTAMP"),
    )

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        server_default=text("CURRENT_TIMESTAMP"),
    )

    __table_args__ = (
        UniqueConstraint("user_id", "period", name="uq_usage_records_user_period"),
    )

    def __repr__(self) -> str:
        return (
            f"<UsageRecord(user_id='{self.user_id}', period='{self.period}', "
            f"documents={self.document_count}, pages={self.page_count})>"
        )
