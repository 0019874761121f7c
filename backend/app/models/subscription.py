"""
DocDigest Backend: Subscription SQLAlchemy Model
==================================================

What:  ORM model for the `subscriptions` table: the user's active plan.
Who:   Maintained by the billing integration (outside this service);
       read-only here via SubscriptionService.
"""

from datetime import datetime, timezone

from sqlalchemy import DateTime, Integer, String, text
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base


class Subscription(Base):
    """A user's current subscription. At most one row per user."""

    __tablename__ = "subscriptions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    user_id: Mapped[str] = mapped_column(
        String(128),
        nullable=False,
        unique=True,
        comment="Opaque user identifier from the identity provider",
    )

    # Values: free, premium, pro (unknown values resolve to free)
    plan: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
        default="free",
        server_default=text("'free'"),
    )

    # Values: active, past_due, canceled. Only 'active' grants the paid plan.
    status: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
        default="active",
        server_default=text("'active'"),
    )

    current_period_end: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        server_default=text("CURRENT_TIMESTAMP"),
    )

    def __repr__(self) -> str:
        return f"<Subscription(user_id='{self.user_id}', plan='{self.plan}', status='{self.status}')>"
