"""Create usage_records, subscriptions and summaries tables

Revision ID: 001
Revises: None
Create Date: 2026-10-18 00:00:00.000000+00:00

What:  Initial DocDigest schema.
       usage_records  per-user, per-period counters (upsert target)
       subscriptions  the user's plan, maintained by billing
       summaries      persisted summaries, owner-scoped

Rollback: downgrade() drops all three tables. Dropping usage_records
destroys billing history; do not run it against production.
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "usage_records",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column(
            "user_id",
            sa.String(128),
            nullable=False,
            comment="Opaque user identifier from the identity provider",
        ),
        sa.Column("period", sa.String(7), nullable=False, comment="Billing period key, YYYY-MM in UTC"),
        sa.Column("document_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("page_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.PrimaryKeyConstraint("id"),
        # Conflict target of the atomic upsert-and-increment
        sa.UniqueConstraint("user_id", "period", name="uq_usage_records_user_period"),
    )

    op.create_table(
        "subscriptions",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("user_id", sa.String(128), nullable=False),
        sa.Column("plan", sa.String(32), nullable=False, server_default=sa.text("'free'")),
        sa.Column("status", sa.String(32), nullable=False, server_default=sa.text("'active'")),
        sa.Column("current_period_end", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("user_id"),
    )

    op.create_table(
        "summaries",
        sa.Column("id", sa.Uuid(as_uuid=True), nullable=False),
        sa.Column("user_id", sa.String(128), nullable=False),
        sa.Column("original_filename", sa.String(255), nullable=False),
        sa.Column("file_type", sa.String(16), nullable=False),
        sa.Column("file_size", sa.Integer(), nullable=False),
        sa.Column("page_count", sa.Integer(), nullable=False),
        sa.Column("extraction_degraded", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("summary_tier", sa.String(16), nullable=False, comment="Effective tier used"),
        sa.Column("executive_summary", sa.Text(), nullable=False),
        sa.Column("key_points", sa.JSON(), nullable=False),
        sa.Column("action_items", sa.JSON(), nullable=False),
        sa.Column("important_dates", sa.JSON(), nullable=False),
        sa.Column("relevant_names", sa.JSON(), nullable=False),
        sa.Column("places", sa.JSON(), nullable=False),
        sa.Column("raw_response", sa.Text(), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.PrimaryKeyConstraint("id"),
    )

    # History list query: WHERE user_id = ? ORDER BY created_at DESC LIMIT n
    op.create_index(
        "idx_summaries_user_created_at",
        "summaries",
        ["user_id", "created_at"],
    )


def downgrade() -> None:
    op.drop_index("idx_summaries_user_created_at", table_name="summaries")
    op.drop_table("summaries")
    op.drop_table("subscriptions")
    op.drop_table("usage_records")
