"""Create analytics_retry_queue table.

Revision ID: 003
Revises: 002
Create Date: 2026-09-28

"""
from typing import Sequence, Union

import sqlalchemy as sa
from alembic import context, op
from sqlalchemy.dialects.postgresql import JSONB

from app.core.database import ROLE_ALL, ROLE_RETRY_QUEUE, runs_migration

# revision identifiers, used by Alembic.
revision: str = "003"
down_revision: Union[str, None] = "002"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _applies() -> bool:
    return runs_migration(ROLE_RETRY_QUEUE, context.config.attributes.get("database_role", ROLE_ALL))


def upgrade() -> None:
    """Create the retry queue table."""
    if not _applies():
        return

    op.create_table(
        "analytics_retry_queue",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column(
            "event_type",
            sa.String(50),
            nullable=False,
            comment="Payload kind, e.g. click_event",
        ),
        sa.Column(
            "event_data",
            JSONB(),
            nullable=False,
            comment="Attempted event fields plus ingestion context",
        ),
        sa.Column("retry_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("max_retries", sa.Integer(), nullable=False, server_default="3"),
        sa.Column("next_retry_at", sa.DateTime(), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.Column("processed_at", sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_analytics_retry_queue")),
        schema="analytics",
    )

    # Due-item scans filter on both columns
    op.create_index(
        "ix_analytics_retry_queue_due",
        "analytics_retry_queue",
        ["processed_at", "next_retry_at"],
        schema="analytics",
    )


def downgrade() -> None:
    """Drop the retry queue table."""
    if not _applies():
        return

    op.drop_index(
        "ix_analytics_retry_queue_due",
        table_name="analytics_retry_queue",
        schema="analytics",
    )
    op.drop_table("analytics_retry_queue", schema="analytics")
