"""Create product stats tables.

Revision ID: 004
Revises: 003
Create Date: 2026-09-28

"""
from typing import Sequence, Union

import sqlalchemy as sa
from alembic import context, op
from sqlalchemy.dialects.postgresql import JSONB

from app.core.database import ROLE_ALL, ROLE_EVENT_STORE, runs_migration

# revision identifiers, used by Alembic.
revision: str = "004"
down_revision: Union[str, None] = "003"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _count_columns() -> list[sa.Column]:
    return [
        sa.Column("click_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column(
            "unique_clicks",
            sa.Integer(),
            nullable=False,
            server_default="0",
            comment="Distinct content (or link) sources of the clicks",
        ),
        sa.Column(
            "avg_redirect_ms",
            sa.Integer(),
            nullable=False,
            server_default="0",
            comment="Average redirect duration in milliseconds",
        ),
    ]


def _applies() -> bool:
    return runs_migration(ROLE_EVENT_STORE, context.config.attributes.get("database_role", ROLE_ALL))


def upgrade() -> None:
    """Create the hourly and daily product stats tables."""
    if not _applies():
        return

    op.create_table(
        "product_stats_hourly",
        sa.Column("product_id", sa.Integer(), nullable=False, comment="Affiliate product id"),
        sa.Column(
            "hour",
            sa.DateTime(),
            nullable=False,
            comment="Hour bucket (truncated to hour)",
        ),
        *_count_columns(),
        sa.PrimaryKeyConstraint("product_id", "hour", name=op.f("pk_product_stats_hourly")),
        schema="analytics",
    )

    op.create_table(
        "product_stats_daily",
        sa.Column("product_id", sa.Integer(), nullable=False, comment="Affiliate product id"),
        sa.Column("date", sa.Date(), nullable=False, comment="Date of the stats"),
        *_count_columns(),
        sa.Column(
            "top_pages",
            JSONB(),
            nullable=True,
            comment="Top pages with counts: [{page_path: str, count: int}, ...]",
        ),
        sa.Column(
            "top_utm_sources",
            JSONB(),
            nullable=True,
            comment="Top UTM sources with counts: [{utm_source: str, count: int}, ...]",
        ),
        sa.PrimaryKeyConstraint("product_id", "date", name=op.f("pk_product_stats_daily")),
        schema="analytics",
    )

    # Create indexes for efficient time-range queries
    op.create_index(
        "ix_product_stats_hourly_hour",
        "product_stats_hourly",
        ["hour"],
        schema="analytics",
    )
    op.create_index(
        "ix_product_stats_daily_date",
        "product_stats_daily",
        ["date"],
        schema="analytics",
    )


def downgrade() -> None:
    """Drop the product stats tables."""
    if not _applies():
        return

    op.drop_index(
        "ix_product_stats_daily_date",
        table_name="product_stats_daily",
        schema="analytics",
    )
    op.drop_index(
        "ix_product_stats_hourly_hour",
        table_name="product_stats_hourly",
        schema="analytics",
    )
    op.drop_table("product_stats_daily", schema="analytics")
    op.drop_table("product_stats_hourly", schema="analytics")
