"""Create click_events table.

Revision ID: 002
Revises: 001
Create Date: 2026-09-28

"""
from typing import Sequence, Union

import sqlalchemy as sa
from alembic import context, op

from app.core.database import ROLE_ALL, ROLE_EVENT_STORE, runs_migration

# revision identifiers, used by Alembic.
revision: str = "002"
down_revision: Union[str, None] = "001"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _applies() -> bool:
    return runs_migration(ROLE_EVENT_STORE, context.config.attributes.get("database_role", ROLE_ALL))


def upgrade() -> None:
    """Create the click_events table."""
    if not _applies():
        return

    op.create_table(
        "click_events",
        sa.Column(
            "id",
            sa.String(36),
            nullable=False,
            comment="Event UUID generated at ingestion",
        ),
        sa.Column(
            "timestamp",
            sa.DateTime(),
            nullable=False,
            comment="When the click was ingested (UTC)",
        ),
        sa.Column(
            "link_id",
            sa.Integer(),
            nullable=False,
            comment="Affiliate link that was clicked",
        ),
        sa.Column(
            "product_id",
            sa.Integer(),
            nullable=False,
            comment="Affiliate product behind the link",
        ),
        sa.Column("content_id", sa.String(255), nullable=True),
        sa.Column("pick_id", sa.String(255), nullable=True),
        sa.Column("variant_id", sa.String(255), nullable=True),
        sa.Column(
            "page_path",
            sa.String(500),
            nullable=True,
            comment="Site path the click came from",
        ),
        sa.Column("referrer", sa.Text(), nullable=True),
        sa.Column("utm_source", sa.String(255), nullable=True),
        sa.Column("utm_medium", sa.String(255), nullable=True),
        sa.Column("utm_campaign", sa.String(255), nullable=True),
        sa.Column("utm_term", sa.String(255), nullable=True),
        sa.Column("utm_content", sa.String(255), nullable=True),
        sa.Column("device", sa.String(100), nullable=True),
        sa.Column("country", sa.String(100), nullable=True),
        sa.Column("browser", sa.String(100), nullable=True),
        sa.Column(
            "redirect_ms",
            sa.Integer(),
            nullable=True,
            comment="Redirect duration in milliseconds",
        ),
        sa.Column(
            "success",
            sa.Boolean(),
            nullable=False,
            server_default=sa.true(),
            comment="Whether the redirect succeeded",
        ),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_click_events")),
        schema="analytics",
    )

    op.create_index(
        op.f("ix_click_events_timestamp"),
        "click_events",
        ["timestamp"],
        schema="analytics",
    )
    op.create_index(
        op.f("ix_click_events_link_id"),
        "click_events",
        ["link_id"],
        schema="analytics",
    )
    op.create_index(
        "ix_click_events_product_id_timestamp",
        "click_events",
        ["product_id", "timestamp"],
        schema="analytics",
    )


def downgrade() -> None:
    """Drop the click_events table."""
    if not _applies():
        return

    op.drop_index(
        "ix_click_events_product_id_timestamp",
        table_name="click_events",
        schema="analytics",
    )
    op.drop_index(
        op.f("ix_click_events_link_id"),
        table_name="click_events",
        schema="analytics",
    )
    op.drop_index(
        op.f("ix_click_events_timestamp"),
        table_name="click_events",
        schema="analytics",
    )
    op.drop_table("click_events", schema="analytics")
