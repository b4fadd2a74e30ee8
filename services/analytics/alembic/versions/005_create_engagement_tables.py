"""Create page_views and search_queries tables.

Revision ID: 005
Revises: 004
Create Date: 2026-10-19

"""
from typing import Sequence, Union

import sqlalchemy as sa
from alembic import context, op

from app.core.database import ROLE_ALL, ROLE_EVENT_STORE, runs_migration

# revision identifiers, used by Alembic.
revision: str = "005"
down_revision: Union[str, None] = "004"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _applies() -> bool:
    return runs_migration(ROLE_EVENT_STORE, context.config.attributes.get("database_role", ROLE_ALL))


def _visitor_columns() -> list[sa.Column]:
    return [
        sa.Column("session_id", sa.String(255), nullable=True),
        sa.Column("user_agent", sa.Text(), nullable=True),
        sa.Column(
            "ip_address",
            sa.String(45),
            nullable=True,
            comment="Client IP (first X-Forwarded-For hop)",
        ),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    ]


def upgrade() -> None:
    """Create the page view and search tables."""
    if not _applies():
        return

    op.create_table(
        "page_views",
        sa.Column("id", sa.String(36), nullable=False, comment="Event UUID generated at ingestion"),
        sa.Column("article_id", sa.Integer(), nullable=True),
        sa.Column("page_path", sa.String(500), nullable=False),
        sa.Column("referrer", sa.Text(), nullable=True),
        *_visitor_columns(),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_page_views")),
        schema="analytics",
    )
    op.create_index("ix_page_views_article_id", "page_views", ["article_id"], schema="analytics")
    op.create_index("ix_page_views_page_path", "page_views", ["page_path"], schema="analytics")
    op.create_index("ix_page_views_created_at", "page_views", ["created_at"], schema="analytics")

    op.create_table(
        "search_queries",
        sa.Column("id", sa.String(36), nullable=False, comment="Event UUID generated at ingestion"),
        sa.Column("query", sa.String(500), nullable=False),
        sa.Column("results_count", sa.Integer(), nullable=False),
        *_visitor_columns(),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_search_queries")),
        schema="analytics",
    )
    op.create_index("ix_search_queries_created_at", "search_queries", ["created_at"], schema="analytics")


def downgrade() -> None:
    """Drop the page view and search tables."""
    if not _applies():
        return

    op.drop_index("ix_search_queries_created_at", table_name="search_queries", schema="analytics")
    op.drop_table("search_queries", schema="analytics")
    for index in ("ix_page_views_created_at", "ix_page_views_page_path", "ix_page_views_article_id"):
        op.drop_index(index, table_name="page_views", schema="analytics")
    op.drop_table("page_views", schema="analytics")
