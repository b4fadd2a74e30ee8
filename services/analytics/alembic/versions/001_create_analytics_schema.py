"""Create analytics schema.

Revision ID: 001
Revises:
Create Date: 2026-09-28

"""
from typing import Sequence, Union

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

SCHEMA = "analytics"


def _is_postgresql() -> bool:
    return op.get_bind().dialect.name == "postgresql"


def upgrade() -> None:
    """Create the schema holding click events, the retry queue and rollups."""
    if _is_postgresql():
        op.execute(f'CREATE SCHEMA IF NOT EXISTS "{SCHEMA}"')


def downgrade() -> None:
    """Drop the analytics schema with everything in it."""
    if _is_postgresql():
        op.execute(f'DROP SCHEMA IF EXISTS "{SCHEMA}" CASCADE')
