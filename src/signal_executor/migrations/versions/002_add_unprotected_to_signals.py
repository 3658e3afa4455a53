"""Add unprotected flag to signals.

Revision ID: 002
Revises: 001
Create Date: 2026-10-18
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "002"
down_revision: Union[str, None] = "001"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.add_column(
        "signals",
        sa.Column("unprotected", sa.Boolean, nullable=False, server_default=sa.false()),
        schema="signal_executor",
    )


def downgrade() -> None:
    op.drop_column("signals", "unprotected", schema="signal_executor")
