"""Create signals and instrument_snapshots tables.

Revision ID: 001
Revises: None
Create Date: 2026-10-17
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

SCHEMA = "signal_executor"


def upgrade() -> None:
    # The schema itself is created by env.py before migrations run.
    op.create_table(
        "signals",
        sa.Column("id", sa.BigInteger, primary_key=True, autoincrement=True),
        sa.Column("symbol", sa.Text, nullable=False),
        sa.Column("side", sa.Text, nullable=False),
        sa.Column("reference_price", sa.Numeric, nullable=False),
        sa.Column("quantity", sa.Numeric, nullable=False, server_default="0"),
        sa.Column("status", sa.Text, nullable=False, server_default="NEW"),
        sa.Column("message", sa.Text, nullable=False, server_default=""),
        sa.Column("order_id", sa.BigInteger, nullable=False, server_default="0"),
        sa.Column("version", sa.Integer, nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        schema=SCHEMA,
    )
    op.create_index("ix_signals_status", "signals", ["status"], schema=SCHEMA)

    op.create_table(
        "instrument_snapshots",
        sa.Column("id", sa.BigInteger, primary_key=True, autoincrement=True),
        sa.Column("fetched_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("data", postgresql.JSONB, nullable=False),
        schema=SCHEMA,
    )


def downgrade() -> None:
    op.drop_table("instrument_snapshots", schema=SCHEMA)
    op.drop_index("ix_signals_status", table_name="signals", schema=SCHEMA)
    op.drop_table("signals", schema=SCHEMA)
