"""create_signals

Revision ID: 3f1a9c2b7d10
Revises:
Create Date: 2026-10-17 09:00:00.000000
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "3f1a9c2b7d10"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "signals",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("pair", sa.String(length=32), nullable=False),
        sa.Column("action", sa.String(length=8), nullable=False),
        sa.Column("entry", sa.Numeric(precision=18, scale=8), nullable=False),
        sa.Column("stop_loss", sa.Numeric(precision=18, scale=8), nullable=False),
        sa.Column("take_profit", sa.Numeric(precision=18, scale=8), nullable=False),
        sa.Column("confidence", sa.Integer(), nullable=True),
        sa.Column("risk", sa.Numeric(precision=10, scale=4), nullable=True),
        sa.Column("reasoning", sa.Text(), nullable=True),
        sa.Column("source", sa.String(length=100), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("close_price", sa.Numeric(precision=18, scale=8), nullable=True),
        sa.Column("profit", sa.Numeric(precision=18, scale=8), nullable=True),
        sa.Column("profit_percent", sa.Numeric(precision=12, scale=6), nullable=True),
        sa.Column("closed_at", sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_signals_status", "signals", ["status"])
    op.create_index("ix_signals_created_at", "signals", [sa.text("created_at DESC")])
    op.create_index("ix_signals_pair", "signals", ["pair"])


def downgrade() -> None:
    op.drop_index("ix_signals_pair", table_name="signals")
    op.drop_index("ix_signals_created_at", table_name="signals")
    op.drop_index("ix_signals_status", table_name="signals")
    op.drop_table("signals")
