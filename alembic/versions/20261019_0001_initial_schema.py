"""Initial schema for position events and manual overrides.

Revision ID: 001_initial
Revises:
Create Date: 2026-10-19 00:00:00.000000+00:00
"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Classified events, one row per transaction signature
    op.create_table(
        "position_events",
        sa.Column("signature", sa.String(100), nullable=False),
        sa.Column("wallet_address", sa.String(44), nullable=False),
        sa.Column("protocol", sa.String(40), nullable=False),
        sa.Column("kind", sa.String(20), nullable=False),
        sa.Column("position_id", sa.String(44), nullable=True),
        sa.Column("pool_id", sa.String(44), nullable=True),
        sa.Column("token_x_mint", sa.String(44), nullable=True),
        sa.Column("token_x_symbol", sa.String(20), nullable=True),
        sa.Column("token_x_amount", sa.Numeric(38, 12), nullable=True),
        sa.Column("token_x_usd", sa.Numeric(30, 6), nullable=True),
        sa.Column("token_y_mint", sa.String(44), nullable=True),
        sa.Column("token_y_symbol", sa.String(20), nullable=True),
        sa.Column("token_y_amount", sa.Numeric(38, 12), nullable=True),
        sa.Column("token_y_usd", sa.Numeric(30, 6), nullable=True),
        sa.Column("total_usd", sa.Numeric(30, 6), nullable=False),
        sa.Column("block_time", sa.BigInteger(), nullable=True),
        sa.Column("slot", sa.BigInteger(), nullable=False),
        sa.Column("succeeded", sa.Boolean(), nullable=False),
        sa.Column("fee_lamports", sa.BigInteger(), nullable=False),
        sa.Column("payload", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("signature"),
    )
    op.create_index(
        "idx_position_events_wallet_time", "position_events", ["wallet_address", "block_time"]
    )
    op.create_index(
        "idx_position_events_wallet_position", "position_events", ["wallet_address", "position_id"]
    )
    op.create_index(
        "idx_position_events_wallet_kind", "position_events", ["wallet_address", "kind"]
    )

    # Manual realized P&L per closed position
    op.create_table(
        "position_overrides",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("wallet_address", sa.String(44), nullable=False),
        sa.Column("protocol", sa.String(40), nullable=False),
        sa.Column("position_id", sa.String(44), nullable=False),
        sa.Column("profit_usd", sa.Numeric(30, 6), nullable=False),
        sa.Column("pnl_percent", sa.Numeric(12, 4), nullable=True),
        sa.Column("source", sa.String(40), nullable=False),
        sa.Column("pair_name", sa.String(80), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "wallet_address", "protocol", "position_id", name="uq_position_overrides_position"
        ),
    )
    op.create_index("idx_position_overrides_wallet", "position_overrides", ["wallet_address"])


def downgrade() -> None:
    op.drop_index("idx_position_overrides_wallet", table_name="position_overrides")
    op.drop_table("position_overrides")
    op.drop_index("idx_position_events_wallet_kind", table_name="position_events")
    op.drop_index("idx_position_events_wallet_position", table_name="position_events")
    op.drop_index("idx_position_events_wallet_time", table_name="position_events")
    op.drop_table("position_events")
