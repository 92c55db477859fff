"""Group settings table.

Revision ID: 001_group_settings
Revises:
Create Date: 2026-10-18 00:00:00.000000+00:00
"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001_group_settings"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "group_settings",
        sa.Column("chat_id", sa.BigInteger(), autoincrement=False, nullable=False),
        sa.Column("chain", sa.String(32), nullable=False),
        sa.Column("token_address", sa.String(42), nullable=False),
        sa.Column("pair_address", sa.String(42), nullable=False),
        sa.Column("all_pair_addresses", sa.JSON(), nullable=False),
        sa.Column("emoji", sa.String(32), nullable=False),
        sa.Column("image_url", sa.Text(), nullable=True),
        sa.Column("image_file_id", sa.String(255), nullable=True),
        sa.Column("animation_file_id", sa.String(255), nullable=True),
        sa.Column("min_buy_usd", sa.Float(), nullable=False),
        sa.Column("max_buy_usd", sa.Float(), nullable=True),
        sa.Column("dollars_per_emoji", sa.Float(), nullable=False),
        sa.Column("tg_group_link", sa.Text(), nullable=True),
        sa.Column("auto_pin_data_posts", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("auto_pin_kol_alerts", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("cooldown_seconds", sa.Integer(), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("chat_id"),
    )
    op.create_index("idx_group_settings_chain", "group_settings", ["chain"])


def downgrade() -> None:
    op.drop_index("idx_group_settings_chain", table_name="group_settings")
    op.drop_table("group_settings")
