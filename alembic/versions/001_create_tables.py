"""Create stock_recommendations table.

Revision ID: 001
Revises: None
Create Date: 2026-10-19
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "stock_recommendations",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("symbol", sa.String(30), nullable=False),
        sa.Column("company_name", sa.String(200), nullable=False, server_default=""),
        sa.Column("date_of_rec", sa.DateTime(timezone=True), nullable=False),
        sa.Column("entry_zone", sa.String(50), nullable=False),
        sa.Column("average_entry", sa.Float(), nullable=True),
        sa.Column("target", sa.String(50), nullable=True),
        sa.Column("stop_loss", sa.String(50), nullable=True),
        sa.Column("potential_pct", sa.Float(), nullable=True),
        sa.Column("status", sa.String(10), nullable=False, server_default="entry"),
        sa.Column("current_price", sa.Float(), nullable=True),
        sa.Column("last_price_update", sa.DateTime(timezone=True), nullable=True),
        sa.Column("realised_pct", sa.Float(), nullable=True),
        sa.Column("exited_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint(
            "status IN ('entry', 'hold', 'exit', 'exited')",
            name="ck_stock_recommendations_status",
        ),
    )
    op.create_index("ix_stock_recommendations_status", "stock_recommendations", ["status"])
    op.create_index("ix_stock_recommendations_symbol", "stock_recommendations", ["symbol"])
    op.create_index(
        "ix_stock_recommendations_status_exited_at",
        "stock_recommendations",
        ["status", "exited_at"],
    )


def downgrade() -> None:
    op.drop_index("ix_stock_recommendations_status_exited_at", table_name="stock_recommendations")
    op.drop_index("ix_stock_recommendations_symbol", table_name="stock_recommendations")
    op.drop_index("ix_stock_recommendations_status", table_name="stock_recommendations")
    op.drop_table("stock_recommendations")
