"""client project drafts

Revision ID: 0002_project_drafts
Revises: 0001_initial
Create Date: 2026-10-19

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "0002_project_drafts"
down_revision: Union[str, Sequence[str], None] = "0001_initial"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _money(name: str) -> sa.Column:
    return sa.Column(name, sa.Numeric(12, 2), nullable=True)


def upgrade() -> None:
    op.create_table(
        "project_drafts",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("client_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("company_name", sa.String(255), nullable=False),
        sa.Column("business_type", sa.String(128), nullable=False),
        sa.Column("company_website", sa.String(512), nullable=True),
        sa.Column("business_address", sa.Text(), nullable=True),
        sa.Column("services", sa.JSON(), nullable=True),
        sa.Column("industries", sa.JSON(), nullable=True),
        sa.Column("technologies", sa.JSON(), nullable=True),
        sa.Column("features", sa.JSON(), nullable=True),
        sa.Column("discount_type", sa.String(64), nullable=True),
        sa.Column("discount_percent", sa.Integer(), nullable=True),
        sa.Column("discount_notes", sa.Text(), nullable=True),
        sa.Column("timeline_option", sa.String(64), nullable=True),
        sa.Column("rush_fee_percent", sa.Integer(), nullable=True),
        sa.Column("estimated_days", sa.Integer(), nullable=True),
        sa.Column("timeline_description", sa.Text(), nullable=True),
        _money("base_cost"),
        _money("discount_amount"),
        _money("rush_fee_amount"),
        _money("calculated_total"),
        _money("estimate_final_price_min"),
        _money("estimate_final_price_max"),
        sa.Column("is_manually_adjusted", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("estimate_accepted", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("estimate_accepted_at", sa.DateTime(timezone=False), nullable=True),
        sa.Column("is_finalized", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("finalized_at", sa.DateTime(timezone=False), nullable=True),
        sa.Column("payment_method", sa.String(64), nullable=True),
        sa.Column("project_id", sa.Integer(), sa.ForeignKey("projects.id", ondelete="SET NULL"), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=False), nullable=False, server_default=sa.func.current_timestamp()),
        sa.Column("updated_at", sa.DateTime(timezone=False), nullable=False, server_default=sa.func.current_timestamp()),
    )
    op.create_index("idx_project_drafts_client_id", "project_drafts", ["client_id"])


def downgrade() -> None:
    op.drop_index("idx_project_drafts_client_id", table_name="project_drafts")
    op.drop_table("project_drafts")
