"""investor_research_type_and_company_stage

Revision ID: b7d8e9f0a1c2
Revises: a1c2e3f4b5d6
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

revision: str = "b7d8e9f0a1c2"
down_revision: Union[str, Sequence[str], None] = "a1c2e3f4b5d6"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.add_column("companies", sa.Column("stage", sa.String(length=50), nullable=True))
    op.add_column(
        "market_research",
        sa.Column("research_type", sa.String(length=20), nullable=False, server_default=sa.text("'market'")),
    )
    op.create_index(
        "ix_market_research_company_id_research_type", "market_research", ["company_id", "research_type"]
    )


def downgrade() -> None:
    op.drop_index("ix_market_research_company_id_research_type", table_name="market_research")
    op.drop_column("market_research", "research_type")
    op.drop_column("companies", "stage")
