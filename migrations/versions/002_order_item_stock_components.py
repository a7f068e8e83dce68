"""
Snapshot per-line stock components on order items

Stores the tracked ``{product_id, quantity}`` demand each order line
reserved at creation, so later release, commit and restock moves return
exactly what was held even if a combo or a product's tracking changes.

Revision ID: 002
Revises: 001
Create Date: 2026-10-18 10:30:00.000000
"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# Revision identifiers, used by Alembic
revision: str = "002"
down_revision: Union[str, None] = "001"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

JSONType = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")


def upgrade() -> None:
    with op.batch_alter_table("order_items") as batch_op:
        batch_op.add_column(
            sa.Column(
                "stock_components",
                JSONType,
                nullable=False,
                server_default=sa.text("'[]'"),
            )
        )


def downgrade() -> None:
    with op.batch_alter_table("order_items") as batch_op:
        batch_op.drop_column("stock_components")
