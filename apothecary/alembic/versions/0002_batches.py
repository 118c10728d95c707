"""batches: lots per product, distribution allocations, batch-level expiry alerts

Revision ID: 0002_batches
Revises: 0001_initial_schema
Create Date: 2026-10-17
"""

from __future__ import annotations

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "0002_batches"
down_revision: Union[str, Sequence[str], None] = "0001_initial_schema"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

PK = sa.BigInteger().with_variant(sa.Integer(), "sqlite")

BATCH_STATUS = sa.Enum("active", "expired", "recalled", "depleted", name="batch_status")


def upgrade() -> None:
    op.create_table(
        "batches",
        sa.Column("id", PK, primary_key=True),
        sa.Column("batch_number", sa.String(64), nullable=False),
        sa.Column("product_id", PK, sa.ForeignKey("products.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("supplier_id", PK, sa.ForeignKey("suppliers.id", ondelete="RESTRICT")),
        sa.Column("manufacturing_date", sa.Date()),
        sa.Column("expiry_date", sa.Date(), nullable=False),
        sa.Column("initial_quantity", sa.Integer(), nullable=False),
        sa.Column("current_quantity", sa.Integer(), nullable=False),
        sa.Column("unit_cost", sa.Numeric(14, 2), nullable=False, server_default="0"),
        sa.Column("status", BATCH_STATUS, nullable=False),
        sa.Column("barcode", sa.String(128), unique=True),
        sa.Column("qr_code", sa.String(255), unique=True),
        sa.Column("purchase_receipt_id", PK, sa.ForeignKey("purchase_receipts.id", ondelete="RESTRICT")),
        sa.Column("received_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("received_by", PK, sa.ForeignKey("users.id", ondelete="SET NULL")),
        sa.Column("last_modified_by", PK, sa.ForeignKey("users.id", ondelete="SET NULL")),
        sa.Column("notes", sa.Text()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("product_id", "batch_number", name="uq_batch_product_number"),
        sa.CheckConstraint("initial_quantity >= 0", name="ck_batch_initial_nonneg"),
        sa.CheckConstraint("current_quantity >= 0", name="ck_batch_current_nonneg"),
        sa.CheckConstraint("unit_cost >= 0", name="ck_batch_unit_cost_nonneg"),
    )
    op.create_index("ix_batches_batch_number", "batches", ["batch_number"])
    op.create_index("ix_batches_product_id", "batches", ["product_id"])
    op.create_index("ix_batches_expiry_status", "batches", ["expiry_date", "status"])

    op.create_table(
        "distribution_allocations",
        sa.Column("id", PK, primary_key=True),
        sa.Column(
            "distribution_item_id",
            PK,
            sa.ForeignKey("distribution_items.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("batch_id", PK, sa.ForeignKey("batches.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.CheckConstraint("quantity > 0", name="ck_distribution_allocation_qty_pos"),
    )
    op.create_index(
        "ix_distribution_allocations_distribution_item_id",
        "distribution_allocations",
        ["distribution_item_id"],
    )

    # batch mode : SQLite ne sait pas ajouter une FK par ALTER
    with op.batch_alter_table("notifications") as batch_op:
        batch_op.add_column(sa.Column("batch_id", PK, nullable=True))
        batch_op.create_foreign_key(
            "fk_notifications_batch_id_batches",
            "batches",
            ["batch_id"],
            ["id"],
            ondelete="CASCADE",
        )
        batch_op.create_index("ix_notifications_batch_id", ["batch_id"])


def downgrade() -> None:
    with op.batch_alter_table("notifications") as batch_op:
        batch_op.drop_index("ix_notifications_batch_id")
        batch_op.drop_constraint("fk_notifications_batch_id_batches", type_="foreignkey")
        batch_op.drop_column("batch_id")

    op.drop_index("ix_distribution_allocations_distribution_item_id", table_name="distribution_allocations")
    op.drop_table("distribution_allocations")
    op.drop_index("ix_batches_expiry_status", table_name="batches")
    op.drop_index("ix_batches_product_id", table_name="batches")
    op.drop_index("ix_batches_batch_number", table_name="batches")
    op.drop_table("batches")

    BATCH_STATUS.drop(op.get_bind(), checkfirst=True)
