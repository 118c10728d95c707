"""initial schema: users, catalog, procurement, distribution, stock ledger, notifications

Revision ID: 0001_initial_schema
Revises:
Create Date: 2026-10-17
"""

from __future__ import annotations

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "0001_initial_schema"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

PK = sa.BigInteger().with_variant(sa.Integer(), "sqlite")

ROLE = sa.Enum("admin", "staff", name="role")
SUPPLIER_STATUS = sa.Enum("active", "inactive", name="supplier_status")
PO_STATUS = sa.Enum(
    "draft",
    "submitted",
    "approved",
    "shipped",
    "received",
    "partially_received",
    "cancelled",
    name="po_status",
)
RECEIPT_STATUS = sa.Enum("complete", "partial", name="receipt_status")
RECIPIENT_TYPE = sa.Enum("patient", "pharmacy", "department", "hospital", name="recipient_type")
DISTRIBUTION_STATUS = sa.Enum(
    "pending", "processed", "shipped", "delivered", "returned", "cancelled", name="distribution_status"
)
MOVEMENT_TYPE = sa.Enum("in", "out", name="movement_type")
MOVEMENT_SOURCE = sa.Enum("manual", "receipt", "distribution", name="movement_source")
NOTIFICATION_TYPE = sa.Enum("expiry_warning", "expiry_critical", "low_stock", name="notification_type")
SEVERITY = sa.Enum("low", "medium", "high", "critical", name="severity")


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", PK, primary_key=True),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("email", sa.String(255), nullable=False, unique=True),
        sa.Column("password_hash", sa.String(255)),
        sa.Column("role", ROLE, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )

    op.create_table(
        "suppliers",
        sa.Column("id", PK, primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("contact_person", sa.String(200)),
        sa.Column("email", sa.String(255)),
        sa.Column("phone", sa.String(64)),
        sa.Column("street", sa.String(255)),
        sa.Column("city", sa.String(128)),
        sa.Column("state", sa.String(128)),
        sa.Column("zip_code", sa.String(32)),
        sa.Column("country", sa.String(128)),
        sa.Column("tax_id", sa.String(64)),
        sa.Column("is_jan_aushadhi", sa.Boolean(), nullable=False),
        sa.Column("payment_terms", sa.String(128)),
        sa.Column("rating", sa.Integer(), nullable=False),
        sa.Column("status", SUPPLIER_STATUS, nullable=False),
        *_timestamps(),
        sa.CheckConstraint("rating >= 1 AND rating <= 5", name="ck_supplier_rating_1_5"),
    )

    op.create_table(
        "products",
        sa.Column("id", PK, primary_key=True),
        sa.Column("sku", sa.String(64), nullable=False, unique=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("generic_name", sa.String(255)),
        sa.Column("category", sa.String(128)),
        sa.Column("manufacturer", sa.String(255)),
        sa.Column("batch_number", sa.String(64)),
        sa.Column("expiry_date", sa.Date()),
        sa.Column("stock_quantity", sa.Integer(), nullable=False),
        sa.Column("reorder_level", sa.Integer(), nullable=False),
        sa.Column("unit_price", sa.Numeric(14, 2), nullable=False),
        *_timestamps(),
        sa.CheckConstraint("stock_quantity >= 0", name="ck_product_stock_nonneg"),
        sa.CheckConstraint("reorder_level >= 0", name="ck_product_reorder_nonneg"),
        sa.CheckConstraint("unit_price >= 0", name="ck_product_unit_price_nonneg"),
    )

    op.create_table(
        "purchase_orders",
        sa.Column("id", PK, primary_key=True),
        sa.Column("po_number", sa.String(64), nullable=False, unique=True),
        sa.Column("supplier_id", PK, sa.ForeignKey("suppliers.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("status", PO_STATUS, nullable=False),
        sa.Column("order_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expected_delivery_date", sa.Date()),
        sa.Column("actual_delivery_date", sa.DateTime(timezone=True)),
        sa.Column("subtotal", sa.Numeric(14, 2), nullable=False),
        sa.Column("tax_amount", sa.Numeric(14, 2), nullable=False),
        sa.Column("discount_amount", sa.Numeric(14, 2), nullable=False),
        sa.Column("shipping_cost", sa.Numeric(14, 2), nullable=False),
        sa.Column("total_amount", sa.Numeric(14, 2), nullable=False),
        sa.Column("notes", sa.Text()),
        sa.Column("payment_terms", sa.String(128)),
        sa.Column("created_by", PK, sa.ForeignKey("users.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("approved_by", PK, sa.ForeignKey("users.id", ondelete="SET NULL")),
        sa.Column("approval_date", sa.DateTime(timezone=True)),
        *_timestamps(),
    )

    op.create_table(
        "purchase_order_items",
        sa.Column("id", PK, primary_key=True),
        sa.Column(
            "purchase_order_id",
            PK,
            sa.ForeignKey("purchase_orders.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
        sa.Column("product_id", PK, sa.ForeignKey("products.id", ondelete="RESTRICT")),
        sa.Column("external_product_id", sa.Integer()),
        sa.Column("generic_name", sa.String(255), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("unit_price", sa.Numeric(14, 2), nullable=False),
        sa.Column("discount", sa.Numeric(5, 2), nullable=False),
        sa.Column("tax", sa.Numeric(5, 2), nullable=False),
        sa.Column("total_price", sa.Numeric(14, 2), nullable=False),
        sa.Column("received_quantity", sa.Integer(), nullable=False),
        sa.CheckConstraint("quantity > 0", name="ck_po_item_qty_pos"),
        sa.CheckConstraint("unit_price >= 0", name="ck_po_item_unit_price_nonneg"),
        sa.CheckConstraint("received_quantity >= 0", name="ck_po_item_received_nonneg"),
        sa.CheckConstraint("received_quantity <= quantity", name="ck_po_item_received_le_qty"),
        sa.CheckConstraint(
            "product_id IS NOT NULL OR external_product_id IS NOT NULL",
            name="ck_po_item_has_ref",
        ),
    )

    op.create_table(
        "purchase_receipts",
        sa.Column("id", PK, primary_key=True),
        sa.Column("receipt_number", sa.String(64), nullable=False, unique=True),
        sa.Column(
            "purchase_order_id",
            PK,
            sa.ForeignKey("purchase_orders.id", ondelete="RESTRICT"),
            nullable=False,
            index=True,
        ),
        sa.Column("receipt_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("received_by", PK, sa.ForeignKey("users.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("quality_passed", sa.Boolean(), nullable=False),
        sa.Column("quality_notes", sa.Text()),
        sa.Column("notes", sa.Text()),
        sa.Column("status", RECEIPT_STATUS, nullable=False),
        sa.Column("idempotency_key", sa.String(64), unique=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )

    op.create_table(
        "purchase_receipt_items",
        sa.Column("id", PK, primary_key=True),
        sa.Column(
            "receipt_id",
            PK,
            sa.ForeignKey("purchase_receipts.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
        sa.Column("po_item_id", PK, sa.ForeignKey("purchase_order_items.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("product_id", PK, sa.ForeignKey("products.id", ondelete="RESTRICT")),
        sa.Column("external_product_id", sa.Integer()),
        sa.Column("generic_name", sa.String(255), nullable=False),
        sa.Column("expected_quantity", sa.Integer(), nullable=False),
        sa.Column("received_quantity", sa.Integer(), nullable=False),
        sa.Column("batch_number", sa.String(64), nullable=False),
        sa.Column("expiry_date", sa.Date(), nullable=False),
        sa.Column("unit_price", sa.Numeric(14, 2), nullable=False),
        sa.Column("comments", sa.Text()),
        sa.CheckConstraint("received_quantity > 0", name="ck_receipt_item_qty_pos"),
    )

    op.create_table(
        "distributions",
        sa.Column("id", PK, primary_key=True),
        sa.Column("order_number", sa.String(64), nullable=False, unique=True),
        sa.Column("recipient", sa.String(255), nullable=False),
        sa.Column("recipient_type", RECIPIENT_TYPE, nullable=False),
        sa.Column("status", DISTRIBUTION_STATUS, nullable=False),
        sa.Column("shipping_address", sa.String(255)),
        sa.Column("contact_person", sa.String(200)),
        sa.Column("contact_number", sa.String(64)),
        sa.Column("created_by", PK, sa.ForeignKey("users.id", ondelete="RESTRICT"), nullable=False),
        *_timestamps(),
        sa.Column("delivered_at", sa.DateTime(timezone=True)),
    )

    op.create_table(
        "distribution_items",
        sa.Column("id", PK, primary_key=True),
        sa.Column(
            "distribution_id",
            PK,
            sa.ForeignKey("distributions.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
        sa.Column("product_id", PK, sa.ForeignKey("products.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("batch_number", sa.String(64)),
        sa.Column("expiry_date", sa.Date()),
        sa.CheckConstraint("quantity > 0", name="ck_distribution_item_qty_pos"),
    )

    op.create_table(
        "stock_movements",
        sa.Column("id", PK, primary_key=True),
        sa.Column("product_id", PK, sa.ForeignKey("products.id", ondelete="RESTRICT"), nullable=False, index=True),
        sa.Column("movement_type", MOVEMENT_TYPE, nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("previous_stock", sa.Integer(), nullable=False),
        sa.Column("new_stock", sa.Integer(), nullable=False),
        sa.Column("reason", sa.String(255), nullable=False),
        sa.Column("batch_number", sa.String(64)),
        sa.Column("expiry_date", sa.Date()),
        sa.Column("source", MOVEMENT_SOURCE, nullable=False),
        sa.Column("purchase_receipt_id", PK, sa.ForeignKey("purchase_receipts.id", ondelete="RESTRICT")),
        sa.Column("distribution_id", sa.BigInteger(), index=True),
        sa.Column("created_by", PK, sa.ForeignKey("users.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("quantity > 0", name="ck_stock_movement_qty_pos"),
        sa.CheckConstraint("new_stock >= 0", name="ck_stock_movement_new_stock_nonneg"),
    )
    op.create_index("ix_stock_movements_product_time", "stock_movements", ["product_id", "created_at"])

    op.create_table(
        "notifications",
        sa.Column("id", PK, primary_key=True),
        sa.Column("type", NOTIFICATION_TYPE, nullable=False),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("severity", SEVERITY, nullable=False),
        sa.Column("product_id", PK, sa.ForeignKey("products.id", ondelete="CASCADE"), index=True),
        sa.Column("target_user_id", PK, sa.ForeignKey("users.id", ondelete="CASCADE")),
        sa.Column("is_read", sa.Boolean(), nullable=False),
        sa.Column("action_required", sa.Boolean(), nullable=False),
        sa.Column("expires_at", sa.Date()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_notifications_type_read", "notifications", ["type", "is_read"])

    op.create_table(
        "notification_reads",
        sa.Column(
            "notification_id",
            PK,
            sa.ForeignKey("notifications.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column("user_id", PK, sa.ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
        sa.Column("read_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("notification_id", "user_id", name="uq_notification_read_user"),
    )


def downgrade() -> None:
    op.drop_table("notification_reads")
    op.drop_index("ix_notifications_type_read", table_name="notifications")
    op.drop_table("notifications")
    op.drop_index("ix_stock_movements_product_time", table_name="stock_movements")
    op.drop_table("stock_movements")
    op.drop_table("distribution_items")
    op.drop_table("distributions")
    op.drop_table("purchase_receipt_items")
    op.drop_table("purchase_receipts")
    op.drop_table("purchase_order_items")
    op.drop_table("purchase_orders")
    op.drop_table("products")
    op.drop_table("suppliers")
    op.drop_table("users")

    bind = op.get_bind()
    for enum in (
        SEVERITY,
        NOTIFICATION_TYPE,
        MOVEMENT_SOURCE,
        MOVEMENT_TYPE,
        DISTRIBUTION_STATUS,
        RECIPIENT_TYPE,
        RECEIPT_STATUS,
        PO_STATUS,
        SUPPLIER_STATUS,
        ROLE,
    ):
        enum.drop(bind, checkfirst=True)
