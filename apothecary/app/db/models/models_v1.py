from __future__ import annotations

from datetime import datetime, date
from decimal import Decimal

from sqlalchemy import (
    String,
    Integer,
    BigInteger,
    DateTime,
    Date,
    Boolean,
    ForeignKey,
    Numeric,
    Text,
    Enum,
    UniqueConstraint,
    Index,
    CheckConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from apothecary.app.db.base import Base, BigIntPK
from apothecary.app.db.models.core_types import (
    Role,
    SupplierStatus,
    MovementType,
    MovementSource,
    POStatus,
    ReceiptStatus,
    RecipientType,
    DistributionStatus,
    BatchStatus,
    NotificationType,
    Severity,
)


def _enum(enum_cls, name: str) -> Enum:
    # on persiste les valeurs ("in", "partially_received"), pas les noms Python
    return Enum(enum_cls, name=name, values_callable=lambda e: [m.value for m in e])


# ---------- AUTH ----------
class User(Base):
    __tablename__ = "users"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    password_hash: Mapped[str | None] = mapped_column(String(255))
    role: Mapped[Role] = mapped_column(_enum(Role, "role"), default=Role.staff, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)


# ---------- MASTER DATA ----------
class Supplier(Base):
    __tablename__ = "suppliers"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    contact_person: Mapped[str | None] = mapped_column(String(200))
    email: Mapped[str | None] = mapped_column(String(255))
    phone: Mapped[str | None] = mapped_column(String(64))
    street: Mapped[str | None] = mapped_column(String(255))
    city: Mapped[str | None] = mapped_column(String(128))
    state: Mapped[str | None] = mapped_column(String(128))
    zip_code: Mapped[str | None] = mapped_column(String(32))
    country: Mapped[str | None] = mapped_column(String(128))
    tax_id: Mapped[str | None] = mapped_column(String(64))
    is_jan_aushadhi: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    payment_terms: Mapped[str | None] = mapped_column(String(128))
    rating: Mapped[int] = mapped_column(Integer, default=3, nullable=False)  # 1..5
    status: Mapped[SupplierStatus] = mapped_column(
        _enum(SupplierStatus, "supplier_status"),
        default=SupplierStatus.active,
        nullable=False,
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=datetime.utcnow,
        onupdate=datetime.utcnow,
        nullable=False,
    )

    __table_args__ = (
        CheckConstraint("rating >= 1 AND rating <= 5", name="ck_supplier_rating_1_5"),
    )


class Product(Base):
    __tablename__ = "products"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    sku: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    generic_name: Mapped[str | None] = mapped_column(String(255))
    category: Mapped[str | None] = mapped_column(String(128))
    manufacturer: Mapped[str | None] = mapped_column(String(255))
    batch_number: Mapped[str | None] = mapped_column(String(64))
    expiry_date: Mapped[date | None] = mapped_column(Date)

    # écrit UNIQUEMENT par apothecary.services.inventory.record_movement
    stock_quantity: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    reorder_level: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=0, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=datetime.utcnow,
        onupdate=datetime.utcnow,
        nullable=False,
    )

    __table_args__ = (
        CheckConstraint("stock_quantity >= 0", name="ck_product_stock_nonneg"),
        CheckConstraint("reorder_level >= 0", name="ck_product_reorder_nonneg"),
        CheckConstraint("unit_price >= 0", name="ck_product_unit_price_nonneg"),
    )


# ---------- PROCUREMENT / INBOUND ----------
class PurchaseOrder(Base):
    __tablename__ = "purchase_orders"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    po_number: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    supplier_id: Mapped[int] = mapped_column(ForeignKey("suppliers.id", ondelete="RESTRICT"), nullable=False)
    status: Mapped[POStatus] = mapped_column(_enum(POStatus, "po_status"), default=POStatus.draft, nullable=False)

    order_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    expected_delivery_date: Mapped[date | None] = mapped_column(Date)
    actual_delivery_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    subtotal: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=0, nullable=False)
    tax_amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=0, nullable=False)
    discount_amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=0, nullable=False)
    shipping_cost: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=0, nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=0, nullable=False)

    notes: Mapped[str | None] = mapped_column(Text)
    payment_terms: Mapped[str | None] = mapped_column(String(128))

    created_by: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="RESTRICT"), nullable=False)
    approved_by: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"))
    approval_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=datetime.utcnow,
        onupdate=datetime.utcnow,
        nullable=False,
    )

    supplier: Mapped[Supplier] = relationship()
    items: Mapped[list["PurchaseOrderItem"]] = relationship(
        back_populates="po",
        cascade="all, delete-orphan",
        order_by="PurchaseOrderItem.id",
    )


class PurchaseOrderItem(Base):
    __tablename__ = "purchase_order_items"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    purchase_order_id: Mapped[int] = mapped_column(
        ForeignKey("purchase_orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    product_id: Mapped[int | None] = mapped_column(ForeignKey("products.id", ondelete="RESTRICT"))
    # produit du catalogue JanAushadhi, pas (encore) dans notre référentiel
    external_product_id: Mapped[int | None] = mapped_column(Integer)
    generic_name: Mapped[str] = mapped_column(String(255), nullable=False)

    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    discount: Mapped[Decimal] = mapped_column(Numeric(5, 2), default=0, nullable=False)  # %
    tax: Mapped[Decimal] = mapped_column(Numeric(5, 2), default=0, nullable=False)  # %
    total_price: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    received_quantity: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    po: Mapped[PurchaseOrder] = relationship(back_populates="items")
    product: Mapped[Product | None] = relationship()

    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_po_item_qty_pos"),
        CheckConstraint("unit_price >= 0", name="ck_po_item_unit_price_nonneg"),
        CheckConstraint("received_quantity >= 0", name="ck_po_item_received_nonneg"),
        CheckConstraint("received_quantity <= quantity", name="ck_po_item_received_le_qty"),
        CheckConstraint(
            "product_id IS NOT NULL OR external_product_id IS NOT NULL",
            name="ck_po_item_has_ref",
        ),
    )


class PurchaseReceipt(Base):
    __tablename__ = "purchase_receipts"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    receipt_number: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    purchase_order_id: Mapped[int] = mapped_column(
        ForeignKey("purchase_orders.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    receipt_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    received_by: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="RESTRICT"), nullable=False)

    quality_passed: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    quality_notes: Mapped[str | None] = mapped_column(Text)
    notes: Mapped[str | None] = mapped_column(Text)
    status: Mapped[ReceiptStatus] = mapped_column(
        _enum(ReceiptStatus, "receipt_status"),
        default=ReceiptStatus.complete,
        nullable=False,
    )

    # Idempotence receipt (clé unique, nullable OK)
    idempotency_key: Mapped[str | None] = mapped_column(String(64), unique=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)

    purchase_order: Mapped[PurchaseOrder] = relationship()
    items: Mapped[list["PurchaseReceiptItem"]] = relationship(
        back_populates="receipt",
        cascade="all, delete-orphan",
        order_by="PurchaseReceiptItem.id",
    )


class PurchaseReceiptItem(Base):
    __tablename__ = "purchase_receipt_items"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    receipt_id: Mapped[int] = mapped_column(
        ForeignKey("purchase_receipts.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    po_item_id: Mapped[int] = mapped_column(ForeignKey("purchase_order_items.id", ondelete="RESTRICT"), nullable=False)
    product_id: Mapped[int | None] = mapped_column(ForeignKey("products.id", ondelete="RESTRICT"))
    external_product_id: Mapped[int | None] = mapped_column(Integer)
    generic_name: Mapped[str] = mapped_column(String(255), nullable=False)

    expected_quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    received_quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    batch_number: Mapped[str] = mapped_column(String(64), nullable=False)
    expiry_date: Mapped[date] = mapped_column(Date, nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    comments: Mapped[str | None] = mapped_column(Text)

    receipt: Mapped[PurchaseReceipt] = relationship(back_populates="items")

    __table_args__ = (
        CheckConstraint("received_quantity > 0", name="ck_receipt_item_qty_pos"),
    )


class Batch(Base):
    """
    Lot (numéro de lot + péremption) d'un produit.

    current_quantity est tenu par apothecary.services.batches ;
    Product.stock_quantity reste la vérité du journal.
    """

    __tablename__ = "batches"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    batch_number: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    product_id: Mapped[int] = mapped_column(
        ForeignKey("products.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    supplier_id: Mapped[int | None] = mapped_column(ForeignKey("suppliers.id", ondelete="RESTRICT"))

    manufacturing_date: Mapped[date | None] = mapped_column(Date)
    expiry_date: Mapped[date] = mapped_column(Date, nullable=False)

    initial_quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    current_quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    unit_cost: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=0, nullable=False)
    status: Mapped[BatchStatus] = mapped_column(
        _enum(BatchStatus, "batch_status"),
        default=BatchStatus.active,
        nullable=False,
    )

    barcode: Mapped[str | None] = mapped_column(String(128), unique=True)
    qr_code: Mapped[str | None] = mapped_column(String(255), unique=True)

    purchase_receipt_id: Mapped[int | None] = mapped_column(ForeignKey("purchase_receipts.id", ondelete="RESTRICT"))
    received_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    received_by: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"))
    last_modified_by: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"))
    notes: Mapped[str | None] = mapped_column(Text)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=datetime.utcnow,
        onupdate=datetime.utcnow,
        nullable=False,
    )

    product: Mapped[Product] = relationship()
    supplier: Mapped[Supplier | None] = relationship()

    __table_args__ = (
        UniqueConstraint("product_id", "batch_number", name="uq_batch_product_number"),
        CheckConstraint("initial_quantity >= 0", name="ck_batch_initial_nonneg"),
        CheckConstraint("current_quantity >= 0", name="ck_batch_current_nonneg"),
        CheckConstraint("unit_cost >= 0", name="ck_batch_unit_cost_nonneg"),
        Index("ix_batches_expiry_status", "expiry_date", "status"),
    )


# ---------- OUTBOUND ----------
class Distribution(Base):
    __tablename__ = "distributions"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    order_number: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    recipient: Mapped[str] = mapped_column(String(255), nullable=False)
    recipient_type: Mapped[RecipientType] = mapped_column(_enum(RecipientType, "recipient_type"), nullable=False)
    status: Mapped[DistributionStatus] = mapped_column(
        _enum(DistributionStatus, "distribution_status"),
        default=DistributionStatus.pending,
        nullable=False,
    )

    shipping_address: Mapped[str | None] = mapped_column(String(255))
    contact_person: Mapped[str | None] = mapped_column(String(200))
    contact_number: Mapped[str | None] = mapped_column(String(64))

    created_by: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="RESTRICT"), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=datetime.utcnow,
        onupdate=datetime.utcnow,
        nullable=False,
    )
    delivered_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    items: Mapped[list["DistributionItem"]] = relationship(
        back_populates="distribution",
        cascade="all, delete-orphan",
        order_by="DistributionItem.id",
    )


class DistributionItem(Base):
    __tablename__ = "distribution_items"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    distribution_id: Mapped[int] = mapped_column(
        ForeignKey("distributions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    product_id: Mapped[int] = mapped_column(ForeignKey("products.id", ondelete="RESTRICT"), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    batch_number: Mapped[str | None] = mapped_column(String(64))
    expiry_date: Mapped[date | None] = mapped_column(Date)

    distribution: Mapped[Distribution] = relationship(back_populates="items")
    product: Mapped[Product] = relationship()
    allocations: Mapped[list["DistributionAllocation"]] = relationship(
        back_populates="item",
        cascade="all, delete-orphan",
        order_by="DistributionAllocation.id",
    )

    __table_args__ = (CheckConstraint("quantity > 0", name="ck_distribution_item_qty_pos"),)


class DistributionAllocation(Base):
    """Part d'une ligne de distribution prélevée sur un lot (FEFO ou lot imposé)."""

    __tablename__ = "distribution_allocations"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    distribution_item_id: Mapped[int] = mapped_column(
        ForeignKey("distribution_items.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    batch_id: Mapped[int] = mapped_column(ForeignKey("batches.id", ondelete="RESTRICT"), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)

    item: Mapped[DistributionItem] = relationship(back_populates="allocations")
    batch: Mapped[Batch] = relationship()

    __table_args__ = (CheckConstraint("quantity > 0", name="ck_distribution_allocation_qty_pos"),)


# ---------- INVENTORY ----------
class StockMovement(Base):
    """Journal append-only : jamais d'UPDATE ni de DELETE."""

    __tablename__ = "stock_movements"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)

    product_id: Mapped[int] = mapped_column(
        ForeignKey("products.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    movement_type: Mapped[MovementType] = mapped_column(_enum(MovementType, "movement_type"), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    previous_stock: Mapped[int] = mapped_column(Integer, nullable=False)
    new_stock: Mapped[int] = mapped_column(Integer, nullable=False)
    reason: Mapped[str] = mapped_column(String(255), nullable=False)

    batch_number: Mapped[str | None] = mapped_column(String(64))
    expiry_date: Mapped[date | None] = mapped_column(Date)

    source: Mapped[MovementSource] = mapped_column(
        _enum(MovementSource, "movement_source"),
        default=MovementSource.manual,
        nullable=False,
    )
    purchase_receipt_id: Mapped[int | None] = mapped_column(ForeignKey("purchase_receipts.id", ondelete="RESTRICT"))
    # pas de FK : une distribution "pending" peut être supprimée, le journal reste intact
    distribution_id: Mapped[int | None] = mapped_column(BigInteger, index=True)

    created_by: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="RESTRICT"), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)

    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_stock_movement_qty_pos"),
        CheckConstraint("new_stock >= 0", name="ck_stock_movement_new_stock_nonneg"),
        Index("ix_stock_movements_product_time", "product_id", "created_at"),
    )


# ---------- NOTIFICATIONS ----------
class Notification(Base):
    __tablename__ = "notifications"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    type: Mapped[NotificationType] = mapped_column(_enum(NotificationType, "notification_type"), nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    severity: Mapped[Severity] = mapped_column(_enum(Severity, "severity"), default=Severity.medium, nullable=False)
    product_id: Mapped[int | None] = mapped_column(ForeignKey("products.id", ondelete="CASCADE"), index=True)
    batch_id: Mapped[int | None] = mapped_column(ForeignKey("batches.id", ondelete="CASCADE"), index=True)
    # NULL = notification globale (tous les utilisateurs)
    target_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"))
    is_read: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    action_required: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    expires_at: Mapped[date | None] = mapped_column(Date)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)

    reads: Mapped[list["NotificationRead"]] = relationship(back_populates="notification", cascade="all, delete-orphan")

    __table_args__ = (Index("ix_notifications_type_read", "type", "is_read"),)


class NotificationRead(Base):
    __tablename__ = "notification_reads"
    notification_id: Mapped[int] = mapped_column(
        ForeignKey("notifications.id", ondelete="CASCADE"),
        primary_key=True,
    )
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)
    read_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)

    notification: Mapped[Notification] = relationship(back_populates="reads")

    __table_args__ = (UniqueConstraint("notification_id", "user_id", name="uq_notification_read_user"),)
