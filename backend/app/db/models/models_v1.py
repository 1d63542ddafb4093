from __future__ import annotations

from datetime import datetime, date
from decimal import Decimal

from sqlalchemy import (
    String,
    Integer,
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
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from backend.app.db.base import Base, BigIntPK, utcnow
from backend.app.db.models.core_types import (
    Role,
    LocationType,
    POType,
    POStatus,
    ItemCondition,
    CostSource,
)

MONEY = Numeric(14, 2)
QTY = Numeric(14, 3)
PERCENT = Numeric(9, 2)


# ---------- MASTER DATA ----------
class Organization(Base):
    __tablename__ = "organizations"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    name: Mapped[str] = mapped_column(String(200), unique=True, nullable=False)
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)


class Location(Base):
    __tablename__ = "locations"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    organization_id: Mapped[int] = mapped_column(ForeignKey("organizations.id", ondelete="RESTRICT"), nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    type: Mapped[LocationType] = mapped_column(Enum(LocationType, name="location_type"), nullable=False)

    organization: Mapped[Organization] = relationship()
    __table_args__ = (UniqueConstraint("organization_id", "name", name="uq_location_org_name"),)


class Product(Base):
    __tablename__ = "products"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    organization_id: Mapped[int] = mapped_column(ForeignKey("organizations.id", ondelete="RESTRICT"), nullable=False)
    sku: Mapped[str] = mapped_column(String(64), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    # Coût catalogue, utilisé en 2e recours par le backfill COGS
    cost_price: Mapped[Decimal | None] = mapped_column(MONEY)
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    __table_args__ = (UniqueConstraint("organization_id", "sku", name="uq_product_org_sku"),)


class Supplier(Base):
    __tablename__ = "suppliers"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    organization_id: Mapped[int] = mapped_column(ForeignKey("organizations.id", ondelete="RESTRICT"), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    lead_time_days: Mapped[int] = mapped_column(Integer, default=14, nullable=False)

    __table_args__ = (
        UniqueConstraint("organization_id", "name", name="uq_supplier_org_name"),
        CheckConstraint("lead_time_days >= 0", name="ck_supplier_lead_time_nonneg"),
    )


class Customer(Base):
    __tablename__ = "customers"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    organization_id: Mapped[int] = mapped_column(ForeignKey("organizations.id", ondelete="RESTRICT"), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    is_wholesale: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)


# ---------- AUTH ----------
class User(Base):
    __tablename__ = "users"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    organization_id: Mapped[int] = mapped_column(ForeignKey("organizations.id", ondelete="RESTRICT"), nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    role: Mapped[Role] = mapped_column(Enum(Role, name="role"), nullable=False)
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)


# ---------- PROCUREMENT / INBOUND ----------
class PoNumberSequence(Base):
    __tablename__ = "po_number_sequences"
    organization_id: Mapped[int] = mapped_column(ForeignKey("organizations.id", ondelete="CASCADE"), primary_key=True)
    po_type: Mapped[POType] = mapped_column(Enum(POType, name="po_type"), primary_key=True)
    last_value: Mapped[int] = mapped_column(Integer, default=0, nullable=False)


class PurchaseOrder(Base):
    __tablename__ = "purchase_orders"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    organization_id: Mapped[int] = mapped_column(ForeignKey("organizations.id", ondelete="RESTRICT"), nullable=False)
    po_number: Mapped[str] = mapped_column(String(64), nullable=False)
    po_type: Mapped[POType] = mapped_column(Enum(POType, name="po_type"), nullable=False)
    status: Mapped[POStatus] = mapped_column(Enum(POStatus, name="po_status"), default=POStatus.draft, nullable=False)

    supplier_id: Mapped[int | None] = mapped_column(ForeignKey("suppliers.id", ondelete="RESTRICT"))
    customer_id: Mapped[int | None] = mapped_column(ForeignKey("customers.id", ondelete="RESTRICT"))
    location_id: Mapped[int | None] = mapped_column(ForeignKey("locations.id", ondelete="RESTRICT"))

    subtotal: Mapped[Decimal] = mapped_column(MONEY, default=Decimal("0"), nullable=False)
    tax_amount: Mapped[Decimal] = mapped_column(MONEY, default=Decimal("0"), nullable=False)
    shipping_cost: Mapped[Decimal] = mapped_column(MONEY, default=Decimal("0"), nullable=False)
    discount: Mapped[Decimal] = mapped_column(MONEY, default=Decimal("0"), nullable=False)
    # Figé à la création, jamais recalculé
    total_amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)

    notes: Mapped[str | None] = mapped_column(Text)
    idempotency_key: Mapped[str | None] = mapped_column(String(128), unique=True)

    expected_delivery_date: Mapped[date | None] = mapped_column(Date)
    received_date: Mapped[date | None] = mapped_column(Date)
    received_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    created_by: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"))
    approved_by: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"))
    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    received_by: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"))

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
        nullable=False,
    )

    lines: Mapped[list["PurchaseOrderLine"]] = relationship(
        back_populates="po",
        cascade="all, delete-orphan",
        order_by="PurchaseOrderLine.id",
    )

    __table_args__ = (
        UniqueConstraint("organization_id", "po_number", name="uq_po_org_number"),
        CheckConstraint("subtotal >= 0", name="ck_po_subtotal_nonneg"),
        CheckConstraint("tax_amount >= 0", name="ck_po_tax_nonneg"),
        CheckConstraint("shipping_cost >= 0", name="ck_po_shipping_nonneg"),
        CheckConstraint("discount >= 0", name="ck_po_discount_nonneg"),
        CheckConstraint("total_amount >= 0", name="ck_po_total_nonneg"),
        Index("ix_po_org_status", "organization_id", "status"),
    )


class PurchaseOrderLine(Base):
    __tablename__ = "purchase_order_lines"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    po_id: Mapped[int] = mapped_column(
        ForeignKey("purchase_orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    product_id: Mapped[int] = mapped_column(ForeignKey("products.id", ondelete="RESTRICT"), nullable=False)
    quantity: Mapped[Decimal] = mapped_column(QTY, nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    subtotal: Mapped[Decimal] = mapped_column(MONEY, nullable=False)

    received_quantity: Mapped[Decimal] = mapped_column(QTY, default=Decimal("0"), nullable=False)
    condition: Mapped[ItemCondition | None] = mapped_column(Enum(ItemCondition, name="item_condition"))
    quality_notes: Mapped[str | None] = mapped_column(Text)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
        nullable=False,
    )

    po: Mapped[PurchaseOrder] = relationship(back_populates="lines")
    product: Mapped[Product] = relationship()

    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_po_line_qty_pos"),
        CheckConstraint("unit_price >= 0", name="ck_po_line_unit_price_nonneg"),
        CheckConstraint("received_quantity >= 0", name="ck_po_line_received_nonneg"),
        Index("ix_po_lines_product", "product_id"),
    )


class GoodsReceipt(Base):
    __tablename__ = "goods_receipts"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    po_id: Mapped[int] = mapped_column(
        ForeignKey("purchase_orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    location_id: Mapped[int] = mapped_column(ForeignKey("locations.id", ondelete="RESTRICT"), nullable=False)
    received_by: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"))
    received_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)

    # Idempotence réception (clé unique, nullable OK)
    idempotency_key: Mapped[str | None] = mapped_column(String(128), unique=True)

    # Résultat renvoyé tel quel lors d'un rejeu
    items_processed: Mapped[int] = mapped_column(Integer, nullable=False)
    resulting_status: Mapped[POStatus] = mapped_column(Enum(POStatus, name="po_status"), nullable=False)

    lines: Mapped[list["GoodsReceiptLine"]] = relationship(back_populates="receipt", cascade="all, delete-orphan")


class GoodsReceiptLine(Base):
    __tablename__ = "goods_receipt_lines"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    receipt_id: Mapped[int] = mapped_column(
        ForeignKey("goods_receipts.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    po_line_id: Mapped[int] = mapped_column(ForeignKey("purchase_order_lines.id", ondelete="CASCADE"), nullable=False)
    product_id: Mapped[int] = mapped_column(ForeignKey("products.id", ondelete="RESTRICT"), nullable=False)
    quantity: Mapped[Decimal] = mapped_column(QTY, nullable=False)
    condition: Mapped[ItemCondition] = mapped_column(Enum(ItemCondition, name="item_condition"), nullable=False)
    quality_notes: Mapped[str | None] = mapped_column(Text)
    stocked: Mapped[bool] = mapped_column(Boolean, nullable=False)

    receipt: Mapped[GoodsReceipt] = relationship(back_populates="lines")

    __table_args__ = (CheckConstraint("quantity > 0", name="ck_gr_line_qty_pos"),)


# ---------- INVENTORY ----------
class InventoryLevel(Base):
    __tablename__ = "inventory_levels"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    organization_id: Mapped[int] = mapped_column(ForeignKey("organizations.id", ondelete="RESTRICT"), nullable=False)
    location_id: Mapped[int] = mapped_column(ForeignKey("locations.id", ondelete="RESTRICT"), nullable=False)
    product_id: Mapped[int] = mapped_column(ForeignKey("products.id", ondelete="RESTRICT"), nullable=False)

    # Signé : les sorties sont gérées par d'autres sous-systèmes
    quantity: Mapped[Decimal] = mapped_column(QTY, default=Decimal("0"), nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
        nullable=False,
    )

    __table_args__ = (
        UniqueConstraint("organization_id", "location_id", "product_id", name="uq_inventory_org_location_product"),
    )


# ---------- SALES (lecture/écriture COGS uniquement) ----------
class SalesOrder(Base):
    __tablename__ = "sales_orders"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    organization_id: Mapped[int] = mapped_column(ForeignKey("organizations.id", ondelete="RESTRICT"), nullable=False)
    order_number: Mapped[str] = mapped_column(String(64), nullable=False)
    customer_id: Mapped[int | None] = mapped_column(ForeignKey("customers.id", ondelete="SET NULL"))

    subtotal: Mapped[Decimal] = mapped_column(MONEY, default=Decimal("0"), nullable=False)
    # Seule source de vérité pour les remises
    discount_amount: Mapped[Decimal] = mapped_column(MONEY, default=Decimal("0"), nullable=False)

    total_cogs: Mapped[Decimal | None] = mapped_column(MONEY)
    gross_profit: Mapped[Decimal | None] = mapped_column(MONEY)
    gross_margin_percentage: Mapped[Decimal | None] = mapped_column(PERCENT)
    cogs_calculated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)

    lines: Mapped[list["SalesOrderLine"]] = relationship(
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="SalesOrderLine.id",
    )

    __table_args__ = (
        UniqueConstraint("organization_id", "order_number", name="uq_sales_order_org_number"),
        Index("ix_sales_orders_org_created", "organization_id", "created_at"),
    )


class SalesOrderLine(Base):
    __tablename__ = "sales_order_lines"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    order_id: Mapped[int] = mapped_column(
        ForeignKey("sales_orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    product_id: Mapped[int] = mapped_column(ForeignKey("products.id", ondelete="RESTRICT"), nullable=False)
    quantity: Mapped[Decimal] = mapped_column(QTY, nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(MONEY, nullable=False)

    # NULL = coût pas encore résolu
    cost_per_unit: Mapped[Decimal | None] = mapped_column(MONEY)
    profit_per_unit: Mapped[Decimal | None] = mapped_column(MONEY)
    margin_percentage: Mapped[Decimal | None] = mapped_column(PERCENT)
    cost_source: Mapped[CostSource | None] = mapped_column(Enum(CostSource, name="cost_source"))

    order: Mapped[SalesOrder] = relationship(back_populates="lines")

    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_sales_line_qty_pos"),
        Index("ix_sales_lines_missing_cost", "id", postgresql_where=text("cost_per_unit IS NULL")),
    )
