"""initial schema: procurement, receiving, inventory ledger, sales COGS

Revision ID: 0001_initial_schema
Revises:
Create Date: 2026-10-19
"""

from __future__ import annotations

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "0001_initial_schema"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

ENUMS = {
    "role": ("admin", "manager", "staff"),
    "location_type": ("warehouse", "store", "dock", "quarantine"),
    "po_type": ("inbound", "outbound", "transfer"),
    "po_status": (
        "draft",
        "pending",
        "approved",
        "ordered",
        "receiving",
        "partially_received",
        "received",
        "cancelled",
    ),
    "item_condition": ("good", "damaged", "expired", "rejected"),
    "cost_source": ("po_at_sale", "product_master", "po_any"),
}


def _enum(name: str) -> postgresql.ENUM:
    # Types créés une seule fois en amont, réutilisés par plusieurs tables
    return postgresql.ENUM(*ENUMS[name], name=name, create_type=False)


def _money() -> sa.Numeric:
    return sa.Numeric(14, 2)


def _ts(name: str, nullable: bool = False) -> sa.Column:
    return sa.Column(name, sa.DateTime(timezone=True), nullable=nullable)


def upgrade() -> None:
    bind = op.get_bind()
    for name, values in ENUMS.items():
        postgresql.ENUM(*values, name=name).create(bind, checkfirst=True)

    # ---------- MASTER DATA ----------
    op.create_table(
        "organizations",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column("name", sa.String(200), nullable=False, unique=True),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.true()),
    )
    op.create_table(
        "locations",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column("organization_id", sa.BigInteger(), sa.ForeignKey("organizations.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("type", _enum("location_type"), nullable=False),
        sa.UniqueConstraint("organization_id", "name", name="uq_location_org_name"),
    )
    op.create_table(
        "products",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column("organization_id", sa.BigInteger(), sa.ForeignKey("organizations.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("sku", sa.String(64), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("cost_price", _money()),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.UniqueConstraint("organization_id", "sku", name="uq_product_org_sku"),
    )
    op.create_table(
        "suppliers",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column("organization_id", sa.BigInteger(), sa.ForeignKey("organizations.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("lead_time_days", sa.Integer(), nullable=False, server_default="14"),
        sa.UniqueConstraint("organization_id", "name", name="uq_supplier_org_name"),
        sa.CheckConstraint("lead_time_days >= 0", name="ck_supplier_lead_time_nonneg"),
    )
    op.create_table(
        "customers",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column("organization_id", sa.BigInteger(), sa.ForeignKey("organizations.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("is_wholesale", sa.Boolean(), nullable=False, server_default=sa.false()),
    )

    # ---------- AUTH ----------
    op.create_table(
        "users",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column("organization_id", sa.BigInteger(), sa.ForeignKey("organizations.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("role", _enum("role"), nullable=False),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.true()),
        _ts("created_at"),
    )

    # ---------- PROCUREMENT / INBOUND ----------
    op.create_table(
        "po_number_sequences",
        sa.Column("organization_id", sa.BigInteger(), sa.ForeignKey("organizations.id", ondelete="CASCADE"), primary_key=True),
        sa.Column("po_type", _enum("po_type"), primary_key=True),
        sa.Column("last_value", sa.Integer(), nullable=False, server_default="0"),
    )
    op.create_table(
        "purchase_orders",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column("organization_id", sa.BigInteger(), sa.ForeignKey("organizations.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("po_number", sa.String(64), nullable=False),
        sa.Column("po_type", _enum("po_type"), nullable=False),
        sa.Column("status", _enum("po_status"), nullable=False, server_default="draft"),
        sa.Column("supplier_id", sa.BigInteger(), sa.ForeignKey("suppliers.id", ondelete="RESTRICT")),
        sa.Column("customer_id", sa.BigInteger(), sa.ForeignKey("customers.id", ondelete="RESTRICT")),
        sa.Column("location_id", sa.BigInteger(), sa.ForeignKey("locations.id", ondelete="RESTRICT")),
        sa.Column("subtotal", _money(), nullable=False, server_default="0"),
        sa.Column("tax_amount", _money(), nullable=False, server_default="0"),
        sa.Column("shipping_cost", _money(), nullable=False, server_default="0"),
        sa.Column("discount", _money(), nullable=False, server_default="0"),
        sa.Column("total_amount", _money(), nullable=False),
        sa.Column("notes", sa.Text()),
        sa.Column("idempotency_key", sa.String(128), unique=True),
        sa.Column("expected_delivery_date", sa.Date()),
        sa.Column("received_date", sa.Date()),
        _ts("received_at", nullable=True),
        sa.Column("created_by", sa.BigInteger(), sa.ForeignKey("users.id", ondelete="SET NULL")),
        sa.Column("approved_by", sa.BigInteger(), sa.ForeignKey("users.id", ondelete="SET NULL")),
        _ts("approved_at", nullable=True),
        sa.Column("received_by", sa.BigInteger(), sa.ForeignKey("users.id", ondelete="SET NULL")),
        _ts("created_at"),
        _ts("updated_at"),
        sa.UniqueConstraint("organization_id", "po_number", name="uq_po_org_number"),
        sa.CheckConstraint("subtotal >= 0", name="ck_po_subtotal_nonneg"),
        sa.CheckConstraint("tax_amount >= 0", name="ck_po_tax_nonneg"),
        sa.CheckConstraint("shipping_cost >= 0", name="ck_po_shipping_nonneg"),
        sa.CheckConstraint("discount >= 0", name="ck_po_discount_nonneg"),
        sa.CheckConstraint("total_amount >= 0", name="ck_po_total_nonneg"),
    )
    op.create_index("ix_po_org_status", "purchase_orders", ["organization_id", "status"])

    op.create_table(
        "purchase_order_lines",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column("po_id", sa.BigInteger(), sa.ForeignKey("purchase_orders.id", ondelete="CASCADE"), nullable=False),
        sa.Column("product_id", sa.BigInteger(), sa.ForeignKey("products.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("quantity", sa.Numeric(14, 3), nullable=False),
        sa.Column("unit_price", _money(), nullable=False),
        sa.Column("subtotal", _money(), nullable=False),
        sa.Column("received_quantity", sa.Numeric(14, 3), nullable=False, server_default="0"),
        sa.Column("condition", _enum("item_condition")),
        sa.Column("quality_notes", sa.Text()),
        _ts("created_at"),
        _ts("updated_at"),
        sa.CheckConstraint("quantity > 0", name="ck_po_line_qty_pos"),
        sa.CheckConstraint("unit_price >= 0", name="ck_po_line_unit_price_nonneg"),
        sa.CheckConstraint("received_quantity >= 0", name="ck_po_line_received_nonneg"),
    )
    op.create_index("ix_purchase_order_lines_po_id", "purchase_order_lines", ["po_id"])
    op.create_index("ix_po_lines_product", "purchase_order_lines", ["product_id"])

    op.create_table(
        "goods_receipts",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column("po_id", sa.BigInteger(), sa.ForeignKey("purchase_orders.id", ondelete="CASCADE"), nullable=False),
        sa.Column("location_id", sa.BigInteger(), sa.ForeignKey("locations.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("received_by", sa.BigInteger(), sa.ForeignKey("users.id", ondelete="SET NULL")),
        _ts("received_at"),
        sa.Column("idempotency_key", sa.String(128), unique=True),
        sa.Column("items_processed", sa.Integer(), nullable=False),
        sa.Column("resulting_status", _enum("po_status"), nullable=False),
    )
    op.create_index("ix_goods_receipts_po_id", "goods_receipts", ["po_id"])

    op.create_table(
        "goods_receipt_lines",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column("receipt_id", sa.BigInteger(), sa.ForeignKey("goods_receipts.id", ondelete="CASCADE"), nullable=False),
        sa.Column("po_line_id", sa.BigInteger(), sa.ForeignKey("purchase_order_lines.id", ondelete="CASCADE"), nullable=False),
        sa.Column("product_id", sa.BigInteger(), sa.ForeignKey("products.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("quantity", sa.Numeric(14, 3), nullable=False),
        sa.Column("condition", _enum("item_condition"), nullable=False),
        sa.Column("quality_notes", sa.Text()),
        sa.Column("stocked", sa.Boolean(), nullable=False),
        sa.CheckConstraint("quantity > 0", name="ck_gr_line_qty_pos"),
    )
    op.create_index("ix_goods_receipt_lines_receipt_id", "goods_receipt_lines", ["receipt_id"])

    # ---------- INVENTORY ----------
    op.create_table(
        "inventory_levels",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column("organization_id", sa.BigInteger(), sa.ForeignKey("organizations.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("location_id", sa.BigInteger(), sa.ForeignKey("locations.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("product_id", sa.BigInteger(), sa.ForeignKey("products.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("quantity", sa.Numeric(14, 3), nullable=False, server_default="0"),
        _ts("created_at"),
        _ts("updated_at"),
        sa.UniqueConstraint(
            "organization_id",
            "location_id",
            "product_id",
            name="uq_inventory_org_location_product",
        ),
    )

    # ---------- SALES ----------
    op.create_table(
        "sales_orders",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column("organization_id", sa.BigInteger(), sa.ForeignKey("organizations.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("order_number", sa.String(64), nullable=False),
        sa.Column("customer_id", sa.BigInteger(), sa.ForeignKey("customers.id", ondelete="SET NULL")),
        sa.Column("subtotal", _money(), nullable=False, server_default="0"),
        sa.Column("discount_amount", _money(), nullable=False, server_default="0"),
        sa.Column("total_cogs", _money()),
        sa.Column("gross_profit", _money()),
        sa.Column("gross_margin_percentage", sa.Numeric(9, 2)),
        _ts("cogs_calculated_at", nullable=True),
        _ts("created_at"),
        sa.UniqueConstraint("organization_id", "order_number", name="uq_sales_order_org_number"),
    )
    op.create_index("ix_sales_orders_org_created", "sales_orders", ["organization_id", "created_at"])

    op.create_table(
        "sales_order_lines",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column("order_id", sa.BigInteger(), sa.ForeignKey("sales_orders.id", ondelete="CASCADE"), nullable=False),
        sa.Column("product_id", sa.BigInteger(), sa.ForeignKey("products.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("quantity", sa.Numeric(14, 3), nullable=False),
        sa.Column("unit_price", _money(), nullable=False),
        sa.Column("cost_per_unit", _money()),
        sa.Column("profit_per_unit", _money()),
        sa.Column("margin_percentage", sa.Numeric(9, 2)),
        sa.Column("cost_source", _enum("cost_source")),
        sa.CheckConstraint("quantity > 0", name="ck_sales_line_qty_pos"),
    )
    op.create_index("ix_sales_order_lines_order_id", "sales_order_lines", ["order_id"])
    op.create_index(
        "ix_sales_lines_missing_cost",
        "sales_order_lines",
        ["id"],
        postgresql_where=sa.text("cost_per_unit IS NULL"),
    )


def downgrade() -> None:
    for table in (
        "sales_order_lines",
        "sales_orders",
        "inventory_levels",
        "goods_receipt_lines",
        "goods_receipts",
        "purchase_order_lines",
        "purchase_orders",
        "po_number_sequences",
        "users",
        "customers",
        "suppliers",
        "products",
        "locations",
        "organizations",
    ):
        op.drop_table(table)

    bind = op.get_bind()
    for name in reversed(list(ENUMS)):
        postgresql.ENUM(name=name).drop(bind, checkfirst=True)
