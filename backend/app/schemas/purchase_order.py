from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal

from pydantic import BaseModel, Field

from backend.app.db.models.core_types import ItemCondition, POStatus, POType


# ---------- Création ----------
class POLineCreate(BaseModel):
    product_id: int
    quantity: Decimal = Field(gt=0, decimal_places=3)
    unit_price: Decimal = Field(ge=0, decimal_places=2)


class POCreate(BaseModel):
    organization_id: int
    po_type: POType = POType.inbound
    supplier_id: int | None = None
    customer_id: int | None = None
    location_id: int | None = None
    expected_delivery_date: date | None = None
    notes: str | None = None
    tax_amount: Decimal = Field(default=Decimal("0"), ge=0, decimal_places=2)
    shipping_cost: Decimal = Field(default=Decimal("0"), ge=0, decimal_places=2)
    discount: Decimal = Field(default=Decimal("0"), ge=0, decimal_places=2)
    idempotency_key: str | None = Field(default=None, max_length=128)
    created_by: int | None = None
    lines: list[POLineCreate] = Field(min_length=1)


class POTotalsRead(BaseModel):
    subtotal: Decimal
    tax_amount: Decimal
    shipping_cost: Decimal
    discount: Decimal
    total_amount: Decimal


class POCreated(BaseModel):
    po_id: int
    po_number: str
    status: POStatus
    totals: POTotalsRead
    lines_created: int
    replayed: bool = False


# ---------- Réception ----------
class ReceiveItem(BaseModel):
    line_id: int
    quantity: Decimal = Field(gt=0, decimal_places=3)
    condition: ItemCondition = ItemCondition.good
    quality_notes: str | None = None


class ReceiveRequest(BaseModel):
    location_id: int | None = None
    received_by: int | None = None
    items: list[ReceiveItem] = Field(min_length=1)


class ReceiveResponse(BaseModel):
    po_id: int
    receipt_id: int
    location_id: int
    items_processed: int
    new_status: POStatus
    replayed: bool = False


# ---------- Transitions ----------
class ApproveRequest(BaseModel):
    approved_by: int | None = None


# ---------- Lecture ----------
class POLineRead(BaseModel):
    id: int
    product_id: int
    quantity: Decimal
    unit_price: Decimal
    subtotal: Decimal
    received_quantity: Decimal
    quantity_remaining: Decimal
    condition: ItemCondition | None
    quality_notes: str | None


class PORead(BaseModel):
    id: int
    organization_id: int
    po_number: str
    po_type: POType
    status: POStatus
    supplier_id: int | None
    customer_id: int | None
    location_id: int | None
    subtotal: Decimal
    tax_amount: Decimal
    shipping_cost: Decimal
    discount: Decimal
    total_amount: Decimal
    notes: str | None
    expected_delivery_date: date | None
    received_date: date | None
    received_at: datetime | None
    created_by: int | None
    approved_by: int | None
    approved_at: datetime | None
    received_by: int | None
    created_at: datetime
    updated_at: datetime
    lines: list[POLineRead] = Field(default_factory=list)


class POListItem(BaseModel):
    id: int
    po_number: str
    po_type: POType
    status: POStatus
    supplier_id: int | None
    location_id: int | None
    total_amount: Decimal
    expected_delivery_date: date | None
    received_date: date | None
    created_at: datetime
    items_count: int
    received_items_count: int


class POStatsRead(BaseModel):
    total: int
    draft: int
    pending: int
    approved: int
    ordered: int
    receiving: int
    received: int
    cancelled: int
    total_value: Decimal
