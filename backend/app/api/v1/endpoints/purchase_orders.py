from __future__ import annotations

from dataclasses import asdict

from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy.orm import Session

from backend.app.api.deps import get_db, get_idempotency_key
from backend.app.db.models.models_v1 import PurchaseOrder
from backend.app.db.models.core_types import POStatus
from backend.app.schemas.purchase_order import (
    ApproveRequest,
    POCreate,
    POCreated,
    POListItem,
    PORead,
    POStatsRead,
    ReceiveRequest,
    ReceiveResponse,
)
from backend.services import procurement
from backend.services.procurement import NewPOLine, NewPurchaseOrder
from backend.services.receiving import ReceiptEntry, receive_purchase_order_items

router = APIRouter(prefix="/purchase-orders")


def _po_read(po: PurchaseOrder) -> dict:
    return {
        "id": po.id,
        "organization_id": po.organization_id,
        "po_number": po.po_number,
        "po_type": po.po_type,
        "status": po.status,
        "supplier_id": po.supplier_id,
        "customer_id": po.customer_id,
        "location_id": po.location_id,
        "subtotal": po.subtotal,
        "tax_amount": po.tax_amount,
        "shipping_cost": po.shipping_cost,
        "discount": po.discount,
        "total_amount": po.total_amount,
        "notes": po.notes,
        "expected_delivery_date": po.expected_delivery_date,
        "received_date": po.received_date,
        "received_at": po.received_at,
        "created_by": po.created_by,
        "approved_by": po.approved_by,
        "approved_at": po.approved_at,
        "received_by": po.received_by,
        "created_at": po.created_at,
        "updated_at": po.updated_at,
        "lines": [
            {
                "id": l.id,
                "product_id": l.product_id,
                "quantity": l.quantity,
                "unit_price": l.unit_price,
                "subtotal": l.subtotal,
                "received_quantity": l.received_quantity,
                "quantity_remaining": max(l.quantity - l.received_quantity, 0),
                "condition": l.condition,
                "quality_notes": l.quality_notes,
            }
            for l in po.lines
        ],
    }


@router.get("", response_model=list[POListItem])
def list_pos(
    organization_id: int,
    status: POStatus | None = None,
    limit: int = Query(100, ge=1, le=500),
    db: Session = Depends(get_db),
):
    return procurement.list_purchase_orders(db, organization_id=organization_id, status=status, limit=limit)


@router.get("/stats", response_model=POStatsRead)
def po_stats(organization_id: int, db: Session = Depends(get_db)):
    return asdict(procurement.purchase_order_stats(db, organization_id=organization_id))


@router.get("/{po_id}", response_model=PORead)
def get_po(po_id: int, db: Session = Depends(get_db)):
    return _po_read(procurement.get_purchase_order(db, po_id))


@router.post("", response_model=POCreated, status_code=201)
def create_po(
    payload: POCreate,
    response: Response,
    db: Session = Depends(get_db),
    idempotency_key: str | None = Depends(get_idempotency_key),
):
    result = procurement.create_purchase_order(
        db,
        NewPurchaseOrder(
            organization_id=payload.organization_id,
            po_type=payload.po_type,
            lines=[
                NewPOLine(product_id=ln.product_id, quantity=ln.quantity, unit_price=ln.unit_price)
                for ln in payload.lines
            ],
            supplier_id=payload.supplier_id,
            customer_id=payload.customer_id,
            location_id=payload.location_id,
            expected_delivery_date=payload.expected_delivery_date,
            notes=payload.notes,
            tax_amount=payload.tax_amount,
            shipping_cost=payload.shipping_cost,
            discount=payload.discount,
            idempotency_key=payload.idempotency_key or idempotency_key,
            created_by=payload.created_by,
        ),
    )
    if result.replayed:
        response.status_code = 200
    return asdict(result)


@router.post("/{po_id}/submit", response_model=PORead)
def submit_po(po_id: int, db: Session = Depends(get_db)):
    return _po_read(procurement.submit_purchase_order(db, po_id))


@router.post("/{po_id}/approve", response_model=PORead)
def approve_po(po_id: int, payload: ApproveRequest | None = None, db: Session = Depends(get_db)):
    approved_by = payload.approved_by if payload else None
    return _po_read(procurement.approve_purchase_order(db, po_id, approved_by=approved_by))


@router.post("/{po_id}/order", response_model=PORead)
def order_po(po_id: int, db: Session = Depends(get_db)):
    return _po_read(procurement.mark_purchase_order_ordered(db, po_id))


@router.post("/{po_id}/cancel", response_model=PORead)
def cancel_po(po_id: int, db: Session = Depends(get_db)):
    return _po_read(procurement.cancel_purchase_order(db, po_id))


@router.delete("/{po_id}", status_code=204)
def delete_po(po_id: int, db: Session = Depends(get_db)):
    procurement.delete_purchase_order(db, po_id)
    return Response(status_code=204)


@router.post("/{po_id}/receive", response_model=ReceiveResponse)
def receive_po(
    po_id: int,
    payload: ReceiveRequest,
    db: Session = Depends(get_db),
    idempotency_key: str | None = Depends(get_idempotency_key),
):
    result = receive_purchase_order_items(
        db,
        po_id,
        entries=[
            ReceiptEntry(
                line_id=item.line_id,
                quantity=item.quantity,
                condition=item.condition,
                quality_notes=item.quality_notes,
            )
            for item in payload.items
        ],
        location_id=payload.location_id,
        received_by=payload.received_by,
        idempotency_key=idempotency_key,
    )
    return asdict(result)
