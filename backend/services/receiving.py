"""
Réception des PO.

Un appel = un lot de réceptions (ligne, quantité, état) appliqué dans
UNE transaction :
- received_quantity des lignes incrémenté en SQL (delta atomique)
- stock incrémenté uniquement pour l'état "good"
- statut du PO recalculé sur l'ensemble des lignes

Sans Idempotency-Key, un même lot soumis deux fois est compté deux fois :
c'est à l'appelant de ne soumettre chaque réception physique qu'une fois.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Sequence

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from backend.app.core.config import settings
from backend.app.db.base import utcnow
from backend.app.db.models.models_v1 import (
    GoodsReceipt,
    GoodsReceiptLine,
    PurchaseOrder,
    PurchaseOrderLine,
    User,
)
from backend.app.db.models.core_types import ItemCondition, POStatus
from backend.services.errors import InputError, NotFound, StateConflict
from backend.services.inventory import increment_inventory, resolve_receiving_location_id
from backend.services.money import QTY_PLACES, ZERO, fits_scale, to_decimal

logger = logging.getLogger(__name__)

RECEIVABLE_STATUSES = {
    POStatus.pending,
    POStatus.approved,
    POStatus.ordered,
    POStatus.receiving,
    POStatus.partially_received,
}


@dataclass(frozen=True)
class ReceiptEntry:
    line_id: int
    quantity: Decimal
    condition: ItemCondition = ItemCondition.good
    quality_notes: str | None = None

    def __post_init__(self) -> None:
        quantity = to_decimal(self.quantity)
        if quantity <= 0:
            raise InputError(f"quantity must be > 0 (line_id {self.line_id})")
        if not fits_scale(quantity, QTY_PLACES):
            raise InputError(f"quantity allows at most {QTY_PLACES} decimals (line_id {self.line_id})")
        try:
            condition = ItemCondition(self.condition or ItemCondition.good)
        except ValueError:
            raise InputError(f"Invalid condition {self.condition!r} (line_id {self.line_id})") from None
        object.__setattr__(self, "quantity", quantity)
        object.__setattr__(self, "condition", condition)


@dataclass(frozen=True)
class ReceiveResult:
    po_id: int
    receipt_id: int
    location_id: int
    items_processed: int
    new_status: POStatus
    replayed: bool = False


def derive_status(total_ordered: Decimal, total_received: Decimal) -> POStatus:
    if total_received >= total_ordered:
        return POStatus.received
    if total_received > 0:
        return POStatus.partially_received
    return POStatus.receiving


def _replayed_result(receipt: GoodsReceipt, po_id: int) -> ReceiveResult:
    if receipt.po_id != po_id:
        raise InputError("Idempotency-Key already used for another purchase order")
    return ReceiveResult(
        po_id=int(receipt.po_id),
        receipt_id=int(receipt.id),
        location_id=int(receipt.location_id),
        items_processed=receipt.items_processed,
        new_status=receipt.resulting_status,
        replayed=True,
    )


def _find_receipt(db: Session, key: str) -> GoodsReceipt | None:
    return db.execute(select(GoodsReceipt).where(GoodsReceipt.idempotency_key == key)).scalar_one_or_none()


def _apply_line_delta(db: Session, entry: ReceiptEntry, *, allow_over_receipt: bool) -> None:
    # Delta exprimé en SQL : deux réceptions concurrentes s'additionnent
    stmt = (
        update(PurchaseOrderLine)
        .where(PurchaseOrderLine.id == entry.line_id)
        .values(
            received_quantity=PurchaseOrderLine.received_quantity + entry.quantity,
            condition=entry.condition,
            quality_notes=entry.quality_notes,
            updated_at=utcnow(),
        )
        .execution_options(synchronize_session=False)
    )
    if not allow_over_receipt:
        stmt = stmt.where(PurchaseOrderLine.received_quantity + entry.quantity <= PurchaseOrderLine.quantity)

    if db.execute(stmt).rowcount != 1:
        raise InputError(
            f"Receiving {entry.quantity} would exceed the ordered quantity (line_id {entry.line_id})",
            line_id=entry.line_id,
        )


def receive_purchase_order_items(
    db: Session,
    po_id: int,
    *,
    entries: Sequence[ReceiptEntry],
    location_id: int | None = None,
    received_by: int | None = None,
    idempotency_key: str | None = None,
    allow_over_receipt: bool | None = None,
) -> ReceiveResult:
    if not entries:
        raise InputError("At least one item is required")
    if allow_over_receipt is None:
        allow_over_receipt = settings.allow_over_receipt
    key = (idempotency_key or "").strip() or None

    try:
        # Fast path : lot déjà appliqué -> renvoi direct (pas de double stock)
        if key:
            existing = _find_receipt(db, key)
            if existing:
                result = _replayed_result(existing, po_id)
                db.rollback()
                logger.info("Receipt %s replayed for PO id=%s", result.receipt_id, po_id)
                return result

        # Verrou PO : sérialise les réceptions concurrentes du même PO
        po = db.execute(select(PurchaseOrder).where(PurchaseOrder.id == po_id).with_for_update()).scalar_one_or_none()
        if not po:
            raise NotFound(f"Purchase order not found: {po_id}")
        if po.status not in RECEIVABLE_STATUSES:
            raise StateConflict(
                f"Cannot receive items for PO with status: {po.status.value}",
                current_status=po.status.value,
            )

        dest_location_id = resolve_receiving_location_id(
            db,
            organization_id=po.organization_id,
            location_id=location_id,
            fallback_location_id=po.location_id,
        )
        if received_by is not None:
            user = db.get(User, received_by)
            if not user or user.organization_id != po.organization_id:
                raise InputError(f"Invalid received_by {received_by}")

        po_lines = {
            ln.id: ln
            for ln in db.execute(select(PurchaseOrderLine).where(PurchaseOrderLine.po_id == po.id)).scalars().all()
        }
        unknown = sorted({e.line_id for e in entries if e.line_id not in po_lines})
        if unknown:
            raise NotFound(f"PO item not found: {unknown[0]}", line_ids=unknown)

        receipt = GoodsReceipt(
            po_id=po.id,
            location_id=dest_location_id,
            received_by=received_by,
            idempotency_key=key,
            items_processed=len(entries),
            resulting_status=po.status,
        )
        db.add(receipt)

        # Concurrence : même clé soumise deux fois en parallèle
        try:
            db.flush()
        except IntegrityError:
            db.rollback()
            winner = _find_receipt(db, key) if key else None
            if winner is None:
                raise
            logger.warning("Receipt idempotency race on key %s", key)
            result = _replayed_result(winner, po_id)
            db.rollback()
            return result

        stocked: dict[int, Decimal] = {}
        for entry in entries:
            line = po_lines[entry.line_id]
            _apply_line_delta(db, entry, allow_over_receipt=allow_over_receipt)

            is_good = entry.condition == ItemCondition.good
            if is_good:
                stocked[line.product_id] = stocked.get(line.product_id, ZERO) + entry.quantity

            receipt.lines.append(
                GoodsReceiptLine(
                    po_line_id=line.id,
                    product_id=line.product_id,
                    quantity=entry.quantity,
                    condition=entry.condition,
                    quality_notes=entry.quality_notes,
                    stocked=is_good,
                )
            )

        # Ordre stable des clés de stock : évite les deadlocks entre lots
        for product_id in sorted(stocked):
            increment_inventory(
                db,
                organization_id=po.organization_id,
                location_id=dest_location_id,
                product_id=product_id,
                delta=stocked[product_id],
            )

        total_ordered, total_received = db.execute(
            select(
                func.coalesce(func.sum(PurchaseOrderLine.quantity), 0),
                func.coalesce(func.sum(PurchaseOrderLine.received_quantity), 0),
            ).where(PurchaseOrderLine.po_id == po.id)
        ).one()
        new_status = derive_status(to_decimal(total_ordered), to_decimal(total_received))

        now = utcnow()
        previous = po.status
        po.status = new_status
        po.updated_at = now
        if new_status == POStatus.received:
            # Premier passage seulement : on garde la date et le réceptionnaire d'origine
            if po.received_at is None:
                po.received_at = now
            if po.received_date is None:
                po.received_date = now.date()
            if po.received_by is None and received_by is not None:
                po.received_by = received_by
        receipt.resulting_status = new_status

        db.flush()
        result = ReceiveResult(
            po_id=int(po.id),
            receipt_id=int(receipt.id),
            location_id=dest_location_id,
            items_processed=len(entries),
            new_status=new_status,
        )
        po_number = po.po_number
        db.commit()
    except Exception:
        db.rollback()
        raise

    logger.info(
        "PO %s received %s item(s) at location %s: %s -> %s",
        po_number,
        result.items_processed,
        dest_location_id,
        previous.value,
        new_status.value,
    )
    return result
