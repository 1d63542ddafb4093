"""
Procurement service.

Ce module orchestre le cycle de vie des PO (création, soumission,
approbation, annulation, suppression) mais ne contient AUCUNE logique
de calcul de stock.

Toute la logique stock est centralisée dans :
    backend.services.inventory
La réception est dans :
    backend.services.receiving
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Sequence

from sqlalchemy import case, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from backend.app.db.base import utcnow
from backend.app.db.dialect import insert_for
from backend.app.db.models.models_v1 import (
    Customer,
    Location,
    Organization,
    PoNumberSequence,
    Product,
    PurchaseOrder,
    PurchaseOrderLine,
    Supplier,
    User,
)
from backend.app.db.models.core_types import POStatus, POType
from backend.services.errors import InputError, NotFound, StateConflict
from backend.services.money import MONEY_PLACES, QTY_PLACES, ZERO, fits_scale, money, to_decimal

logger = logging.getLogger(__name__)

PO_NUMBER_PREFIXES = {
    POType.inbound: "PO",
    POType.outbound: "SO",
    POType.transfer: "TR",
}

SUBMITTABLE_STATUSES = {POStatus.draft}
APPROVABLE_STATUSES = {POStatus.pending}
ORDERABLE_STATUSES = {POStatus.pending, POStatus.approved}
CANCELLABLE_STATUSES = {
    POStatus.draft,
    POStatus.pending,
    POStatus.ordered,
    POStatus.approved,
}
DELETABLE_STATUSES = {POStatus.draft, POStatus.cancelled}


# ---------- Inputs ----------
@dataclass(frozen=True)
class NewPOLine:
    product_id: int
    quantity: Decimal
    unit_price: Decimal

    def __post_init__(self) -> None:
        quantity = to_decimal(self.quantity)
        unit_price = to_decimal(self.unit_price)
        if quantity <= 0:
            raise InputError(f"quantity must be > 0 (product_id {self.product_id})")
        if unit_price < 0:
            raise InputError(f"unit_price must be >= 0 (product_id {self.product_id})")
        if not fits_scale(quantity, QTY_PLACES):
            raise InputError(f"quantity allows at most {QTY_PLACES} decimals (product_id {self.product_id})")
        if not fits_scale(unit_price, MONEY_PLACES):
            raise InputError(f"unit_price allows at most {MONEY_PLACES} decimals (product_id {self.product_id})")
        object.__setattr__(self, "quantity", quantity)
        object.__setattr__(self, "unit_price", unit_price)

    @property
    def subtotal(self) -> Decimal:
        return money(self.quantity * self.unit_price)


@dataclass(frozen=True)
class NewPurchaseOrder:
    organization_id: int
    po_type: POType
    lines: Sequence[NewPOLine]
    supplier_id: int | None = None
    customer_id: int | None = None
    location_id: int | None = None
    expected_delivery_date: date | None = None
    notes: str | None = None
    tax_amount: Decimal = ZERO
    shipping_cost: Decimal = ZERO
    discount: Decimal = ZERO
    idempotency_key: str | None = None
    created_by: int | None = None

    def __post_init__(self) -> None:
        if not self.lines:
            raise InputError("At least one line is required")
        object.__setattr__(self, "lines", tuple(self.lines))
        try:
            object.__setattr__(self, "po_type", POType(self.po_type))
        except ValueError:
            raise InputError(f"Invalid po_type {self.po_type!r}") from None

        for name in ("tax_amount", "shipping_cost", "discount"):
            value = to_decimal(getattr(self, name) or ZERO)
            if value < 0:
                raise InputError(f"{name} must be >= 0")
            if not fits_scale(value, MONEY_PLACES):
                raise InputError(f"{name} allows at most {MONEY_PLACES} decimals")
            object.__setattr__(self, name, value)

        key = (self.idempotency_key or "").strip() or None
        object.__setattr__(self, "idempotency_key", key)


# ---------- Outputs ----------
@dataclass(frozen=True)
class POTotals:
    subtotal: Decimal
    tax_amount: Decimal
    shipping_cost: Decimal
    discount: Decimal
    total_amount: Decimal


@dataclass(frozen=True)
class PurchaseOrderCreated:
    po_id: int
    po_number: str
    status: POStatus
    totals: POTotals
    lines_created: int
    replayed: bool = False


@dataclass
class POStats:
    total: int = 0
    draft: int = 0
    pending: int = 0
    approved: int = 0
    ordered: int = 0
    receiving: int = 0
    received: int = 0
    cancelled: int = 0
    total_value: Decimal = field(default_factory=lambda: money(0))


# ---------- Helpers ----------
def compute_totals(
    lines: Sequence[NewPOLine],
    *,
    tax_amount: Decimal = ZERO,
    shipping_cost: Decimal = ZERO,
    discount: Decimal = ZERO,
) -> POTotals:
    """
    subtotal = Σ subtotal de ligne (quantity * unit_price, arrondi au centime)
    total    = subtotal + tax + shipping - discount
    """
    subtotal = sum((ln.subtotal for ln in lines), money(ZERO))
    tax_amount = money(tax_amount)
    shipping_cost = money(shipping_cost)
    discount = money(discount)
    total = subtotal + tax_amount + shipping_cost - discount
    if total < 0:
        raise InputError("discount exceeds the order total")

    return POTotals(
        subtotal=subtotal,
        tax_amount=tax_amount,
        shipping_cost=shipping_cost,
        discount=discount,
        total_amount=total,
    )


def next_po_number(db: Session, *, organization_id: int, po_type: POType) -> str:
    """
    Numéro séquentiel par (organisation, type), ex. PO-00042.

    Le compteur est incrémenté par un upsert atomique : deux créations
    simultanées ne peuvent pas obtenir la même valeur.
    """
    table = PoNumberSequence.__table__
    stmt = insert_for(db, table).values(
        organization_id=organization_id,
        po_type=po_type,
        last_value=1,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=[table.c.organization_id, table.c.po_type],
        set_={"last_value": table.c.last_value + 1},
    ).returning(table.c.last_value)

    seq = int(db.execute(stmt).scalar_one())
    return f"{PO_NUMBER_PREFIXES[po_type]}-{seq:05d}"


def _find_by_idempotency_key(db: Session, key: str) -> PurchaseOrder | None:
    return db.execute(select(PurchaseOrder).where(PurchaseOrder.idempotency_key == key)).scalar_one_or_none()


def _count_lines(db: Session, po_id: int) -> int:
    return int(
        db.execute(select(func.count(PurchaseOrderLine.id)).where(PurchaseOrderLine.po_id == po_id)).scalar_one()
    )


def _created_result(db: Session, po: PurchaseOrder, *, replayed: bool) -> PurchaseOrderCreated:
    return PurchaseOrderCreated(
        po_id=int(po.id),
        po_number=po.po_number,
        status=po.status,
        totals=POTotals(
            subtotal=po.subtotal,
            tax_amount=po.tax_amount,
            shipping_cost=po.shipping_cost,
            discount=po.discount,
            total_amount=po.total_amount,
        ),
        lines_created=_count_lines(db, po.id),
        replayed=replayed,
    )


def _replay(db: Session, po: PurchaseOrder, payload: NewPurchaseOrder) -> PurchaseOrderCreated:
    if po.organization_id != payload.organization_id:
        raise InputError("idempotency_key already used by another organization")
    logger.info("PO %s replayed for idempotency key %s", po.po_number, payload.idempotency_key)
    return _created_result(db, po, replayed=True)


def _check_owned(db: Session, model, ref_id: int | None, organization_id: int, label: str) -> None:
    if ref_id is None:
        return
    row = db.get(model, ref_id)
    if not row or row.organization_id != organization_id:
        raise InputError(f"Invalid {label} {ref_id}")


def _validate_references(db: Session, payload: NewPurchaseOrder) -> None:
    # FK checks (fail fast, message clair)
    if not db.get(Organization, payload.organization_id):
        raise InputError(f"Invalid organization_id {payload.organization_id}")

    _check_owned(db, Supplier, payload.supplier_id, payload.organization_id, "supplier_id")
    _check_owned(db, Customer, payload.customer_id, payload.organization_id, "customer_id")
    _check_owned(db, Location, payload.location_id, payload.organization_id, "location_id")
    _check_owned(db, User, payload.created_by, payload.organization_id, "created_by")

    product_ids = {ln.product_id for ln in payload.lines}
    known = set(
        db.execute(
            select(Product.id)
            .where(Product.id.in_(product_ids))
            .where(Product.organization_id == payload.organization_id)
        )
        .scalars()
        .all()
    )
    missing = sorted(product_ids - known)
    if missing:
        raise InputError(f"Invalid product_id {missing[0]}", product_ids=missing)


def _lock_po(db: Session, po_id: int) -> PurchaseOrder:
    po = db.execute(select(PurchaseOrder).where(PurchaseOrder.id == po_id).with_for_update()).scalar_one_or_none()
    if not po:
        raise NotFound(f"Purchase order not found: {po_id}")
    return po


# ---------- Création ----------
def create_purchase_order(db: Session, payload: NewPurchaseOrder) -> PurchaseOrderCreated:
    """
    Crée un PO (en-tête + lignes) dans une seule transaction.

    Avec une idempotency_key déjà connue, renvoie le PO existant tel quel.
    Si deux requêtes avec la même clé se croisent, la contrainte unique
    tranche : la perdante relit et renvoie le PO de la gagnante.
    """
    key = payload.idempotency_key
    try:
        if key:
            existing = _find_by_idempotency_key(db, key)
            if existing:
                result = _replay(db, existing, payload)
                db.rollback()
                return result

        _validate_references(db, payload)
        totals = compute_totals(
            payload.lines,
            tax_amount=payload.tax_amount,
            shipping_cost=payload.shipping_cost,
            discount=payload.discount,
        )

        po = PurchaseOrder(
            organization_id=payload.organization_id,
            po_number=next_po_number(db, organization_id=payload.organization_id, po_type=payload.po_type),
            po_type=payload.po_type,
            status=POStatus.draft,
            supplier_id=payload.supplier_id,
            customer_id=payload.customer_id,
            location_id=payload.location_id,
            expected_delivery_date=payload.expected_delivery_date,
            notes=payload.notes,
            subtotal=totals.subtotal,
            tax_amount=totals.tax_amount,
            shipping_cost=totals.shipping_cost,
            discount=totals.discount,
            total_amount=totals.total_amount,
            idempotency_key=key,
            created_by=payload.created_by,
        )
        po.lines = [
            PurchaseOrderLine(
                product_id=ln.product_id,
                quantity=ln.quantity,
                unit_price=ln.unit_price,
                subtotal=ln.subtotal,
                received_quantity=ZERO,
            )
            for ln in payload.lines
        ]
        db.add(po)

        # Concurrence : si deux requêtes arrivent en même temps avec la même clé
        try:
            db.flush()
        except IntegrityError:
            db.rollback()
            winner = _find_by_idempotency_key(db, key) if key else None
            if winner is None:
                raise
            logger.warning("Idempotency race on key %s, returning PO %s", key, winner.po_number)
            result = _replay(db, winner, payload)
            db.rollback()
            return result

        result = PurchaseOrderCreated(
            po_id=int(po.id),
            po_number=po.po_number,
            status=po.status,
            totals=totals,
            lines_created=len(po.lines),
        )
        db.commit()
    except Exception:
        db.rollback()
        raise

    logger.info(
        "PO %s created (org=%s, type=%s, lines=%s, total=%s)",
        result.po_number,
        payload.organization_id,
        payload.po_type.value,
        result.lines_created,
        totals.total_amount,
    )
    return result


# ---------- Transitions ----------
def _transition(
    db: Session,
    po_id: int,
    *,
    allowed: set[POStatus],
    target: POStatus,
    action: str,
    **stamps,
) -> PurchaseOrder:
    try:
        po = _lock_po(db, po_id)
        if po.status not in allowed:
            raise StateConflict(
                f"Cannot {action} purchase order with status: {po.status.value}",
                current_status=po.status.value,
            )
        # FK utilisateur : erreur de validation plutôt qu'un échec au commit
        _check_owned(db, User, stamps.get("approved_by"), po.organization_id, "approved_by")
        previous = po.status
        po.status = target
        for name, value in stamps.items():
            setattr(po, name, value)
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(po)
    logger.info("PO %s %s -> %s", po.po_number, previous.value, target.value)
    return po


def submit_purchase_order(db: Session, po_id: int) -> PurchaseOrder:
    return _transition(db, po_id, allowed=SUBMITTABLE_STATUSES, target=POStatus.pending, action="submit")


def approve_purchase_order(db: Session, po_id: int, *, approved_by: int | None = None) -> PurchaseOrder:
    return _transition(
        db,
        po_id,
        allowed=APPROVABLE_STATUSES,
        target=POStatus.approved,
        action="approve",
        approved_by=approved_by,
        approved_at=utcnow(),
    )


def mark_purchase_order_ordered(db: Session, po_id: int) -> PurchaseOrder:
    return _transition(db, po_id, allowed=ORDERABLE_STATUSES, target=POStatus.ordered, action="order")


def cancel_purchase_order(db: Session, po_id: int) -> PurchaseOrder:
    return _transition(db, po_id, allowed=CANCELLABLE_STATUSES, target=POStatus.cancelled, action="cancel")


def delete_purchase_order(db: Session, po_id: int) -> None:
    try:
        po = _lock_po(db, po_id)
        if po.status not in DELETABLE_STATUSES:
            raise StateConflict(
                f"Cannot delete purchase order with status: {po.status.value}",
                current_status=po.status.value,
            )
        po_number = po.po_number
        db.delete(po)
        db.commit()
    except Exception:
        db.rollback()
        raise

    logger.info("PO %s deleted", po_number)


# ---------- Lecture ----------
def get_purchase_order(db: Session, po_id: int) -> PurchaseOrder:
    po = db.get(PurchaseOrder, po_id)
    if not po:
        raise NotFound(f"Purchase order not found: {po_id}")
    return po


def list_purchase_orders(
    db: Session,
    *,
    organization_id: int,
    status: POStatus | None = None,
    limit: int = 100,
) -> list[dict]:
    items_count = func.count(PurchaseOrderLine.id)
    received_items_count = func.coalesce(
        func.sum(case((PurchaseOrderLine.received_quantity >= PurchaseOrderLine.quantity, 1), else_=0)),
        0,
    )
    stmt = (
        select(PurchaseOrder, items_count, received_items_count)
        .outerjoin(PurchaseOrderLine, PurchaseOrderLine.po_id == PurchaseOrder.id)
        .where(PurchaseOrder.organization_id == organization_id)
        .group_by(PurchaseOrder.id)
        .order_by(PurchaseOrder.created_at.desc(), PurchaseOrder.id.desc())
        .limit(limit)
    )
    if status is not None:
        stmt = stmt.where(PurchaseOrder.status == status)

    return [
        {
            "id": po.id,
            "po_number": po.po_number,
            "po_type": po.po_type,
            "status": po.status,
            "supplier_id": po.supplier_id,
            "location_id": po.location_id,
            "total_amount": po.total_amount,
            "expected_delivery_date": po.expected_delivery_date,
            "received_date": po.received_date,
            "created_at": po.created_at,
            "items_count": int(n_items),
            "received_items_count": int(n_received),
        }
        for po, n_items, n_received in db.execute(stmt).all()
    ]


def purchase_order_stats(db: Session, *, organization_id: int) -> POStats:
    rows = db.execute(
        select(
            PurchaseOrder.status,
            func.count(PurchaseOrder.id),
            func.coalesce(func.sum(PurchaseOrder.total_amount), 0),
        )
        .where(PurchaseOrder.organization_id == organization_id)
        .group_by(PurchaseOrder.status)
    ).all()

    stats = POStats()
    value = ZERO
    for status, count, amount in rows:
        count = int(count)
        stats.total += count
        if status in (POStatus.receiving, POStatus.partially_received):
            stats.receiving += count
        else:
            setattr(stats, status.value, getattr(stats, status.value) + count)
        if status != POStatus.cancelled:
            value += to_decimal(amount)

    stats.total_value = money(value)
    return stats
