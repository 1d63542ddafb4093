"""
Backfill COGS.

1) Lignes de vente sans cost_per_unit : résolution du coût en cascade
   (premier résolveur qui répond gagne) puis écriture coût / profit / marge.
2) Recalcul des agrégats COGS par commande à partir des lignes.

Propriétés :
- ne touche que les lignes où cost_per_unit IS NULL (à la lecture ET à l'écriture)
- relançable à volonté : une 2e passe ne met rien à jour
- pagination par id (keyset), jamais tout l'ensemble en mémoire
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Protocol, Sequence

from sqlalchemy import select, update
from sqlalchemy.orm import Session, selectinload

from backend.app.core.config import settings
from backend.app.db.base import utcnow
from backend.app.db.models.models_v1 import (
    Product,
    PurchaseOrder,
    PurchaseOrderLine,
    SalesOrder,
    SalesOrderLine,
)
from backend.app.db.models.core_types import CostSource, POStatus
from backend.services.money import ZERO, money, percent, to_decimal

logger = logging.getLogger(__name__)

# PO exploitables comme source de coût : au moins une ligne reçue
COST_SOURCE_PO_STATUSES = {POStatus.partially_received, POStatus.received}


@dataclass(frozen=True)
class BackfillScope:
    organization_id: int | None = None
    order_ids: Sequence[int] | None = None
    created_from: datetime | None = None
    created_to: datetime | None = None
    page_size: int | None = None

    @property
    def effective_page_size(self) -> int:
        return max(1, self.page_size or settings.cost_backfill_page_size)

    def apply(self, stmt):
        if self.organization_id is not None:
            stmt = stmt.where(SalesOrder.organization_id == self.organization_id)
        if self.order_ids is not None:
            stmt = stmt.where(SalesOrder.id.in_(list(self.order_ids)))
        if self.created_from is not None:
            stmt = stmt.where(SalesOrder.created_at >= self.created_from)
        if self.created_to is not None:
            stmt = stmt.where(SalesOrder.created_at <= self.created_to)
        return stmt


@dataclass(frozen=True)
class SoldItem:
    line_id: int
    organization_id: int
    product_id: int
    unit_price: Decimal
    sold_at: datetime


@dataclass(frozen=True)
class ResolvedCost:
    cost: Decimal
    source: CostSource


@dataclass(frozen=True)
class BackfillResult:
    items_processed: int
    items_updated: int
    items_without_resolved_cost: int


@dataclass(frozen=True)
class RecalculateResult:
    orders_processed: int
    orders_updated: int


# ---------- Résolveurs ----------
class CostResolver(Protocol):
    source: CostSource

    def resolve(self, db: Session, item: SoldItem) -> Decimal | None: ...


def _received_po_cost_stmt(item: SoldItem):
    return (
        select(PurchaseOrderLine.unit_price)
        .join(PurchaseOrder, PurchaseOrder.id == PurchaseOrderLine.po_id)
        .where(PurchaseOrder.organization_id == item.organization_id)
        .where(PurchaseOrder.status.in_(COST_SOURCE_PO_STATUSES))
        .where(PurchaseOrderLine.product_id == item.product_id)
        .where(PurchaseOrderLine.received_quantity > 0)
        .where(PurchaseOrderLine.unit_price > 0)
        .order_by(
            PurchaseOrder.updated_at.desc(),
            PurchaseOrderLine.updated_at.desc(),
            PurchaseOrderLine.id.desc(),
        )
        .limit(1)
    )


class ReceivedPOCostAtSale:
    """Dernier PO reçu mis à jour au plus tard à la date de vente."""

    source = CostSource.po_at_sale

    def resolve(self, db: Session, item: SoldItem) -> Decimal | None:
        stmt = _received_po_cost_stmt(item).where(PurchaseOrder.updated_at <= item.sold_at)
        return db.execute(stmt).scalar_one_or_none()


class ProductMasterCost:
    source = CostSource.product_master

    def resolve(self, db: Session, item: SoldItem) -> Decimal | None:
        cost = db.execute(select(Product.cost_price).where(Product.id == item.product_id)).scalar_one_or_none()
        if cost is None or cost <= 0:
            return None
        return cost


class AnyReceivedPOCost:
    """Dernier recours : n'importe quel PO reçu, sans contrainte de date."""

    source = CostSource.po_any

    def resolve(self, db: Session, item: SoldItem) -> Decimal | None:
        return db.execute(_received_po_cost_stmt(item)).scalar_one_or_none()


DEFAULT_RESOLVERS: tuple[CostResolver, ...] = (
    ReceivedPOCostAtSale(),
    ProductMasterCost(),
    AnyReceivedPOCost(),
)


def resolve_cost(
    db: Session,
    item: SoldItem,
    resolvers: Sequence[CostResolver] = DEFAULT_RESOLVERS,
) -> ResolvedCost | None:
    for resolver in resolvers:
        cost = resolver.resolve(db, item)
        if cost is not None and to_decimal(cost) > 0:
            return ResolvedCost(cost=money(cost), source=resolver.source)
    return None


def line_profitability(unit_price: Decimal, cost: Decimal) -> tuple[Decimal, Decimal]:
    """(profit_per_unit, margin_percentage) ; marge à 0 si prix <= 0."""
    unit_price = to_decimal(unit_price)
    profit = money(unit_price - cost)
    return profit, percent(profit, unit_price)


# ---------- Backfill lignes ----------
def _unresolved_page(db: Session, scope: BackfillScope, after_id: int, limit: int) -> list[SoldItem]:
    stmt = (
        select(
            SalesOrderLine.id,
            SalesOrder.organization_id,
            SalesOrderLine.product_id,
            SalesOrderLine.unit_price,
            SalesOrder.created_at,
        )
        .join(SalesOrder, SalesOrder.id == SalesOrderLine.order_id)
        .where(SalesOrderLine.cost_per_unit.is_(None))
        .where(SalesOrderLine.id > after_id)
        .order_by(SalesOrderLine.id.asc())
        .limit(limit)
    )
    stmt = scope.apply(stmt)
    return [
        SoldItem(
            line_id=int(line_id),
            organization_id=int(org_id),
            product_id=int(product_id),
            unit_price=to_decimal(unit_price),
            sold_at=sold_at,
        )
        for line_id, org_id, product_id, unit_price, sold_at in db.execute(stmt).all()
    ]


def _write_cost(db: Session, item: SoldItem, resolved: ResolvedCost) -> bool:
    profit, margin = line_profitability(item.unit_price, resolved.cost)
    # Garde à l'écriture : une valeur déjà résolue n'est jamais écrasée
    res = db.execute(
        update(SalesOrderLine)
        .where(SalesOrderLine.id == item.line_id)
        .where(SalesOrderLine.cost_per_unit.is_(None))
        .values(
            cost_per_unit=resolved.cost,
            profit_per_unit=profit,
            margin_percentage=margin,
            cost_source=resolved.source,
        )
        .execution_options(synchronize_session=False)
    )
    return res.rowcount == 1


def run_cost_backfill(
    db: Session,
    scope: BackfillScope | None = None,
    *,
    resolvers: Sequence[CostResolver] = DEFAULT_RESOLVERS,
) -> BackfillResult:
    scope = scope or BackfillScope()
    page_size = scope.effective_page_size

    processed = updated = unresolved = 0
    last_id = 0
    while True:
        page = _unresolved_page(db, scope, last_id, page_size)
        if not page:
            break

        try:
            for item in page:
                processed += 1
                resolved = resolve_cost(db, item, resolvers)
                if resolved is None:
                    unresolved += 1
                    logger.debug("No cost found for sales line %s (product %s)", item.line_id, item.product_id)
                    continue
                if _write_cost(db, item, resolved):
                    updated += 1
                    logger.debug(
                        "Sales line %s cost=%s via %s",
                        item.line_id,
                        resolved.cost,
                        resolved.source.value,
                    )
            db.commit()
        except Exception:
            db.rollback()
            raise

        last_id = page[-1].line_id
        logger.info("Cost backfill progress: %s processed, %s updated", processed, updated)
        if len(page) < page_size:
            break

    result = BackfillResult(
        items_processed=processed,
        items_updated=updated,
        items_without_resolved_cost=unresolved,
    )
    logger.info(
        "Cost backfill done: processed=%s updated=%s without_cost=%s",
        result.items_processed,
        result.items_updated,
        result.items_without_resolved_cost,
    )
    return result


# ---------- Agrégats commande ----------
@dataclass(frozen=True)
class OrderCogs:
    total_cogs: Decimal
    gross_profit: Decimal
    gross_margin_percentage: Decimal


def compute_order_cogs(lines: Sequence[SalesOrderLine], discount_amount: Decimal) -> OrderCogs:
    """
    COGS   = Σ quantity * cost_per_unit (lignes résolues)
    revenu = Σ quantity * unit_price - discount_amount
    marge  = (revenu - COGS) / revenu * 100
    """
    revenue = sum((to_decimal(ln.quantity) * to_decimal(ln.unit_price) for ln in lines), ZERO)
    revenue = money(revenue - to_decimal(discount_amount or ZERO))
    cogs = money(
        sum(
            (to_decimal(ln.quantity) * to_decimal(ln.cost_per_unit) for ln in lines if ln.cost_per_unit is not None),
            ZERO,
        )
    )
    gross_profit = money(revenue - cogs)
    return OrderCogs(
        total_cogs=cogs,
        gross_profit=gross_profit,
        gross_margin_percentage=percent(gross_profit, revenue),
    )


def _same(stored: Decimal | None, computed: Decimal) -> bool:
    return stored is not None and money(stored) == computed


def recalculate_order_cogs(db: Session, scope: BackfillScope | None = None) -> RecalculateResult:
    """
    Recalcule les champs COGS des commandes ayant au moins une ligne résolue.

    Dérivé uniquement de l'état courant des lignes : même entrée, même sortie.
    cogs_calculated_at n'est touché que si une valeur change.
    """
    scope = scope or BackfillScope()
    page_size = scope.effective_page_size

    processed = updated = 0
    last_id = 0
    while True:
        has_costed_line = (
            select(SalesOrderLine.id)
            .where(SalesOrderLine.order_id == SalesOrder.id)
            .where(SalesOrderLine.cost_per_unit.is_not(None))
            .exists()
        )
        stmt = (
            select(SalesOrder)
            .options(selectinload(SalesOrder.lines))
            .where(has_costed_line)
            .where(SalesOrder.id > last_id)
            .order_by(SalesOrder.id.asc())
            .limit(page_size)
        )
        orders = db.execute(scope.apply(stmt)).scalars().all()
        if not orders:
            break

        try:
            for order in orders:
                processed += 1
                summary = compute_order_cogs(order.lines, order.discount_amount)
                if (
                    _same(order.total_cogs, summary.total_cogs)
                    and _same(order.gross_profit, summary.gross_profit)
                    and _same(order.gross_margin_percentage, summary.gross_margin_percentage)
                ):
                    continue
                order.total_cogs = summary.total_cogs
                order.gross_profit = summary.gross_profit
                order.gross_margin_percentage = summary.gross_margin_percentage
                order.cogs_calculated_at = utcnow()
                updated += 1
            last_id = int(orders[-1].id)
            db.commit()
        except Exception:
            db.rollback()
            raise

        if len(orders) < page_size:
            break

    logger.info("Order COGS recalculated: processed=%s updated=%s", processed, updated)
    return RecalculateResult(orders_processed=processed, orders_updated=updated)
