from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from sqlalchemy import select

from backend.app.db.models.models_v1 import (
    Product,
    PurchaseOrder,
    PurchaseOrderLine,
    SalesOrder,
    SalesOrderLine,
)
from backend.app.db.models.core_types import CostSource, POStatus, POType
from backend.services.cost_resolution import (
    BackfillScope,
    compute_order_cogs,
    line_profitability,
    recalculate_order_cogs,
    run_cost_backfill,
)

T0 = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def add_received_po(db_session, seeded):
    counter = iter(range(1, 1000))

    def _add(product_id, unit_price, *, updated_at, status=POStatus.received, received="10"):
        n = next(counter)
        po = PurchaseOrder(
            organization_id=seeded.org_id,
            po_number=f"HIST-{n:05d}",
            po_type=POType.inbound,
            status=status,
            subtotal=Decimal("0"),
            total_amount=Decimal("0"),
            created_at=updated_at,
            updated_at=updated_at,
        )
        po.lines = [
            PurchaseOrderLine(
                product_id=product_id,
                quantity=Decimal("10"),
                unit_price=Decimal(unit_price),
                subtotal=Decimal(unit_price) * 10,
                received_quantity=Decimal(received),
                created_at=updated_at,
                updated_at=updated_at,
            )
        ]
        db_session.add(po)
        db_session.commit()
        return po.id

    return _add


@pytest.fixture
def add_sale(db_session, seeded):
    counter = iter(range(1, 1000))

    def _add(items, *, created_at=T0, discount="0"):
        """items = [(product_id, qty, unit_price), ...]"""
        n = next(counter)
        order = SalesOrder(
            organization_id=seeded.org_id,
            order_number=f"ORD-{n:05d}",
            discount_amount=Decimal(discount),
            created_at=created_at,
        )
        order.lines = [
            SalesOrderLine(product_id=p, quantity=Decimal(q), unit_price=Decimal(u)) for p, q, u in items
        ]
        order.subtotal = sum((ln.quantity * ln.unit_price for ln in order.lines), Decimal("0"))
        db_session.add(order)
        db_session.commit()
        return order.id

    return _add


def _lines(db_session, order_id):
    return db_session.execute(
        select(SalesOrderLine).where(SalesOrderLine.order_id == order_id).order_by(SalesOrderLine.id)
    ).scalars().all()


def test_example_sale_resolves_from_received_po(db_session, seeded, add_received_po, add_sale):
    """
    Vente X à 8.00 sans coût, seul PO reçu : X à 5.00
    -> cost 5.00, profit 3.00, marge 37.5
    """
    db_session.execute(
        Product.__table__.update().where(Product.id == seeded.product_x_id).values(cost_price=None)
    )
    db_session.commit()
    add_received_po(seeded.product_x_id, "5.00", updated_at=T0 - timedelta(days=3))
    order_id = add_sale([(seeded.product_x_id, "1", "8.00")])

    result = run_cost_backfill(db_session)

    assert result.items_processed == 1
    assert result.items_updated == 1
    assert result.items_without_resolved_cost == 0

    (line,) = _lines(db_session, order_id)
    assert line.cost_per_unit == Decimal("5.00")
    assert line.profit_per_unit == Decimal("3.00")
    assert line.margin_percentage == Decimal("37.5")
    assert line.cost_source == CostSource.po_at_sale


def test_most_recent_po_before_sale_wins(db_session, seeded, add_received_po, add_sale):
    add_received_po(seeded.product_x_id, "4.00", updated_at=T0 - timedelta(days=10))
    add_received_po(seeded.product_x_id, "4.40", updated_at=T0 - timedelta(days=2))
    # postérieur à la vente : ignoré par le 1er niveau
    add_received_po(seeded.product_x_id, "9.99", updated_at=T0 + timedelta(days=1))
    order_id = add_sale([(seeded.product_x_id, "2", "8.00")])

    run_cost_backfill(db_session)

    (line,) = _lines(db_session, order_id)
    assert line.cost_per_unit == Decimal("4.40")
    assert line.cost_source == CostSource.po_at_sale


def test_falls_back_to_product_master_cost(db_session, seeded, add_received_po, add_sale):
    # seul PO reçu après la vente -> catalogue (4.50) avant le dernier recours
    add_received_po(seeded.product_x_id, "6.00", updated_at=T0 + timedelta(days=5))
    order_id = add_sale([(seeded.product_x_id, "1", "9.00")])

    run_cost_backfill(db_session)

    (line,) = _lines(db_session, order_id)
    assert line.cost_per_unit == Decimal("4.50")
    assert line.cost_source == CostSource.product_master
    assert line.profit_per_unit == Decimal("4.50")
    assert line.margin_percentage == Decimal("50.00")


def test_last_resort_any_received_po(db_session, seeded, add_received_po, add_sale):
    # Y n'a pas de coût catalogue ; le seul PO est postérieur à la vente
    add_received_po(seeded.product_y_id, "2.00", updated_at=T0 + timedelta(days=5))
    order_id = add_sale([(seeded.product_y_id, "3", "2.50")])

    run_cost_backfill(db_session)

    (line,) = _lines(db_session, order_id)
    assert line.cost_per_unit == Decimal("2.00")
    assert line.cost_source == CostSource.po_any


@pytest.mark.parametrize(
    "status, received, unit_price",
    [
        (POStatus.ordered, "10", "2.00"),
        (POStatus.partially_received, "0", "2.00"),
        (POStatus.received, "10", "0"),
        (POStatus.cancelled, "10", "2.00"),
    ],
)
def test_unusable_po_sources_are_ignored(db_session, seeded, add_received_po, add_sale, status, received, unit_price):
    add_received_po(seeded.product_y_id, unit_price, updated_at=T0 - timedelta(days=1), status=status, received=received)
    order_id = add_sale([(seeded.product_y_id, "1", "3.00")])

    result = run_cost_backfill(db_session)

    assert result.items_updated == 0
    assert result.items_without_resolved_cost == 1
    (line,) = _lines(db_session, order_id)
    assert line.cost_per_unit is None
    assert line.profit_per_unit is None
    assert line.cost_source is None


def test_partially_received_po_is_a_cost_source(db_session, seeded, add_received_po, add_sale):
    add_received_po(
        seeded.product_y_id,
        "1.75",
        updated_at=T0 - timedelta(days=1),
        status=POStatus.partially_received,
        received="4",
    )
    order_id = add_sale([(seeded.product_y_id, "1", "3.00")])

    run_cost_backfill(db_session)

    (line,) = _lines(db_session, order_id)
    assert line.cost_per_unit == Decimal("1.75")


def test_second_run_updates_nothing(db_session, seeded, add_received_po, add_sale):
    add_received_po(seeded.product_x_id, "5.00", updated_at=T0 - timedelta(days=1))
    add_sale([(seeded.product_x_id, "1", "8.00"), (seeded.product_y_id, "1", "3.00")])
    add_sale([(seeded.product_x_id, "4", "7.00")])

    first = run_cost_backfill(db_session, BackfillScope(page_size=1))
    snapshot = [
        (ln.id, ln.cost_per_unit, ln.profit_per_unit, ln.margin_percentage)
        for ln in db_session.execute(select(SalesOrderLine).order_by(SalesOrderLine.id)).scalars()
    ]
    second = run_cost_backfill(db_session, BackfillScope(page_size=1))
    after = [
        (ln.id, ln.cost_per_unit, ln.profit_per_unit, ln.margin_percentage)
        for ln in db_session.execute(select(SalesOrderLine).order_by(SalesOrderLine.id)).scalars()
    ]

    assert (first.items_processed, first.items_updated, first.items_without_resolved_cost) == (3, 2, 1)
    assert second.items_updated == 0
    assert second.items_processed == 1
    assert second.items_without_resolved_cost == 1
    assert after == snapshot


def test_resolved_cost_is_never_overwritten(db_session, seeded, add_received_po, add_sale):
    order_id = add_sale([(seeded.product_x_id, "1", "8.00")])
    (line,) = _lines(db_session, order_id)
    line.cost_per_unit = Decimal("1.00")
    db_session.commit()
    add_received_po(seeded.product_x_id, "5.00", updated_at=T0 - timedelta(days=1))

    result = run_cost_backfill(db_session)

    assert result.items_processed == 0
    (line,) = _lines(db_session, order_id)
    assert line.cost_per_unit == Decimal("1.00")


def test_scope_limits_orders(db_session, seeded, add_received_po, add_sale):
    add_received_po(seeded.product_x_id, "5.00", updated_at=T0 - timedelta(days=1))
    in_scope = add_sale([(seeded.product_x_id, "1", "8.00")])
    out_of_scope = add_sale([(seeded.product_x_id, "1", "8.00")])

    result = run_cost_backfill(db_session, BackfillScope(order_ids=[in_scope]))

    assert result.items_updated == 1
    assert _lines(db_session, in_scope)[0].cost_per_unit == Decimal("5.00")
    assert _lines(db_session, out_of_scope)[0].cost_per_unit is None


def test_line_profitability_zero_price():
    profit, margin = line_profitability(Decimal("0"), Decimal("2.00"))
    assert profit == Decimal("-2.00")
    assert margin == Decimal("0")


def test_compute_order_cogs_uses_discount_amount():
    lines = [
        SalesOrderLine(quantity=Decimal("2"), unit_price=Decimal("10.00"), cost_per_unit=Decimal("4.00")),
        SalesOrderLine(quantity=Decimal("1"), unit_price=Decimal("5.00"), cost_per_unit=None),
    ]
    summary = compute_order_cogs(lines, Decimal("5.00"))

    # revenu 25 - 5 = 20, COGS 8
    assert summary.total_cogs == Decimal("8.00")
    assert summary.gross_profit == Decimal("12.00")
    assert summary.gross_margin_percentage == Decimal("60.00")


def test_recalculate_order_cogs_is_idempotent(db_session, seeded, add_received_po, add_sale):
    add_received_po(seeded.product_x_id, "5.00", updated_at=T0 - timedelta(days=1))
    costed = add_sale([(seeded.product_x_id, "2", "8.00")], discount="1.00")
    uncosted = add_sale([(seeded.product_y_id, "1", "3.00")])
    run_cost_backfill(db_session)

    first = recalculate_order_cogs(db_session)
    order = db_session.get(SalesOrder, costed)
    stamped_at = order.cogs_calculated_at
    assert (first.orders_processed, first.orders_updated) == (1, 1)
    # revenu 16 - 1 = 15, COGS 10
    assert order.total_cogs == Decimal("10.00")
    assert order.gross_profit == Decimal("5.00")
    assert order.gross_margin_percentage == Decimal("33.33")
    assert stamped_at is not None

    second = recalculate_order_cogs(db_session)
    order = db_session.get(SalesOrder, costed)
    assert (second.orders_processed, second.orders_updated) == (1, 0)
    assert order.cogs_calculated_at == stamped_at
    assert order.total_cogs == Decimal("10.00")

    untouched = db_session.get(SalesOrder, uncosted)
    assert untouched.total_cogs is None
    assert untouched.cogs_calculated_at is None
