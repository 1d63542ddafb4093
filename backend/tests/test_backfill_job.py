from decimal import Decimal

from click.testing import CliRunner

from backend.app.db.models.models_v1 import SalesOrder, SalesOrderLine
from backend.jobs import backfill_cogs


def _add_order(db_session, seeded, number, product_id):
    order = SalesOrder(organization_id=seeded.org_id, order_number=number)
    order.lines = [SalesOrderLine(product_id=product_id, quantity=Decimal("1"), unit_price=Decimal("6.00"))]
    db_session.add(order)
    db_session.commit()
    return order.id


def test_cli_full_run(db_session, seeded, session_factory, monkeypatch):
    monkeypatch.setattr(backfill_cogs, "SessionLocal", session_factory)
    order_id = _add_order(db_session, seeded, "ORD-CLI-1", seeded.product_x_id)
    _add_order(db_session, seeded, "ORD-CLI-2", seeded.product_y_id)

    result = CliRunner().invoke(backfill_cogs.cli, ["--organization-id", str(seeded.org_id), "--page-size", "1"])

    assert result.exit_code == 0, result.output
    assert "Items processed: 2  updated: 1  without cost: 1" in result.output
    assert "Orders processed: 1  updated: 1" in result.output

    order = db_session.get(SalesOrder, order_id)
    assert order.total_cogs == Decimal("4.50")
    assert order.gross_profit == Decimal("1.50")


def test_cli_items_step_only(db_session, seeded, session_factory, monkeypatch):
    monkeypatch.setattr(backfill_cogs, "SessionLocal", session_factory)
    order_id = _add_order(db_session, seeded, "ORD-CLI-3", seeded.product_x_id)

    result = CliRunner().invoke(backfill_cogs.cli, ["--step", "items"])

    assert result.exit_code == 0, result.output
    assert "Orders processed" not in result.output
    assert db_session.get(SalesOrder, order_id).total_cogs is None
