"""
Courses entre deux sessions sur une base SQLite fichier.

Chaque session a sa propre connexion : la gagnante committe entre la
lecture de la perdante et son INSERT, comme deux requêtes concurrentes.
"""

from decimal import Decimal

import pytest
from sqlalchemy import create_engine, func, select

from backend.app.db.models.models_v1 import Base, GoodsReceipt, PurchaseOrder, PurchaseOrderLine
from backend.app.db.models.core_types import POStatus, POType
from backend.services import procurement, receiving
from backend.services.inventory import get_inventory_quantity
from backend.services.procurement import NewPOLine, NewPurchaseOrder, create_purchase_order, submit_purchase_order
from backend.services.receiving import ReceiptEntry, receive_purchase_order_items


@pytest.fixture(scope="function")
def engine(tmp_path):
    eng = create_engine(f"sqlite:///{tmp_path / 'race.db'}")
    Base.metadata.create_all(bind=eng)
    try:
        yield eng
    finally:
        Base.metadata.drop_all(bind=eng)
        eng.dispose()


@pytest.fixture
def sessions(session_factory):
    opened = [session_factory(), session_factory()]
    try:
        yield opened
    finally:
        for s in opened:
            s.close()


@pytest.fixture
def pending_po(db_session, make_po):
    created = make_po()
    submit_purchase_order(db_session, created.po_id)
    line_id = db_session.execute(
        select(PurchaseOrderLine.id).where(PurchaseOrderLine.po_id == created.po_id)
    ).scalar_one()
    return created.po_id, line_id


def _commit_first(monkeypatch, module, name, winner):
    """Remplace module.name : au premier appel, `winner` committe puis la lecture ne trouve rien."""
    original = getattr(module, name)
    state = {"fired": False}

    def _lookup(db, key):
        if state["fired"]:
            return original(db, key)
        state["fired"] = True
        winner()
        return None

    monkeypatch.setattr(module, name, _lookup)


def _dock_qty(session, seeded) -> Decimal:
    return get_inventory_quantity(
        session,
        organization_id=seeded.org_id,
        location_id=seeded.dock_id,
        product_id=seeded.product_x_id,
    )


def test_creation_race_same_key_keeps_one_po(monkeypatch, seeded, sessions):
    loser, winner = sessions

    def _payload():
        return NewPurchaseOrder(
            organization_id=seeded.org_id,
            po_type=POType.inbound,
            supplier_id=seeded.supplier_id,
            lines=[NewPOLine(product_id=seeded.product_x_id, quantity=Decimal("10"), unit_price=Decimal("5.00"))],
            idempotency_key="race-po",
        )

    first = {}
    _commit_first(
        monkeypatch,
        procurement,
        "_find_by_idempotency_key",
        lambda: first.setdefault("result", create_purchase_order(winner, _payload())),
    )

    result = create_purchase_order(loser, _payload())

    assert first["result"].replayed is False
    assert result.replayed is True
    assert result.po_id == first["result"].po_id
    assert result.po_number == first["result"].po_number
    assert result.lines_created == 1

    winner.expire_all()
    assert winner.execute(select(func.count(PurchaseOrder.id))).scalar_one() == 1
    assert winner.execute(select(func.count(PurchaseOrderLine.id))).scalar_one() == 1


def test_receipt_race_same_key_applies_once(monkeypatch, seeded, sessions, pending_po):
    po_id, line_id = pending_po
    loser, winner = sessions

    def _receive(session):
        return receive_purchase_order_items(
            session,
            po_id,
            entries=[ReceiptEntry(line_id=line_id, quantity=Decimal("6"))],
            location_id=seeded.dock_id,
            idempotency_key="race-gr",
        )

    first = {}
    _commit_first(monkeypatch, receiving, "_find_receipt", lambda: first.setdefault("result", _receive(winner)))

    result = _receive(loser)

    assert first["result"].replayed is False
    assert result.replayed is True
    assert result.receipt_id == first["result"].receipt_id

    winner.expire_all()
    assert winner.execute(select(func.count(GoodsReceipt.id))).scalar_one() == 1
    assert winner.get(PurchaseOrderLine, line_id).received_quantity == Decimal("6")
    assert _dock_qty(winner, seeded) == Decimal("6")


def test_interleaved_receipts_add_up(seeded, sessions, pending_po):
    po_id, line_id = pending_po
    a, b = sessions

    # A garde une copie périmée de la ligne (received_quantity 0)
    stale = a.get(PurchaseOrderLine, line_id)
    assert stale.received_quantity == Decimal("0")

    receive_purchase_order_items(
        b,
        po_id,
        entries=[ReceiptEntry(line_id=line_id, quantity=Decimal("6"))],
        location_id=seeded.dock_id,
    )
    assert stale.received_quantity == Decimal("0")

    result = receive_purchase_order_items(
        a,
        po_id,
        entries=[ReceiptEntry(line_id=line_id, quantity=Decimal("4"))],
        location_id=seeded.dock_id,
    )
    assert result.new_status == POStatus.received

    b.expire_all()
    assert b.get(PurchaseOrderLine, line_id).received_quantity == Decimal("10")
    assert _dock_qty(b, seeded) == Decimal("10")
    receipts = b.execute(select(func.count(GoodsReceipt.id)).where(GoodsReceipt.po_id == po_id)).scalar_one()
    assert receipts == 2
