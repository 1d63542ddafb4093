from decimal import Decimal
from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from backend.app.api.deps import get_db
from backend.app.db.models.models_v1 import (
    Base,
    Customer,
    Location,
    Organization,
    Product,
    Supplier,
    User,
)
from backend.app.db.models.core_types import LocationType, POType, Role
from backend.app.main import app
from backend.services.procurement import NewPOLine, NewPurchaseOrder, create_purchase_order


@pytest.fixture(scope="function")
def engine():
    """
    Base SQLite en mémoire, neuve pour chaque test.

    Les services font leurs propres commit()/rollback() : on isole donc
    par base jetable plutôt que par SAVEPOINT.
    """
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=eng)
    try:
        yield eng
    finally:
        Base.metadata.drop_all(bind=eng)
        eng.dispose()


@pytest.fixture(scope="function")
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False)


@pytest.fixture(scope="function")
def db_session(session_factory) -> Session:
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(scope="function")
def seeded(db_session):
    """
    Master data minimal : une organisation, un DOCK, un magasin,
    deux produits (X à 4.50 catalogue, Y sans coût), un fournisseur,
    un client et un utilisateur.
    """
    org = Organization(name="TEST-ORG")
    db_session.add(org)
    db_session.flush()

    dock = Location(organization_id=org.id, name="MAIN-DOCK", type=LocationType.dock)
    store = Location(organization_id=org.id, name="MAIN-STORE", type=LocationType.store)
    product_x = Product(organization_id=org.id, sku="SKU-X", name="Product X", cost_price=Decimal("4.50"))
    product_y = Product(organization_id=org.id, sku="SKU-Y", name="Product Y", cost_price=None)
    supplier = Supplier(organization_id=org.id, name="ACME Supply", lead_time_days=7)
    customer = Customer(organization_id=org.id, name="Wholesale Co", is_wholesale=True)
    user = User(organization_id=org.id, name="Receiver", role=Role.staff)
    db_session.add_all([dock, store, product_x, product_y, supplier, customer, user])
    db_session.commit()

    return SimpleNamespace(
        org_id=org.id,
        dock_id=dock.id,
        store_id=store.id,
        product_x_id=product_x.id,
        product_y_id=product_y.id,
        supplier_id=supplier.id,
        customer_id=customer.id,
        user_id=user.id,
    )


@pytest.fixture(scope="function")
def make_po(db_session, seeded):
    """Fabrique de PO inbound en draft. lines = [(product_id, qty, prix), ...]"""

    def _make(lines=None, **kwargs):
        if lines is None:
            lines = [(seeded.product_x_id, "10", "5.00")]
        payload = NewPurchaseOrder(
            organization_id=kwargs.pop("organization_id", seeded.org_id),
            po_type=kwargs.pop("po_type", POType.inbound),
            supplier_id=kwargs.pop("supplier_id", seeded.supplier_id),
            lines=[NewPOLine(product_id=p, quantity=Decimal(q), unit_price=Decimal(u)) for p, q, u in lines],
            **kwargs,
        )
        return create_purchase_order(db_session, payload)

    return _make


@pytest.fixture(scope="function")
def client(session_factory):
    def _get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = _get_db
    try:
        with TestClient(app) as c:
            yield c
    finally:
        app.dependency_overrides.clear()
