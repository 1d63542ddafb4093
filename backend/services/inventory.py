from __future__ import annotations

import logging
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session

from backend.app.db.base import utcnow
from backend.app.db.dialect import insert_for
from backend.app.db.models.models_v1 import InventoryLevel, Location
from backend.app.db.models.core_types import LocationType
from backend.services.errors import InputError

logger = logging.getLogger(__name__)


def resolve_receiving_location_id(
    db: Session,
    *,
    organization_id: int,
    location_id: int | None,
    fallback_location_id: int | None = None,
) -> int:
    """
    Retourne la location de réception.

    Priorité : location explicite, puis destination du PO,
    sinon première location DOCK de l'organisation.
    """
    for candidate in (location_id, fallback_location_id):
        if candidate is None:
            continue
        loc = db.get(Location, candidate)
        if not loc or loc.organization_id != organization_id:
            raise InputError(f"Invalid location_id {candidate}")
        return int(loc.id)

    loc = (
        db.execute(
            select(Location)
            .where(Location.organization_id == organization_id)
            .where(Location.type == LocationType.dock)
            .order_by(Location.id.asc())
        )
        .scalars()
        .first()
    )
    if not loc:
        raise InputError("No receiving location given and no DOCK location found for this organization")

    return int(loc.id)


def increment_inventory(
    db: Session,
    *,
    organization_id: int,
    location_id: int,
    product_id: int,
    delta: Decimal,
) -> None:
    """
    Incrément atomique du stock (insert ou +delta).

    Règle métier :
        pas de ligne  -> INSERT quantity = delta
        ligne présente -> quantity = quantity + delta

    Exprimé en un seul INSERT ... ON CONFLICT DO UPDATE : aucun
    read-modify-write côté Python, donc pas de mise à jour perdue
    entre deux réceptions concurrentes.
    """
    table = InventoryLevel.__table__
    now = utcnow()

    stmt = insert_for(db, table).values(
        organization_id=organization_id,
        location_id=location_id,
        product_id=product_id,
        quantity=delta,
        created_at=now,
        updated_at=now,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=[table.c.organization_id, table.c.location_id, table.c.product_id],
        set_={
            "quantity": table.c.quantity + stmt.excluded.quantity,
            "updated_at": now,
        },
    )
    db.execute(stmt)
    logger.debug(
        "Inventory +%s for org=%s location=%s product=%s",
        delta,
        organization_id,
        location_id,
        product_id,
    )


def get_inventory_quantity(
    db: Session,
    *,
    organization_id: int,
    location_id: int,
    product_id: int,
) -> Decimal:
    qty = db.execute(
        select(InventoryLevel.quantity)
        .where(InventoryLevel.organization_id == organization_id)
        .where(InventoryLevel.location_id == location_id)
        .where(InventoryLevel.product_id == product_id)
    ).scalar_one_or_none()
    return Decimal(qty) if qty is not None else Decimal("0")


def list_inventory_levels(
    db: Session,
    *,
    organization_id: int,
    location_id: int | None = None,
    product_id: int | None = None,
) -> list[InventoryLevel]:
    stmt = (
        select(InventoryLevel)
        .where(InventoryLevel.organization_id == organization_id)
        .order_by(InventoryLevel.location_id, InventoryLevel.product_id)
    )
    if location_id is not None:
        stmt = stmt.where(InventoryLevel.location_id == location_id)
    if product_id is not None:
        stmt = stmt.where(InventoryLevel.product_id == product_id)

    return list(db.execute(stmt).scalars().all())
