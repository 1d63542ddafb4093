from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from backend.app.api.deps import get_db
from backend.app.schemas.stock_level import InventoryLevelRead
from backend.services.inventory import list_inventory_levels

router = APIRouter(prefix="/stock")


@router.get(
    "",
    response_model=list[InventoryLevelRead],
)
def get_stock(
    organization_id: int,
    location_id: int | None = None,
    product_id: int | None = None,
    db: Session = Depends(get_db),
):
    """
    Stock (READ ONLY)
    - quantity n'est alimenté que par les réceptions en état "good"
    - exposition sécurisée via schema Pydantic
    """
    return list_inventory_levels(
        db,
        organization_id=organization_id,
        location_id=location_id,
        product_id=product_id,
    )
