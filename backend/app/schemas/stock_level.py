from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel


class InventoryLevelRead(BaseModel):
    organization_id: int
    location_id: int
    product_id: int

    quantity: Decimal  # READ ONLY, alimenté par les réceptions "good"
    updated_at: datetime

    class Config:
        from_attributes = True
