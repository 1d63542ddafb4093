from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field


class BackfillScopeIn(BaseModel):
    organization_id: int | None = None
    order_ids: list[int] | None = None
    created_from: datetime | None = None
    created_to: datetime | None = None
    page_size: int | None = Field(default=None, ge=1, le=10_000)


class BackfillResultRead(BaseModel):
    items_processed: int
    items_updated: int
    items_without_resolved_cost: int


class RecalculateResultRead(BaseModel):
    orders_processed: int
    orders_updated: int


class FullProcessRead(BaseModel):
    backfill: BackfillResultRead
    recalculation: RecalculateResultRead
