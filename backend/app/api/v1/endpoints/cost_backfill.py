from __future__ import annotations

from dataclasses import asdict

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from backend.app.api.deps import get_db
from backend.app.schemas.cost_backfill import (
    BackfillResultRead,
    BackfillScopeIn,
    FullProcessRead,
    RecalculateResultRead,
)
from backend.services.cost_resolution import BackfillScope, recalculate_order_cogs, run_cost_backfill

router = APIRouter(prefix="/cost-backfill")


def _scope(payload: BackfillScopeIn | None) -> BackfillScope:
    if payload is None:
        return BackfillScope()
    return BackfillScope(**payload.model_dump())


@router.post("/items", response_model=BackfillResultRead)
def backfill_item_costs(payload: BackfillScopeIn | None = None, db: Session = Depends(get_db)):
    return asdict(run_cost_backfill(db, _scope(payload)))


@router.post("/orders", response_model=RecalculateResultRead)
def recalculate_orders(payload: BackfillScopeIn | None = None, db: Session = Depends(get_db)):
    return asdict(recalculate_order_cogs(db, _scope(payload)))


@router.post("/full", response_model=FullProcessRead)
def full_process(payload: BackfillScopeIn | None = None, db: Session = Depends(get_db)):
    scope = _scope(payload)
    backfill = run_cost_backfill(db, scope)
    recalculation = recalculate_order_cogs(db, scope)
    return {"backfill": asdict(backfill), "recalculation": asdict(recalculation)}
