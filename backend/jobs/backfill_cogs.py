"""
Job batch : backfill des coûts historiques puis recalcul COGS des commandes.

    python -m backend.jobs.backfill_cogs --organization-id 1
    python -m backend.jobs.backfill_cogs --step items --page-size 200

Relançable sans risque : seules les lignes sans coût sont traitées.
"""

from __future__ import annotations

import logging

import click

from backend.app.core.config import settings
from backend.app.core.logging import setup_logging
from backend.app.db.session import SessionLocal
from backend.services.cost_resolution import BackfillScope, recalculate_order_cogs, run_cost_backfill

logger = logging.getLogger(__name__)


@click.command()
@click.option("--organization-id", type=int, default=None, help="Limit to one organization")
@click.option("--page-size", type=int, default=None, help="Rows per page (default from settings)")
@click.option(
    "--step",
    type=click.Choice(["items", "orders", "full"]),
    default="full",
    show_default=True,
    help="items = line costs, orders = order COGS, full = both",
)
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
def cli(organization_id: int | None, page_size: int | None, step: str, verbose: bool) -> None:
    setup_logging("DEBUG" if verbose else settings.log_level)
    scope = BackfillScope(organization_id=organization_id, page_size=page_size)

    db = SessionLocal()
    try:
        if step in ("items", "full"):
            result = run_cost_backfill(db, scope)
            click.echo(
                f"Items processed: {result.items_processed}  "
                f"updated: {result.items_updated}  "
                f"without cost: {result.items_without_resolved_cost}"
            )
        if step in ("orders", "full"):
            recalc = recalculate_order_cogs(db, scope)
            click.echo(f"Orders processed: {recalc.orders_processed}  updated: {recalc.orders_updated}")
    except Exception:
        logger.exception("COGS backfill failed")
        raise SystemExit(1)
    finally:
        db.close()


if __name__ == "__main__":
    cli()
