"""Cron: reconcile jobs the worker never finished."""

from app.core.logging import get_logger
from app.services.reconciliation import reconcile

log = get_logger(__name__)


async def run_reconcile() -> dict[str, int]:
    """Fail stale pending/processing jobs and refund failed jobs missing a refund entry."""
    out = await reconcile()
    if out["stale_failed"] or out["refunds_applied"]:
        log.warning("reconcile_repaired", **out)
    return out
