"""
Cron — Endpoint for Upstash QStash or an external cron.

Runs one review sync scheduler cycle: stale jobs are reconciled, due sources
get a SCHEDULED job, and the jobs run in the background worker pool.

Set CRON_SECRET. The caller sends either:
  X-Cron-Secret: <CRON_SECRET>
  OR Authorization: Bearer <CRON_SECRET>

When SCHEDULER_ENABLED is true the same cycle also runs in-process at the
configured daily time; use one trigger or the other.
"""

import logging
from fastapi import APIRouter, Depends, Header, HTTPException

from brandpulse.config import get_settings
from brandpulse.services.scheduler_service import SourceScheduler, get_source_scheduler
from brandpulse.utils import safe_error_detail

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/cron", tags=["Cron"])


async def _require_cron_secret(
    x_cron_secret: str | None = Header(None, alias="X-Cron-Secret"),
    authorization: str | None = Header(None),
) -> None:
    """Verify request came from QStash or cron with valid secret."""
    secret = get_settings().cron_secret
    if not secret:
        raise HTTPException(500, "CRON_SECRET not configured")
    # Accept X-Cron-Secret header or Bearer token
    token = x_cron_secret
    if not token and authorization and authorization.startswith("Bearer "):
        token = authorization[7:]
    if token != secret:
        raise HTTPException(401, "Invalid cron secret")


@router.post("/daily-sync")
async def cron_daily_sync(
    _: None = Depends(_require_cron_secret),
    scheduler: SourceScheduler = Depends(get_source_scheduler),
):
    """
    Scheduled review sync. Call from QStash:
    POST https://your-app/api/cron/daily-sync
    Header: X-Cron-Secret: <CRON_SECRET>
    """
    try:
        result = await scheduler.run_cycle()
    except Exception as e:
        logger.exception("Cron daily sync cycle failed")
        raise HTTPException(500, safe_error_detail(e, "Daily sync cycle failed."))
    logger.info(f"Cron daily sync cycle: {result.as_dict()}")
    return {"status": "ok", "result": result.as_dict()}
