"""Admin API routes: price refresh, exit promotion, scheduler status."""

import logging

import redis.asyncio as aioredis
from fastapi import APIRouter, Depends, HTTPException
from redis.exceptions import RedisError

from app.api.auth import require_api_key
from app.api.deps import get_refresh_service, get_scheduler
from app.config import settings
from app.services.data.market_calendar import market_status
from app.services.data.nse_feed import QuoteError
from app.services.stocks.errors import RefreshError, StockNotFound
from app.services.stocks.performance import enrich
from app.services.stocks.price_refresh import PriceRefreshService
from app.services.stocks.scheduler import (
    REDIS_KEY_REFRESH_LOCK,
    PriceRefreshScheduler,
    load_last_run,
)

logger = logging.getLogger(__name__)
router = APIRouter(
    prefix="/api/admin",
    tags=["admin"],
    dependencies=[Depends(require_api_key)],
)

REFRESH_LOCK_SECONDS = 300


@router.post("/prices/refresh")
async def refresh_all_prices(
    background: bool = False,
    scheduler: PriceRefreshScheduler = Depends(get_scheduler),
):
    """Run a refresh cycle against NSE now.

    The inline run goes through the scheduler so it never overlaps a scheduled
    cycle in this process; while one is in flight the call returns
    already_running. With background=true the run is handed to a Celery worker
    and the call returns immediately. A Redis lock keeps repeated clicks from
    queueing more than one run.
    """
    if not background:
        result = await scheduler.run_cycle()
        if result is None:
            return {"status": "already_running", "message": "A price refresh is already running."}
        return result

    try:
        r = aioredis.from_url(settings.redis_url, decode_responses=True)
        lock = await r.set(REDIS_KEY_REFRESH_LOCK, "1", ex=REFRESH_LOCK_SECONDS, nx=True)
        await r.aclose()
    except RedisError as e:
        logger.error("Failed to take refresh lock: %s", e)
        raise HTTPException(status_code=503, detail="Queue unavailable, retry without background")

    if not lock:
        return {"status": "already_queued", "message": "A price refresh is already queued."}

    from app.tasks.price_tasks import refresh_all_prices as refresh_task

    refresh_task.delay()
    return {"status": "queued", "message": "Price refresh queued."}


@router.post("/prices/{stock_id}/refresh")
async def refresh_stock_price(
    stock_id: str,
    service: PriceRefreshService = Depends(get_refresh_service),
):
    """Refresh one stock and return it. Errors name the failing stage."""
    try:
        stock = await service.refresh_one(stock_id)
    except StockNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except QuoteError as e:
        logger.warning("NSE fetch failed for stock %s: %s", stock_id, e)
        raise HTTPException(status_code=502, detail=f"fetch: {e}")
    except RefreshError as e:
        logger.error("Refresh failed for stock %s: %s", stock_id, e)
        raise HTTPException(status_code=500, detail=f"{e.stage}: {e}")
    return {"stock": enrich(stock)}


@router.post("/prices/promote")
async def promote_exits(service: PriceRefreshService = Depends(get_refresh_service)):
    """Move exits older than 48h to past performance."""
    summary = await service.promote_expired_exits()
    return summary.to_dict()


@router.get("/scheduler")
async def scheduler_status(scheduler: PriceRefreshScheduler = Depends(get_scheduler)):
    """Scheduler flags, last cycle and NSE session state."""
    state = scheduler.status()
    if state["last_run"] is None:
        state["last_run"] = await load_last_run(settings.redis_url)
    return {"scheduler": state, "market": market_status()}
