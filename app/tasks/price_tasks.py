"""Price refresh tasks queued from the admin API.

Each task builds its own quote client: the shared singleton is bound to the
API process's event loop, and every Celery task runs on a fresh one.
"""

import asyncio
import logging
from datetime import datetime, timezone

from app.tasks import celery_app

logger = logging.getLogger(__name__)


def _run_async(coro):
    """Run an async coroutine from a sync Celery task."""
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


def _build_service():
    from app.database import async_session
    from app.services.alerting import AlertService
    from app.services.data.nse_feed import NSEQuoteClient
    from app.services.stocks.price_refresh import PriceRefreshService
    from app.services.stocks.repository import StockRepository

    quotes = NSEQuoteClient()
    service = PriceRefreshService(StockRepository(async_session), quotes, alerts=AlertService())
    return service, quotes


@celery_app.task(bind=True, max_retries=1, default_retry_delay=60)
def refresh_all_prices(self) -> dict:
    """Refresh every stock against NSE, then release the queue lock."""
    return _run_async(_refresh_all_async(self))


async def _refresh_all_async(task) -> dict:
    import redis.asyncio as aioredis
    from redis.exceptions import RedisError

    from app.config import settings
    from app.services.stocks.scheduler import REDIS_KEY_REFRESH_LOCK, record_last_run

    service, quotes = _build_service()
    started_at = datetime.now(timezone.utc).isoformat()
    try:
        summary = await service.refresh_all()
    except Exception as e:
        logger.error("Queued price refresh failed: %s", e)
        raise task.retry(exc=e)
    finally:
        await quotes.close()
        try:
            r = aioredis.from_url(settings.redis_url, decode_responses=True)
            await r.delete(REDIS_KEY_REFRESH_LOCK)
            await r.aclose()
        except RedisError as e:
            logger.warning("Failed to release refresh lock: %s", e)

    result = {
        "status": "completed",
        "source": "celery",
        "started_at": started_at,
        "finished_at": datetime.now(timezone.utc).isoformat(),
        **summary.to_dict(),
    }
    await record_last_run(settings.redis_url, result)
    return result


@celery_app.task(bind=True, max_retries=2, default_retry_delay=120)
def promote_expired_exits(self) -> dict:
    """Move 48h-old exits to past performance."""
    return _run_async(_promote_async(self))


async def _promote_async(task) -> dict:
    service, quotes = _build_service()
    try:
        summary = await service.promote_expired_exits()
    except Exception as e:
        logger.error("Exit promotion failed: %s", e)
        raise task.retry(exc=e)
    finally:
        await quotes.close()
    return {"status": "completed", **summary.to_dict()}
