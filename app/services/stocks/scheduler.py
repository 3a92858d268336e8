"""Adaptive price refresh scheduler.

One instance per process, created in the FastAPI lifespan. Runs a refresh
cycle immediately on start, then every 5 minutes while NSE is open and every
30 minutes otherwise; the market-hours check is redone after every cycle.
Cycles never overlap and a failing cycle never stops the loop.

The outcome of each cycle is also written to Redis so other processes (the
admin API, Celery workers) can show when prices were last refreshed.
"""

import asyncio
import json
import logging
from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta, timezone

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from app.config import settings
from app.services.alerting import AlertService
from app.services.data.market_calendar import is_market_hours
from app.services.stocks.price_refresh import PriceRefreshService

logger = logging.getLogger(__name__)

REDIS_KEY_LAST_RUN = "stockwatch:price_refresh:last_run"
REDIS_KEY_REFRESH_LOCK = "stockwatch:price_refresh:queued"
LAST_RUN_TTL_SECONDS = 24 * 3600


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


async def record_last_run(redis_url: str, result: dict) -> None:
    """Store a cycle outcome in Redis. Failures are logged, never raised."""
    r = None
    try:
        r = aioredis.from_url(redis_url, decode_responses=True)
        await r.set(REDIS_KEY_LAST_RUN, json.dumps(result), ex=LAST_RUN_TTL_SECONDS)
    except RedisError as e:
        logger.warning("Failed to record price refresh run: %s", e)
    except (ValueError, TypeError) as e:
        # Malformed REDIS_URL or an unserialisable result
        logger.error("Cannot record price refresh run: %s", e)
    finally:
        if r is not None:
            await r.aclose()


async def wait_or_stop(stop_event: asyncio.Event, timeout: float) -> None:
    """Sleep up to timeout seconds, returning early once stop_event is set."""
    try:
        await asyncio.wait_for(stop_event.wait(), timeout=timeout)
    except asyncio.TimeoutError:
        pass


async def load_last_run(redis_url: str) -> dict | None:
    r = None
    try:
        r = aioredis.from_url(redis_url, decode_responses=True)
        raw = await r.get(REDIS_KEY_LAST_RUN)
        return json.loads(raw) if raw else None
    except RedisError as e:
        logger.warning("Failed to read last price refresh run: %s", e)
    except ValueError as e:
        logger.error("Cannot read last price refresh run: %s", e)
    finally:
        if r is not None:
            await r.aclose()
    return None


class PriceRefreshScheduler:
    """Recurring refresh loop with explicit running/pending state."""

    def __init__(
        self,
        service: PriceRefreshService,
        *,
        market_minutes: int | None = None,
        off_hours_minutes: int | None = None,
        disabled: bool | None = None,
        alerts: AlertService | None = None,
        redis_url: str | None = None,
        market_open: Callable[[datetime], bool] = is_market_hours,
        now: Callable[[], datetime] = _utcnow,
        wait: Callable[[asyncio.Event, float], Awaitable[None]] = wait_or_stop,
    ) -> None:
        self._service = service
        self._market_minutes = market_minutes or settings.price_refresh_minutes_market
        self._off_hours_minutes = off_hours_minutes or settings.price_refresh_minutes_off
        self._disabled = settings.price_refresh_disabled if disabled is None else disabled
        self._alerts = alerts
        self._redis_url = redis_url
        self._market_open = market_open
        self._now = now
        self._wait = wait

        self._running = False
        self._pending = False
        self._stop_event = asyncio.Event()
        self._task: asyncio.Task | None = None
        self.last_run: dict | None = None
        self.next_run_at: datetime | None = None

    @property
    def running(self) -> bool:
        return self._running

    @property
    def pending(self) -> bool:
        return self._pending

    def start(self) -> bool:
        """Start the loop on the running event loop.

        Returns False (and does nothing) when already running or disabled.
        """
        if self._running:
            logger.warning("Price refresh scheduler already running, skipping new start")
            return False
        if self._disabled:
            logger.info("Price refresh scheduler is disabled")
            return False

        self._running = True
        self._stop_event.clear()
        self._task = asyncio.get_running_loop().create_task(
            self._loop(), name="price-refresh-scheduler"
        )
        logger.info("Starting price refresh scheduler")
        return True

    async def stop(self, wait: bool = True) -> None:
        """Stop scheduling further cycles.

        Args:
            wait: Let an in-flight cycle finish. When False it is cancelled.
        """
        if not self._running:
            return
        self._running = False
        self._stop_event.set()
        self.next_run_at = None

        task, self._task = self._task, None
        if task is None:
            return
        if not wait:
            task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("Price refresh scheduler stopped")

    def next_interval_seconds(self) -> int:
        minutes = self._market_minutes if self._market_open(self._now()) else self._off_hours_minutes
        return minutes * 60

    async def _loop(self) -> None:
        while not self._stop_event.is_set():
            await self.run_cycle()
            if self._stop_event.is_set():
                break

            delay = self.next_interval_seconds()
            self.next_run_at = self._now() + timedelta(seconds=delay)
            logger.info("Next price refresh in %d minutes", delay // 60)
            await self._wait(self._stop_event, delay)

    async def run_cycle(self) -> dict | None:
        """Run refresh_all then the promotion sweep.

        Returns the cycle outcome, or None when a previous cycle is still in
        flight (the tick is dropped, not queued). Never raises on a failed
        refresh; the failure is logged and reported in the outcome.
        """
        if self._pending:
            logger.debug("Skipping price refresh run: previous run still pending")
            return None

        self._pending = True
        result: dict = {"started_at": self._now().isoformat()}
        try:
            refreshed = await self._service.refresh_all()
            promoted = await self._service.promote_expired_exits()
            result.update(status="completed", **refreshed.to_dict(), **promoted.to_dict())
        except Exception as e:
            logger.error("Scheduled price refresh failed: %s", e, exc_info=True)
            result.update(status="failed", error=str(e))
            if self._alerts is not None:
                await self._alerts.refresh_failed(str(e))
        finally:
            self._pending = False

        result["finished_at"] = self._now().isoformat()
        self.last_run = result
        if self._redis_url:
            await record_last_run(self._redis_url, result)
        return result

    def status(self) -> dict:
        return {
            "running": self._running,
            "pending": self._pending,
            "disabled": self._disabled,
            "market_interval_minutes": self._market_minutes,
            "off_hours_interval_minutes": self._off_hours_minutes,
            "next_run_at_utc": self.next_run_at.isoformat() if self.next_run_at else None,
            "last_run": self.last_run,
        }
