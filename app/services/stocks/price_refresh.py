"""Price refresh: quote every tracked stock, reconcile its status, persist.

Also owns the 48-hour promotion sweep that moves exits into past performance.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta, timezone

from sqlalchemy.exc import SQLAlchemyError

from app.config import settings
from app.services.alerting import AlertService
from app.services.data.nse_feed import NSEQuoteClient, QuoteUnavailable
from app.services.stocks.errors import RefreshError, StockNotFound
from app.services.stocks.repository import StockRepository
from app.services.stocks.status import Reconciliation, StockStatus, reconcile

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class RefreshSummary:
    updated: int = 0
    errors: int = 0

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class PromotionSummary:
    moved: int = 0

    def to_dict(self) -> dict:
        return asdict(self)


class PriceRefreshService:
    """Runs refresh cycles against NSE for every stored recommendation."""

    def __init__(
        self,
        repository: StockRepository,
        quotes: NSEQuoteClient,
        alerts: AlertService | None = None,
        delay_ms: int | None = None,
        promotion_hours: int | None = None,
        now: Callable[[], datetime] = _utcnow,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._repository = repository
        self._quotes = quotes
        self._alerts = alerts
        delay_ms = settings.price_refresh_delay_ms if delay_ms is None else delay_ms
        self._delay_seconds = delay_ms / 1000
        self._promotion_window = timedelta(
            hours=promotion_hours or settings.exit_promotion_hours
        )
        self._now = now
        self._sleep = sleep

    async def refresh_all(self) -> RefreshSummary:
        """Refresh every stock. One stock failing never aborts the batch.

        Exited stocks are included so a price reversal can bring them back.
        """
        stocks = await self._repository.find_all()
        summary = RefreshSummary()

        for index, stock in enumerate(stocks):
            if index:
                # Pace NSE calls; it throttles bursts from one client
                await self._sleep(self._delay_seconds)
            try:
                await self._refresh_stock(stock)
                summary.updated += 1
            except QuoteUnavailable as e:
                logger.warning("No price available for %s: %s", stock.symbol, e)
                summary.errors += 1
            except Exception as e:
                logger.error("Error updating price for %s: %s", stock.symbol, e)
                summary.errors += 1

        logger.info(
            "Price refresh completed: %d updated, %d errors",
            summary.updated, summary.errors,
        )
        return summary

    async def refresh_one(self, stock_id: str):
        """Refresh a single stock and return the persisted row.

        Raises:
            StockNotFound: Unknown id.
            QuoteError: NSE gave no usable price (QuoteUnavailable) or failed
                (UpstreamError).
            RefreshError: The database write failed.
        """
        stock = await self._repository.get(stock_id)
        if stock is None:
            raise StockNotFound(stock_id)
        return await self._refresh_stock(stock)

    async def _refresh_stock(self, stock):
        quote = await self._quotes.fetch_quote(stock.symbol)
        now = self._now()
        previous_status = stock.status
        result = reconcile(stock, quote.price, now)

        try:
            fresh = await self._repository.update(
                stock.id,
                current_price=quote.price,
                last_price_update=now,
                status=result.status.value,
                realised_pct=result.realised_pct,
                exited_at=result.exited_at,
            )
        except SQLAlchemyError as e:
            raise RefreshError("persist", stock.symbol, str(e)) from e
        if fresh is None:
            raise StockNotFound(stock.id)

        if result.status.value != previous_status:
            await self._on_status_change(stock.symbol, previous_status, quote.price, result)
        return fresh

    async def _on_status_change(
        self, symbol: str, previous_status: str, price: float, result: Reconciliation
    ) -> None:
        returns = ""
        if result.realised_pct is not None:
            returns = f" | Returns: {result.realised_pct:+.2f}%"
        logger.info(
            "Status changed for %s: %s -> %s (Price: ₹%s%s)",
            symbol, previous_status, result.status.value, price, returns,
        )
        if result.status is StockStatus.EXIT and self._alerts is not None:
            await self._alerts.stock_exited(
                symbol, result.reason.value, price, result.realised_pct
            )

    async def promote_expired_exits(self) -> PromotionSummary:
        """Move stocks that exited 48h+ ago from exit to exited.

        Only the status changes; realised_pct and exited_at stay frozen.
        Running it again with nothing newly due is a no-op.
        """
        cutoff = self._now() - self._promotion_window
        due = await self._repository.find_by_status_exited_before(
            StockStatus.EXIT.value, cutoff
        )

        summary = PromotionSummary()
        for stock in due:
            moved = await self._repository.update_where_status(
                stock.id, StockStatus.EXIT.value, status=StockStatus.EXITED.value
            )
            if not moved:
                logger.info("Skipped promoting %s: status changed since selection", stock.symbol)
                continue
            summary.moved += 1
            logger.info("Moved %s to past performance (exited at %s)", stock.symbol, stock.exited_at)

        if summary.moved:
            logger.info("Moved %d stocks from exit to exited", summary.moved)
        return summary
