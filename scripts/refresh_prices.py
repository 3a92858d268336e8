"""CLI for one-shot price refreshes.

Usage:
    python scripts/refresh_prices.py --all        # Refresh every stock now
    python scripts/refresh_prices.py --id <uuid>  # Refresh a single stock
    python scripts/refresh_prices.py --promote    # Move 48h-old exits to exited
"""

import argparse
import asyncio
import logging
import sys

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s [%(name)s] %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger(__name__)


async def run(args: argparse.Namespace) -> int:
    from app.database import async_session, engine
    from app.services.alerting import AlertService
    from app.services.data.nse_feed import NSEQuoteClient, QuoteError
    from app.services.stocks.errors import RefreshError, StockNotFound
    from app.services.stocks.price_refresh import PriceRefreshService
    from app.services.stocks.repository import StockRepository

    quotes = NSEQuoteClient()
    service = PriceRefreshService(StockRepository(async_session), quotes, alerts=AlertService())
    try:
        if args.all:
            summary = await service.refresh_all()
            print(f"\nRefresh: updated={summary.updated}, errors={summary.errors}\n")
        elif args.id:
            try:
                stock = await service.refresh_one(args.id)
            except (StockNotFound, QuoteError, RefreshError) as e:
                logger.error("Refresh failed: %s", e)
                return 1
            print(f"\n{stock.symbol}: {stock.current_price} [{stock.status}]\n")
        else:
            summary = await service.promote_expired_exits()
            print(f"\nPromotion: moved={summary.moved}\n")
    finally:
        await quotes.close()
        await engine.dispose()
    return 0


def main() -> None:
    parser = argparse.ArgumentParser(description="StockWatch price refresh")
    group = parser.add_mutually_exclusive_group()
    group.add_argument("--all", action="store_true", help="Refresh every stock")
    group.add_argument("--id", type=str, help="Refresh one stock by id")
    group.add_argument("--promote", action="store_true", help="Run the 48h exit promotion")
    args = parser.parse_args()

    if not (args.all or args.id or args.promote):
        parser.print_help()
        sys.exit(1)

    sys.exit(asyncio.run(run(args)))


if __name__ == "__main__":
    main()
