"""CLI for importing stock recommendations from the research sheet export.

Usage:
    python scripts/import_recommendations.py --csv "Stock Data - Live Stocks.csv"
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s [%(name)s] %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger(__name__)


async def do_import(csv_path: Path) -> None:
    from app.database import async_session, engine
    from app.services.stocks.importer import import_rows, read_csv
    from app.services.stocks.repository import StockRepository

    rows = read_csv(csv_path)
    logger.info("Read %d rows from %s", len(rows), csv_path)
    try:
        summary = await import_rows(StockRepository(async_session), rows)
    finally:
        await engine.dispose()

    print("\n=== Import Results ===")
    print(f"  Created: {summary.created}")
    print(f"  Skipped: {summary.skipped}")
    print("======================\n")


def main() -> None:
    parser = argparse.ArgumentParser(description="StockWatch recommendation import")
    parser.add_argument("--csv", type=Path, required=True, help="Path to the CSV export")
    args = parser.parse_args()

    if not args.csv.exists():
        print(f"CSV file not found at {args.csv}", file=sys.stderr)
        sys.exit(1)

    asyncio.run(do_import(args.csv))


if __name__ == "__main__":
    main()
