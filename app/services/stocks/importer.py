"""CSV ingestion for published stock recommendations.

Reads the research desk's "Live Stocks" sheet export and creates one
recommendation per row in status entry. Re-runs are safe: a row whose symbol,
company and recommendation day already exist is skipped.
"""

import csv
import logging
import math
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime, time, timezone
from pathlib import Path

from app.models.stock import StockRecommendation
from app.services.stocks.repository import StockRepository
from app.services.stocks.status import StockStatus

logger = logging.getLogger(__name__)

# Sheet exports sometimes carry a trailing space in this header
DATE_COLUMNS = ("Date of Coverage", "Date of Coverage ")
DATE_FORMATS = ("%d %b %Y", "%d %B %Y", "%b %d %Y", "%B %d %Y", "%d-%b %Y", "%d/%m %Y")


@dataclass
class ImportSummary:
    created: int = 0
    skipped: int = 0

    def to_dict(self) -> dict:
        return {"created": self.created, "skipped": self.skipped}


def parse_number(value: str | None) -> float | None:
    """Parse "1,234.5" into 1234.5. Blank or non-numeric gives None."""
    if value is None:
        return None
    cleaned = str(value).replace(",", "").strip()
    if not cleaned:
        return None
    try:
        number = float(cleaned)
    except ValueError:
        return None
    return number if math.isfinite(number) else None


def format_price(value: float) -> str:
    """Full-precision price text: 1200.0 -> "1200", 128450.75 -> "128450.75"."""
    return str(int(value)) if value.is_integer() else repr(value)


def parse_returns(value: str | None) -> float:
    """Parse the sheet's "Returns" column ("12.5%") into 12.5, else 0."""
    if not value:
        return 0.0
    parsed = parse_number(str(value).replace("%", ""))
    return parsed if parsed is not None else 0.0


def parse_coverage_date(raw: str | None, year: int) -> datetime | None:
    """Parse a day-month coverage date like "12 Jan" in the given year."""
    if not raw or not raw.strip():
        return None
    composed = f"{raw.strip()} {year}"
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(composed, fmt).replace(tzinfo=timezone.utc)
        except ValueError:
            continue
    return None


def row_to_fields(row: dict, now: datetime) -> dict | None:
    """Map one CSV row to model fields, or None when the row must be skipped."""
    company_name = (row.get("Stock Name") or "").strip()
    symbol = (row.get("Ticker") or "").strip().upper()
    if not company_name or not symbol:
        return None

    entry_min = parse_number(row.get("Entry Min"))
    entry_max = parse_number(row.get("Entry Max"))
    if entry_min is None or entry_max is None:
        return None

    raw_date = next((row[c] for c in DATE_COLUMNS if row.get(c)), None)
    date_of_rec = parse_coverage_date(raw_date, now.year) or now

    return {
        "symbol": symbol,
        "company_name": company_name,
        "date_of_rec": date_of_rec,
        "entry_zone": f"{format_price(entry_min)} - {format_price(entry_max)}",
        "target": (row.get("Target") or "").strip(),
        "stop_loss": (row.get("Stoploss/Exit Price") or "").strip(),
        "potential_pct": parse_returns(row.get("Returns")),
        "status": StockStatus.ENTRY.value,
    }


async def import_rows(
    repository: StockRepository,
    rows: Iterable[dict],
    now: datetime | None = None,
) -> ImportSummary:
    """Create a recommendation for every valid, not yet imported row."""
    now = now or datetime.now(timezone.utc)
    summary = ImportSummary()

    for row in rows:
        fields = row_to_fields(row, now)
        if fields is None:
            summary.skipped += 1
            continue

        day = fields["date_of_rec"]
        day_start = datetime.combine(day.date(), time.min, tzinfo=day.tzinfo)
        day_end = datetime.combine(day.date(), time.max, tzinfo=day.tzinfo)
        existing = await repository.find_duplicate(
            fields["symbol"], fields["company_name"], day_start, day_end
        )
        if existing is not None:
            summary.skipped += 1
            continue

        await repository.add(StockRecommendation(**fields))
        summary.created += 1

    logger.info("Import complete: %d created, %d skipped", summary.created, summary.skipped)
    return summary


def read_csv(path: Path) -> list[dict]:
    rows = []
    with path.open(newline="", encoding="utf-8-sig") as f:
        for row in csv.DictReader(f):
            # Cells beyond the header land under a None key
            cleaned = {k.strip(): (v or "").strip() for k, v in row.items() if k is not None}
            if any(cleaned.values()):
                rows.append(cleaned)
    return rows
