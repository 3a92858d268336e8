"""Status reconciliation for tracked recommendations.

Lifecycle:
    entry  -> price inside the entry zone
    hold   -> price outside the zone, neither stop-loss nor target breached
    exit   -> stop-loss or target breached; realised return frozen here
    exited -> archival "past performance", reached only by the promotion
              sweep 48h after the exit, never by a price evaluation

Stop-loss is evaluated before target. When a gap move crosses both levels in
the same tick the exit is booked as a stop-loss.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Protocol

from app.services.stocks.price_parser import parse_price, parse_range, resolve_average_entry


class StockStatus(str, Enum):
    ENTRY = "entry"
    HOLD = "hold"
    EXIT = "exit"
    EXITED = "exited"


ACTIVE_STATUSES = frozenset({StockStatus.ENTRY, StockStatus.HOLD})
EXITED_STATUSES = frozenset({StockStatus.EXIT, StockStatus.EXITED})


class ExitReason(str, Enum):
    STOP_LOSS = "stop_loss"
    TARGET = "target"
    ENTRY_ZONE = "entry_zone"
    OUTSIDE_ZONE = "outside_zone"
    UNPARSEABLE = "unparseable"


class Reconcilable(Protocol):
    """The fields of a stock the engine reads."""

    entry_zone: str | None
    average_entry: float | None
    target: str | None
    stop_loss: str | None
    status: str
    realised_pct: float | None
    exited_at: datetime | None


@dataclass(frozen=True)
class Reconciliation:
    """Outcome of evaluating one stock against one price."""

    status: StockStatus
    realised_pct: float | None
    exited_at: datetime | None
    reason: ExitReason


def realised_return_pct(price: float, average_entry: float) -> float:
    """Percentage move from the average entry, rounded to 2 dp."""
    return round((price - average_entry) / average_entry * 100, 2)


def _round_pct(value: float | None) -> float | None:
    return round(value, 2) if value is not None else None


def reconcile(
    stock: Reconcilable,
    current_price: float,
    now: datetime | None = None,
) -> Reconciliation:
    """Compute the new status and realised fields for a freshly quoted price.

    Args:
        stock: The stored recommendation.
        current_price: Latest traded price.
        now: Timestamp to stamp on a new exit (defaults to utcnow).

    Returns:
        Reconciliation holding the status, realised_pct and exited_at to
        persist. When the entry zone or stop-loss cannot be parsed the stored
        values come back unchanged.
    """
    previous = StockStatus(stock.status)
    realised_pct = stock.realised_pct
    exited_at = stock.exited_at

    zone = parse_range(stock.entry_zone)
    stop_loss = parse_price(stock.stop_loss)
    if zone is None or stop_loss is None:
        return Reconciliation(previous, _round_pct(realised_pct), exited_at, ExitReason.UNPARSEABLE)

    target = parse_price(stock.target)

    if current_price <= stop_loss:
        status, reason = StockStatus.EXIT, ExitReason.STOP_LOSS
    elif target is not None and current_price >= target:
        status, reason = StockStatus.EXIT, ExitReason.TARGET
    elif zone.contains(current_price):
        status, reason = StockStatus.ENTRY, ExitReason.ENTRY_ZONE
    else:
        status, reason = StockStatus.HOLD, ExitReason.OUTSIDE_ZONE

    if status is StockStatus.EXIT:
        if previous is StockStatus.EXITED:
            # Archived and still beyond a threshold: stays in past performance.
            status = StockStatus.EXITED
        elif previous is not StockStatus.EXIT:
            average_entry = resolve_average_entry(stock.average_entry, stock.entry_zone)
            if average_entry:
                realised_pct = realised_return_pct(current_price, average_entry)
                exited_at = now or datetime.now(timezone.utc)
    elif previous in EXITED_STATUSES:
        realised_pct = None
        exited_at = None

    return Reconciliation(status, _round_pct(realised_pct), exited_at, reason)
