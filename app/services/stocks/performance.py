"""Live returns and track-record statistics for the stock views.

Active stocks (entry/hold) show a live return against the latest quote;
exited ones show the return frozen at exit.
"""

from collections.abc import Sequence

from app.services.stocks.price_parser import parse_price, resolve_average_entry
from app.services.stocks.status import EXITED_STATUSES, StockStatus


def _pct_move(value: float, average_entry: float) -> float:
    return round((value - average_entry) / average_entry * 100, 2)


def live_returns(stock) -> float | None:
    """Return till date: frozen for exits, live against current_price otherwise."""
    if StockStatus(stock.status) in EXITED_STATUSES:
        return stock.realised_pct

    if not stock.current_price:
        return None
    average_entry = resolve_average_entry(stock.average_entry, stock.entry_zone)
    if not average_entry:
        return None
    return _pct_move(stock.current_price, average_entry)


def potential_left(stock) -> float | None:
    """Upside from average entry to target, in percent."""
    average_entry = resolve_average_entry(stock.average_entry, stock.entry_zone)
    target = parse_price(stock.target)
    if not average_entry or target is None:
        return None
    return _pct_move(target, average_entry)


def _iso(value) -> str | None:
    return value.isoformat() if value is not None else None


def enrich(stock) -> dict:
    """JSON-ready view of a stock with returns filled in."""
    returns = live_returns(stock)
    potential = potential_left(stock)
    return {
        "id": stock.id,
        "symbol": stock.symbol,
        "company_name": stock.company_name,
        "date_of_rec": _iso(stock.date_of_rec),
        "entry_zone": stock.entry_zone,
        "average_entry": stock.average_entry,
        "target": stock.target,
        "stop_loss": stock.stop_loss,
        "status": stock.status,
        "current_price": stock.current_price,
        "last_price_update": _iso(stock.last_price_update),
        "realised_pct": returns if returns is not None else stock.realised_pct,
        "potential_pct": potential if potential is not None else stock.potential_pct,
        "exited_at": _iso(stock.exited_at),
    }


def _mean(values: Sequence[float]) -> float:
    return sum(values) / len(values) if values else 0.0


def performance_stats(
    total: int,
    active: int,
    exited: int,
    realised: Sequence,
    top: Sequence,
) -> dict:
    """Track-record summary over every stock that carries a frozen return.

    Args:
        total: Count of all stocks.
        active: Count of entry/hold/exit stocks.
        exited: Count of archived stocks.
        realised: Stocks with a non-null realised_pct.
        top: Best performers, already ordered.
    """
    winners = [s.realised_pct for s in realised if s.realised_pct > 0]
    losers = [s.realised_pct for s in realised if s.realised_pct <= 0]
    accuracy = len(winners) / len(realised) * 100 if realised else 0.0

    downsides = []
    for s in realised:
        stop_loss = parse_price(s.stop_loss)
        average_entry = resolve_average_entry(s.average_entry, s.entry_zone)
        if stop_loss is not None and average_entry:
            downsides.append((stop_loss - average_entry) / average_entry * 100)

    return {
        "total_stocks": total,
        "active_stocks": active,
        "exited_stocks": exited,
        "accuracy_ratio": round(accuracy, 2),
        "total_winning_calls": len(winners),
        "avg_winning_return": round(_mean(winners), 2),
        "avg_losing_return": round(_mean(losers), 2),
        "avg_downside": round(_mean(downsides), 2),
        "top_performers": [enrich(s) for s in top],
    }
