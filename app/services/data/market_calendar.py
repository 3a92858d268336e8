"""Market calendar: NSE trading hours and session awareness.

NSE cash market runs 09:15-15:30 IST, Monday to Friday. IST has no daylight
saving, so a fixed UTC+05:30 offset is exact. Exchange holidays are not
modelled; on a holiday the scheduler simply polls at the faster cadence.
All inputs and outputs are UTC.
"""

import logging
from datetime import datetime, time, timedelta, timezone
from typing import NamedTuple

logger = logging.getLogger(__name__)

TZ_UTC = timezone.utc
TZ_IST = timezone(timedelta(hours=5, minutes=30), name="IST")


class MarketSession(NamedTuple):
    """A trading session with open/close times in local timezone."""

    open_time: time  # Local time
    close_time: time  # Local time, inclusive
    tz: timezone
    trading_days: tuple[int, ...]  # 0=Monday, 6=Sunday


NSE_SESSION = MarketSession(
    open_time=time(9, 15),
    close_time=time(15, 30),
    tz=TZ_IST,
    trading_days=(0, 1, 2, 3, 4),  # Mon-Fri
)


def is_market_hours(at_utc: datetime | None = None) -> bool:
    """Check if NSE is in its trading session.

    Args:
        at_utc: Aware datetime to check (defaults to now).

    Returns:
        True on a weekday between 09:15 and 15:30 IST, both minutes included.
    """
    if at_utc is None:
        at_utc = datetime.now(TZ_UTC)

    local_dt = at_utc.astimezone(NSE_SESSION.tz)
    if local_dt.weekday() not in NSE_SESSION.trading_days:
        return False

    # Minute resolution: 15:30:45 still counts as 15:30
    local_time = local_dt.time().replace(second=0, microsecond=0)
    return NSE_SESSION.open_time <= local_time <= NSE_SESSION.close_time


def next_open(after_utc: datetime | None = None) -> datetime:
    """Get the next NSE open time in UTC.

    If the market is open right now, returns today's open.
    """
    if after_utc is None:
        after_utc = datetime.now(TZ_UTC)

    local_dt = after_utc.astimezone(NSE_SESSION.tz)
    candidate = local_dt.replace(
        hour=NSE_SESSION.open_time.hour,
        minute=NSE_SESSION.open_time.minute,
        second=0, microsecond=0,
    )

    if is_market_hours(after_utc):
        return candidate.astimezone(TZ_UTC)

    # If we're past today's open, start from tomorrow
    if local_dt.time() >= NSE_SESSION.open_time:
        candidate += timedelta(days=1)

    while candidate.weekday() not in NSE_SESSION.trading_days:
        candidate += timedelta(days=1)

    return candidate.astimezone(TZ_UTC)


def market_status(at_utc: datetime | None = None) -> dict:
    """NSE open/closed status, suitable for API responses."""
    if at_utc is None:
        at_utc = datetime.now(TZ_UTC)

    is_open = is_market_hours(at_utc)
    local_now = at_utc.astimezone(NSE_SESSION.tz)
    entry = {
        "market": "nse",
        "is_open": is_open,
        "local_time": local_now.strftime("%H:%M %Z"),
        "timezone": "UTC+05:30",
    }

    if is_open:
        close_local = local_now.replace(
            hour=NSE_SESSION.close_time.hour,
            minute=NSE_SESSION.close_time.minute,
            second=0, microsecond=0,
        )
        entry["closes_in_minutes"] = int((close_local - local_now).total_seconds() / 60)
        entry["closes_at_utc"] = close_local.astimezone(TZ_UTC).isoformat()
    else:
        opens_at = next_open(at_utc)
        entry["opens_in_minutes"] = int((opens_at - at_utc).total_seconds() / 60)
        entry["opens_at_utc"] = opens_at.isoformat()

    return entry
