"""Tests for NSE market hours (09:15-15:30 IST, Mon-Fri)."""

from datetime import datetime, timezone

import pytest

from app.services.data.market_calendar import is_market_hours, market_status, next_open


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


class TestIsMarketHours:
    @pytest.mark.parametrize(
        "at, expected",
        [
            (utc(2026, 3, 10, 3, 44), False),  # 09:14 IST
            (utc(2026, 3, 10, 3, 45), True),  # 09:15 IST open
            (utc(2026, 3, 10, 6, 0), True),
            (utc(2026, 3, 10, 10, 0), True),  # 15:30 IST close, inclusive
            (utc(2026, 3, 10, 10, 0, 45), True),
            (utc(2026, 3, 10, 10, 1), False),
            (utc(2026, 3, 14, 6, 0), False),  # Saturday
            (utc(2026, 3, 15, 6, 0), False),  # Sunday
        ],
    )
    def test_session_boundaries(self, at, expected):
        assert is_market_hours(at) is expected

    def test_ist_date_crossing(self):
        # Sunday 22:00 UTC is Monday 03:30 IST, still closed
        assert is_market_hours(utc(2026, 3, 15, 22, 0)) is False


class TestNextOpen:
    def test_before_open_same_day(self):
        assert next_open(utc(2026, 3, 10, 2, 0)) == utc(2026, 3, 10, 3, 45)

    def test_after_friday_close_rolls_to_monday(self):
        assert next_open(utc(2026, 3, 13, 12, 0)) == utc(2026, 3, 16, 3, 45)

    def test_during_session_returns_today(self):
        assert next_open(utc(2026, 3, 10, 6, 0)) == utc(2026, 3, 10, 3, 45)


class TestMarketStatus:
    def test_open(self):
        status = market_status(utc(2026, 3, 10, 6, 0))
        assert status["is_open"] is True
        assert status["closes_in_minutes"] == 240
        assert status["local_time"] == "11:30 IST"

    def test_closed(self):
        status = market_status(utc(2026, 3, 13, 12, 0))
        assert status["is_open"] is False
        assert status["opens_at_utc"] == utc(2026, 3, 16, 3, 45).isoformat()
