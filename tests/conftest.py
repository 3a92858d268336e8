"""Shared test fixtures."""

from datetime import datetime, timezone
from types import SimpleNamespace

import pytest

NOW = datetime(2026, 3, 10, 6, 0, tzinfo=timezone.utc)


def make_stock(**overrides) -> SimpleNamespace:
    """Stored recommendation with the fields the services read."""
    fields = {
        "id": "stock-1",
        "symbol": "RELIANCE",
        "company_name": "Reliance Industries",
        "date_of_rec": datetime(2026, 3, 1, tzinfo=timezone.utc),
        "entry_zone": "100-110",
        "average_entry": None,
        "target": "130",
        "stop_loss": "90",
        "potential_pct": None,
        "status": "entry",
        "current_price": None,
        "last_price_update": None,
        "realised_pct": None,
        "exited_at": None,
    }
    fields.update(overrides)
    return SimpleNamespace(**fields)


class FakeStockRepository:
    """In-memory stand-in for StockRepository, keyed by id."""

    def __init__(self, stocks=()) -> None:
        self.stocks = {s.id: s for s in stocks}
        self.updates: list[tuple[str, dict]] = []

    async def find_all(self):
        return list(self.stocks.values())

    async def get(self, stock_id):
        return self.stocks.get(stock_id)

    async def update(self, stock_id, **fields):
        self.updates.append((stock_id, fields))
        stock = self.stocks.get(stock_id)
        if stock is None:
            return None
        for key, value in fields.items():
            setattr(stock, key, value)
        return stock

    async def update_where_status(self, stock_id, expected_status, **fields):
        stock = self.stocks.get(stock_id)
        if stock is None or stock.status != expected_status:
            return False
        await self.update(stock_id, **fields)
        return True

    async def find_by_status_exited_before(self, status, exited_before):
        return [
            s for s in self.stocks.values()
            if s.status == status and s.exited_at is not None and s.exited_at <= exited_before
        ]


@pytest.fixture
def stock() -> SimpleNamespace:
    return make_stock()


@pytest.fixture
def repository() -> FakeStockRepository:
    return FakeStockRepository()
