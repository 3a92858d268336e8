"""Errors raised by the stock refresh pipeline."""


class StockNotFound(LookupError):
    """No recommendation exists with the given id."""

    def __init__(self, stock_id: str) -> None:
        super().__init__(f"Stock recommendation not found: {stock_id}")
        self.stock_id = stock_id


class RefreshError(RuntimeError):
    """A single-stock refresh failed at a named stage (fetch or persist)."""

    def __init__(self, stage: str, symbol: str, message: str) -> None:
        super().__init__(f"Refresh of {symbol} failed during {stage}: {message}")
        self.stage = stage
        self.symbol = symbol
