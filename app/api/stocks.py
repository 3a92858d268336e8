"""Stock recommendation routes: listings, track record, symbol lookup."""

import logging
from typing import Literal

from fastapi import APIRouter, Depends, HTTPException, Query

from app.api.deps import get_quote_client, get_repository
from app.services.data.nse_feed import NSEQuoteClient
from app.services.stocks.performance import enrich, performance_stats
from app.services.stocks.repository import StockRepository
from app.services.stocks.status import StockStatus

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/stocks", tags=["stocks"])

StatusFilter = Literal["all", "entry", "hold", "exit", "exited"]
StatusName = Literal["entry", "hold", "exit", "exited"]

_ACTIVE = [StockStatus.ENTRY.value, StockStatus.HOLD.value, StockStatus.EXIT.value]


@router.get("/")
async def list_stocks(
    status: StatusFilter = "all",
    search: str | None = Query(default=None, max_length=100),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
    repository: StockRepository = Depends(get_repository),
):
    """Paginated recommendations, newest first, with live returns."""
    statuses = None if status == "all" else [status]
    stocks, total = await repository.list_page(
        statuses=statuses,
        search=search.strip() if search else None,
        offset=(page - 1) * limit,
        limit=limit,
    )
    return {
        "stocks": [enrich(s) for s in stocks],
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "total_pages": -(-total // limit),
        },
    }


@router.get("/active")
async def active_stocks(repository: StockRepository = Depends(get_repository)):
    """Entry, hold and recently exited (not yet archived) stocks."""
    stocks, _ = await repository.list_page(statuses=_ACTIVE)
    return {"stocks": [enrich(s) for s in stocks]}


@router.get("/performance")
async def performance(repository: StockRepository = Depends(get_repository)):
    """Track record across every stock with a frozen return."""
    total = await repository.count()
    active = await repository.count(_ACTIVE)
    exited = await repository.count([StockStatus.EXITED.value])
    realised = await repository.find_with_realised()
    return performance_stats(total, active, exited, realised, realised[:5])


@router.get("/status/{status}")
async def stocks_by_status(
    status: StatusName,
    repository: StockRepository = Depends(get_repository),
):
    stocks, _ = await repository.list_page(statuses=[status])
    return {"status": status, "stocks": [enrich(s) for s in stocks]}


@router.get("/search")
async def search_symbol(
    q: str = Query(..., min_length=1, max_length=100),
    quotes: NSEQuoteClient = Depends(get_quote_client),
):
    """Resolve a company name to its NSE symbol."""
    symbol = await quotes.search_symbol(q)
    return {"query": q, "symbol": symbol}


@router.get("/{stock_id}")
async def get_stock(stock_id: str, repository: StockRepository = Depends(get_repository)):
    stock = await repository.get(stock_id)
    if stock is None:
        raise HTTPException(status_code=404, detail="Stock recommendation not found")
    return {"stock": enrich(stock)}
