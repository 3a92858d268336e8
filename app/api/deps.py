"""Request dependencies resolving the services built in the app lifespan."""

from fastapi import Request

from app.services.data.nse_feed import NSEQuoteClient
from app.services.stocks.price_refresh import PriceRefreshService
from app.services.stocks.repository import StockRepository
from app.services.stocks.scheduler import PriceRefreshScheduler


def get_repository(request: Request) -> StockRepository:
    return request.app.state.stock_repository


def get_quote_client(request: Request) -> NSEQuoteClient:
    return request.app.state.quote_client


def get_refresh_service(request: Request) -> PriceRefreshService:
    return request.app.state.price_refresh


def get_scheduler(request: Request) -> PriceRefreshScheduler:
    return request.app.state.scheduler
