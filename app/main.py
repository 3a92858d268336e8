"""StockWatch: FastAPI application entry point.

The lifespan owns the process-wide objects: one quote client (shared caches),
one refresh service and one scheduler. Routes reach them through app.state.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text

from app.api import admin, stocks
from app.config import settings
from app.database import async_session, engine
from app.services.alerting import AlertService
from app.services.data.feeds import nse_feed
from app.services.stocks.price_refresh import PriceRefreshService
from app.services.stocks.repository import StockRepository
from app.services.stocks.scheduler import PriceRefreshScheduler

VERSION = "1.0.0"

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s | %(name)s | %(levelname)s | %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger(__name__)


async def _check_database() -> None:
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except Exception as e:
        logger.error("Database unreachable at startup: %s", e)
        raise
    logger.info("Database connected")


def _wire_services(app: FastAPI) -> PriceRefreshScheduler:
    alerts = AlertService()
    repository = StockRepository(async_session)
    service = PriceRefreshService(repository, nse_feed, alerts=alerts)

    app.state.stock_repository = repository
    app.state.quote_client = nse_feed
    app.state.price_refresh = service
    app.state.scheduler = PriceRefreshScheduler(
        service, alerts=alerts, redis_url=settings.redis_url
    )
    return app.state.scheduler


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start the price scheduler once the database answers; stop it on shutdown."""
    await _check_database()
    scheduler = _wire_services(app)
    scheduler.start()
    try:
        yield
    finally:
        await scheduler.stop(wait=True)
        await nse_feed.close()
        await engine.dispose()
        logger.info("Shutdown complete")


app = FastAPI(
    title="StockWatch",
    description="Stock recommendation tracking with live NSE prices",
    version=VERSION,
    lifespan=lifespan,
)

if settings.app_env == "development":
    cors_origins = ["http://localhost:8000", "http://localhost:3000"]
else:
    cors_origins = [h.strip() for h in settings.allowed_hosts.split(",") if h.strip()]

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST"],
    allow_headers=["Content-Type", "X-API-Key"],
)

app.include_router(stocks.router)
app.include_router(admin.router)


@app.get("/api")
async def api_root():
    return {
        "name": "StockWatch",
        "version": VERSION,
        "status": "running",
        "price_refresh_disabled": settings.price_refresh_disabled,
    }
