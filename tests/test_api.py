"""Tests for the stock and admin routes.

Routes are mounted on a bare FastAPI app whose state carries mocks, so no
database, Redis or NSE connection is needed.
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from app.api import admin, stocks
from app.services.data.nse_feed import QuoteUnavailable, UpstreamError
from app.services.stocks.errors import RefreshError, StockNotFound
from app.services.stocks.price_refresh import PromotionSummary, RefreshSummary
from app.services.stocks.scheduler import PriceRefreshScheduler
from tests.conftest import make_stock


def make_app():
    repository = MagicMock()
    repository.list_page = AsyncMock(return_value=([make_stock(current_price=120)], 11))
    repository.get = AsyncMock(return_value=make_stock())
    repository.count = AsyncMock(return_value=4)
    repository.find_with_realised = AsyncMock(return_value=[make_stock(status="exit", realised_pct=10.0)])

    quotes = MagicMock()
    quotes.search_symbol = AsyncMock(return_value="TCS")

    service = MagicMock()
    service.refresh_all = AsyncMock(return_value=RefreshSummary(updated=5, errors=1))
    service.refresh_one = AsyncMock(return_value=make_stock(current_price=85, status="exit", realised_pct=-19.05))
    service.promote_expired_exits = AsyncMock(return_value=PromotionSummary(moved=2))

    scheduler = MagicMock()
    scheduler.status.return_value = {"running": True, "pending": False, "last_run": {"status": "completed"}}
    scheduler.run_cycle = AsyncMock(
        return_value={"status": "completed", "updated": 5, "errors": 1, "moved": 2}
    )

    app = FastAPI()
    app.include_router(stocks.router)
    app.include_router(admin.router)
    app.state.stock_repository = repository
    app.state.quote_client = quotes
    app.state.price_refresh = service
    app.state.scheduler = scheduler
    return app


@pytest.fixture
def app():
    return make_app()


@pytest.fixture
def client(app):
    with patch("app.api.auth.settings") as auth_settings:
        auth_settings.api_key = ""
        auth_settings.app_env = "development"
        yield TestClient(app)


class TestStockRoutes:
    def test_list_paginates(self, client, app):
        resp = client.get("/api/stocks/", params={"status": "hold", "page": 2, "limit": 5})
        assert resp.status_code == 200
        body = resp.json()
        assert body["pagination"] == {"page": 2, "limit": 5, "total": 11, "total_pages": 3}
        assert body["stocks"][0]["realised_pct"] == 14.29
        app.state.stock_repository.list_page.assert_awaited_once_with(
            statuses=["hold"], search=None, offset=5, limit=5
        )

    def test_list_rejects_unknown_status(self, client):
        assert client.get("/api/stocks/", params={"status": "sold"}).status_code == 422

    def test_active(self, client, app):
        resp = client.get("/api/stocks/active")
        assert resp.status_code == 200
        app.state.stock_repository.list_page.assert_awaited_once_with(
            statuses=["entry", "hold", "exit"]
        )

    def test_performance(self, client):
        body = client.get("/api/stocks/performance").json()
        assert body["total_stocks"] == 4
        assert body["accuracy_ratio"] == 100.0
        assert len(body["top_performers"]) == 1

    def test_by_status(self, client):
        body = client.get("/api/stocks/status/exited").json()
        assert body["status"] == "exited"

    def test_search(self, client):
        assert client.get("/api/stocks/search", params={"q": "tata"}).json() == {
            "query": "tata",
            "symbol": "TCS",
        }

    def test_get_missing(self, client, app):
        app.state.stock_repository.get.return_value = None
        assert client.get("/api/stocks/nope").status_code == 404


class TestAdminRoutes:
    def test_refresh_all_runs_a_scheduler_cycle(self, client, app):
        resp = client.post("/api/admin/prices/refresh")
        assert resp.json() == {"status": "completed", "updated": 5, "errors": 1, "moved": 2}
        app.state.scheduler.run_cycle.assert_awaited_once()
        app.state.price_refresh.refresh_all.assert_not_awaited()

    def test_refresh_all_while_cycle_in_flight(self, client, app):
        app.state.scheduler.run_cycle.return_value = None
        resp = client.post("/api/admin/prices/refresh")
        assert resp.json()["status"] == "already_running"

    def test_refresh_all_background_queues_once(self, client):
        redis_client = MagicMock()
        redis_client.set = AsyncMock(side_effect=[True, None])
        redis_client.aclose = AsyncMock()
        task = MagicMock()
        with (
            patch("app.api.admin.aioredis.from_url", return_value=redis_client),
            patch("app.tasks.price_tasks.refresh_all_prices", task),
        ):
            first = client.post("/api/admin/prices/refresh", params={"background": "true"})
            second = client.post("/api/admin/prices/refresh", params={"background": "true"})

        assert first.json()["status"] == "queued"
        assert second.json()["status"] == "already_queued"
        task.delay.assert_called_once()

    def test_refresh_one(self, client):
        body = client.post("/api/admin/prices/stock-1/refresh").json()
        assert body["stock"]["status"] == "exit"
        assert body["stock"]["realised_pct"] == -19.05

    @pytest.mark.parametrize(
        "error, status_code, prefix",
        [
            (StockNotFound("stock-1"), 404, "Stock recommendation not found"),
            (QuoteUnavailable("No price available for RELIANCE"), 502, "fetch:"),
            (UpstreamError("NSE API error for RELIANCE: 503", status_code=503), 502, "fetch:"),
            (RefreshError("persist", "RELIANCE", "db down"), 500, "persist:"),
        ],
    )
    def test_refresh_one_errors(self, client, app, error, status_code, prefix):
        app.state.price_refresh.refresh_one.side_effect = error
        resp = client.post("/api/admin/prices/stock-1/refresh")
        assert resp.status_code == status_code
        assert resp.json()["detail"].startswith(prefix)

    def test_promote(self, client):
        assert client.post("/api/admin/prices/promote").json() == {"moved": 2}

    def test_scheduler_status(self, client):
        body = client.get("/api/admin/scheduler").json()
        assert body["scheduler"]["running"] is True
        assert "is_open" in body["market"]


class TestAuth:
    def test_production_requires_key(self, app):
        with patch("app.api.auth.settings") as auth_settings:
            auth_settings.api_key = "secret"
            auth_settings.app_env = "production"
            client = TestClient(app)
            assert client.post("/api/admin/prices/promote").status_code == 401
            resp = client.post("/api/admin/prices/promote", headers={"X-API-Key": "secret"})
            assert resp.status_code == 200

    def test_stock_routes_are_public(self, app):
        with patch("app.api.auth.settings") as auth_settings:
            auth_settings.api_key = "secret"
            auth_settings.app_env = "production"
            assert TestClient(app).get("/api/stocks/active").status_code == 200

    def test_every_admin_route_is_guarded(self, app):
        with patch("app.api.auth.settings") as auth_settings:
            auth_settings.api_key = "secret"
            auth_settings.app_env = "production"
            client = TestClient(app)
            headers = {"X-API-Key": "wrong"}
            assert client.post("/api/admin/prices/refresh", headers=headers).status_code == 401
            assert client.post("/api/admin/prices/stock-1/refresh", headers=headers).status_code == 401
            assert client.post("/api/admin/prices/promote", headers=headers).status_code == 401
            assert client.get("/api/admin/scheduler", headers=headers).status_code == 401

    def test_production_without_configured_key_is_refused(self, app):
        with patch("app.api.auth.settings") as auth_settings:
            auth_settings.api_key = ""
            auth_settings.app_env = "production"
            assert TestClient(app).get("/api/admin/scheduler").status_code == 403

    def test_development_without_key_is_open(self, app):
        with patch("app.api.auth.settings") as auth_settings:
            auth_settings.api_key = ""
            auth_settings.app_env = "development"
            assert TestClient(app).get("/api/admin/scheduler").status_code == 200


class TestInlineRefreshGuard:
    @pytest.mark.asyncio
    async def test_no_second_cycle_while_scheduled_one_runs(self):
        gate = asyncio.Event()

        async def blocked_refresh():
            await gate.wait()
            return RefreshSummary(updated=1)

        service = MagicMock()
        service.refresh_all = AsyncMock(side_effect=blocked_refresh)
        service.promote_expired_exits = AsyncMock(return_value=PromotionSummary())
        scheduler = PriceRefreshScheduler(service, disabled=False, market_open=lambda _: True)

        scheduled = asyncio.create_task(scheduler.run_cycle())
        await asyncio.sleep(0)
        assert scheduler.pending is True

        body = await admin.refresh_all_prices(background=False, scheduler=scheduler)

        assert body["status"] == "already_running"
        gate.set()
        await scheduled
        assert service.refresh_all.await_count == 1
