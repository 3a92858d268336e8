"""Tests for the NSE quote client.

Upstream is faked with httpx.MockTransport; the caches run on a manual clock
and retry waits go to an AsyncMock so nothing actually sleeps.
"""

from unittest.mock import AsyncMock

import httpx
import pytest

from app.services.data.nse_feed import (
    HOME_URL,
    NSEQuoteClient,
    Quote,
    QuoteUnavailable,
    TTLCache,
    UpstreamAuthError,
    UpstreamError,
    normalize_symbol,
    quote_page_url,
    referer_for_attempt,
)

QUOTE_PAYLOAD = {
    "info": {"symbol": "RELIANCE"},
    "priceInfo": {
        "lastPrice": 2450.5,
        "change": 12.3,
        "pChange": 0.5,
        "intraDayHighLow": {"min": 2430.0, "max": 2460.0},
    },
}


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


class FakeNSE:
    """Records every request and answers from per-path scripts."""

    def __init__(self, quote_statuses=(200,), payload=None, cookies=("nsit=abc", "bm_sv=xyz")):
        self.requests: list[httpx.Request] = []
        self.quote_statuses = list(quote_statuses)
        self.payload = QUOTE_PAYLOAD if payload is None else payload
        self.cookies = cookies

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if path == "/api/quote-equity":
            status = self.quote_statuses.pop(0) if self.quote_statuses else 200
            if status != 200:
                return httpx.Response(status, json={"error": "denied"})
            return httpx.Response(200, json=self.payload)
        if path == "/api/search/autocomplete":
            return httpx.Response(200, json={"symbols": [{"symbol": "TCS", "symbol_info": "Tata"}]})
        headers = [("set-cookie", f"{c}; Path=/; HttpOnly") for c in self.cookies]
        return httpx.Response(200, headers=headers, text="<html></html>")

    def quote_requests(self) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.path == "/api/quote-equity"]

    def page_requests(self) -> list[httpx.Request]:
        return [r for r in self.requests if not r.url.path.startswith("/api/")]


def make_client(fake: FakeNSE, clock: FakeClock | None = None, cookie_override: str = "", ttl=15):
    clock = clock or FakeClock()
    sleep = AsyncMock()
    client = NSEQuoteClient(
        quote_cache=TTLCache(ttl, clock),
        session_cache=TTLCache(600, clock),
        cookie_override=cookie_override,
        timeout=5,
        transport=httpx.MockTransport(fake),
        sleep=sleep,
    )
    return client, sleep


class TestHelpers:
    def test_normalize_symbol(self):
        assert normalize_symbol("reliance.ns") == "RELIANCE"
        assert normalize_symbol(" TCS ") == "TCS"

    def test_referer_by_attempt(self):
        assert referer_for_attempt(0, "TCS") == quote_page_url("TCS")
        assert referer_for_attempt(1, "TCS") == quote_page_url("TCS")
        assert referer_for_attempt(2, "TCS") == HOME_URL

    def test_ttl_cache_expiry(self):
        clock = FakeClock()
        cache = TTLCache(15, clock)
        cache.set("k", "v")
        clock.now += 14
        assert cache.get("k") == "v"
        clock.now += 1
        assert cache.get("k") is None


class TestFetchQuote:
    @pytest.mark.asyncio
    async def test_success_parses_fields(self):
        fake = FakeNSE()
        client, _ = make_client(fake)

        quote = await client.fetch_quote("reliance.ns")

        assert quote == Quote("RELIANCE", 2450.5, 2460.0, 2430.0, 12.3, 0.5)
        request = fake.quote_requests()[0]
        assert request.url.params["symbol"] == "RELIANCE"
        assert request.headers["cookie"] == "nsit=abc; bm_sv=xyz"
        assert request.headers["x-requested-with"] == "XMLHttpRequest"
        # Session bootstrap: symbol page, then home page
        pages = fake.page_requests()
        assert [p.url.path for p in pages] == ["/get-quotes/equity", "/"]
        await client.close()

    @pytest.mark.asyncio
    async def test_cache_hit_skips_network(self):
        fake = FakeNSE()
        clock = FakeClock()
        client, _ = make_client(fake, clock)

        await client.fetch_quote("RELIANCE")
        clock.now += 5
        await client.fetch_quote("RELIANCE")
        assert len(fake.quote_requests()) == 1

        clock.now += 20
        await client.fetch_quote("RELIANCE")
        assert len(fake.quote_requests()) == 2
        await client.close()

    @pytest.mark.asyncio
    async def test_cookie_override_skips_bootstrap(self):
        fake = FakeNSE()
        client, _ = make_client(fake, cookie_override="manual=1")

        await client.fetch_quote("RELIANCE")

        assert fake.page_requests() == []
        assert fake.quote_requests()[0].headers["cookie"] == "manual=1"
        await client.close()

    @pytest.mark.asyncio
    async def test_no_cookies_sends_without_header(self):
        fake = FakeNSE(cookies=())
        client, _ = make_client(fake)

        await client.fetch_quote("RELIANCE")

        assert "cookie" not in fake.quote_requests()[0].headers
        await client.close()

    @pytest.mark.asyncio
    async def test_401_retry_recovers(self):
        fake = FakeNSE(quote_statuses=[401, 200])
        client, sleep = make_client(fake)

        quote = await client.fetch_quote("RELIANCE")

        assert quote.price == 2450.5
        assert len(fake.quote_requests()) == 2
        # Session rebuilt after the first 401
        assert len(fake.page_requests()) == 4
        sleep.assert_awaited_once_with(0.4)
        await client.close()

    @pytest.mark.asyncio
    async def test_persistent_401_raises_after_three_requests(self):
        fake = FakeNSE(quote_statuses=[401, 401, 401, 401])
        client, sleep = make_client(fake)

        with pytest.raises(UpstreamAuthError) as exc_info:
            await client.fetch_quote("RELIANCE")

        assert exc_info.value.status_code == 401
        requests = fake.quote_requests()
        assert len(requests) == 3
        assert requests[0].headers["referer"] == quote_page_url("RELIANCE")
        assert requests[1].headers["referer"] == quote_page_url("RELIANCE")
        assert requests[2].headers["referer"] == HOME_URL
        assert [c.args[0] for c in sleep.await_args_list] == [0.4, 0.3]
        await client.close()

    @pytest.mark.asyncio
    async def test_server_error_is_not_retried(self):
        fake = FakeNSE(quote_statuses=[500])
        client, sleep = make_client(fake)

        with pytest.raises(UpstreamError) as exc_info:
            await client.fetch_quote("RELIANCE")

        assert not isinstance(exc_info.value, UpstreamAuthError)
        assert exc_info.value.status_code == 500
        assert len(fake.quote_requests()) == 1
        sleep.assert_not_awaited()
        await client.close()

    @pytest.mark.asyncio
    async def test_missing_price_is_unavailable_and_not_cached(self):
        fake = FakeNSE(payload={"priceInfo": {"change": 1}})
        client, _ = make_client(fake)

        with pytest.raises(QuoteUnavailable):
            await client.fetch_quote("RELIANCE")
        with pytest.raises(QuoteUnavailable):
            await client.fetch_quote("RELIANCE")
        assert len(fake.quote_requests()) == 2
        await client.close()

    @pytest.mark.asyncio
    async def test_missing_optional_fields_are_none(self):
        fake = FakeNSE(payload={"priceInfo": {"lastPrice": "101.5"}})
        client, _ = make_client(fake)

        quote = await client.fetch_quote("INFY")

        assert quote.price == 101.5
        assert quote.high is None
        assert quote.low is None
        assert quote.change is None
        assert quote.percent_change is None
        await client.close()

    @pytest.mark.asyncio
    async def test_transport_error_is_upstream_error(self):
        def handler(request):
            raise httpx.ConnectError("boom", request=request)

        client = NSEQuoteClient(
            cookie_override="manual=1",
            transport=httpx.MockTransport(handler),
            sleep=AsyncMock(),
        )
        with pytest.raises(UpstreamError):
            await client.fetch_quote("RELIANCE")
        await client.close()


class TestSearchSymbol:
    @pytest.mark.asyncio
    async def test_resolves_first_symbol(self):
        fake = FakeNSE()
        client, _ = make_client(fake)

        assert await client.search_symbol("tata consultancy") == "TCS"
        await client.close()

    @pytest.mark.asyncio
    async def test_blank_query(self):
        client, _ = make_client(FakeNSE())
        assert await client.search_symbol("  ") is None

    @pytest.mark.asyncio
    async def test_failure_returns_none(self):
        def handler(request):
            return httpx.Response(503)

        client = NSEQuoteClient(
            cookie_override="manual=1",
            transport=httpx.MockTransport(handler),
            sleep=AsyncMock(),
        )
        assert await client.search_symbol("tata") is None
        await client.close()
