"""NSE India quote feed for live equity prices.

NSE has no public API key. The JSON endpoints only answer requests that look
like they come from a browser tab on nseindia.com, carrying the cookies the
HTML pages hand out. So every quote needs a session bootstrap first (two page
loads), browser-like headers, and a retry path for the 401s NSE returns when
the cookies go stale.

Quotes are cached for a few seconds and the session cookie for ten minutes.
Both caches are per client instance; share the singleton in feeds.py.
"""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

import httpx

from app.config import settings

logger = logging.getLogger(__name__)

BASE_URL = "https://www.nseindia.com"
HOME_URL = f"{BASE_URL}/"
QUOTE_PAGE_PATH = "/get-quotes/equity"
QUOTE_API_PATH = "/api/quote-equity"
SEARCH_API_PATH = "/api/search/autocomplete"

SESSION_TTL_SECONDS = 10 * 60
SESSION_KEY = "nse-session"
FIRST_RETRY_DELAY_SECONDS = 0.4
SECOND_RETRY_DELAY_SECONDS = 0.3
SYMBOL_SUFFIX = ".NS"

USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "Chrome/120 Safari/537.36"
)

PAGE_HEADERS = {
    "User-Agent": USER_AGENT,
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/avif,image/webp,*/*;q=0.8",
    "Accept-Language": "en-IN,en;q=0.9",
    "Connection": "keep-alive",
    "Cache-Control": "no-store",
}

API_HEADERS = {
    "User-Agent": USER_AGENT,
    "Accept": "application/json, text/plain, */*",
    "Accept-Language": "en-IN,en;q=0.9",
    "Accept-Encoding": "gzip, deflate, br",
    "Connection": "keep-alive",
    "Sec-Fetch-Dest": "empty",
    "Sec-Fetch-Mode": "cors",
    "Sec-Fetch-Site": "same-origin",
    "X-Requested-With": "XMLHttpRequest",
    "Cache-Control": "no-cache",
    "Pragma": "no-cache",
    "Origin": BASE_URL,
    "sec-ch-ua": '"Chromium";v="120", "Not=A?Brand";v="99"',
    "sec-ch-ua-mobile": "?0",
    "sec-ch-ua-platform": '"Windows"',
}


class QuoteError(Exception):
    """Base class for quote feed failures."""


class QuoteUnavailable(QuoteError):
    """NSE answered but the payload carried no usable last price."""


class UpstreamError(QuoteError):
    """NSE answered with a non-2xx status, or could not be reached at all."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class UpstreamAuthError(UpstreamError):
    """NSE kept answering 401 after the session was rebuilt."""


@dataclass
class Quote:
    """A single NSE equity quote. Missing upstream fields stay None."""

    symbol: str
    price: float | None
    high: float | None
    low: float | None
    change: float | None
    percent_change: float | None


class TTLCache:
    """Tiny key -> (value, stored_at) map with a fixed time-to-live.

    Advisory only: entries can be dropped at any time and recomputed.
    """

    def __init__(self, ttl_seconds: float, clock: Callable[[], float] = time.monotonic) -> None:
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: dict[str, tuple[Any, float]] = {}

    def get(self, key: str) -> Any | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        value, stored_at = entry
        if self._clock() - stored_at >= self.ttl_seconds:
            return None
        return value

    def set(self, key: str, value: Any) -> None:
        self._entries[key] = (value, self._clock())

    def invalidate(self, key: str) -> None:
        self._entries.pop(key, None)

    def clear(self) -> None:
        self._entries.clear()


def normalize_symbol(symbol: str) -> str:
    """RELIANCE.ns -> RELIANCE."""
    clean = symbol.strip().upper()
    if clean.endswith(SYMBOL_SUFFIX):
        clean = clean[: -len(SYMBOL_SUFFIX)]
    return clean


def quote_page_url(symbol: str) -> str:
    return str(httpx.URL(f"{BASE_URL}{QUOTE_PAGE_PATH}", params={"symbol": symbol}))


def referer_for_attempt(attempt: int, symbol: str) -> str:
    """Referer for the n-th quote request (0-based).

    The first request and the post-session-refresh retry claim to come from the
    symbol page; the last retry claims the home page.
    """
    if attempt < 2:
        return quote_page_url(symbol)
    return HOME_URL


def _cookie_pairs(response: httpx.Response) -> list[str]:
    """name=value part of every Set-Cookie header."""
    pairs = []
    for header in response.headers.get_list("set-cookie"):
        pair = header.split(";", 1)[0].strip()
        if pair:
            pairs.append(pair)
    return pairs


def _as_float(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _parse_quote(symbol: str, payload: Any) -> Quote:
    price_info = payload.get("priceInfo") if isinstance(payload, dict) else None
    price_info = price_info if isinstance(price_info, dict) else {}
    high_low = price_info.get("intraDayHighLow")
    high_low = high_low if isinstance(high_low, dict) else {}
    return Quote(
        symbol=symbol,
        price=_as_float(price_info.get("lastPrice")),
        high=_as_float(high_low.get("max")),
        low=_as_float(high_low.get("min")),
        change=_as_float(price_info.get("change")),
        percent_change=_as_float(price_info.get("pChange")),
    )


class NSEQuoteClient:
    """Fetch live NSE equity quotes. Free, unauthenticated, cookie-gated."""

    def __init__(
        self,
        *,
        quote_cache: TTLCache | None = None,
        session_cache: TTLCache | None = None,
        cookie_override: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._quote_cache = quote_cache or TTLCache(settings.nse_quote_cache_seconds)
        self._session_cache = session_cache or TTLCache(SESSION_TTL_SECONDS)
        self._cookie_override = (
            settings.nse_cookie if cookie_override is None else cookie_override
        ).strip()
        self._timeout = timeout or settings.nse_timeout_seconds
        self._transport = transport
        self._sleep = sleep
        self._client: httpx.AsyncClient | None = None

    def _get_client(self) -> httpx.AsyncClient:
        """Lazy init so the client binds to the loop that first uses it."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=BASE_URL,
                timeout=self._timeout,
                transport=self._transport,
                follow_redirects=True,
            )
        return self._client

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _get(
        self, path: str, params: dict[str, str], headers: dict[str, str]
    ) -> httpx.Response:
        try:
            return await self._get_client().get(path, params=params, headers=headers)
        except httpx.TransportError as e:
            raise UpstreamError(f"NSE request to {path} failed: {e!r}") from e

    async def _acquire_session(self, symbol: str) -> str:
        """Return the cookie header to send, bootstrapping it if stale.

        An empty string means NSE handed out no cookies; requests then go out
        without one rather than failing here.
        """
        cached = self._session_cache.get(SESSION_KEY)
        if cached is not None:
            return cached

        if self._cookie_override:
            self._session_cache.set(SESSION_KEY, self._cookie_override)
            return self._cookie_override

        pairs: list[str] = []
        # Symbol page first (sets the akamai cookies), then the home page
        for path, params in ((QUOTE_PAGE_PATH, {"symbol": symbol}), ("/", {})):
            response = await self._get(path, params, PAGE_HEADERS)
            for pair in _cookie_pairs(response):
                if pair not in pairs:
                    pairs.append(pair)

        cookie = "; ".join(pairs)
        if not cookie:
            logger.warning("NSE session bootstrap returned no cookies, continuing without")
        self._session_cache.set(SESSION_KEY, cookie)
        return cookie

    def invalidate_session(self) -> None:
        self._session_cache.invalidate(SESSION_KEY)

    async def _api_get(
        self, path: str, params: dict[str, str], cookie: str, referer: str
    ) -> httpx.Response:
        headers = {**API_HEADERS, "Referer": referer}
        if cookie:
            headers["Cookie"] = cookie
        return await self._get(path, params, headers)

    async def fetch_quote(self, symbol: str) -> Quote:
        """Fetch the current quote for an NSE symbol.

        Args:
            symbol: Ticker, any case, with or without the .NS suffix.

        Returns:
            Quote with a non-None price.

        Raises:
            QuoteUnavailable: NSE answered without a usable last price.
            UpstreamAuthError: Still 401 after two retries.
            UpstreamError: Any other non-2xx status or a transport failure.
        """
        clean = normalize_symbol(symbol)
        cached = self._quote_cache.get(clean)
        if cached is not None:
            logger.debug("NSE quote cache hit for %s", clean)
            return cached

        cookie = await self._acquire_session(clean)
        params = {"symbol": clean}

        for attempt in range(3):
            if attempt == 1:
                self.invalidate_session()
                cookie = await self._acquire_session(clean)
                await self._sleep(FIRST_RETRY_DELAY_SECONDS)
            elif attempt == 2:
                await self._sleep(SECOND_RETRY_DELAY_SECONDS)

            response = await self._api_get(
                QUOTE_API_PATH, params, cookie, referer_for_attempt(attempt, clean)
            )
            if response.status_code != 401:
                break
            logger.warning("NSE returned 401 for %s (attempt %d/3)", clean, attempt + 1)
        else:
            raise UpstreamAuthError(f"NSE rejected session for {clean}", status_code=401)

        if not response.is_success:
            raise UpstreamError(
                f"NSE API error for {clean}: {response.status_code}",
                status_code=response.status_code,
            )

        try:
            payload = response.json()
        except ValueError as e:
            raise QuoteUnavailable(f"NSE returned a non-JSON body for {clean}") from e

        quote = _parse_quote(clean, payload)
        if quote.price is None:
            raise QuoteUnavailable(f"No price available for {clean}")

        self._quote_cache.set(clean, quote)
        return quote

    async def search_symbol(self, query: str) -> str | None:
        """Resolve a company name or partial ticker to an NSE symbol.

        Best effort: returns None on any upstream failure.
        """
        clean = query.strip()
        if not clean:
            return None

        params = {"q": clean}
        referer = quote_page_url(clean)
        try:
            cookie = await self._acquire_session(clean)
            response = await self._api_get(SEARCH_API_PATH, params, cookie, referer)
            if response.status_code == 401:
                self.invalidate_session()
                cookie = await self._acquire_session(clean)
                await self._sleep(SECOND_RETRY_DELAY_SECONDS)
                response = await self._api_get(SEARCH_API_PATH, params, cookie, referer)
        except UpstreamError as e:
            logger.warning("NSE search for %r failed: %s", clean, e)
            return None

        if not response.is_success:
            logger.warning("NSE search for %r returned %d", clean, response.status_code)
            return None

        try:
            payload = response.json()
        except ValueError:
            return None
        if not isinstance(payload, dict):
            return None

        for key in ("symbols", "quotes", "data"):
            items = payload.get(key)
            if isinstance(items, list) and items:
                break
        else:
            return None

        for item in items:
            if isinstance(item, dict) and isinstance(item.get("symbol"), str):
                return normalize_symbol(item["symbol"])
        return None
