"""Binance public market-data client.

Read-only access to klines, 24h tickers and exchange info through the
public data API. Requests are retried with exponential back-off; an HTTP 429
opens a rate-limit window (``Retry-After`` seconds, default 60) that the
next request waits out.
"""

from __future__ import annotations

import asyncio
import time
from typing import Any, Dict, Iterable, List, Optional, Set

import httpx

from ..core.logging import get_market_data_logger, log_performance_metrics
from ..scanner.models import Candle, ScanPool, TickerData, Timeframe


BINANCE_DATA_API = "https://data-api.binance.vision/api/v3"
SYMBOLS_CACHE_SECONDS = 5 * 60
DEFAULT_RETRY_AFTER = 60

EXCLUDED_SUFFIXES = ("UP", "DOWN", "BULL", "BEAR")
EXCLUDED_PAIRS = frozenset({
    "USDCUSDT", "TUSDUSDT", "FDUSDUSDT", "BUSDUSDT", "USDPUSDT", "EURUSDT", "GBPUSDT",
})

TRADINGVIEW_INTERVALS = {
    "1m": "1", "3m": "3", "5m": "5", "15m": "15",
    "1h": "60", "4h": "240", "1d": "D",
}


class MarketDataError(RuntimeError):
    """Upstream request failed after all retries."""


def tradingview_link(symbol: str, interval: str = "1h") -> str:
    """Chart URL for a USDT pair on TradingView."""
    interval = interval.value if isinstance(interval, Timeframe) else interval
    pair = symbol.replace("USDT", "")
    tv_interval = TRADINGVIEW_INTERVALS.get(interval, "60")
    return f"https://www.tradingview.com/chart/?symbol=BINANCE:{pair}USDT&interval={tv_interval}"


def parse_kline(row: List[Any]) -> Candle:
    return Candle(
        open_time=int(row[0]),
        open=float(row[1]),
        high=float(row[2]),
        low=float(row[3]),
        close=float(row[4]),
        volume=float(row[5]),
        close_time=int(row[6]),
        quote_volume=float(row[7]),
        trades=int(row[8]),
    )


def top_coins(tickers: Iterable[TickerData], pool: ScanPool, limit: int = 100) -> List[TickerData]:
    """Rank tickers for a scan pool: losers ascending, gainers and volume descending."""
    ranked = list(tickers)
    if pool == ScanPool.LOSERS:
        ranked.sort(key=lambda t: t.price_change_percent)
    elif pool == ScanPool.GAINERS:
        ranked.sort(key=lambda t: t.price_change_percent, reverse=True)
    elif pool == ScanPool.VOLUME:
        ranked.sort(key=lambda t: t.quote_volume, reverse=True)
    return ranked[:limit]


def is_valid_symbol(info: Dict[str, Any]) -> bool:
    if info.get("status") != "TRADING" or info.get("quoteAsset") != "USDT":
        return False
    if str(info.get("baseAsset", "")).endswith(EXCLUDED_SUFFIXES):
        return False
    return info.get("symbol") not in EXCLUDED_PAIRS


class BinanceMarketData:
    """
    Async client for Binance public market data.

    Implements the scanner's candle source (``fetch_candles``). Use as an
    async context manager, or call ``connect()`` / ``disconnect()``.
    """

    def __init__(self,
                 base_url: str = BINANCE_DATA_API,
                 max_retries: int = 3,
                 backoff_seconds: float = 0.5,
                 timeout: float = 30.0,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        """
        Args:
            base_url: API root, without trailing slash
            max_retries: Attempts per request
            backoff_seconds: Base delay; attempt ``n`` waits ``backoff_seconds * 2**n``
            timeout: Per-request timeout in seconds
            transport: Optional httpx transport (tests use ``httpx.MockTransport``)
        """
        self.base_url = base_url.rstrip("/")
        self.max_retries = max_retries
        self.backoff_seconds = backoff_seconds
        self.timeout = timeout
        self.transport = transport
        self.session: Optional[httpx.AsyncClient] = None
        self.logger = get_market_data_logger()

        self._rate_limited_until = 0.0
        self._symbols_cache: Optional[Set[str]] = None
        self._symbols_cached_at = 0.0

    async def __aenter__(self):
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.disconnect()

    async def connect(self):
        if self.session is None:
            self.session = httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout),
                headers={"Accept": "application/json", "User-Agent": "marketscan/0.1"},
                transport=self.transport,
            )
            self.logger.info("Connected to market data API", base_url=self.base_url)

    async def disconnect(self):
        if self.session:
            try:
                await self.session.aclose()
            finally:
                self.session = None
                self.logger.info("Disconnected from market data API")

    # Rate limiting

    def is_rate_limited(self) -> bool:
        return time.monotonic() < self._rate_limited_until

    def rate_limit_wait_time(self) -> float:
        """Seconds until the current rate-limit window ends (0 when not limited)."""
        return max(0.0, self._rate_limited_until - time.monotonic())

    def _record_rate_limit(self, response: httpx.Response) -> None:
        try:
            retry_after = int(response.headers.get("Retry-After", DEFAULT_RETRY_AFTER))
        except ValueError:
            retry_after = DEFAULT_RETRY_AFTER
        self._rate_limited_until = time.monotonic() + retry_after
        self.logger.warning("Rate limited by market data API", retry_after=retry_after)

    async def _request(self, endpoint: str, params: Optional[Dict[str, Any]] = None) -> Any:
        """
        GET an endpoint and decode its JSON body.

        Raises:
            RuntimeError: When the client is not connected
            MarketDataError: When every attempt failed
        """
        if not self.session:
            raise RuntimeError("Market data client not connected. Call connect() first.")

        url = f"{self.base_url}/{endpoint.lstrip('/')}"
        last_error: Optional[Exception] = None

        for attempt in range(self.max_retries):
            wait = self.rate_limit_wait_time()
            if wait > 0:
                await asyncio.sleep(wait)

            try:
                response = await self.session.get(url, params=params)
                if response.status_code == 429:
                    self._record_rate_limit(response)
                    raise httpx.HTTPStatusError("Rate limited", request=response.request, response=response)
                response.raise_for_status()
                return response.json()
            except (httpx.HTTPError, ValueError) as e:
                last_error = e
                self.logger.warning("Market data request failed", url=url, attempt=attempt + 1, error=str(e))
                if attempt < self.max_retries - 1:
                    await asyncio.sleep(self.backoff_seconds * (2 ** attempt))

        raise MarketDataError(f"Request to {url} failed after {self.max_retries} attempts: {last_error}")

    # Endpoints

    async def fetch_valid_symbols(self) -> Set[str]:
        """Tradable USDT pairs, excluding leveraged tokens and stablecoin pairs. Cached for 5 minutes."""
        now = time.monotonic()
        if self._symbols_cache is not None and now - self._symbols_cached_at < SYMBOLS_CACHE_SECONDS:
            return self._symbols_cache

        data = await self._request("exchangeInfo")
        symbols = {info["symbol"] for info in data.get("symbols", []) if is_valid_symbol(info)}

        self._symbols_cache = symbols
        self._symbols_cached_at = now
        self.logger.info("Loaded valid symbols", count=len(symbols))
        return symbols

    async def fetch_ticker_24h(self) -> List[TickerData]:
        tickers, valid = await asyncio.gather(self._request("ticker/24hr"), self.fetch_valid_symbols())
        return [TickerData.model_validate(t) for t in tickers if t.get("symbol") in valid]

    async def fetch_candles(self, symbol: str, interval: str = "1h", limit: int = 500) -> List[Candle]:
        interval = interval.value if isinstance(interval, Timeframe) else interval
        started = time.perf_counter()
        rows = await self._request("klines", params={"symbol": symbol, "interval": interval, "limit": limit})
        candles = [parse_kline(row) for row in rows]
        log_performance_metrics(self.logger, "fetch_candles", (time.perf_counter() - started) * 1000,
                                symbol=symbol, interval=interval, candles=len(candles))
        return candles

    async def fetch_current_price(self, symbol: str) -> float:
        data = await self._request("ticker/price", params={"symbol": symbol})
        return float(data["price"])

    async def batch_fetch_candles(self,
                                  symbols: List[str],
                                  interval: str = "1h",
                                  limit: int = 500,
                                  batch_size: int = 10,
                                  batch_delay: float = 0.2) -> Dict[str, List[Candle]]:
        """Fetch candles for many symbols in concurrent batches; failed symbols are logged and left out."""
        results: Dict[str, List[Candle]] = {}

        for start in range(0, len(symbols), batch_size):
            batch = symbols[start:start + batch_size]
            fetched = await asyncio.gather(
                *(self.fetch_candles(symbol, interval, limit) for symbol in batch),
                return_exceptions=True,
            )
            for symbol, candles in zip(batch, fetched):
                if isinstance(candles, Exception):
                    self.logger.warning("Skipping symbol", symbol=symbol, error=str(candles))
                    continue
                results[symbol] = candles

            if start + batch_size < len(symbols) and batch_delay > 0:
                await asyncio.sleep(batch_delay)

        return results
