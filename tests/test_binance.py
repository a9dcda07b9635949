"""Tests for the Binance market-data client against a mocked transport."""

import httpx
import pytest

from marketscan.integrations.binance import (
    BinanceMarketData,
    MarketDataError,
    is_valid_symbol,
    parse_kline,
    top_coins,
    tradingview_link,
)
from marketscan.scanner.models import ScanPool, TickerData, Timeframe


KLINE = [1700000000000, "100.0", "105.0", "99.0", "104.0", "12.5", 1700003599999, "1300.0", 42,
         "6.0", "624.0", "0"]

EXCHANGE_INFO = {
    "symbols": [
        {"symbol": "BTCUSDT", "status": "TRADING", "baseAsset": "BTC", "quoteAsset": "USDT"},
        {"symbol": "ETHUSDT", "status": "TRADING", "baseAsset": "ETH", "quoteAsset": "USDT"},
        {"symbol": "BTCUPUSDT", "status": "TRADING", "baseAsset": "BTCUP", "quoteAsset": "USDT"},
        {"symbol": "USDCUSDT", "status": "TRADING", "baseAsset": "USDC", "quoteAsset": "USDT"},
        {"symbol": "ETHBTC", "status": "TRADING", "baseAsset": "ETH", "quoteAsset": "BTC"},
        {"symbol": "OLDUSDT", "status": "BREAK", "baseAsset": "OLD", "quoteAsset": "USDT"},
    ]
}

TICKERS = [
    {"symbol": "BTCUSDT", "priceChange": "500", "priceChangePercent": "1.5", "lastPrice": "34000",
     "volume": "100", "quoteVolume": "3400000"},
    {"symbol": "BTCUPUSDT", "priceChange": "1", "priceChangePercent": "9.0", "lastPrice": "10",
     "volume": "5", "quoteVolume": "50"},
]


def build_client(handler, **kwargs) -> BinanceMarketData:
    kwargs.setdefault("backoff_seconds", 0)
    return BinanceMarketData(transport=httpx.MockTransport(handler), **kwargs)


def routes(request: httpx.Request) -> httpx.Response:
    path = request.url.path
    if path.endswith("/klines"):
        return httpx.Response(200, json=[KLINE, KLINE])
    if path.endswith("/exchangeInfo"):
        return httpx.Response(200, json=EXCHANGE_INFO)
    if path.endswith("/ticker/24hr"):
        return httpx.Response(200, json=TICKERS)
    if path.endswith("/ticker/price"):
        return httpx.Response(200, json={"symbol": request.url.params["symbol"], "price": "123.45"})
    return httpx.Response(404)


class TestHelpers:

    def test_parse_kline(self):
        candle = parse_kline(KLINE)
        assert candle.open_time == 1700000000000
        assert candle.open == 100.0
        assert candle.close == 104.0
        assert candle.volume == 12.5
        assert candle.quote_volume == 1300.0
        assert candle.trades == 42

    def test_symbol_filter(self):
        valid = [info["symbol"] for info in EXCHANGE_INFO["symbols"] if is_valid_symbol(info)]
        assert valid == ["BTCUSDT", "ETHUSDT"]

    def test_tradingview_link(self):
        assert tradingview_link("BTCUSDT", "4h") == \
            "https://www.tradingview.com/chart/?symbol=BINANCE:BTCUSDT&interval=240"
        assert tradingview_link("ETHUSDT", Timeframe.DAILY).endswith("interval=D")
        assert tradingview_link("ETHUSDT", "2h").endswith("interval=60")

    def test_top_coins(self):
        tickers = [
            TickerData(symbol="A", price_change_percent=5.0, quote_volume=1.0),
            TickerData(symbol="B", price_change_percent=-7.0, quote_volume=3.0),
            TickerData(symbol="C", price_change_percent=1.0, quote_volume=2.0),
        ]
        assert [t.symbol for t in top_coins(tickers, ScanPool.GAINERS)] == ["A", "C", "B"]
        assert [t.symbol for t in top_coins(tickers, ScanPool.LOSERS)] == ["B", "C", "A"]
        assert [t.symbol for t in top_coins(tickers, ScanPool.VOLUME, limit=2)] == ["B", "C"]


class TestBinanceMarketData:
    """Endpoint calls over a mocked transport."""

    @pytest.mark.asyncio
    async def test_fetch_candles(self):
        seen = []

        def handler(request):
            seen.append(dict(request.url.params))
            return routes(request)

        async with build_client(handler) as client:
            candles = await client.fetch_candles("BTCUSDT", Timeframe.FOUR_HOURS, limit=2)

        assert len(candles) == 2
        assert candles[0].high == 105.0
        assert seen == [{"symbol": "BTCUSDT", "interval": "4h", "limit": "2"}]

    @pytest.mark.asyncio
    async def test_ticker_filtered_to_valid_symbols(self):
        async with build_client(routes) as client:
            tickers = await client.fetch_ticker_24h()

        assert [t.symbol for t in tickers] == ["BTCUSDT"]
        assert tickers[0].price_change_percent == 1.5
        assert tickers[0].quote_volume == 3400000.0

    @pytest.mark.asyncio
    async def test_valid_symbols_cached(self):
        calls = []

        def handler(request):
            calls.append(request.url.path)
            return routes(request)

        async with build_client(handler) as client:
            first = await client.fetch_valid_symbols()
            second = await client.fetch_valid_symbols()

        assert first == second == {"BTCUSDT", "ETHUSDT"}
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_current_price(self):
        async with build_client(routes) as client:
            assert await client.fetch_current_price("BTCUSDT") == 123.45

    @pytest.mark.asyncio
    async def test_retries_then_succeeds(self):
        attempts = []

        def flaky(request):
            attempts.append(1)
            if len(attempts) < 3:
                return httpx.Response(500)
            return routes(request)

        async with build_client(flaky, max_retries=3) as client:
            candles = await client.fetch_candles("BTCUSDT")

        assert len(candles) == 2
        assert len(attempts) == 3

    @pytest.mark.asyncio
    async def test_gives_up_after_retries(self):
        async with build_client(lambda request: httpx.Response(503), max_retries=2) as client:
            with pytest.raises(MarketDataError):
                await client.fetch_candles("BTCUSDT")

    @pytest.mark.asyncio
    async def test_rate_limit_recorded(self):
        client = build_client(lambda request: httpx.Response(429, headers={"Retry-After": "30"}), max_retries=1)
        await client.connect()
        try:
            with pytest.raises(MarketDataError):
                await client.fetch_candles("BTCUSDT")
            assert client.is_rate_limited()
            assert 0 < client.rate_limit_wait_time() <= 30
        finally:
            await client.disconnect()

    @pytest.mark.asyncio
    async def test_requires_connection(self):
        client = build_client(routes)
        with pytest.raises(RuntimeError):
            await client.fetch_candles("BTCUSDT")

    @pytest.mark.asyncio
    async def test_batch_skips_failures(self):
        def handler(request):
            if request.url.params["symbol"] == "BADUSDT":
                return httpx.Response(400)
            return routes(request)

        async with build_client(handler, max_retries=1) as client:
            result = await client.batch_fetch_candles(["BTCUSDT", "BADUSDT", "ETHUSDT"],
                                                      batch_size=2, batch_delay=0)

        assert sorted(result) == ["BTCUSDT", "ETHUSDT"]
        assert len(result["ETHUSDT"]) == 2
