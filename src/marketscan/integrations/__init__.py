"""External market-data collaborators."""

from .binance import BinanceMarketData, MarketDataError, top_coins, tradingview_link

__all__ = ["BinanceMarketData", "MarketDataError", "top_coins", "tradingview_link"]
