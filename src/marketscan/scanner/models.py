"""Scanner data model: candles, conditions, tickers and scan results."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional, Sequence, Union

import pandas as pd
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


CANDLE_COLUMNS = [
    "open_time", "open", "high", "low", "close",
    "volume", "close_time", "quote_volume", "trades",
]


class Timeframe(str, Enum):
    """Supported kline intervals."""
    ONE_MINUTE = "1m"
    THREE_MINUTES = "3m"
    FIVE_MINUTES = "5m"
    FIFTEEN_MINUTES = "15m"
    ONE_HOUR = "1h"
    FOUR_HOURS = "4h"
    DAILY = "1d"


class ScanPool(str, Enum):
    """Universe a scan draws its symbols from."""
    LOSERS = "losers"
    GAINERS = "gainers"
    VOLUME = "volume"
    FAVORITES = "favorites"


class FeatureCategory(str, Enum):
    INDICATOR = "indicator"
    PATTERN = "pattern"
    SMC = "smc"


class ConditionMode(str, Enum):
    """Which optional fields of a condition are active."""
    RANGE = "range"
    COMPARISON = "comparison"
    CROSS = "cross"
    VALUE = "value"


class ComparisonOperator(str, Enum):
    GT = ">"
    LT = "<"
    EQ = "="
    GTE = ">="
    LTE = "<="


class CrossType(str, Enum):
    CROSSOVER = "crossover"
    CROSSUNDER = "crossunder"


class PricePosition(str, Enum):
    ABOVE = "above"
    BELOW = "below"


class CamelModel(BaseModel):
    """Base model accepting both camelCase (wire) and snake_case field names."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Candle(CamelModel):
    """One fixed-interval OHLCV bar. Immutable once produced."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    open_time: int = Field(0, description="Bar open time, epoch milliseconds")
    open: float = Field(..., description="Open price")
    high: float = Field(..., description="High price")
    low: float = Field(..., description="Low price")
    close: float = Field(..., description="Close price")
    volume: float = Field(0.0, description="Base asset volume")
    close_time: int = Field(0, description="Bar close time, epoch milliseconds")
    quote_volume: float = Field(0.0, description="Quote asset volume")
    trades: int = Field(0, description="Number of trades")

    @property
    def is_bullish(self) -> bool:
        return self.close > self.open

    @property
    def is_bearish(self) -> bool:
        return self.close < self.open


CandleInput = Union[pd.DataFrame, Sequence[Candle]]


def candles_to_frame(candles: CandleInput) -> pd.DataFrame:
    """Normalize a candle sequence (or an existing frame) to a DataFrame with a RangeIndex."""
    if isinstance(candles, pd.DataFrame):
        if isinstance(candles.index, pd.RangeIndex) and candles.index.start == 0:
            return candles
        return candles.reset_index(drop=True)

    if len(candles) == 0:
        return pd.DataFrame({col: pd.Series(dtype=float) for col in CANDLE_COLUMNS})

    return pd.DataFrame(
        [[c.open_time, c.open, c.high, c.low, c.close, c.volume, c.close_time, c.quote_volume, c.trades]
         for c in candles],
        columns=CANDLE_COLUMNS,
    )


def frame_to_candles(frame: pd.DataFrame) -> List[Candle]:
    """Inverse of candles_to_frame; missing optional columns default to zero."""
    missing = [col for col in ("open", "high", "low", "close") if col not in frame.columns]
    if missing:
        raise ValueError(f"candle frame is missing columns: {', '.join(missing)}")

    records = frame.to_dict("records")
    return [
        Candle(
            open_time=int(r.get("open_time", 0) or 0),
            open=float(r["open"]),
            high=float(r["high"]),
            low=float(r["low"]),
            close=float(r["close"]),
            volume=float(r.get("volume", 0.0) or 0.0),
            close_time=int(r.get("close_time", 0) or 0),
            quote_volume=float(r.get("quote_volume", 0.0) or 0.0),
            trades=int(r.get("trades", 0) or 0),
        )
        for r in records
    ]


class EMAConfig(CamelModel):
    """One EMA/price-position check inside an EMA condition."""

    id: str = Field("", description="Client-side identifier")
    period: int = Field(..., ge=1, description="EMA period")
    enabled: bool = Field(True, description="Whether this check participates")
    price_position: Optional[PricePosition] = Field(None, description="Required price position; None reports the value only")


class ScanCondition(CamelModel):
    """A user-authored rule against one catalog feature."""

    id: str = Field("", description="Client-side identifier")
    feature: str = Field(..., description="Feature catalog id")
    category: FeatureCategory = Field(FeatureCategory.INDICATOR, description="Feature category")
    mode: ConditionMode = Field(ConditionMode.VALUE, description="Evaluation mode")
    enabled: bool = Field(True, description="Disabled conditions are ignored")

    # Range mode
    min_value: Optional[float] = None
    max_value: Optional[float] = None

    # Comparison mode
    operator: Optional[ComparisonOperator] = None
    compare_value: Optional[float] = None

    # Cross mode
    cross_type: Optional[CrossType] = None

    period: Optional[int] = Field(None, ge=1, description="Period for MA-based and RSI features")
    price_position: Optional[PricePosition] = None

    # RSI
    rsi_regular_divergence: bool = False
    rsi_hidden_divergence: bool = False

    # EMA / SMA
    ema_configs: List[EMAConfig] = Field(default_factory=list)
    ema_crossover: bool = False
    ema_crossover_fast: Optional[int] = Field(None, ge=1)
    ema_crossover_slow: Optional[int] = Field(None, ge=1)

    # Stochastic
    stoch_overbought: Optional[float] = None
    stoch_oversold: Optional[float] = None

    # MACD
    macd_fast: Optional[int] = Field(None, ge=1)
    macd_slow: Optional[int] = Field(None, ge=1)
    macd_signal: Optional[int] = Field(None, ge=1)

    # Bollinger
    bb_period: Optional[int] = Field(None, ge=2)
    bb_std_dev: Optional[float] = Field(None, gt=0)


class TickerData(CamelModel):
    """24h ticker statistics for one symbol."""

    symbol: str
    price_change: float = 0.0
    price_change_percent: float = 0.0
    last_price: float = 0.0
    volume: float = 0.0
    quote_volume: float = 0.0


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ScanResult(CamelModel):
    """One matched symbol snapshot produced at scan completion."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    symbol: str = Field(..., description="Trading pair")
    price: float = Field(..., description="Last close on the primary timeframe")
    price_change_24h: float = Field(0.0, description="24h change, percent")
    volume_24h: float = Field(0.0, description="24h quote volume")
    match_reasons: List[str] = Field(default_factory=list, description="Reasons from the primary timeframe")
    indicator_values: Dict[str, float] = Field(default_factory=dict, description="Indicator preview")
    timestamp: datetime = Field(default_factory=_utcnow, description="Scan completion time")
    is_bullish: bool = Field(True, description="Bias from determine_bullishness")
    timeframes: List[Timeframe] = Field(default_factory=list, description="Timeframes the symbol matched on")
    trend: str = Field("sideways", description="Price vs EMA20/EMA50 on the primary timeframe: up, down or sideways")


class ScannerConfig(CamelModel):
    """A runnable scan: rule-set, universe and fetch settings."""

    name: str = Field("Custom Scan", description="Scan name")
    conditions: List[ScanCondition] = Field(default_factory=list, description="Rule-set, ANDed")
    timeframe: Timeframe = Field(Timeframe.ONE_HOUR, description="Primary timeframe")
    multi_timeframes: List[Timeframe] = Field(default_factory=list, description="Confluence timeframes; overrides timeframe")
    pool: ScanPool = Field(ScanPool.VOLUME, description="Symbol universe")
    pool_size: int = Field(100, ge=1, description="Symbols drawn from the pool")
    favorites: List[str] = Field(default_factory=list, description="Symbols for the favorites pool")
    candle_limit: int = Field(500, ge=1, le=1000, description="Klines fetched per symbol")
    min_candles: int = Field(20, ge=1, description="Symbols with fewer candles are skipped")
    batch_size: int = Field(10, ge=1, description="Concurrent kline fetches per batch")
    batch_delay_seconds: float = Field(0.2, ge=0, description="Pause between fetch batches")

    def enabled_conditions(self) -> List[ScanCondition]:
        return [c for c in self.conditions if c.enabled]

    def scan_timeframes(self) -> List[Timeframe]:
        return list(self.multi_timeframes) if self.multi_timeframes else [self.timeframe]
