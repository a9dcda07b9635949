"""Candlestick pattern detectors.

Each detector looks at the last one to three candles and returns a plain
bool. Too few candles, or a zero-range candle where a ratio is needed,
yields False.
"""

from __future__ import annotations

from typing import Callable, Dict, List, NamedTuple

from .models import CandleInput, candles_to_frame


DOJI_THRESHOLD = 0.1  # body under 10% of range
BODY_THRESHOLD = 0.3  # "significant" body


class Bar(NamedTuple):
    open: float
    high: float
    low: float
    close: float

    @property
    def body(self) -> float:
        return abs(self.close - self.open)

    @property
    def range(self) -> float:
        return self.high - self.low

    @property
    def upper_wick(self) -> float:
        return self.high - max(self.open, self.close)

    @property
    def lower_wick(self) -> float:
        return min(self.open, self.close) - self.low

    @property
    def body_ratio(self) -> float:
        return self.body / self.range if self.range != 0 else 0.0

    @property
    def bullish(self) -> bool:
        return self.close > self.open

    @property
    def bearish(self) -> bool:
        return self.close < self.open

    @property
    def midpoint(self) -> float:
        return (self.open + self.close) / 2


def last_bars(candles: CandleInput, count: int) -> List[Bar]:
    """The last ``count`` candles as Bars, oldest first; empty when fewer are available."""
    frame = candles_to_frame(candles)
    if len(frame) < count:
        return []
    tail = frame[["open", "high", "low", "close"]].iloc[-count:].to_numpy(dtype=float)
    return [Bar(*(float(v) for v in row)) for row in tail]


def _in_downtrend(candle: Bar, prev: Bar) -> bool:
    return prev.bearish or candle.low < prev.low


def _in_uptrend(candle: Bar, prev: Bar) -> bool:
    return prev.bullish or candle.high > prev.high


def detect_doji(candles: CandleInput) -> bool:
    bars = last_bars(candles, 1)
    return bool(bars) and bars[0].body_ratio < DOJI_THRESHOLD


def detect_hammer(candles: CandleInput) -> bool:
    """Small body on top of a long lower wick, after a down-move."""
    bars = last_bars(candles, 2)
    if not bars:
        return False
    prev, candle = bars
    if candle.range == 0:
        return False

    shape = (
        candle.lower_wick >= candle.body * 2
        and candle.upper_wick < candle.body * 0.5
        and candle.body / candle.range < 0.4
    )
    return shape and _in_downtrend(candle, prev)


def detect_shooting_star(candles: CandleInput) -> bool:
    """Small body under a long upper wick, after an up-move."""
    bars = last_bars(candles, 2)
    if not bars:
        return False
    prev, candle = bars
    if candle.range == 0:
        return False

    shape = (
        candle.upper_wick >= candle.body * 2
        and candle.lower_wick < candle.body * 0.5
        and candle.body / candle.range < 0.4
    )
    return shape and _in_uptrend(candle, prev)


def detect_bullish_engulfing(candles: CandleInput) -> bool:
    bars = last_bars(candles, 2)
    if not bars:
        return False
    prev, curr = bars
    return (
        prev.bearish
        and curr.bullish
        and curr.open < prev.close
        and curr.close > prev.open
        and curr.body > prev.body
    )


def detect_bearish_engulfing(candles: CandleInput) -> bool:
    bars = last_bars(candles, 2)
    if not bars:
        return False
    prev, curr = bars
    return (
        prev.bullish
        and curr.bearish
        and curr.open > prev.close
        and curr.close < prev.open
        and curr.body > prev.body
    )


def detect_morning_star(candles: CandleInput) -> bool:
    bars = last_bars(candles, 3)
    if not bars:
        return False
    first, second, third = bars
    return (
        first.bearish
        and first.body_ratio > BODY_THRESHOLD
        and second.body_ratio < DOJI_THRESHOLD
        and second.close < first.close
        and third.bullish
        and third.body_ratio > BODY_THRESHOLD
        and third.close > first.midpoint
    )


def detect_evening_star(candles: CandleInput) -> bool:
    bars = last_bars(candles, 3)
    if not bars:
        return False
    first, second, third = bars
    return (
        first.bullish
        and first.body_ratio > BODY_THRESHOLD
        and second.body_ratio < DOJI_THRESHOLD
        and second.close > first.close
        and third.bearish
        and third.body_ratio > BODY_THRESHOLD
        and third.close < first.midpoint
    )


def detect_marubozu(candles: CandleInput) -> bool:
    bars = last_bars(candles, 1)
    if not bars or bars[0].range == 0:
        return False
    candle = bars[0]
    return (
        candle.body / candle.range > 0.9
        and candle.upper_wick / candle.range < 0.05
        and candle.lower_wick / candle.range < 0.05
    )


def detect_bullish_harami(candles: CandleInput) -> bool:
    bars = last_bars(candles, 2)
    if not bars:
        return False
    prev, curr = bars
    return (
        prev.bearish
        and curr.bullish
        and curr.body < prev.body
        and curr.open > prev.close
        and curr.close < prev.open
    )


def detect_bearish_harami(candles: CandleInput) -> bool:
    bars = last_bars(candles, 2)
    if not bars:
        return False
    prev, curr = bars
    return (
        prev.bullish
        and curr.bearish
        and curr.body < prev.body
        and curr.open < prev.close
        and curr.close > prev.open
    )


def detect_inverted_hammer(candles: CandleInput) -> bool:
    bars = last_bars(candles, 2)
    if not bars:
        return False
    prev, candle = bars
    shape = candle.upper_wick >= candle.body * 2 and candle.lower_wick < candle.body * 0.5
    return shape and _in_downtrend(candle, prev) and candle.bullish


def detect_three_white_soldiers(candles: CandleInput) -> bool:
    bars = last_bars(candles, 3)
    if not bars:
        return False
    first, second, third = bars
    return (
        all(b.bullish for b in bars)
        and second.close > first.close
        and third.close > second.close
        and first.open < second.open < first.close
        and second.open < third.open < second.close
        and all(b.body_ratio > BODY_THRESHOLD for b in bars)
    )


def detect_three_black_crows(candles: CandleInput) -> bool:
    bars = last_bars(candles, 3)
    if not bars:
        return False
    first, second, third = bars
    return (
        all(b.bearish for b in bars)
        and second.close < first.close
        and third.close < second.close
        and first.close < second.open < first.open
        and second.close < third.open < second.open
        and all(b.body_ratio > BODY_THRESHOLD for b in bars)
    )


def detect_inside_bar(candles: CandleInput) -> bool:
    bars = last_bars(candles, 2)
    if not bars:
        return False
    prev, curr = bars
    return curr.high < prev.high and curr.low > prev.low


def detect_spinning_top(candles: CandleInput) -> bool:
    """Small centred body with wicks on both sides."""
    bars = last_bars(candles, 1)
    if not bars or bars[0].range == 0:
        return False
    candle = bars[0]
    rng = candle.range
    return (
        candle.body / rng < 0.3
        and candle.upper_wick / rng > 0.2
        and candle.lower_wick / rng > 0.2
        and abs(candle.upper_wick - candle.lower_wick) / rng < 0.2
    )


PATTERN_DETECTORS: Dict[str, Callable[[CandleInput], bool]] = {
    "doji": detect_doji,
    "hammer": detect_hammer,
    "shooting_star": detect_shooting_star,
    "bullish_engulfing": detect_bullish_engulfing,
    "bearish_engulfing": detect_bearish_engulfing,
    "morning_star": detect_morning_star,
    "evening_star": detect_evening_star,
    "marubozu": detect_marubozu,
    "bullish_harami": detect_bullish_harami,
    "bearish_harami": detect_bearish_harami,
    "inverted_hammer": detect_inverted_hammer,
    "three_white_soldiers": detect_three_white_soldiers,
    "three_black_crows": detect_three_black_crows,
    "inside_bar": detect_inside_bar,
    "spinning_top": detect_spinning_top,
}


def detect_patterns(candles: CandleInput) -> Dict[str, bool]:
    """Run every pattern detector against the latest candles."""
    frame = candles_to_frame(candles)
    return {pattern_id: bool(detector(frame)) for pattern_id, detector in PATTERN_DETECTORS.items()}
