"""Smart-money-concepts structure detectors.

Built on swing-point detection: a swing high is a bar whose high is strictly
above every other high within ``lookback`` bars on both sides (mirror for
swing lows). All detectors are boolean and return False when the history is
shorter than their minimum.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Sequence, Tuple

import pandas as pd

from .models import CandleInput, candles_to_frame


EQUAL_LEVEL_TOLERANCE = 0.001
VOLUME_SPIKE_MULTIPLIER = 2.0

DIVERGENCE_BULLISH = "bullish"
DIVERGENCE_BEARISH = "bearish"
DIVERGENCE_NONE = "none"


@dataclass(frozen=True)
class SwingPoint:
    index: int
    price: float
    kind: str  # "high" or "low"


@dataclass(frozen=True)
class Columns:
    """Plain-float OHLCV columns shared by the detectors of one call."""
    open: List[float]
    high: List[float]
    low: List[float]
    close: List[float]
    volume: List[float]

    def __len__(self) -> int:
        return len(self.close)

    def head(self, count: int) -> "Columns":
        return Columns(
            self.open[:count], self.high[:count], self.low[:count], self.close[:count], self.volume[:count]
        )


def columns(candles: CandleInput) -> Columns:
    frame = candles_to_frame(candles)
    return Columns(
        open=frame["open"].astype(float).tolist(),
        high=frame["high"].astype(float).tolist(),
        low=frame["low"].astype(float).tolist(),
        close=frame["close"].astype(float).tolist(),
        volume=frame["volume"].astype(float).tolist() if "volume" in frame else [0.0] * len(frame),
    )


def _as_columns(candles) -> Columns:
    return candles if isinstance(candles, Columns) else columns(candles)


def _drop_last(cols: Columns) -> Columns:
    return cols.head(len(cols) - 1)


def find_swing_points(candles, lookback: int = 5) -> List[SwingPoint]:
    """Swing highs and lows in index order; a bar can be both."""
    cols = _as_columns(candles)
    highs, lows = cols.high, cols.low
    points: List[SwingPoint] = []

    for i in range(lookback, len(highs) - lookback):
        window = [j for j in range(i - lookback, i + lookback + 1) if j != i]
        if all(highs[j] < highs[i] for j in window):
            points.append(SwingPoint(i, highs[i], "high"))
        if all(lows[j] > lows[i] for j in window):
            points.append(SwingPoint(i, lows[i], "low"))

    return points


def _of_kind(points: Sequence[SwingPoint], kind: str) -> List[SwingPoint]:
    return [p for p in points if p.kind == kind]


# Break of structure

def detect_bullish_bos(candles: CandleInput) -> bool:
    """Close breaks above the most recent confirmed swing high."""
    cols = _as_columns(candles)
    if len(cols) < 10:
        return False
    highs = _of_kind(find_swing_points(_drop_last(cols), 3), "high")
    if not highs:
        return False
    return cols.close[-1] > highs[-1].price


def detect_bearish_bos(candles: CandleInput) -> bool:
    cols = _as_columns(candles)
    if len(cols) < 10:
        return False
    lows = _of_kind(find_swing_points(_drop_last(cols), 3), "low")
    if not lows:
        return False
    return cols.close[-1] < lows[-1].price


# Change of character

def detect_bullish_choch(candles: CandleInput) -> bool:
    """The last two swing highs (among the last six swings) were falling and close breaks above the latest."""
    cols = _as_columns(candles)
    if len(cols) < 15:
        return False
    recent = find_swing_points(_drop_last(cols), 3)[-6:]
    highs = _of_kind(recent, "high")
    if len(highs) < 2:
        return False
    prev_high, last_high = highs[-2], highs[-1]
    return last_high.price < prev_high.price and cols.close[-1] > last_high.price


def detect_bearish_choch(candles: CandleInput) -> bool:
    cols = _as_columns(candles)
    if len(cols) < 15:
        return False
    recent = find_swing_points(_drop_last(cols), 3)[-6:]
    lows = _of_kind(recent, "low")
    if len(lows) < 2:
        return False
    prev_low, last_low = lows[-2], lows[-1]
    return last_low.price > prev_low.price and cols.close[-1] < last_low.price


# Order blocks

def _order_block(cols: Columns, bullish: bool) -> bool:
    n = len(cols)
    if n < 5:
        return False
    price = cols.close[-1]

    for i in range(n - 4, max(0, n - 10) - 1, -1):
        block_open, block_close = cols.open[i], cols.close[i]
        block_high, block_low = cols.high[i], cols.low[i]
        later = cols.close[i + 1:]

        if bullish and block_close < block_open:
            broke_away = any(c > block_high for c in later)
        elif not bullish and block_close > block_open:
            broke_away = any(c < block_low for c in later)
        else:
            continue

        if broke_away and block_low <= price <= block_high:
            return True

    return False


def detect_bullish_order_block(candles: CandleInput) -> bool:
    """A bearish candle within the last ten bars was followed by a close above its high, and price is back inside it."""
    return _order_block(_as_columns(candles), bullish=True)


def detect_bearish_order_block(candles: CandleInput) -> bool:
    return _order_block(_as_columns(candles), bullish=False)


# Fair value gaps

def _fair_value_gap(cols: Columns, bullish: bool) -> bool:
    n = len(cols)
    if n < 3:
        return False
    price = cols.close[-1]

    for i in range(n - 1, max(2, n - 5) - 1, -1):
        first, middle = i - 2, i - 1
        if bullish:
            gap = cols.low[i] > cols.high[first] and cols.close[middle] > cols.open[middle]
            inside = cols.high[first] <= price <= cols.low[i]
        else:
            gap = cols.high[i] < cols.low[first] and cols.close[middle] < cols.open[middle]
            inside = cols.high[i] <= price <= cols.low[first]

        if gap and (inside or i == n - 1):
            return True

    return False


def detect_bullish_fvg(candles: CandleInput) -> bool:
    return _fair_value_gap(_as_columns(candles), bullish=True)


def detect_bearish_fvg(candles: CandleInput) -> bool:
    return _fair_value_gap(_as_columns(candles), bullish=False)


# Liquidity sweeps

def detect_liquidity_sweep_high(candles: CandleInput) -> bool:
    """Wick above the prior (up to 20-bar) high, close back below it."""
    cols = _as_columns(candles)
    n = len(cols)
    if n < 10:
        return False
    lookback = min(20, n - 1)
    previous_high = max(cols.high[n - 1 - lookback:n - 1])
    return cols.high[-1] > previous_high and cols.close[-1] < previous_high


def detect_liquidity_sweep_low(candles: CandleInput) -> bool:
    cols = _as_columns(candles)
    n = len(cols)
    if n < 10:
        return False
    lookback = min(20, n - 1)
    previous_low = min(cols.low[n - 1 - lookback:n - 1])
    return cols.low[-1] < previous_low and cols.close[-1] > previous_low


# Equal highs / lows

def _has_equal_levels(points: Sequence[SwingPoint], tolerance: float) -> bool:
    for i in range(len(points) - 1):
        for j in range(i + 1, len(points)):
            base = points[i].price
            if base != 0 and abs(base - points[j].price) / base < tolerance:
                return True
    return False


def detect_equal_highs(candles: CandleInput, tolerance: float = EQUAL_LEVEL_TOLERANCE) -> bool:
    """Two of the last five swing highs sit within ``tolerance`` of each other."""
    cols = _as_columns(candles)
    if len(cols) < 10:
        return False
    highs = _of_kind(find_swing_points(cols, 3), "high")[-5:]
    return _has_equal_levels(highs, tolerance)


def detect_equal_lows(candles: CandleInput, tolerance: float = EQUAL_LEVEL_TOLERANCE) -> bool:
    cols = _as_columns(candles)
    if len(cols) < 10:
        return False
    lows = _of_kind(find_swing_points(cols, 3), "low")[-5:]
    return _has_equal_levels(lows, tolerance)


# Premium / discount

def _range_midpoint(cols: Columns) -> Optional[float]:
    n = len(cols)
    if n < 20:
        return None
    lookback = min(50, n)
    return (max(cols.high[-lookback:]) + min(cols.low[-lookback:])) / 2


def detect_premium_zone(candles: CandleInput) -> bool:
    cols = _as_columns(candles)
    midpoint = _range_midpoint(cols)
    return midpoint is not None and cols.close[-1] > midpoint


def detect_discount_zone(candles: CandleInput) -> bool:
    cols = _as_columns(candles)
    midpoint = _range_midpoint(cols)
    return midpoint is not None and cols.close[-1] < midpoint


def detect_breaker_block(candles: CandleInput) -> bool:
    """A bullish candle that was respected, then closed through, and price is back inside it."""
    cols = _as_columns(candles)
    n = len(cols)
    if n < 10:
        return False
    price = cols.close[-1]

    for i in range(n - 5, max(0, n - 15) - 1, -1):
        if not cols.close[i] > cols.open[i]:
            continue
        block_high, block_low = cols.high[i], cols.low[i]
        later = range(i + 1, n)

        respected = any(cols.low[j] <= block_high and cols.close[j] > block_low for j in later)
        broken = any(cols.close[j] < block_low for j in later)

        if respected and broken and block_low <= price <= block_high:
            return True

    return False


def detect_volume_spike(candles: CandleInput, multiplier: float = VOLUME_SPIKE_MULTIPLIER) -> bool:
    """Current volume is at least ``multiplier`` times the mean of the previous 20 non-zero volumes."""
    cols = _as_columns(candles)
    n = len(cols)
    if n < 20:
        return False

    current = cols.volume[-1]
    if not current:
        return False

    lookback = min(20, n - 1)
    volumes = [v for v in cols.volume[n - 1 - lookback:n - 1] if v > 0]
    if len(volumes) < 5:
        return False

    return current >= (sum(volumes) / len(volumes)) * multiplier


# Trend

def _last_two(points: Sequence[SwingPoint]) -> Optional[Tuple[SwingPoint, SwingPoint]]:
    return (points[-2], points[-1]) if len(points) >= 2 else None


def detect_uptrend(candles: CandleInput) -> bool:
    """Last two swing highs and last two swing lows are both strictly rising."""
    cols = _as_columns(candles)
    if len(cols) < 15:
        return False
    swings = find_swing_points(cols, 3)
    highs = _last_two(_of_kind(swings, "high"))
    lows = _last_two(_of_kind(swings, "low"))
    if highs is None or lows is None:
        return False
    return highs[1].price > highs[0].price and lows[1].price > lows[0].price


def detect_downtrend(candles: CandleInput) -> bool:
    cols = _as_columns(candles)
    if len(cols) < 15:
        return False
    swings = find_swing_points(cols, 3)
    highs = _last_two(_of_kind(swings, "high"))
    lows = _last_two(_of_kind(swings, "low"))
    if highs is None or lows is None:
        return False
    return highs[1].price < highs[0].price and lows[1].price < lows[0].price


# RSI divergence

def detect_rsi_divergence(
    candles: CandleInput,
    rsi_values: Sequence[float],
    lookback: int = 3,
) -> Tuple[str, str]:
    """Compare the last two swing lows and swing highs of price against RSI at the same bars.

    Returns ``(regular, hidden)``, each ``bullish``, ``bearish`` or ``none``.
    Regular bullish: lower price low with a higher RSI low. Regular bearish:
    higher price high with a lower RSI high. Hidden divergence is the mirror
    (higher low with lower RSI low, lower high with higher RSI high). When
    both sides fire, the pair ending on the more recent bar wins; when both
    end on the same bar (an outside bar that is both swings) the result is
    ``none``.
    """
    cols = _as_columns(candles)
    rsi_list = list(rsi_values.tolist() if isinstance(rsi_values, pd.Series) else rsi_values)
    if len(cols) < 20 or len(rsi_list) != len(cols):
        return DIVERGENCE_NONE, DIVERGENCE_NONE

    swings = find_swing_points(cols, lookback)
    lows = _last_two(_of_kind(swings, "low"))
    highs = _last_two(_of_kind(swings, "high"))

    regular: List[Tuple[int, str]] = []
    hidden: List[Tuple[int, str]] = []

    if lows is not None:
        a, b = lows
        ra, rb = rsi_list[a.index], rsi_list[b.index]
        if b.price < a.price and rb > ra:
            regular.append((b.index, DIVERGENCE_BULLISH))
        elif b.price > a.price and rb < ra:
            hidden.append((b.index, DIVERGENCE_BULLISH))

    if highs is not None:
        a, b = highs
        ra, rb = rsi_list[a.index], rsi_list[b.index]
        if b.price > a.price and rb < ra:
            regular.append((b.index, DIVERGENCE_BEARISH))
        elif b.price < a.price and rb > ra:
            hidden.append((b.index, DIVERGENCE_BEARISH))

    def _latest(found: List[Tuple[int, str]]) -> str:
        if not found:
            return DIVERGENCE_NONE
        last = max(index for index, _ in found)
        sides = {side for index, side in found if index == last}
        return sides.pop() if len(sides) == 1 else DIVERGENCE_NONE

    return _latest(regular), _latest(hidden)


STRUCTURE_DETECTORS: Dict[str, Callable[[Columns], bool]] = {
    "bos_bullish": detect_bullish_bos,
    "bos_bearish": detect_bearish_bos,
    "choch_bullish": detect_bullish_choch,
    "choch_bearish": detect_bearish_choch,
    "bullish_ob": detect_bullish_order_block,
    "bearish_ob": detect_bearish_order_block,
    "bullish_fvg": detect_bullish_fvg,
    "bearish_fvg": detect_bearish_fvg,
    "liquidity_sweep_high": detect_liquidity_sweep_high,
    "liquidity_sweep_low": detect_liquidity_sweep_low,
    "equal_highs": detect_equal_highs,
    "equal_lows": detect_equal_lows,
    "premium_zone": detect_premium_zone,
    "discount_zone": detect_discount_zone,
    "breaker_block": detect_breaker_block,
    "volume_spike": detect_volume_spike,
    "uptrend": detect_uptrend,
    "downtrend": detect_downtrend,
}


def detect_structure(candles: CandleInput) -> Dict[str, bool]:
    """Run every structure detector against the candle history."""
    cols = _as_columns(candles)
    return {structure_id: bool(detector(cols)) for structure_id, detector in STRUCTURE_DETECTORS.items()}
