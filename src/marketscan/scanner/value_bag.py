"""Indicator value bag.

``compute_indicator_bag`` runs the indicator, pattern and structure
libraries over one candle window and returns a read-only ``ValueBag``.
Numeric indicators are stored as ``SeriesValue(latest, series)`` so that
crossover checks can look at the previous bar; booleans and enum strings
are stored as-is. A fresh bag is built on every call.
"""

from __future__ import annotations

import math
from collections.abc import Mapping
from enum import Enum
from typing import Dict, Iterable, Iterator, List, NamedTuple, Optional, Sequence, Union

import numpy as np
import pandas as pd

from . import indicators as ind
from .catalog import validate_catalog
from .models import CandleInput, ScanCondition, candles_to_frame
from .patterns import PATTERN_DETECTORS, detect_patterns
from .structure import STRUCTURE_DETECTORS, columns, detect_rsi_divergence, detect_structure


class Cross(str, Enum):
    """Direction of a crossing between the previous and the current bar."""
    BULLISH = "bullish"
    BEARISH = "bearish"
    NONE = "none"


class SeriesValue(NamedTuple):
    latest: float
    series: pd.Series


BagValue = Union[SeriesValue, float, bool, str]


DEFAULT_RSI_PERIOD = 14
DEFAULT_MACD = (12, 26, 9)
DEFAULT_BOLLINGER = (20, 2.0)
DEFAULT_EMA_PERIODS = (20, 50, 200)
DEFAULT_SMA_PERIODS = (20, 50)

NUMERIC_KEYS = (
    "price", "rsi",
    "ema_20", "ema_50", "ema_200", "sma_20", "sma_50",
    "macd_line", "macd_signal", "macd_histogram",
    "bb_upper", "bb_lower", "bb_basis", "bb_bandwidth",
    "stoch_k", "stoch_d",
    "adx", "cci", "atr", "vwap", "mfi", "williams_r", "roc", "psar",
)
POSITION_KEYS = (
    "price_vs_ema20", "price_vs_sma20", "price_vs_bb_upper",
    "price_vs_bb_lower", "price_vs_vwap", "price_vs_psar",
)
CROSS_KEYS = (
    "macd_cross", "stoch_cross", "price_cross_vwap", "price_cross_psar",
    "price_cross_bb_upper", "price_cross_bb_lower",
)
DIVERGENCE_KEYS = ("rsi_divergence_regular", "rsi_divergence_hidden")

DEFAULT_KEYS = frozenset(
    NUMERIC_KEYS + POSITION_KEYS + CROSS_KEYS + DIVERGENCE_KEYS
    + ("prev_price", "trend")
    + tuple(PATTERN_DETECTORS) + tuple(STRUCTURE_DETECTORS)
)


class ValueBag(Mapping):
    """Read-only mapping from feature key to computed value."""

    def __init__(self, values: Dict[str, BagValue]):
        self._values = dict(values)

    def __getitem__(self, key: str) -> BagValue:
        return self._values[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def __repr__(self) -> str:
        return f"ValueBag({len(self._values)} keys)"

    def number(self, key: str) -> Optional[float]:
        """Latest numeric value, or None when the key is absent or not numeric."""
        value = self._values.get(key)
        if isinstance(value, SeriesValue):
            return value.latest
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            return None
        return float(value)

    def series(self, key: str) -> Optional[pd.Series]:
        value = self._values.get(key)
        return value.series if isinstance(value, SeriesValue) else None

    def flag(self, key: str) -> bool:
        return self._values.get(key) is True

    def text(self, key: str, default: str = Cross.NONE.value) -> str:
        value = self._values.get(key)
        if isinstance(value, Enum):
            return value.value
        return value if isinstance(value, str) else default

    def as_dict(self) -> Dict[str, Union[float, bool, str]]:
        """Flatten to plain latest values."""
        flat: Dict[str, Union[float, bool, str]] = {}
        for key, value in self._values.items():
            if isinstance(value, SeriesValue):
                flat[key] = value.latest
            elif isinstance(value, Enum):
                flat[key] = value.value
            else:
                flat[key] = value
        return flat


# Key helpers; the evaluator resolves condition settings through the same names

class MACDKeys(NamedTuple):
    line: str
    signal: str
    histogram: str
    cross: str


class BollingerKeys(NamedTuple):
    upper: str
    lower: str
    basis: str
    bandwidth: str
    cross_upper: str
    cross_lower: str
    position_upper: str
    position_lower: str


def ema_key(period: int) -> str:
    return f"ema_{period}"


def sma_key(period: int) -> str:
    return f"sma_{period}"


def rsi_key(period: Optional[int] = None) -> str:
    if period is None or period == DEFAULT_RSI_PERIOD:
        return "rsi"
    return f"rsi_{period}"


def macd_settings(condition: Optional[ScanCondition] = None):
    fast, slow, signal = DEFAULT_MACD
    if condition is not None:
        fast = condition.macd_fast or fast
        slow = condition.macd_slow or slow
        signal = condition.macd_signal or signal
    return fast, slow, signal


def macd_keys(fast: int = 12, slow: int = 26, signal: int = 9) -> MACDKeys:
    if (fast, slow, signal) == DEFAULT_MACD:
        return MACDKeys("macd_line", "macd_signal", "macd_histogram", "macd_cross")
    prefix = f"macd_{fast}_{slow}_{signal}"
    return MACDKeys(f"{prefix}_line", f"{prefix}_signal", f"{prefix}_histogram", f"{prefix}_cross")


def bollinger_settings(condition: Optional[ScanCondition] = None):
    period, std_dev = DEFAULT_BOLLINGER
    if condition is not None:
        period = condition.bb_period or period
        std_dev = condition.bb_std_dev or std_dev
    return period, float(std_dev)


def bb_keys(period: int = 20, std_dev: float = 2.0) -> BollingerKeys:
    prefix = "bb" if (period, float(std_dev)) == DEFAULT_BOLLINGER else f"bb_{period}_{std_dev:g}"
    return BollingerKeys(
        upper=f"{prefix}_upper",
        lower=f"{prefix}_lower",
        basis=f"{prefix}_basis",
        bandwidth=f"{prefix}_bandwidth",
        cross_upper=f"price_cross_{prefix}_upper",
        cross_lower=f"price_cross_{prefix}_lower",
        position_upper=f"price_vs_{prefix}_upper",
        position_lower=f"price_vs_{prefix}_lower",
    )


def moving_average_periods(condition: ScanCondition) -> List[int]:
    """Periods an EMA/SMA condition refers to, in first-seen order."""
    periods: List[int] = []
    for config in condition.ema_configs:
        if config.enabled:
            periods.append(config.period)
    if condition.ema_crossover:
        periods.extend(p for p in (condition.ema_crossover_fast, condition.ema_crossover_slow) if p)
    if condition.period:
        periods.append(condition.period)
    return list(dict.fromkeys(periods))


def detect_crossover(fast: Sequence[float], slow: Sequence[float], index: Optional[int] = None) -> Cross:
    """Classify the fast/slow crossing between ``index - 1`` and ``index`` (default: last bar).

    Bullish when fast moves from at-or-below slow to above it, bearish for the
    mirror move, none otherwise or when there is no previous bar.
    """
    fast_values = np.asarray(fast, dtype=float)
    slow_values = np.asarray(slow, dtype=float)
    n = min(len(fast_values), len(slow_values))
    if index is None:
        index = n - 1
    if index < 1 or index >= n:
        return Cross.NONE

    curr, prev = fast_values[index], fast_values[index - 1]
    curr_ref, prev_ref = slow_values[index], slow_values[index - 1]

    if curr > curr_ref and prev <= prev_ref:
        return Cross.BULLISH
    if curr < curr_ref and prev >= prev_ref:
        return Cross.BEARISH
    return Cross.NONE


def _position(price: float, value: float) -> str:
    return "above" if price > value else "below"


def _normalize_conditions(conditions) -> List[ScanCondition]:
    if conditions is None:
        return []
    if isinstance(conditions, ScanCondition):
        conditions = [conditions]
    return [c for c in conditions if c.enabled]


class _BagBuilder:
    """Accumulates entries for one bag; all series share the candle index."""

    def __init__(self, frame: pd.DataFrame):
        self.frame = frame
        self.close = frame["close"].astype(float)
        self.price = float(self.close.iloc[-1])
        self.values: Dict[str, BagValue] = {}

    def put(self, key: str, series: pd.Series) -> None:
        self.values[key] = SeriesValue(float(series.iloc[-1]), series)

    def put_moving_averages(self, periods: Iterable[int], simple: bool = False) -> None:
        for period in periods:
            key = sma_key(period) if simple else ema_key(period)
            if key not in self.values:
                self.put(key, ind.sma(self.frame, period) if simple else ind.ema(self.frame, period))

    def put_rsi(self, period: int) -> pd.Series:
        key = rsi_key(period)
        if key not in self.values:
            self.put(key, ind.rsi(self.frame, period))
        return self.values[key].series

    def put_macd(self, fast: int, slow: int, signal: int) -> None:
        keys = macd_keys(fast, slow, signal)
        if keys.line in self.values:
            return
        result = ind.macd(self.frame, fast, slow, signal)
        self.put(keys.line, result.line)
        self.put(keys.signal, result.signal)
        self.put(keys.histogram, result.histogram)
        self.values[keys.cross] = detect_crossover(result.line, result.signal).value

    def put_bollinger(self, period: int, std_dev: float) -> None:
        keys = bb_keys(period, std_dev)
        if keys.upper in self.values:
            return
        result = ind.bollinger_bands(self.frame, period, std_dev)
        self.put(keys.upper, result.upper)
        self.put(keys.lower, result.lower)
        self.put(keys.basis, result.middle)
        self.put(keys.bandwidth, result.bandwidth)
        self.values[keys.position_upper] = _position(self.price, float(result.upper.iloc[-1]))
        self.values[keys.position_lower] = _position(self.price, float(result.lower.iloc[-1]))
        self.values[keys.cross_upper] = detect_crossover(self.close, result.upper).value
        self.values[keys.cross_lower] = detect_crossover(self.close, result.lower).value

    def put_price_reference(self, name: str, series: pd.Series) -> None:
        self.put(name, series)
        self.values[f"price_vs_{name}"] = _position(self.price, float(series.iloc[-1]))
        self.values[f"price_cross_{name}"] = detect_crossover(self.close, series).value


def compute_indicator_bag(candles: CandleInput, conditions=None) -> ValueBag:
    """Compute every feature value for the latest bar of ``candles``.

    ``conditions`` may be a single ``ScanCondition``, a list of them, or None;
    enabled conditions with non-default settings add parameterized keys
    (``ema_<p>``, ``sma_<p>``, ``rsi_<p>``, ``macd_<f>_<s>_<g>_*``,
    ``bb_<p>_<k>_*``). An empty candle window yields only the boolean
    detectors (all False) and ``none`` crossings; numeric keys are absent.
    """
    frame = candles_to_frame(candles)
    condition_list = _normalize_conditions(conditions)

    if len(frame) == 0:
        empty: Dict[str, BagValue] = {key: False for key in PATTERN_DETECTORS}
        empty.update({key: False for key in STRUCTURE_DETECTORS})
        empty.update({key: Cross.NONE.value for key in CROSS_KEYS + DIVERGENCE_KEYS})
        return ValueBag(empty)

    bag = _BagBuilder(frame)
    bag.put("price", bag.close)
    bag.values["prev_price"] = float(bag.close.iloc[-2]) if len(frame) > 1 else bag.price

    rsi_series = bag.put_rsi(DEFAULT_RSI_PERIOD)

    bag.put_moving_averages(DEFAULT_EMA_PERIODS)
    bag.put_moving_averages(DEFAULT_SMA_PERIODS, simple=True)
    bag.values["price_vs_ema20"] = _position(bag.price, bag.values["ema_20"].latest)
    bag.values["price_vs_sma20"] = _position(bag.price, bag.values["sma_20"].latest)
    bag.values["trend"] = ind.trend_direction(bag.price, bag.values["ema_20"].latest, bag.values["ema_50"].latest)

    bag.put_macd(*DEFAULT_MACD)
    bag.put_bollinger(*DEFAULT_BOLLINGER)

    stoch = ind.stochastic(frame)
    bag.put("stoch_k", stoch.k)
    bag.put("stoch_d", stoch.d)
    bag.values["stoch_cross"] = detect_crossover(stoch.k, stoch.d).value

    bag.put("adx", ind.adx(frame))
    bag.put("cci", ind.cci(frame))
    bag.put("atr", ind.atr(frame))
    bag.put("mfi", ind.mfi(frame))
    bag.put("williams_r", ind.williams_r(frame))
    bag.put("roc", ind.roc(frame))
    bag.put_price_reference("vwap", ind.vwap(frame))
    bag.put_price_reference("psar", ind.parabolic_sar(frame))

    for condition in condition_list:
        if condition.feature == "ema":
            bag.put_moving_averages(moving_average_periods(condition))
        elif condition.feature == "sma":
            bag.put_moving_averages(moving_average_periods(condition), simple=True)
        elif condition.feature == "rsi" and condition.period:
            bag.put_rsi(condition.period)
        elif condition.feature == "macd_line":
            bag.put_macd(*macd_settings(condition))
        elif condition.feature == "bb_upper":
            bag.put_bollinger(*bollinger_settings(condition))

    bag.values.update(detect_patterns(frame))

    cols = columns(frame)
    bag.values.update(detect_structure(cols))
    regular, hidden = detect_rsi_divergence(cols, rsi_series.tolist())
    bag.values["rsi_divergence_regular"] = regular
    bag.values["rsi_divergence_hidden"] = hidden

    return ValueBag(bag.values)


def finite(value: Optional[float]) -> bool:
    return value is not None and math.isfinite(value)


validate_catalog(DEFAULT_KEYS)
