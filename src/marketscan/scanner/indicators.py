"""Technical indicator library.

Every function takes a candle sequence (or a candle DataFrame) and returns
one value per input candle, indexed like the input. Values never depend on
later candles and are never NaN: bars inside an indicator's warm-up window
carry a documented neutral value instead.
"""

from __future__ import annotations

from typing import NamedTuple

import numpy as np
import pandas as pd
from numpy.lib.stride_tricks import sliding_window_view

from .models import CandleInput, candles_to_frame


RSI_NEUTRAL = 50.0
STOCH_NEUTRAL = 50.0
MFI_NEUTRAL = 50.0
WILLIAMS_R_NEUTRAL = -50.0
CCI_CONSTANT = 0.015


class MACDResult(NamedTuple):
    line: pd.Series
    signal: pd.Series
    histogram: pd.Series


class BollingerResult(NamedTuple):
    upper: pd.Series
    middle: pd.Series
    lower: pd.Series
    bandwidth: pd.Series


class StochasticResult(NamedTuple):
    k: pd.Series
    d: pd.Series


def _series(values, index=None) -> pd.Series:
    return pd.Series(np.asarray(values, dtype=float), index=index)


def wilder_smooth(values: np.ndarray, period: int) -> np.ndarray:
    """Wilder's moving average (RMA), seeded with the simple mean of the first ``period`` values.

    Entries before the seed are NaN; callers replace them with their own warm-up value.
    """
    values = np.asarray(values, dtype=float)
    out = np.full(len(values), np.nan)
    if period < 1 or len(values) < period:
        return out

    out[period - 1] = values[:period].mean()
    for i in range(period, len(values)):
        out[i] = (out[i - 1] * (period - 1) + values[i]) / period
    return out


def ema_values(values: np.ndarray, period: int) -> np.ndarray:
    """EMA seeded with the SMA of the first ``period`` values; warm-up entries pass the input through."""
    values = np.asarray(values, dtype=float)
    out = values.copy()
    if period < 1 or len(values) < period:
        return out

    k = 2.0 / (period + 1)
    out[period - 1] = values[:period].mean()
    for i in range(period, len(values)):
        out[i] = values[i] * k + out[i - 1] * (1 - k)
    return out


def true_range(frame: pd.DataFrame) -> np.ndarray:
    """True range per bar; the first bar uses high - low."""
    high = frame["high"].to_numpy(dtype=float)
    low = frame["low"].to_numpy(dtype=float)
    close = frame["close"].to_numpy(dtype=float)

    tr = high - low
    if len(tr) > 1:
        prev_close = close[:-1]
        tr[1:] = np.maximum.reduce([
            high[1:] - low[1:],
            np.abs(high[1:] - prev_close),
            np.abs(low[1:] - prev_close),
        ])
    return tr


def typical_price(frame: pd.DataFrame) -> pd.Series:
    return (frame["high"] + frame["low"] + frame["close"]) / 3


def sma(candles: CandleInput, period: int = 20) -> pd.Series:
    """Simple moving average of closes. Warm-up bars carry their own close."""
    frame = candles_to_frame(candles)
    close = frame["close"].astype(float)
    return close.rolling(window=period, min_periods=period).mean().fillna(close)


def ema(candles: CandleInput, period: int = 20) -> pd.Series:
    """Exponential moving average of closes, SMA-seeded. Warm-up bars carry their own close."""
    frame = candles_to_frame(candles)
    return _series(ema_values(frame["close"].to_numpy(dtype=float), period), frame.index)


def _rsi_value(avg_gain: float, avg_loss: float) -> float:
    if avg_loss == 0:
        return RSI_NEUTRAL if avg_gain == 0 else 100.0
    rs = avg_gain / avg_loss
    return 100.0 - (100.0 / (1.0 + rs))


def rsi(candles: CandleInput, period: int = 14) -> pd.Series:
    """Relative Strength Index with Wilder smoothing.

    The first average gain/loss is the simple mean of the first ``period``
    close-to-close deltas. Bars before that (index < period) read 50, a window
    with no movement at all reads 50, and a window without losses reads 100.
    """
    frame = candles_to_frame(candles)
    close = frame["close"].to_numpy(dtype=float)
    n = len(close)
    out = np.full(n, RSI_NEUTRAL)

    if n < period + 1:
        return _series(out, frame.index)

    delta = np.diff(close)
    gains = np.where(delta > 0, delta, 0.0)
    losses = np.where(delta < 0, -delta, 0.0)
    avg_gain = wilder_smooth(gains, period)
    avg_loss = wilder_smooth(losses, period)

    # delta[j] is the move into candle j + 1
    for j in range(period - 1, n - 1):
        out[j + 1] = _rsi_value(avg_gain[j], avg_loss[j])

    return _series(out, frame.index)


def macd(candles: CandleInput, fast: int = 12, slow: int = 26, signal: int = 9) -> MACDResult:
    """MACD line, signal and histogram.

    The line is 0 until the slow EMA is seeded (index ``slow - 1``). The
    signal is an EMA over the valid line values only, seeded with the mean of
    the first ``signal`` of them, and reads 0 until then.
    """
    frame = candles_to_frame(candles)
    close = frame["close"].to_numpy(dtype=float)
    start = max(slow - 1, 0)

    line = np.zeros(len(close))
    signal_line = np.zeros(len(close))
    if len(close) >= slow:
        line[start:] = (ema_values(close, fast) - ema_values(close, slow))[start:]
        valid = line[start:]
        if len(valid) >= signal:
            signal_line[start + signal - 1:] = ema_values(valid, signal)[signal - 1:]

    histogram = line - signal_line

    return MACDResult(
        line=_series(line, frame.index),
        signal=_series(signal_line, frame.index),
        histogram=_series(histogram, frame.index),
    )


def bollinger_bands(candles: CandleInput, period: int = 20, std_dev: float = 2.0) -> BollingerResult:
    """Bollinger Bands on a population standard deviation.

    Warm-up bars collapse all three bands onto the close with zero bandwidth;
    bandwidth is also 0 when the basis is 0.
    """
    frame = candles_to_frame(candles)
    close = frame["close"].astype(float)

    middle = close.rolling(window=period, min_periods=period).mean()
    std = close.rolling(window=period, min_periods=period).std(ddof=0).clip(lower=0)

    upper = (middle + std_dev * std).fillna(close)
    lower = (middle - std_dev * std).fillna(close)
    middle = middle.fillna(close)

    safe_middle = middle.where(middle != 0)
    bandwidth = ((upper - lower) / safe_middle * 100).fillna(0.0)

    return BollingerResult(upper=upper, middle=middle, lower=lower, bandwidth=bandwidth)


def stochastic(candles: CandleInput, k_period: int = 14, d_period: int = 3, smooth: int = 3) -> StochasticResult:
    """Slow stochastic: %K is the SMA(smooth) of raw %K, %D the SMA(d_period) of %K.

    A flat window gives raw %K 50; warm-up bars read 50 on both lines.
    """
    frame = candles_to_frame(candles)
    close = frame["close"].astype(float)
    highest = frame["high"].astype(float).rolling(window=k_period, min_periods=k_period).max()
    lowest = frame["low"].astype(float).rolling(window=k_period, min_periods=k_period).min()

    spread = highest - lowest
    raw_k = ((close - lowest) / spread.where(spread != 0) * 100)
    raw_k = raw_k.mask(spread == 0, STOCH_NEUTRAL)

    k = raw_k.rolling(window=smooth, min_periods=smooth).mean()
    d = k.rolling(window=d_period, min_periods=d_period).mean()

    return StochasticResult(k=k.fillna(STOCH_NEUTRAL), d=d.fillna(STOCH_NEUTRAL))


def adx(candles: CandleInput, period: int = 14) -> pd.Series:
    """Average Directional Index with Wilder smoothing. Reads 0 before index ``2 * period - 1``."""
    frame = candles_to_frame(candles)
    n = len(frame)
    out = np.zeros(n)
    if n < period * 2:
        return _series(out, frame.index)

    high = frame["high"].to_numpy(dtype=float)
    low = frame["low"].to_numpy(dtype=float)

    up_move = np.zeros(n)
    down_move = np.zeros(n)
    up_move[1:] = high[1:] - high[:-1]
    down_move[1:] = low[:-1] - low[1:]

    plus_dm = np.where((up_move > down_move) & (up_move > 0), up_move, 0.0)
    minus_dm = np.where((down_move > up_move) & (down_move > 0), down_move, 0.0)

    smooth_tr = wilder_smooth(true_range(frame), period)
    smooth_plus = wilder_smooth(plus_dm, period)
    smooth_minus = wilder_smooth(minus_dm, period)

    dx = np.zeros(n)
    valid = ~np.isnan(smooth_tr) & (smooth_tr != 0)
    plus_di = np.zeros(n)
    minus_di = np.zeros(n)
    plus_di[valid] = smooth_plus[valid] / smooth_tr[valid] * 100
    minus_di[valid] = smooth_minus[valid] / smooth_tr[valid] * 100
    di_sum = plus_di + minus_di
    nonzero = valid & (di_sum != 0)
    dx[nonzero] = np.abs(plus_di[nonzero] - minus_di[nonzero]) / di_sum[nonzero] * 100

    smoothed = wilder_smooth(dx, period)
    start = period * 2 - 1
    out[start:] = smoothed[start:]
    return _series(np.nan_to_num(out, nan=0.0), frame.index)


def cci(candles: CandleInput, period: int = 20) -> pd.Series:
    """Commodity Channel Index. Reads 0 during warm-up and when mean deviation is 0."""
    frame = candles_to_frame(candles)
    tp = typical_price(frame).astype(float)
    n = len(tp)
    out = np.zeros(n)
    if n < period:
        return _series(out, frame.index)

    windows = sliding_window_view(tp.to_numpy(), period)
    means = windows.mean(axis=1)
    mean_dev = np.abs(windows - means[:, None]).mean(axis=1)
    current = tp.to_numpy()[period - 1:]

    with np.errstate(divide="ignore", invalid="ignore"):
        values = np.where(mean_dev == 0, 0.0, (current - means) / (CCI_CONSTANT * mean_dev))
    out[period - 1:] = values
    return _series(out, frame.index)


def atr(candles: CandleInput, period: int = 14) -> pd.Series:
    """Average True Range with Wilder smoothing; warm-up bars carry the running mean of true range."""
    frame = candles_to_frame(candles)
    tr = true_range(frame)
    smoothed = wilder_smooth(tr, period)
    running_mean = pd.Series(tr).expanding().mean().to_numpy()
    return _series(np.where(np.isnan(smoothed), running_mean, smoothed), frame.index)


def vwap(candles: CandleInput) -> pd.Series:
    """Cumulative volume-weighted average of the typical price. Zero cumulative volume falls back to the typical price."""
    frame = candles_to_frame(candles)
    tp = typical_price(frame).astype(float)
    volume = frame["volume"].astype(float)
    cum_volume = volume.cumsum()
    cum_tpv = (tp * volume).cumsum()
    return (cum_tpv / cum_volume.where(cum_volume != 0)).fillna(tp)


def mfi(candles: CandleInput, period: int = 14) -> pd.Series:
    """Money Flow Index. Reads 50 during warm-up, 100 without negative flow, 0 without positive flow."""
    frame = candles_to_frame(candles)
    tp = typical_price(frame).to_numpy(dtype=float)
    raw_flow = tp * frame["volume"].to_numpy(dtype=float)
    n = len(tp)
    out = np.full(n, MFI_NEUTRAL)
    if n <= period:
        return _series(out, frame.index)

    change = np.zeros(n)
    change[1:] = tp[1:] - tp[:-1]
    positive = np.where(change > 0, raw_flow, 0.0)
    negative = np.where(change < 0, raw_flow, 0.0)
    positive[0] = negative[0] = 0.0

    pos_sum = sliding_window_view(positive, period).sum(axis=1)
    neg_sum = sliding_window_view(negative, period).sum(axis=1)

    for i in range(period, n):
        pos, neg = pos_sum[i - period + 1], neg_sum[i - period + 1]
        if neg == 0:
            out[i] = 100.0
        elif pos == 0:
            out[i] = 0.0
        else:
            out[i] = 100.0 - (100.0 / (1.0 + pos / neg))
    return _series(out, frame.index)


def williams_r(candles: CandleInput, period: int = 14) -> pd.Series:
    """Williams %R in [-100, 0]. Reads -50 during warm-up and for a flat window."""
    frame = candles_to_frame(candles)
    close = frame["close"].astype(float)
    highest = frame["high"].astype(float).rolling(window=period, min_periods=period).max()
    lowest = frame["low"].astype(float).rolling(window=period, min_periods=period).min()

    spread = highest - lowest
    value = (highest - close) / spread.where(spread != 0) * -100
    return value.fillna(WILLIAMS_R_NEUTRAL)


def roc(candles: CandleInput, period: int = 12) -> pd.Series:
    """Rate of change in percent. Reads 0 during warm-up and when the reference close is 0."""
    frame = candles_to_frame(candles)
    close = frame["close"].astype(float)
    reference = close.shift(period)
    return ((close - reference) / reference.where(reference != 0) * 100).fillna(0.0)


def parabolic_sar(candles: CandleInput, step: float = 0.02, max_step: float = 0.2) -> pd.Series:
    """Parabolic SAR.

    The series opens in an up-trend at the first bar's low so that bar 0 never
    looks at bar 1.
    """
    frame = candles_to_frame(candles)
    n = len(frame)
    out = np.zeros(n)
    if n == 0:
        return _series(out, frame.index)

    high = frame["high"].to_numpy(dtype=float)
    low = frame["low"].to_numpy(dtype=float)

    up_trend = True
    af = step
    ep = high[0]
    sar = low[0]
    out[0] = sar

    for i in range(1, n):
        sar = sar + af * (ep - sar)

        if up_trend:
            sar = min(sar, low[i - 1], low[i - 2]) if i >= 2 else min(sar, low[i - 1])
            if low[i] < sar:
                up_trend = False
                sar = ep
                ep = low[i]
                af = step
            elif high[i] > ep:
                ep = high[i]
                af = min(af + step, max_step)
        else:
            sar = max(sar, high[i - 1], high[i - 2]) if i >= 2 else max(sar, high[i - 1])
            if high[i] > sar:
                up_trend = True
                sar = ep
                ep = high[i]
                af = step
            elif low[i] < ep:
                ep = low[i]
                af = min(af + step, max_step)

        out[i] = sar

    return _series(out, frame.index)


def trend_direction(price: float, ema_fast: float, ema_slow: float) -> str:
    """Classify price against two EMAs as ``up``, ``down`` or ``sideways``."""
    if price > ema_fast > ema_slow:
        return "up"
    if price < ema_fast < ema_slow:
        return "down"
    return "sideways"
