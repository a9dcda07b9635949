"""Synthetic candle fixtures shared by the test suite."""

from typing import List, Optional, Sequence

import numpy as np
import pytest

from marketscan.scanner.models import Candle


HOUR_MS = 3_600_000


def make_candle(index: int, open_: float, high: float, low: float, close: float,
                volume: float = 100.0) -> Candle:
    return Candle(
        open_time=index * HOUR_MS,
        open=open_,
        high=high,
        low=low,
        close=close,
        volume=volume,
        close_time=(index + 1) * HOUR_MS - 1,
        quote_volume=volume * close,
        trades=10,
    )


def candles_from_closes(closes: Sequence[float], wick: float = 0.2,
                        volumes: Optional[Sequence[float]] = None) -> List[Candle]:
    """Each candle opens at the previous close; wicks extend ``wick`` beyond the body."""
    candles = []
    previous = closes[0]
    for i, close in enumerate(closes):
        open_ = previous
        volume = volumes[i] if volumes is not None else 100.0
        candles.append(make_candle(i, open_, max(open_, close) + wick, min(open_, close) - wick, close, volume))
        previous = close
    return candles


def zigzag_closes(cycles: int = 5, start: float = 100.0, up: float = 2.0, down: float = 1.0) -> List[float]:
    """Four bars up by ``up`` then four bars down by ``down``, repeated."""
    closes = [start]
    for _ in range(cycles):
        for _ in range(4):
            closes.append(closes[-1] + up)
        for _ in range(4):
            closes.append(closes[-1] - down)
    return closes


def bars_from_closes(closes: Sequence[float], half_range: float = 0.5) -> List[Candle]:
    """Candles whose high/low sit symmetrically around the close."""
    return [make_candle(i, c, c + half_range, c - half_range, c) for i, c in enumerate(closes)]


@pytest.fixture
def flat_candles() -> List[Candle]:
    """30 candles with every price at 100."""
    return [make_candle(i, 100.0, 100.0, 100.0, 100.0) for i in range(30)]


@pytest.fixture
def rising_candles() -> List[Candle]:
    """Closes 100, 101, ..., 129."""
    return candles_from_closes([100.0 + i for i in range(30)])


@pytest.fixture
def random_walk_candles() -> List[Candle]:
    rng = np.random.RandomState(7)
    closes = 100 + np.cumsum(rng.normal(0, 1, 120))
    volumes = rng.uniform(50, 150, 120)
    return candles_from_closes(closes.tolist(), wick=0.3, volumes=volumes.tolist())


@pytest.fixture
def engulfing_candles() -> List[Candle]:
    """A filler candle, a bearish candle 100 -> 95, then a bullish candle 94 -> 101."""
    return [
        make_candle(0, 101.0, 102.0, 99.5, 100.0),
        make_candle(1, 100.0, 100.5, 94.5, 95.0),
        make_candle(2, 94.0, 101.5, 93.5, 101.0),
    ]
