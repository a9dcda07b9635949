"""Tests for swing points and smart-money structure detectors."""

from marketscan.scanner import structure
from marketscan.scanner.structure import DIVERGENCE_BEARISH, DIVERGENCE_BULLISH, DIVERGENCE_NONE

from conftest import bars_from_closes, make_candle, zigzag_closes


def peak_series():
    """Highs at 100 except a single peak of 110 at index 5; lows flat at 95."""
    candles = []
    for i in range(14):
        high = 110.0 if i == 5 else 100.0
        candles.append(make_candle(i, 98.0, high, 95.0, 99.0))
    return candles


class TestSwingPoints:
    """Swing-point detection."""

    def test_single_peak(self):
        points = structure.find_swing_points(peak_series(), lookback=3)
        assert [(p.index, p.kind) for p in points] == [(5, "high")]
        assert points[0].price == 110.0

    def test_equal_neighbours_are_not_swings(self):
        """A swing must be strictly above every other bar in the window."""
        candles = [make_candle(i, 100.0, 105.0, 95.0, 100.0) for i in range(12)]
        assert structure.find_swing_points(candles, lookback=3) == []

    def test_zigzag_alternates(self):
        points = structure.find_swing_points(bars_from_closes(zigzag_closes()), lookback=3)
        kinds = [p.kind for p in points]
        assert kinds[:4] == ["high", "low", "high", "low"]
        assert [p.index for p in points][:4] == [4, 8, 12, 16]


class TestBreakOfStructure:
    """BOS and ChoCH."""

    def test_bullish_bos(self):
        candles = peak_series() + [make_candle(14, 100.0, 116.0, 99.0, 115.0)]
        assert structure.detect_bullish_bos(candles) is True
        assert structure.detect_bearish_bos(candles) is False

    def test_no_break_below_swing_high(self):
        candles = peak_series() + [make_candle(14, 100.0, 106.0, 99.0, 105.0)]
        assert structure.detect_bullish_bos(candles) is False

    def test_insufficient_history(self):
        assert structure.detect_bullish_bos(peak_series()[:9]) is False
        assert structure.detect_bullish_choch(peak_series()) is False

    def test_bullish_choch_after_lower_highs(self):
        """Falling swing highs, then a close above the latest one."""
        closes = zigzag_closes(cycles=4, start=100.0, up=1.0, down=2.0)
        candles = bars_from_closes(closes)
        last_high = [p for p in structure.find_swing_points(candles, 3) if p.kind == "high"][-1]
        breakout = make_candle(len(candles), closes[-1], last_high.price + 3, closes[-1] - 0.5, last_high.price + 2)
        assert structure.detect_bullish_choch(candles + [breakout]) is True
        assert structure.detect_bearish_choch(candles + [breakout]) is False


class TestZones:
    """Order blocks, gaps, sweeps, equal levels and premium/discount."""

    def test_bullish_order_block(self):
        candles = [
            make_candle(0, 100.0, 101.0, 99.0, 100.0),
            make_candle(1, 102.0, 103.0, 97.0, 98.0),
            make_candle(2, 98.0, 106.0, 97.5, 105.0),
            make_candle(3, 105.0, 105.5, 103.5, 104.0),
            make_candle(4, 104.0, 104.5, 101.5, 102.0),
            make_candle(5, 102.0, 102.5, 99.5, 100.0),
        ]
        assert structure.detect_bullish_order_block(candles) is True

    def test_bearish_order_block(self):
        candles = [
            make_candle(0, 100.0, 101.0, 99.0, 100.0),
            make_candle(1, 98.0, 103.0, 97.0, 102.0),
            make_candle(2, 102.0, 102.5, 94.0, 95.0),
            make_candle(3, 95.0, 96.5, 94.5, 96.0),
            make_candle(4, 96.0, 98.5, 95.5, 98.0),
            make_candle(5, 98.0, 100.5, 97.5, 100.0),
        ]
        assert structure.detect_bearish_order_block(candles) is True
        assert structure.detect_bullish_order_block(candles) is False

    def test_bearish_order_block_price_below_block(self):
        candles = [
            make_candle(0, 100.0, 101.0, 99.0, 100.0),
            make_candle(1, 98.0, 103.0, 97.0, 102.0),
            make_candle(2, 102.0, 102.5, 94.0, 95.0),
            make_candle(3, 95.0, 96.5, 94.5, 96.0),
            make_candle(4, 96.0, 98.5, 95.5, 98.0),
            make_candle(5, 98.0, 98.5, 95.5, 96.0),
        ]
        assert structure.detect_bearish_order_block(candles) is False

    def test_bullish_fvg(self):
        candles = [
            make_candle(0, 99.0, 100.0, 98.0, 99.5),
            make_candle(1, 101.0, 107.0, 100.5, 106.0),
            make_candle(2, 106.0, 108.0, 104.0, 107.0),
        ]
        assert structure.detect_bullish_fvg(candles) is True
        assert structure.detect_bearish_fvg(candles) is False

    def test_liquidity_sweep_high(self):
        candles = [make_candle(i, 99.0, 100.0, 98.0, 99.0) for i in range(12)]
        candles.append(make_candle(12, 99.0, 105.0, 98.5, 98.0))
        assert structure.detect_liquidity_sweep_high(candles) is True
        assert structure.detect_liquidity_sweep_low(candles) is False

    def test_equal_highs(self):
        closes = [100, 102, 104, 106, 110, 106, 104, 102, 100, 102, 104, 106, 110.05, 106, 104, 102, 100]
        candles = bars_from_closes([float(c) for c in closes])
        assert structure.detect_equal_highs(candles) is True
        assert structure.detect_equal_lows(candles) is False

    def test_premium_and_discount(self):
        candles = [make_candle(i, 100.0, 110.0, 90.0, 100.0) for i in range(24)]
        premium = candles + [make_candle(24, 100.0, 109.0, 100.0, 108.0)]
        discount = candles + [make_candle(24, 100.0, 100.0, 91.0, 92.0)]
        assert structure.detect_premium_zone(premium) is True
        assert structure.detect_discount_zone(premium) is False
        assert structure.detect_discount_zone(discount) is True
        assert structure.detect_premium_zone(candles[:19]) is False


def breaker_series(after_block):
    """Flat bars at 110, a bullish block (low 99, high 105) at index 4, then ``after_block``."""
    candles = [make_candle(i, 110.0, 110.5, 109.5, 110.0) for i in range(4)]
    candles.append(make_candle(4, 100.0, 105.0, 99.0, 104.0))
    for i, (open_, high, low, close) in enumerate(after_block, start=5):
        candles.append(make_candle(i, open_, high, low, close))
    return candles


class TestBreakerBlock:
    """A respected bullish candle that was later closed through."""

    def test_touched_broken_and_revisited(self):
        candles = breaker_series([
            (104.8, 106.0, 104.5, 104.8),
            (106.0, 106.5, 105.5, 106.0),
            (106.0, 106.2, 96.5, 97.0),
            (96.0, 96.5, 95.5, 96.0),
            (97.0, 97.5, 96.5, 97.0),
            (99.5, 100.0, 99.0, 99.5),
            (101.0, 101.5, 100.5, 101.0),
        ])
        assert structure.detect_breaker_block(candles) is True

    def test_price_not_back_inside(self):
        candles = breaker_series([
            (104.8, 106.0, 104.5, 104.8),
            (106.0, 106.5, 105.5, 106.0),
            (106.0, 106.2, 96.5, 97.0),
            (96.0, 96.5, 95.5, 96.0),
            (97.0, 97.5, 96.5, 97.0),
            (96.5, 97.0, 96.0, 96.5),
            (96.0, 96.5, 95.5, 96.0),
        ])
        assert structure.detect_breaker_block(candles) is False

    def test_never_closed_below_block(self):
        candles = breaker_series([
            (104.8, 106.0, 104.5, 104.8),
            (106.0, 106.5, 105.5, 106.0),
            (106.0, 106.2, 103.0, 103.5),
            (102.0, 102.5, 101.5, 102.0),
            (101.0, 101.5, 100.5, 101.0),
            (100.0, 100.5, 99.5, 100.0),
            (101.0, 101.5, 100.5, 101.0),
        ])
        assert structure.detect_breaker_block(candles) is False

    def test_insufficient_history(self):
        assert structure.detect_breaker_block(breaker_series([(104.8, 106.0, 104.5, 104.8)])) is False


class TestVolumeAndTrend:
    """Volume spike and swing-based trend."""

    def test_volume_spike(self):
        candles = [make_candle(i, 100.0, 101.0, 99.0, 100.0, volume=100.0) for i in range(24)]
        spike = candles + [make_candle(24, 100.0, 101.0, 99.0, 100.0, volume=250.0)]
        quiet = candles + [make_candle(24, 100.0, 101.0, 99.0, 100.0, volume=150.0)]
        assert structure.detect_volume_spike(spike) is True
        assert structure.detect_volume_spike(quiet) is False
        assert structure.detect_volume_spike(spike[-19:]) is False

    def test_uptrend(self):
        candles = bars_from_closes(zigzag_closes(cycles=5, up=2.0, down=1.0))
        assert structure.detect_uptrend(candles) is True
        assert structure.detect_downtrend(candles) is False

    def test_downtrend(self):
        candles = bars_from_closes(zigzag_closes(cycles=5, up=1.0, down=2.0))
        assert structure.detect_downtrend(candles) is True
        assert structure.detect_uptrend(candles) is False


class TestDivergence:
    """RSI divergence against swing points."""

    def test_regular_bullish(self):
        candles = bars_from_closes(zigzag_closes(cycles=5, up=1.0, down=2.0))
        lows = [p for p in structure.find_swing_points(candles, 3) if p.kind == "low"]
        rsi = [50.0] * len(candles)
        rsi[lows[-2].index] = 30.0
        rsi[lows[-1].index] = 35.0
        assert structure.detect_rsi_divergence(candles, rsi) == (DIVERGENCE_BULLISH, DIVERGENCE_NONE)

    def test_hidden_bullish(self):
        """Higher price low with a lower RSI low."""
        candles = bars_from_closes(zigzag_closes(cycles=5, up=2.0, down=1.0))
        lows = [p for p in structure.find_swing_points(candles, 3) if p.kind == "low"]
        rsi = [50.0] * len(candles)
        rsi[lows[-2].index] = 40.0
        rsi[lows[-1].index] = 35.0
        assert structure.detect_rsi_divergence(candles, rsi) == (DIVERGENCE_NONE, DIVERGENCE_BULLISH)

    def test_hidden_bearish(self):
        """Lower price high with a higher RSI high."""
        candles = bars_from_closes(zigzag_closes(cycles=5, up=1.0, down=2.0))
        highs = [p for p in structure.find_swing_points(candles, 3) if p.kind == "high"]
        rsi = [50.0] * len(candles)
        rsi[highs[-2].index] = 60.0
        rsi[highs[-1].index] = 65.0
        assert structure.detect_rsi_divergence(candles, rsi) == (DIVERGENCE_NONE, DIVERGENCE_BEARISH)

    def test_no_hidden_divergence_when_rsi_confirms(self):
        candles = bars_from_closes(zigzag_closes(cycles=5, up=2.0, down=1.0))
        lows = [p for p in structure.find_swing_points(candles, 3) if p.kind == "low"]
        rsi = [50.0] * len(candles)
        rsi[lows[-2].index] = 35.0
        rsi[lows[-1].index] = 40.0
        assert structure.detect_rsi_divergence(candles, rsi) == (DIVERGENCE_NONE, DIVERGENCE_NONE)

    def test_same_bar_conflict_is_none(self):
        """An outside bar ending both a bullish and a bearish pair gives no direction."""
        candles = [make_candle(i, 100.0, 101.0, 99.0, 100.0) for i in range(20)]
        candles[5] = make_candle(5, 100.0, 105.0, 99.0, 100.0)
        candles[9] = make_candle(9, 100.0, 101.0, 95.0, 100.0)
        candles[14] = make_candle(14, 100.0, 106.0, 94.0, 100.0)
        rsi = [50.0] * 20
        rsi[9], rsi[14] = 30.0, 40.0
        rsi[5] = 60.0
        assert structure.detect_rsi_divergence(candles, rsi) == (DIVERGENCE_NONE, DIVERGENCE_NONE)

        rsi[5] = 35.0
        assert structure.detect_rsi_divergence(candles, rsi) == (DIVERGENCE_BULLISH, DIVERGENCE_NONE)

    def test_short_input(self):
        candles = bars_from_closes([100.0 + i for i in range(10)])
        assert structure.detect_rsi_divergence(candles, [50.0] * 10) == (DIVERGENCE_NONE, DIVERGENCE_NONE)


def test_detect_structure_keys(rising_candles):
    result = structure.detect_structure(rising_candles)
    assert set(result) == set(structure.STRUCTURE_DETECTORS)
    assert all(type(v) is bool for v in result.values())
    assert not any(structure.detect_structure([]).values())
