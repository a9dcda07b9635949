"""Tests for the value bag builder, crossover helper and catalog validation."""

import math

import numpy as np
import pandas as pd
import pytest

from marketscan.scanner.catalog import FEATURES, CatalogError, FeatureDefinition, validate_catalog
from marketscan.scanner.models import ConditionMode, EMAConfig, FeatureCategory, ScanCondition
from marketscan.scanner.value_bag import (
    DEFAULT_KEYS,
    Cross,
    SeriesValue,
    ValueBag,
    bb_keys,
    compute_indicator_bag,
    detect_crossover,
    macd_keys,
)


class TestCrossover:
    """detect_crossover."""

    def test_bullish_and_bearish(self):
        assert detect_crossover([1.0, 3.0], [2.0, 2.0]) == Cross.BULLISH
        assert detect_crossover([3.0, 1.0], [2.0, 2.0]) == Cross.BEARISH
        assert detect_crossover([3.0, 4.0], [2.0, 2.0]) == Cross.NONE

    def test_touch_then_cross_counts(self):
        """Previous bar equal to the reference still counts as a cross."""
        assert detect_crossover([2.0, 3.0], [2.0, 2.0]) == Cross.BULLISH

    def test_no_previous_bar(self):
        assert detect_crossover([1.0], [0.0]) == Cross.NONE
        assert detect_crossover([1.0, 3.0], [2.0, 2.0], index=0) == Cross.NONE
        assert detect_crossover([], []) == Cross.NONE

    def test_symmetry(self):
        """fast/slow bullish at i iff slow/fast bearish at i."""
        rng = np.random.RandomState(3)
        fast = rng.normal(0, 1, 200).round(1)
        slow = rng.normal(0, 1, 200).round(1)
        for i in range(len(fast)):
            forward = detect_crossover(fast, slow, i)
            backward = detect_crossover(slow, fast, i)
            assert (forward == Cross.BULLISH) == (backward == Cross.BEARISH)
            assert (forward == Cross.BEARISH) == (backward == Cross.BULLISH)


class TestValueBag:
    """ValueBag accessors."""

    def setup_method(self):
        """Set up a hand-built bag."""
        self.bag = ValueBag({
            "rsi": SeriesValue(42.0, pd.Series([40.0, 42.0])),
            "prev_price": 99.0,
            "doji": True,
            "macd_cross": "bullish",
        })

    def test_accessors(self):
        assert self.bag.number("rsi") == 42.0
        assert self.bag.number("prev_price") == 99.0
        assert self.bag.number("doji") is None
        assert self.bag.series("rsi").tolist() == [40.0, 42.0]
        assert self.bag.flag("doji") is True
        assert self.bag.flag("rsi") is False
        assert self.bag.text("macd_cross") == "bullish"
        assert self.bag.text("missing") == "none"

    def test_read_only(self):
        with pytest.raises(TypeError):
            self.bag["rsi"] = 1.0

    def test_as_dict(self):
        assert self.bag.as_dict() == {"rsi": 42.0, "prev_price": 99.0, "doji": True, "macd_cross": "bullish"}


class TestComputeIndicatorBag:
    """compute_indicator_bag."""

    def test_default_keys_present(self, random_walk_candles):
        bag = compute_indicator_bag(random_walk_candles)
        assert DEFAULT_KEYS <= set(bag)

    def test_series_lengths_match_input(self, random_walk_candles):
        bag = compute_indicator_bag(random_walk_candles)
        for key, value in bag.items():
            if isinstance(value, SeriesValue):
                assert len(value.series) == len(random_walk_candles), key

    def test_numbers_are_finite(self, random_walk_candles):
        bag = compute_indicator_bag(random_walk_candles)
        for key, value in bag.as_dict().items():
            if isinstance(value, float):
                assert math.isfinite(value), key

    def test_flat_series(self, flat_candles):
        bag = compute_indicator_bag(flat_candles)
        assert bag.number("rsi") == 50.0
        assert bag.flag("doji") is True
        assert bag.number("price") == 100.0
        assert bag.number("prev_price") == 100.0
        assert bag.text("macd_cross") == "none"

    def test_rising_series(self, rising_candles):
        bag = compute_indicator_bag(rising_candles)
        assert bag.number("rsi") == 100.0
        assert bag.number("macd_histogram") > 0
        assert bag.text("price_vs_ema20") == "above"

    def test_parameterized_keys(self, rising_candles):
        conditions = [
            ScanCondition(feature="rsi", mode=ConditionMode.RANGE, period=7),
            ScanCondition(feature="ema", mode=ConditionMode.CROSS, ema_configs=[EMAConfig(period=9)],
                          ema_crossover=True, ema_crossover_fast=5, ema_crossover_slow=13),
            ScanCondition(feature="sma", mode=ConditionMode.CROSS, period=10),
            ScanCondition(feature="macd_line", mode=ConditionMode.CROSS, macd_fast=5, macd_slow=15, macd_signal=5),
            ScanCondition(feature="bb_upper", mode=ConditionMode.CROSS, bb_period=10, bb_std_dev=2.5),
        ]
        bag = compute_indicator_bag(rising_candles, conditions)
        for key in ("rsi_7", "ema_9", "ema_5", "ema_13", "sma_10"):
            assert key in bag, key
        assert set(macd_keys(5, 15, 5)) <= set(bag)
        assert set(bb_keys(10, 2.5)) <= set(bag)
        assert bb_keys(10, 2.5).upper == "bb_10_2.5_upper"

    def test_single_condition_accepted(self, rising_candles):
        bag = compute_indicator_bag(rising_candles, ScanCondition(feature="rsi", period=21))
        assert "rsi_21" in bag

    def test_disabled_condition_adds_nothing(self, rising_candles):
        bag = compute_indicator_bag(rising_candles, ScanCondition(feature="rsi", period=21, enabled=False))
        assert "rsi_21" not in bag

    def test_empty_input(self):
        bag = compute_indicator_bag([])
        assert "rsi" not in bag
        assert bag.flag("doji") is False
        assert bag.text("macd_cross") == "none"

    def test_fresh_bag_per_call(self, rising_candles):
        first = compute_indicator_bag(rising_candles)
        second = compute_indicator_bag(rising_candles)
        assert first is not second
        assert first.as_dict() == second.as_dict()


class TestCatalogValidation:
    """Catalog and detector lock-step."""

    def test_catalog_matches_bag(self):
        validate_catalog(DEFAULT_KEYS)

    def test_missing_detector_fails(self):
        bogus = FEATURES + (
            FeatureDefinition("bogus", "Bogus", FeatureCategory.SMC, "", ConditionMode.VALUE),
        )
        with pytest.raises(CatalogError):
            validate_catalog(DEFAULT_KEYS, bogus)

    def test_duplicate_id_fails(self):
        with pytest.raises(CatalogError):
            validate_catalog(DEFAULT_KEYS, FEATURES + (FEATURES[0],))
