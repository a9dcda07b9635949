"""Feature catalog: the static table of scannable features.

Every entry names the value-bag key that carries its detector output and a
settings shape that tells the evaluator which condition fields apply.
``validate_catalog`` checks the table against the keys the value bag builder
actually produces.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterable, List, Optional, Tuple

from .models import ConditionMode, FeatureCategory


CATALOG_VERSION = "2"


class SettingsShape(str, Enum):
    """Evaluation dispatch tag for a feature."""
    RSI = "rsi"
    EMA = "ema"
    MACD = "macd"
    BOLLINGER = "bollinger"
    STOCHASTIC = "stochastic"
    OSCILLATOR = "oscillator"
    PRICE_CROSS = "price-cross"
    PATTERN = "pattern"
    SMC = "smc"


class CatalogError(ValueError):
    """The catalog and the implemented detectors are out of step."""


@dataclass(frozen=True)
class FeatureDefinition:
    """Static description of one scannable feature."""
    id: str
    name: str
    category: FeatureCategory
    description: str
    default_mode: ConditionMode
    settings_shape: Optional[SettingsShape] = None
    bag_key: Optional[str] = None
    has_period: bool = False
    default_period: Optional[int] = None
    min_period: Optional[int] = None
    max_period: Optional[int] = None
    value_range: Optional[Tuple[float, float]] = None

    @property
    def key(self) -> str:
        """Value-bag key holding this feature's default output."""
        return self.bag_key or self.id


def _indicator(id, name, description, mode, shape, **kwargs) -> FeatureDefinition:
    return FeatureDefinition(id, name, FeatureCategory.INDICATOR, description, mode, shape, **kwargs)


def _pattern(id, name, description) -> FeatureDefinition:
    return FeatureDefinition(id, name, FeatureCategory.PATTERN, description, ConditionMode.VALUE, SettingsShape.PATTERN)


def _smc(id, name, description) -> FeatureDefinition:
    return FeatureDefinition(id, name, FeatureCategory.SMC, description, ConditionMode.VALUE, SettingsShape.SMC)


FEATURES: Tuple[FeatureDefinition, ...] = (
    # Technical indicators
    _indicator("rsi", "RSI", "Relative Strength Index", ConditionMode.RANGE, SettingsShape.RSI,
               value_range=(0, 100), has_period=True, default_period=14, min_period=2, max_period=100),
    _indicator("ema", "EMA", "Exponential Moving Average", ConditionMode.CROSS, SettingsShape.EMA,
               bag_key="ema_20", has_period=True, default_period=20, min_period=5, max_period=200),
    _indicator("sma", "SMA", "Simple Moving Average", ConditionMode.CROSS, SettingsShape.EMA,
               bag_key="sma_20", has_period=True, default_period=20, min_period=5, max_period=200),
    _indicator("macd_line", "MACD", "Moving Average Convergence Divergence", ConditionMode.COMPARISON,
               SettingsShape.MACD),
    _indicator("bb_upper", "Bollinger Bands", "Bollinger Bands", ConditionMode.CROSS, SettingsShape.BOLLINGER),
    _indicator("stoch_k", "Stochastic", "Stochastic Oscillator", ConditionMode.RANGE, SettingsShape.STOCHASTIC,
               value_range=(0, 100)),
    _indicator("adx", "ADX", "Average Directional Index", ConditionMode.RANGE, SettingsShape.OSCILLATOR,
               value_range=(0, 100)),
    _indicator("cci", "CCI", "Commodity Channel Index", ConditionMode.RANGE, SettingsShape.OSCILLATOR),
    _indicator("atr", "ATR", "Average True Range", ConditionMode.COMPARISON, SettingsShape.OSCILLATOR),
    _indicator("vwap", "VWAP", "Volume Weighted Average Price", ConditionMode.CROSS, SettingsShape.PRICE_CROSS),
    _indicator("mfi", "MFI", "Money Flow Index", ConditionMode.RANGE, SettingsShape.OSCILLATOR,
               value_range=(0, 100)),
    _indicator("williams_r", "Williams %R", "Williams Percent Range", ConditionMode.RANGE,
               SettingsShape.OSCILLATOR, value_range=(-100, 0)),
    _indicator("roc", "ROC", "Rate of Change", ConditionMode.COMPARISON, SettingsShape.OSCILLATOR),
    _indicator("psar", "Parabolic SAR", "Parabolic Stop and Reverse", ConditionMode.CROSS,
               SettingsShape.PRICE_CROSS),

    # Candlestick patterns
    _pattern("doji", "Doji", "Indecision candle"),
    _pattern("hammer", "Hammer", "Bullish reversal"),
    _pattern("shooting_star", "Shooting Star", "Bearish reversal"),
    _pattern("bullish_engulfing", "Bullish Engulfing", "Bullish reversal pattern"),
    _pattern("bearish_engulfing", "Bearish Engulfing", "Bearish reversal pattern"),
    _pattern("morning_star", "Morning Star", "3-candle bullish reversal"),
    _pattern("evening_star", "Evening Star", "3-candle bearish reversal"),
    _pattern("marubozu", "Marubozu", "Strong momentum candle"),
    _pattern("bullish_harami", "Bullish Harami", "Bullish inside bar"),
    _pattern("bearish_harami", "Bearish Harami", "Bearish inside bar"),
    _pattern("inverted_hammer", "Inverted Hammer", "Bullish reversal"),
    _pattern("three_white_soldiers", "Three White Soldiers", "Strong bullish continuation"),
    _pattern("three_black_crows", "Three Black Crows", "Strong bearish continuation"),
    _pattern("inside_bar", "Inside Bar", "Consolidation pattern"),
    _pattern("spinning_top", "Spinning Top", "Indecision pattern"),

    # Smart money concepts
    _smc("bos_bullish", "Bullish BOS", "Break of Structure (Bullish)"),
    _smc("bos_bearish", "Bearish BOS", "Break of Structure (Bearish)"),
    _smc("choch_bullish", "Bullish ChoCH", "Change of Character (Bullish)"),
    _smc("choch_bearish", "Bearish ChoCH", "Change of Character (Bearish)"),
    _smc("bullish_ob", "Bullish Order Block", "Bullish Order Block detected"),
    _smc("bearish_ob", "Bearish Order Block", "Bearish Order Block detected"),
    _smc("bullish_fvg", "Bullish FVG", "Bullish Fair Value Gap"),
    _smc("bearish_fvg", "Bearish FVG", "Bearish Fair Value Gap"),
    _smc("liquidity_sweep_high", "Liquidity Sweep (High)", "Wick above previous high"),
    _smc("liquidity_sweep_low", "Liquidity Sweep (Low)", "Wick below previous low"),
    _smc("equal_highs", "Equal Highs (EQH)", "Double top liquidity"),
    _smc("equal_lows", "Equal Lows (EQL)", "Double bottom liquidity"),
    _smc("premium_zone", "Premium Zone", "Price > 0.5 Fib of range"),
    _smc("discount_zone", "Discount Zone", "Price < 0.5 Fib of range"),
    _smc("breaker_block", "Breaker Block", "Failed Order Block"),
    _smc("volume_spike", "Volume Spike", "Abnormally high volume (2x+ average)"),
    _smc("uptrend", "Uptrend", "Higher highs and higher lows"),
    _smc("downtrend", "Downtrend", "Lower highs and lower lows"),
)

_BY_ID: Dict[str, FeatureDefinition] = {f.id: f for f in FEATURES}


def get_feature(feature_id: str) -> Optional[FeatureDefinition]:
    """Look up a catalog entry; None for unknown ids."""
    return _BY_ID.get(feature_id)


def features_by_category(category: FeatureCategory) -> List[FeatureDefinition]:
    return [f for f in FEATURES if f.category == category]


def validate_catalog(bag_keys: Iterable[str], features: Iterable[FeatureDefinition] = FEATURES) -> None:
    """Fail fast when an entry has no detector behind it.

    Raises:
        CatalogError: on duplicate ids, on entries whose value-bag key is not
            produced by the bag builder, or on pattern/smc entries missing a shape.
    """
    keys = set(bag_keys)
    seen = set()
    missing = []

    for feature in features:
        if feature.id in seen:
            raise CatalogError(f"Duplicate feature id in catalog: {feature.id}")
        seen.add(feature.id)

        if feature.key not in keys:
            missing.append(feature.id)

        if feature.category in (FeatureCategory.PATTERN, FeatureCategory.SMC) and feature.settings_shape is None:
            raise CatalogError(f"Feature {feature.id} has no settings shape")

    if missing:
        raise CatalogError(f"Catalog entries without a detector: {', '.join(sorted(missing))}")
