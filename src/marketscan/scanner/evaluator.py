"""Condition evaluator.

Dispatches each condition on its feature's settings shape and returns a
match flag plus a human-readable reason. Rule-sets are ANDed. The evaluator
is stateless: every call reads only the value bag it is given.
"""

from __future__ import annotations

from typing import Callable, Dict, Iterable, List, NamedTuple, Optional

from ..core.logging import get_component_logger
from .catalog import FeatureDefinition, SettingsShape, get_feature
from .models import (
    CandleInput,
    ComparisonOperator,
    ConditionMode,
    CrossType,
    EMAConfig,
    PricePosition,
    ScanCondition,
)
from .value_bag import (
    Cross,
    ValueBag,
    bb_keys,
    bollinger_settings,
    compute_indicator_bag,
    detect_crossover,
    ema_key,
    finite,
    macd_keys,
    macd_settings,
    rsi_key,
    sma_key,
)


logger = get_component_logger("evaluator")

EQUALITY_EPSILON = 0.01
STOCH_OVERBOUGHT = 80.0
STOCH_OVERSOLD = 20.0
RSI_OVERSOLD = 30.0
RSI_OVERBOUGHT = 70.0


class ConditionResult(NamedTuple):
    matched: bool
    reason: str = ""


class EvaluationResult(NamedTuple):
    matched: bool
    reasons: List[str]


NO_MATCH = ConditionResult(False, "")


def _num(value: float) -> str:
    return f"{value:g}"


def compare(value: float, operator: ComparisonOperator, target: float) -> bool:
    """Apply a comparison operator; ``=`` allows an absolute error of 0.01."""
    if operator == ComparisonOperator.GT:
        return value > target
    if operator == ComparisonOperator.LT:
        return value < target
    if operator == ComparisonOperator.GTE:
        return value >= target
    if operator == ComparisonOperator.LTE:
        return value <= target
    return abs(value - target) < EQUALITY_EPSILON


def _evaluate_rsi(condition: ScanCondition, feature: FeatureDefinition, bag: ValueBag) -> ConditionResult:
    value = bag.number(rsi_key(condition.period))
    if not finite(value):
        return NO_MATCH

    low = condition.min_value if condition.min_value is not None else 0.0
    high = condition.max_value if condition.max_value is not None else 100.0
    if not low <= value <= high:
        return NO_MATCH

    reasons = [f"RSI = {value:.2f} (Range: {_num(low)}-{_num(high)})"]

    for enabled, key, label in (
        (condition.rsi_regular_divergence, "rsi_divergence_regular", "Regular"),
        (condition.rsi_hidden_divergence, "rsi_divergence_hidden", "Hidden"),
    ):
        if not enabled:
            continue
        direction = bag.text(key)
        if direction == Cross.NONE.value:
            return NO_MATCH
        reasons.append(f"{label} {direction.capitalize()} RSI Divergence")

    return ConditionResult(True, ", ".join(reasons))


def _evaluate_moving_average(condition: ScanCondition, feature: FeatureDefinition, bag: ValueBag) -> ConditionResult:
    simple = feature.id == "sma"
    label = "SMA" if simple else "EMA"
    key_for = sma_key if simple else ema_key
    price = bag.number("price")

    configs = [c for c in condition.ema_configs if c.enabled]
    if not configs and not condition.ema_crossover:
        # Bare condition: one check at the condition's own period
        configs = [EMAConfig(
            period=condition.period or feature.default_period or 20,
            price_position=condition.price_position,
        )]

    reasons: List[str] = []
    all_matched = True

    for config in configs:
        value = bag.number(key_for(config.period))
        if not finite(value) or not finite(price):
            all_matched = False
            continue

        if config.price_position == PricePosition.ABOVE:
            if price > value:
                reasons.append(f"Price > {label}{config.period} ({value:.2f})")
            else:
                all_matched = False
        elif config.price_position == PricePosition.BELOW:
            if price < value:
                reasons.append(f"Price < {label}{config.period} ({value:.2f})")
            else:
                all_matched = False
        else:
            reasons.append(f"{label}{config.period} = {value:.2f}")

    fast, slow = condition.ema_crossover_fast, condition.ema_crossover_slow
    if condition.ema_crossover and fast and slow:
        fast_series, slow_series = bag.series(key_for(fast)), bag.series(key_for(slow))
        cross = Cross.NONE
        if fast_series is not None and slow_series is not None:
            cross = detect_crossover(fast_series, slow_series)

        if condition.cross_type == CrossType.CROSSOVER and cross == Cross.BULLISH:
            reasons.append(f"{label}{fast} crossed above {label}{slow}")
        elif condition.cross_type == CrossType.CROSSUNDER and cross == Cross.BEARISH:
            reasons.append(f"{label}{fast} crossed below {label}{slow}")
        else:
            all_matched = False

    if all_matched and reasons:
        return ConditionResult(True, ", ".join(reasons))
    return NO_MATCH


def _evaluate_macd(condition: ScanCondition, feature: FeatureDefinition, bag: ValueBag) -> ConditionResult:
    keys = macd_keys(*macd_settings(condition))
    histogram = bag.number(keys.histogram)
    if not finite(histogram):
        return NO_MATCH

    cross = bag.text(keys.cross)
    if condition.cross_type == CrossType.CROSSOVER:
        if cross != Cross.BULLISH.value:
            return NO_MATCH
        label = "Bullish Cross"
    elif condition.cross_type == CrossType.CROSSUNDER:
        if cross != Cross.BEARISH.value:
            return NO_MATCH
        label = "Bearish Cross"
    else:
        label = "Bullish" if histogram > 0 else "Bearish"

    if condition.operator is not None and condition.compare_value is not None:
        if not compare(histogram, condition.operator, condition.compare_value):
            return NO_MATCH

    return ConditionResult(True, f"MACD {label} (Hist: {histogram:.4f})")


def _evaluate_bollinger(condition: ScanCondition, feature: FeatureDefinition, bag: ValueBag) -> ConditionResult:
    keys = bb_keys(*bollinger_settings(condition))
    price = bag.number("price")
    upper, lower = bag.number(keys.upper), bag.number(keys.lower)
    if not (finite(price) and finite(upper) and finite(lower)):
        return NO_MATCH

    position, cross_type = condition.price_position, condition.cross_type
    crossed_upper = bag.text(keys.cross_upper) == Cross.BULLISH.value
    crossed_lower = bag.text(keys.cross_lower) == Cross.BEARISH.value

    if position == PricePosition.ABOVE or (position is None and cross_type == CrossType.CROSSOVER):
        if cross_type == CrossType.CROSSOVER:
            if crossed_upper:
                return ConditionResult(True, f"Price crossed above BB Upper ({upper:.2f})")
        elif price > upper:
            return ConditionResult(True, f"Price above BB Upper ({upper:.2f})")

    elif position == PricePosition.BELOW or (position is None and cross_type == CrossType.CROSSUNDER):
        if cross_type == CrossType.CROSSUNDER:
            if crossed_lower:
                return ConditionResult(True, f"Price crossed below BB Lower ({lower:.2f})")
        elif price < lower:
            return ConditionResult(True, f"Price below BB Lower ({lower:.2f})")

    return NO_MATCH


def _evaluate_stochastic(condition: ScanCondition, feature: FeatureDefinition, bag: ValueBag) -> ConditionResult:
    k = bag.number("stoch_k")
    if not finite(k):
        return NO_MATCH

    if condition.mode == ConditionMode.CROSS:
        cross = bag.text("stoch_cross")
        if condition.cross_type == CrossType.CROSSOVER and cross == Cross.BULLISH.value:
            return ConditionResult(True, f"Stochastic K crossed above D ({k:.2f})")
        if condition.cross_type == CrossType.CROSSUNDER and cross == Cross.BEARISH.value:
            return ConditionResult(True, f"Stochastic K crossed below D ({k:.2f})")
        return NO_MATCH

    if condition.mode != ConditionMode.RANGE:
        return NO_MATCH

    overbought = condition.stoch_overbought if condition.stoch_overbought is not None else STOCH_OVERBOUGHT
    oversold = condition.stoch_oversold if condition.stoch_oversold is not None else STOCH_OVERSOLD

    if k >= overbought:
        return ConditionResult(True, f"Stochastic K = {k:.2f} (Overbought > {_num(overbought)})")
    if k <= oversold:
        return ConditionResult(True, f"Stochastic K = {k:.2f} (Oversold < {_num(oversold)})")
    return NO_MATCH


def _evaluate_oscillator(condition: ScanCondition, feature: FeatureDefinition, bag: ValueBag) -> ConditionResult:
    value = bag.number(feature.key)
    if not finite(value):
        return NO_MATCH

    if condition.mode == ConditionMode.COMPARISON:
        operator = condition.operator or ComparisonOperator.GT
        target = condition.compare_value if condition.compare_value is not None else 0.0
        if not compare(value, operator, target):
            return NO_MATCH
        return ConditionResult(True, f"{feature.name} = {value:.2f} ({operator.value} {_num(target)})")

    if condition.mode != ConditionMode.RANGE:
        return NO_MATCH

    default_low, default_high = feature.value_range or (0.0, 100.0)
    low = condition.min_value if condition.min_value is not None else default_low
    high = condition.max_value if condition.max_value is not None else default_high
    if not low <= value <= high:
        return NO_MATCH
    return ConditionResult(True, f"{feature.name} = {value:.2f} (Range: {_num(low)}-{_num(high)})")


def _evaluate_price_cross(condition: ScanCondition, feature: FeatureDefinition, bag: ValueBag) -> ConditionResult:
    value = bag.number(feature.key)
    if not finite(value):
        return NO_MATCH

    cross = bag.text(f"price_cross_{feature.key}")
    position = bag.text(f"price_vs_{feature.key}", default="")

    if condition.cross_type == CrossType.CROSSOVER:
        if cross == Cross.BULLISH.value:
            return ConditionResult(True, f"Price crossed above {feature.name} ({value:.2f})")
    elif condition.cross_type == CrossType.CROSSUNDER:
        if cross == Cross.BEARISH.value:
            return ConditionResult(True, f"Price crossed below {feature.name} ({value:.2f})")
    elif condition.price_position == PricePosition.ABOVE:
        if position == "above":
            return ConditionResult(True, f"Price above {feature.name} ({value:.2f})")
    elif condition.price_position == PricePosition.BELOW:
        if position == "below":
            return ConditionResult(True, f"Price below {feature.name} ({value:.2f})")

    return NO_MATCH


def _evaluate_detected(condition: ScanCondition, feature: FeatureDefinition, bag: ValueBag) -> ConditionResult:
    if bag.flag(feature.key):
        return ConditionResult(True, f"{feature.name} detected")
    return NO_MATCH


def _evaluate_default(name: str, key: str, bag: ValueBag) -> ConditionResult:
    """Permissive fallback: a true flag or any finite number matches."""
    if bag.flag(key):
        return ConditionResult(True, f"{name} detected")
    value = bag.number(key)
    if finite(value):
        return ConditionResult(True, f"{name} = {value:.2f}")
    return NO_MATCH


ShapeHandler = Callable[[ScanCondition, FeatureDefinition, ValueBag], ConditionResult]

SHAPE_HANDLERS: Dict[SettingsShape, ShapeHandler] = {
    SettingsShape.RSI: _evaluate_rsi,
    SettingsShape.EMA: _evaluate_moving_average,
    SettingsShape.MACD: _evaluate_macd,
    SettingsShape.BOLLINGER: _evaluate_bollinger,
    SettingsShape.STOCHASTIC: _evaluate_stochastic,
    SettingsShape.OSCILLATOR: _evaluate_oscillator,
    SettingsShape.PRICE_CROSS: _evaluate_price_cross,
    SettingsShape.PATTERN: _evaluate_detected,
    SettingsShape.SMC: _evaluate_detected,
}


def evaluate_condition(condition: ScanCondition, bag: ValueBag) -> ConditionResult:
    """Evaluate one condition; the reason is empty when it does not match."""
    feature = get_feature(condition.feature)
    if feature is None:
        logger.debug("Condition on uncatalogued feature", feature=condition.feature)
        return _evaluate_default(condition.feature, condition.feature, bag)

    handler = SHAPE_HANDLERS.get(feature.settings_shape) if feature.settings_shape else None
    if handler is None:
        return _evaluate_default(feature.name, feature.key, bag)
    return handler(condition, feature, bag)


def evaluate_conditions(
    conditions: Iterable[ScanCondition],
    bag: Optional[ValueBag] = None,
    candles: Optional[CandleInput] = None,
) -> EvaluationResult:
    """AND every enabled condition against one value bag.

    When ``bag`` is None it is computed from ``candles``. No enabled
    condition, or no reason produced, means no match.
    """
    enabled = [c for c in conditions if c.enabled]
    if not enabled:
        return EvaluationResult(False, [])

    if bag is None:
        if candles is None:
            raise ValueError("evaluate_conditions needs a value bag or candles")
        bag = compute_indicator_bag(candles, enabled)

    all_matched = True
    reasons: List[str] = []
    for condition in enabled:
        result = evaluate_condition(condition, bag)
        if result.matched and result.reason:
            reasons.append(result.reason)
        else:
            all_matched = False

    return EvaluationResult(all_matched and bool(reasons), reasons)


def determine_bullishness(bag: ValueBag) -> bool:
    """Weighted bullish/bearish tally used to pick a side; ties count as bullish.

    RSI extremes, price vs EMA20, MACD histogram sign and BOS/ChoCH/order
    block hits count 1 each; reversal candle patterns count 2.
    """
    bullish = 0
    bearish = 0

    rsi = bag.number("rsi")
    if finite(rsi):
        if rsi < RSI_OVERSOLD:
            bullish += 1
        elif rsi > RSI_OVERBOUGHT:
            bearish += 1

    if bag.text("price_vs_ema20", default="") == "above":
        bullish += 1
    else:
        bearish += 1

    histogram = bag.number("macd_histogram")
    if finite(histogram):
        if histogram > 0:
            bullish += 1
        else:
            bearish += 1

    if bag.flag("hammer") or bag.flag("bullish_engulfing") or bag.flag("morning_star"):
        bullish += 2
    if bag.flag("shooting_star") or bag.flag("bearish_engulfing") or bag.flag("evening_star"):
        bearish += 2

    if bag.flag("bos_bullish") or bag.flag("choch_bullish") or bag.flag("bullish_ob"):
        bullish += 1
    if bag.flag("bos_bearish") or bag.flag("choch_bearish") or bag.flag("bearish_ob"):
        bearish += 1

    return bullish >= bearish
