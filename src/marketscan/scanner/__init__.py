"""Scanning core: indicators, patterns, structure, value bag and evaluator.

The async orchestrator lives in ``marketscan.scanner.scanner_engine``.
"""

from .catalog import FEATURES, CatalogError, FeatureDefinition, SettingsShape, get_feature
from .evaluator import ConditionResult, EvaluationResult, determine_bullishness, evaluate_condition, evaluate_conditions
from .models import Candle, EMAConfig, ScanCondition, ScannerConfig, ScanResult, TickerData, Timeframe
from .patterns import detect_patterns
from .structure import detect_structure, find_swing_points
from .value_bag import Cross, SeriesValue, ValueBag, compute_indicator_bag, detect_crossover

__all__ = [
    "FEATURES",
    "Candle",
    "CatalogError",
    "ConditionResult",
    "Cross",
    "EMAConfig",
    "EvaluationResult",
    "FeatureDefinition",
    "ScanCondition",
    "ScanResult",
    "ScannerConfig",
    "SeriesValue",
    "SettingsShape",
    "TickerData",
    "Timeframe",
    "ValueBag",
    "compute_indicator_bag",
    "detect_crossover",
    "detect_patterns",
    "detect_structure",
    "determine_bullishness",
    "evaluate_condition",
    "evaluate_conditions",
    "find_swing_points",
    "get_feature",
]
