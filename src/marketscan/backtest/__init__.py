"""Historical replay of scan conditions with a simple position simulator."""

from .engine import run_backtest
from .metrics import compute_stats, empty_result
from .models import BacktestConfig, BacktestResult, BacktestTrade, EntryMode, EquityPoint, ExitReason, TradeSide

__all__ = [
    "BacktestConfig",
    "BacktestResult",
    "BacktestTrade",
    "EntryMode",
    "EquityPoint",
    "ExitReason",
    "TradeSide",
    "compute_stats",
    "empty_result",
    "run_backtest",
]
