"""Backtest configuration, trade records and aggregate results."""

from __future__ import annotations

from enum import Enum
from typing import List

from pydantic import Field

from ..scanner.models import CamelModel, ScanCondition


class EntryMode(str, Enum):
    """Side selection for new positions; ``auto`` follows determine_bullishness."""
    LONG = "long"
    SHORT = "short"
    AUTO = "auto"


class TradeSide(str, Enum):
    LONG = "long"
    SHORT = "short"


class ExitReason(str, Enum):
    TAKE_PROFIT = "tp"
    STOP_LOSS = "sl"
    END = "end"


class BacktestConfig(CamelModel):
    """Rule-set and position rules for one backtest run."""

    conditions: List[ScanCondition] = Field(default_factory=list, description="Entry rule-set, ANDed")
    entry_mode: EntryMode = Field(EntryMode.LONG, description="Position side, or auto")
    take_profit_percent: float = Field(3.0, gt=0, description="Close at this percent gain")
    stop_loss_percent: float = Field(2.0, gt=0, description="Close at this percent loss")
    position_size_percent: float = Field(10.0, gt=0, le=100, description="Share of current capital per trade")
    initial_capital: float = Field(10000.0, gt=0, description="Starting capital")

    def enabled_conditions(self) -> List[ScanCondition]:
        return [c for c in self.conditions if c.enabled]


class BacktestTrade(CamelModel):
    """One simulated position, open to close."""

    entry_index: int
    exit_index: int
    entry_price: float
    exit_price: float
    side: TradeSide
    size: float = Field(..., description="Position size in base units")
    pnl: float
    pnl_percent: float
    exit_reason: ExitReason
    entry_time: int = 0
    exit_time: int = 0

    @property
    def holding_bars(self) -> int:
        return self.exit_index - self.entry_index


class EquityPoint(CamelModel):
    time: int = Field(..., description="Bar close time, epoch milliseconds")
    equity: float = Field(..., description="Realized capital plus unrealized PnL")
    drawdown: float = Field(..., description="Percent below the running equity peak")


class BacktestResult(CamelModel):
    """Aggregate statistics of one run.

    ``profit_factor`` is ``inf`` when there are winning trades and no losing
    ones, and 0 when there are no trades.
    """

    trades: List[BacktestTrade] = Field(default_factory=list)
    equity_curve: List[EquityPoint] = Field(default_factory=list)
    total_trades: int = 0
    win_rate: float = Field(0.0, description="Winning trades, percent")
    total_pnl: float = 0.0
    total_pnl_percent: float = 0.0
    gross_profit: float = 0.0
    gross_loss: float = Field(0.0, description="Absolute sum of losing trade PnL")
    profit_factor: float = 0.0
    max_drawdown: float = Field(0.0, description="Largest drawdown, percent")
    max_drawdown_percent: float = 0.0
    sharpe_ratio: float = 0.0
    avg_win: float = 0.0
    avg_loss: float = Field(0.0, description="Average losing trade PnL, absolute")
    best_trade: float = Field(0.0, description="Best trade pnl_percent")
    worst_trade: float = Field(0.0, description="Worst trade pnl_percent")
    avg_holding_bars: float = 0.0
    final_equity: float = 0.0
