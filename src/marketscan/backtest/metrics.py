"""Backtest statistics derived from a finished trade list."""

from __future__ import annotations

import math
from typing import List, Sequence

import numpy as np

from .models import BacktestResult, BacktestTrade, EquityPoint


TRADING_DAYS_PER_YEAR = 252


def sharpe_ratio(returns: Sequence[float]) -> float:
    """Mean over population standard deviation, annualized with sqrt(252); 0 when flat."""
    if len(returns) == 0:
        return 0.0

    values = np.asarray(returns, dtype=float)
    std_return = float(np.std(values))
    if std_return == 0:
        return 0.0

    return float(np.mean(values)) / std_return * math.sqrt(TRADING_DAYS_PER_YEAR)


def profit_factor(gross_profit: float, gross_loss: float) -> float:
    if gross_loss > 0:
        return gross_profit / gross_loss
    return math.inf if gross_profit > 0 else 0.0


def empty_result(initial_capital: float, equity_curve: Sequence[EquityPoint] = ()) -> BacktestResult:
    """Zeroed result: final equity equals initial capital."""
    return BacktestResult(equity_curve=list(equity_curve), final_equity=initial_capital)


def compute_stats(
    trades: List[BacktestTrade],
    equity_curve: List[EquityPoint],
    initial_capital: float,
    final_capital: float,
) -> BacktestResult:
    """Aggregate a run. Trades with pnl <= 0 count as losses."""
    if not trades:
        return empty_result(initial_capital, equity_curve)

    wins = [t for t in trades if t.pnl > 0]
    losses = [t for t in trades if t.pnl <= 0]

    gross_profit = sum(t.pnl for t in wins)
    gross_loss = abs(sum(t.pnl for t in losses))
    max_drawdown = max((p.drawdown for p in equity_curve), default=0.0)
    pnl_percents = [t.pnl_percent for t in trades]

    return BacktestResult(
        trades=trades,
        equity_curve=equity_curve,
        total_trades=len(trades),
        win_rate=len(wins) / len(trades) * 100,
        total_pnl=final_capital - initial_capital,
        total_pnl_percent=(final_capital - initial_capital) / initial_capital * 100,
        gross_profit=gross_profit,
        gross_loss=gross_loss,
        profit_factor=profit_factor(gross_profit, gross_loss),
        max_drawdown=max_drawdown,
        max_drawdown_percent=max_drawdown,
        sharpe_ratio=sharpe_ratio([p / 100 for p in pnl_percents]),
        avg_win=gross_profit / len(wins) if wins else 0.0,
        avg_loss=gross_loss / len(losses) if losses else 0.0,
        best_trade=max(pnl_percents),
        worst_trade=min(pnl_percents),
        avg_holding_bars=sum(t.holding_bars for t in trades) / len(trades),
        final_equity=final_capital,
    )
