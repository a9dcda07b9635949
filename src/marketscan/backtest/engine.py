"""Bar-by-bar backtest replay.

Each bar outside a position recomputes the value bag over ``candles[0..i]``
and runs the evaluator; a match opens a position sized as a percentage of
current capital. Open positions close on take-profit, stop-loss or at the
last bar. Capital only changes when a position closes.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import List, Optional

from ..core.logging import get_backtest_logger, log_backtest_event, log_performance_metrics
from ..scanner.evaluator import determine_bullishness, evaluate_conditions
from ..scanner.models import CandleInput, candles_to_frame
from ..scanner.value_bag import compute_indicator_bag
from .metrics import compute_stats, empty_result
from .models import (
    BacktestConfig,
    BacktestResult,
    BacktestTrade,
    EntryMode,
    EquityPoint,
    ExitReason,
    TradeSide,
)


logger = get_backtest_logger()

WARMUP_BARS = 50
WARMUP_FRACTION = 0.3
MIN_ENTRY_HISTORY = 20
# Slack for float error in percent moves
THRESHOLD_TOLERANCE = 1e-9


@dataclass
class _Position:
    entry_index: int
    entry_price: float
    side: TradeSide
    size: float

    def pnl(self, price: float) -> float:
        if self.side == TradeSide.LONG:
            return (price - self.entry_price) * self.size
        return (self.entry_price - price) * self.size

    def pnl_percent(self, price: float) -> float:
        if self.side == TradeSide.LONG:
            return (price - self.entry_price) / self.entry_price * 100
        return (self.entry_price - price) / self.entry_price * 100


def warmup_bars(length: int) -> int:
    return min(WARMUP_BARS, int(length * WARMUP_FRACTION))


def _exit_reason(pnl_percent: float, config: BacktestConfig, is_last_bar: bool) -> Optional[ExitReason]:
    if pnl_percent >= config.take_profit_percent - THRESHOLD_TOLERANCE:
        return ExitReason.TAKE_PROFIT
    if pnl_percent <= -config.stop_loss_percent + THRESHOLD_TOLERANCE:
        return ExitReason.STOP_LOSS
    if is_last_bar:
        return ExitReason.END
    return None


def run_backtest(candles: CandleInput, config: BacktestConfig) -> BacktestResult:
    """Replay ``config.conditions`` over ``candles`` and return aggregate statistics."""
    conditions = config.enabled_conditions()
    if not conditions:
        return empty_result(config.initial_capital)

    frame = candles_to_frame(candles)
    closes = frame["close"].astype(float).tolist()
    close_times = [int(t) for t in frame["close_time"].tolist()] if "close_time" in frame else [0] * len(frame)
    last_index = len(frame) - 1

    started = time.perf_counter()
    capital = config.initial_capital
    peak = capital
    position: Optional[_Position] = None
    trades: List[BacktestTrade] = []
    equity_curve: List[EquityPoint] = []

    for i in range(warmup_bars(len(frame)), len(frame)):
        price = closes[i]

        equity = capital + (position.pnl(price) if position else 0.0)
        peak = max(peak, equity)
        drawdown = (peak - equity) / peak * 100 if peak > 0 else 0.0
        equity_curve.append(EquityPoint(time=close_times[i], equity=equity, drawdown=drawdown))

        if position is not None:
            pnl_percent = position.pnl_percent(price)
            reason = _exit_reason(pnl_percent, config, i == last_index)
            if reason is None:
                continue

            pnl = position.pnl(price)
            capital += pnl
            trades.append(BacktestTrade(
                entry_index=position.entry_index,
                exit_index=i,
                entry_price=position.entry_price,
                exit_price=price,
                side=position.side,
                size=position.size,
                pnl=pnl,
                pnl_percent=pnl_percent,
                exit_reason=reason,
                entry_time=close_times[position.entry_index],
                exit_time=close_times[i],
            ))
            log_backtest_event(logger, "position_closed", bar_index=i, side=position.side.value,
                               price=price, pnl=round(pnl, 6), exit_reason=reason.value)
            position = None
            continue

        # A position opened on the last bar could never close
        if i + 1 < MIN_ENTRY_HISTORY or i == last_index or capital <= 0:
            continue

        window = frame.iloc[: i + 1]
        bag = compute_indicator_bag(window, conditions)
        if not evaluate_conditions(conditions, bag).matched:
            continue

        if config.entry_mode == EntryMode.AUTO:
            side = TradeSide.LONG if determine_bullishness(bag) else TradeSide.SHORT
        else:
            side = TradeSide(config.entry_mode.value)

        size = capital * (config.position_size_percent / 100) / price
        position = _Position(entry_index=i, entry_price=price, side=side, size=size)
        log_backtest_event(logger, "position_opened", bar_index=i, side=side.value, price=price, size=size)

    result = compute_stats(trades, equity_curve, config.initial_capital, capital)

    log_performance_metrics(
        logger,
        "backtest",
        (time.perf_counter() - started) * 1000,
        bars=len(frame),
        trades=result.total_trades,
        final_equity=round(result.final_equity, 2),
    )
    return result
