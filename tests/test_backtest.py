"""Tests for the backtest replay and its statistics."""

import math

import pytest
from pydantic import ValidationError

from conftest import candles_from_closes
from marketscan.backtest import (
    BacktestConfig,
    EntryMode,
    ExitReason,
    TradeSide,
    run_backtest,
)
from marketscan.backtest.engine import warmup_bars
from marketscan.backtest.metrics import profit_factor, sharpe_ratio
from marketscan.scanner.models import ConditionMode, ScanCondition


ALWAYS = ScanCondition(feature="rsi", mode=ConditionMode.RANGE, min_value=0, max_value=100)


def step_closes(after: float, length: int = 60, step_at: int = 20):
    """Flat at 100, then a single step to ``after`` that holds to the end."""
    return [100.0] * step_at + [after] * (length - step_at)


class TestBacktestConfig:
    """Config defaults and validation."""

    def test_defaults(self):
        config = BacktestConfig()
        assert config.entry_mode == EntryMode.LONG
        assert config.take_profit_percent == 3.0
        assert config.stop_loss_percent == 2.0
        assert config.position_size_percent == 10.0
        assert config.initial_capital == 10000.0

    def test_camel_case_input(self):
        config = BacktestConfig.model_validate({"takeProfitPercent": 5, "entryMode": "auto"})
        assert config.take_profit_percent == 5
        assert config.entry_mode == EntryMode.AUTO

    @pytest.mark.parametrize("field, value", [
        ("take_profit_percent", 0),
        ("stop_loss_percent", -1),
        ("position_size_percent", 0),
        ("position_size_percent", 150),
        ("initial_capital", 0),
    ])
    def test_rejects_invalid_values(self, field, value):
        with pytest.raises(ValidationError):
            BacktestConfig(**{field: value})


class TestRunBacktest:
    """Replay behaviour on hand-built price paths."""

    def test_warmup(self):
        assert warmup_bars(60) == 18
        assert warmup_bars(1000) == 50
        assert warmup_bars(3) == 0

    def test_take_profit_then_end(self):
        candles = candles_from_closes(step_closes(104.0))
        result = run_backtest(candles, BacktestConfig(conditions=[ALWAYS]))

        assert result.total_trades == 2
        first, second = result.trades
        assert first.entry_index == 19
        assert first.exit_index == 20
        assert first.side == TradeSide.LONG
        assert first.exit_reason == ExitReason.TAKE_PROFIT
        assert first.size == pytest.approx(10.0)
        assert first.pnl == pytest.approx(40.0)
        assert first.pnl_percent == pytest.approx(4.0)

        assert second.entry_index == 21
        assert second.exit_index == 59
        assert second.exit_reason == ExitReason.END
        assert second.pnl == pytest.approx(0.0)

        assert result.final_equity == pytest.approx(10040.0)
        assert result.total_pnl == pytest.approx(40.0)
        assert result.win_rate == pytest.approx(50.0)
        assert math.isinf(result.profit_factor)
        assert len(result.equity_curve) == 60 - 18

    def test_exact_target_move(self):
        candles = candles_from_closes(step_closes(103.0))
        result = run_backtest(candles, BacktestConfig(conditions=[ALWAYS], take_profit_percent=3, stop_loss_percent=2))

        first = result.trades[0]
        assert first.exit_index == 20
        assert first.exit_reason == ExitReason.TAKE_PROFIT
        assert first.pnl_percent == pytest.approx(3.0)

    def test_stop_loss(self):
        candles = candles_from_closes(step_closes(97.0))
        result = run_backtest(candles, BacktestConfig(conditions=[ALWAYS]))

        first = result.trades[0]
        assert first.exit_reason == ExitReason.STOP_LOSS
        assert first.pnl == pytest.approx(-30.0)
        assert result.gross_loss == pytest.approx(30.0)
        assert result.profit_factor == 0.0
        assert result.win_rate == 0.0
        assert result.final_equity == pytest.approx(9970.0)
        assert result.max_drawdown == pytest.approx(0.3)

    def test_short_side(self):
        candles = candles_from_closes(step_closes(104.0))
        result = run_backtest(candles, BacktestConfig(conditions=[ALWAYS], entry_mode=EntryMode.SHORT))

        first = result.trades[0]
        assert first.side == TradeSide.SHORT
        assert first.exit_reason == ExitReason.STOP_LOSS
        assert first.pnl == pytest.approx(-40.0)

    def test_no_entry_on_last_bar(self, flat_candles):
        result = run_backtest(flat_candles[:20], BacktestConfig(conditions=[ALWAYS]))
        assert result.total_trades == 0
        assert result.final_equity == 10000.0
        assert len(result.equity_curve) == 20 - warmup_bars(20)

    def test_no_conditions(self, flat_candles):
        result = run_backtest(flat_candles, BacktestConfig())
        assert result.total_trades == 0
        assert result.final_equity == 10000.0
        assert result.equity_curve == []

    def test_condition_never_matching(self, flat_candles):
        never = ScanCondition(feature="rsi", min_value=90, max_value=100)
        result = run_backtest(flat_candles, BacktestConfig(conditions=[never]))
        assert result.total_trades == 0
        assert result.trades == []

    def test_capital_conservation(self, random_walk_candles):
        config = BacktestConfig(conditions=[ALWAYS], entry_mode=EntryMode.AUTO,
                                take_profit_percent=1.5, stop_loss_percent=1.0)
        result = run_backtest(random_walk_candles, config)

        assert result.total_trades == len(result.trades) > 0
        assert result.final_equity == pytest.approx(config.initial_capital + sum(t.pnl for t in result.trades))
        assert result.total_pnl == pytest.approx(result.final_equity - config.initial_capital)
        for trade in result.trades:
            assert trade.exit_index > trade.entry_index
            assert trade.holding_bars == trade.exit_index - trade.entry_index
        for earlier, later in zip(result.trades, result.trades[1:]):
            assert later.entry_index > earlier.exit_index

    def test_deterministic(self, random_walk_candles):
        config = BacktestConfig(conditions=[ALWAYS])
        first = run_backtest(random_walk_candles, config)
        second = run_backtest(random_walk_candles, config)
        assert [t.pnl for t in first.trades] == [t.pnl for t in second.trades]
        assert first.final_equity == second.final_equity


class TestMetrics:

    def test_sharpe_ratio(self):
        assert sharpe_ratio([]) == 0.0
        assert sharpe_ratio([0.01, 0.01, 0.01]) == 0.0
        assert sharpe_ratio([0.02, -0.01]) == pytest.approx(0.005 / 0.015 * math.sqrt(252))

    def test_profit_factor(self):
        assert profit_factor(30.0, 10.0) == 3.0
        assert math.isinf(profit_factor(30.0, 0.0))
        assert profit_factor(0.0, 0.0) == 0.0
