"""Command-line entry point.

    marketscan features [--category pattern]
    marketscan backtest --candles candles.json --config backtest.json
    marketscan scan --config scanner.json
"""

import argparse
import asyncio
import json
import math
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

import pandas as pd
from pydantic import ValidationError

from .backtest import BacktestConfig, BacktestResult, run_backtest
from .core.logging import configure_structlog, get_logger
from .integrations.binance import BinanceMarketData, MarketDataError, tradingview_link
from .scanner.catalog import features_by_category
from .scanner.models import Candle, FeatureCategory, ScannerConfig, frame_to_candles
from .scanner.scanner_engine import ScanError, ScannerEngine


logger = get_logger(__name__)


def load_candles(path: Path) -> List[Candle]:
    """Load candles from a CSV export, or a JSON list of objects or of raw kline rows."""
    if path.suffix.lower() == ".csv":
        return frame_to_candles(pd.read_csv(path))

    raw = json.loads(path.read_text())
    candles = []
    for row in raw:
        if isinstance(row, list):
            candles.append(Candle(
                open_time=int(row[0]), open=float(row[1]), high=float(row[2]), low=float(row[3]),
                close=float(row[4]), volume=float(row[5]), close_time=int(row[6]),
            ))
        else:
            candles.append(Candle.model_validate(row))
    return candles


def format_backtest(result: BacktestResult) -> Dict[str, Any]:
    summary = result.model_dump(exclude={"trades", "equity_curve"})
    if math.isinf(summary["profit_factor"]):
        summary["profit_factor"] = "inf"
    return summary


def cmd_features(args: argparse.Namespace) -> int:
    categories = [FeatureCategory(args.category)] if args.category else list(FeatureCategory)
    for category in categories:
        print(f"[{category.value}]")
        for feature in features_by_category(category):
            shape = feature.settings_shape.value if feature.settings_shape else "-"
            print(f"  {feature.id:<24} {shape:<12} {feature.name}")
    return 0


def cmd_backtest(args: argparse.Namespace) -> int:
    candles = load_candles(Path(args.candles))
    config = BacktestConfig.model_validate_json(Path(args.config).read_text())

    result = run_backtest(candles, config)
    print(json.dumps(format_backtest(result), indent=2))
    return 0


async def run_scan(config: ScannerConfig) -> int:
    async with BinanceMarketData() as market:
        engine = ScannerEngine(market)
        results = await engine.scan_pool(config)

    primary = config.scan_timeframes()[0]
    for result in results:
        print(f"{result.symbol:<14} {result.price:>14.6g} {result.price_change_24h:>+7.2f}%  "
              f"{'bull' if result.is_bullish else 'bear'}  {'; '.join(result.match_reasons)}")
        print(f"{'':<14} {tradingview_link(result.symbol, primary)}")
    print(f"{len(results)} match(es)")
    return 0


def cmd_scan(args: argparse.Namespace) -> int:
    config = ScannerConfig.model_validate_json(Path(args.config).read_text())
    return asyncio.run(run_scan(config))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Crypto market scanner and backtester")
    parser.add_argument("--log-level", default="WARNING", help="Log level")
    subparsers = parser.add_subparsers(dest="command", required=True)

    features = subparsers.add_parser("features", help="List scannable features")
    features.add_argument("--category", choices=[c.value for c in FeatureCategory], help="Only list one category")
    features.set_defaults(func=cmd_features)

    backtest = subparsers.add_parser("backtest", help="Backtest a rule-set on a candle file")
    backtest.add_argument("--candles", required=True, help="JSON or CSV candle file")
    backtest.add_argument("--config", required=True, help="JSON backtest configuration")
    backtest.set_defaults(func=cmd_backtest)

    scan = subparsers.add_parser("scan", help="Run a live scan against Binance")
    scan.add_argument("--config", required=True, help="JSON scanner configuration")
    scan.set_defaults(func=cmd_scan)

    return parser


def main(argv: Optional[List[str]] = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)

    configure_structlog(log_level=args.log_level, json_format=False)

    try:
        code = args.func(args)
    except KeyboardInterrupt:
        logger.info("Stopped by user")
        code = 130
    except (ValidationError, ScanError, MarketDataError, OSError, ValueError) as e:
        logger.error("Command failed", command=args.command, error=str(e))
        print(f"error: {e}", file=sys.stderr)
        code = 1

    sys.exit(code)


if __name__ == "__main__":
    main()
