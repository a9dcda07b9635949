"""
Scanner engine: runs a rule-set over a universe of symbols and timeframes.

Candles are fetched concurrently in batches from a candle source; every
symbol is then evaluated synchronously. With several timeframes a symbol
matches only when it matches on all of them.
"""

import asyncio
import math
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, NamedTuple, Optional, Protocol, Sequence

from ..core.event_bus import EventBus
from ..core.events import Event, EventType, create_progress_event, create_scan_match_alert
from ..core.logging import ScanContext, get_scanner_logger, log_scan_event
from ..integrations.binance import top_coins
from .evaluator import determine_bullishness, evaluate_conditions
from .models import Candle, ScanCondition, ScannerConfig, ScanPool, ScanResult, TickerData, Timeframe
from .value_bag import ValueBag, compute_indicator_bag


PREVIEW_KEYS = {
    "rsi": "rsi",
    "macd": "macd_histogram",
    "adx": "adx",
    "stoch_k": "stoch_k",
    "bb_bandwidth": "bb_bandwidth",
    "mfi": "mfi",
}
ALERT_TOP_SYMBOLS = 3


class ScanStatus(Enum):
    """Scanner execution status."""
    IDLE = "idle"
    SCANNING = "scanning"
    COMPLETED = "completed"
    ERROR = "error"


class ScanError(RuntimeError):
    """A scan was refused, e.g. no enabled condition or no symbols."""


class CandleSource(Protocol):
    async def fetch_candles(self, symbol: str, interval: str, limit: int) -> List[Candle]:
        ...


@dataclass
class ScanJob:
    """Represents one scan run."""
    job_id: str
    config: ScannerConfig
    symbols: List[str]
    timeframes: List[Timeframe]
    start_time: datetime
    end_time: Optional[datetime] = None
    status: ScanStatus = ScanStatus.IDLE
    results: List[ScanResult] = None
    error_message: Optional[str] = None
    progress: float = 0.0
    total_steps: int = 0
    processed_steps: int = 0

    def __post_init__(self):
        if self.results is None:
            self.results = []
        self.total_steps = len(self.symbols) * len(self.timeframes)


class SymbolEvaluation(NamedTuple):
    matched: bool
    reasons: List[str]
    values: ValueBag
    is_bullish: bool
    price: float


ProgressCallback = Callable[[int, int], Any]


def indicator_preview(values: ValueBag) -> Dict[str, float]:
    """Preview numbers shown with a result; non-finite or missing values read 0."""
    preview = {}
    for name, key in PREVIEW_KEYS.items():
        value = values.number(key)
        preview[name] = value if value is not None and math.isfinite(value) else 0.0
    return preview


def format_alert(results: Sequence[ScanResult]) -> Dict[str, str]:
    """Title and message summarizing the leading matches."""
    count = len(results)
    title = f"{count} Match{'es' if count != 1 else ''} Found!"
    message = ", ".join(f"{r.symbol} ({r.price_change_24h:+.1f}%)" for r in results[:ALERT_TOP_SYMBOLS])
    if count > ALERT_TOP_SYMBOLS:
        message += f" +{count - ALERT_TOP_SYMBOLS} more"
    return {"title": title, "message": message}


class ScannerEngine:
    """
    Market scanner over a candle source.

    Publishes job lifecycle, progress and scan-match alert events on the
    optional event bus and keeps aggregate scan statistics.
    """

    def __init__(self, candle_source: CandleSource, event_bus: Optional[EventBus] = None):
        self.candle_source = candle_source
        self.event_bus = event_bus
        self.logger = get_scanner_logger()

        self.job_history: List[ScanJob] = []
        self._job_counter = 0

        self.scan_stats = {
            'total_scans': 0,
            'successful_scans': 0,
            'failed_scans': 0,
            'average_scan_time': 0.0,
            'symbols_scanned': 0,
            'signals_generated': 0
        }

        self.logger.info("Scanner Engine initialized")

    async def _publish(self, event: Event) -> None:
        if self.event_bus is not None:
            await self.event_bus.publish(event)

    def evaluate_symbol(
        self,
        candles: Sequence[Candle],
        conditions: List[ScanCondition],
        min_candles: int = 20,
    ) -> Optional[SymbolEvaluation]:
        """Evaluate one symbol's candles; None when there is too little history."""
        if len(candles) < min_candles:
            return None

        values = compute_indicator_bag(candles, conditions)
        result = evaluate_conditions(conditions, values)
        return SymbolEvaluation(
            matched=result.matched,
            reasons=result.reasons,
            values=values,
            is_bullish=determine_bullishness(values),
            price=values.number("price"),
        )

    async def scan_pool(self, config: ScannerConfig, market: Optional[Any] = None,
                        progress_callback: Optional[ProgressCallback] = None) -> List[ScanResult]:
        """Resolve the configured symbol pool from 24h tickers, then scan it.

        ``market`` must provide ``fetch_ticker_24h()``; it defaults to the candle source.
        """
        market = market or self.candle_source
        tickers = await market.fetch_ticker_24h()

        if config.pool == ScanPool.FAVORITES:
            if not config.favorites:
                raise ScanError("No favorites to scan")
            symbols = list(config.favorites)
        else:
            symbols = [t.symbol for t in top_coins(tickers, config.pool, config.pool_size)]

        ticker_map = {t.symbol: t for t in tickers}
        return await self.scan(symbols, config, ticker_map, progress_callback)

    async def scan(
        self,
        symbols: List[str],
        config: ScannerConfig,
        tickers: Optional[Dict[str, TickerData]] = None,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> List[ScanResult]:
        """Scan ``symbols`` on every configured timeframe and return the matches.

        Raises:
            ScanError: When there is no enabled condition or no symbol.
        """
        conditions = config.enabled_conditions()
        if not conditions:
            raise ScanError("Scanner configuration has no enabled conditions")
        if not symbols:
            raise ScanError("No symbols to scan")

        tickers = tickers or {}
        timeframes = config.scan_timeframes()

        self._job_counter += 1
        job = ScanJob(
            job_id=f"scan_{datetime.now().strftime('%Y%m%d_%H%M%S')}_{self._job_counter}",
            config=config,
            symbols=list(symbols),
            timeframes=timeframes,
            start_time=datetime.now(),
            status=ScanStatus.SCANNING,
        )
        self.logger.info("Starting scan job", job_id=job.job_id, symbols=len(symbols),
                         timeframes=[tf.value for tf in timeframes])
        await self._publish(Event(
            event_type=EventType.SCANNER_JOB_STARTED,
            source="scanner_engine",
            correlation_id=job.job_id,
            data={"scanner_name": config.name, "symbols_count": len(symbols)},
        ))

        try:
            evaluations: Dict[Timeframe, Dict[str, SymbolEvaluation]] = {}
            for tf_index, timeframe in enumerate(timeframes):
                evaluations[timeframe] = await self._scan_timeframe(
                    job, timeframe, tf_index, conditions, progress_callback
                )

            results = self._collect_results(job.symbols, timeframes, evaluations, tickers)

            job.results = results
            job.status = ScanStatus.COMPLETED
            job.end_time = datetime.now()

            scan_time = (job.end_time - job.start_time).total_seconds()
            self._record_success(scan_time, len(symbols), len(results))
            self.logger.info("Scan job completed", job_id=job.job_id, matches=len(results),
                             scan_time=round(scan_time, 3))

            await self._publish(Event(
                event_type=EventType.SCANNER_JOB_COMPLETED,
                source="scanner_engine",
                correlation_id=job.job_id,
                data={"scanner_name": config.name, "results_count": len(results), "scan_time": scan_time},
            ))
            if results:
                alert = format_alert(results)
                await self._publish(create_scan_match_alert(
                    "scanner_engine", alert["title"], alert["message"], results[0].symbol, job.job_id
                ))

            return results

        except Exception as e:
            job.status = ScanStatus.ERROR
            job.error_message = str(e)
            job.end_time = datetime.now()
            self.scan_stats['total_scans'] += 1
            self.scan_stats['failed_scans'] += 1
            self.logger.error("Scan job failed", job_id=job.job_id, error=str(e))

            await self._publish(Event(
                event_type=EventType.SCANNER_JOB_ERROR,
                source="scanner_engine",
                correlation_id=job.job_id,
                data={"scanner_name": config.name, "error": str(e)},
            ))
            raise

        finally:
            self.job_history.append(job)

    async def _scan_timeframe(
        self,
        job: ScanJob,
        timeframe: Timeframe,
        tf_index: int,
        conditions: List[ScanCondition],
        progress_callback: Optional[ProgressCallback],
    ) -> Dict[str, SymbolEvaluation]:
        config = job.config
        symbols = job.symbols
        evaluated: Dict[str, SymbolEvaluation] = {}
        done = 0

        for start in range(0, len(symbols), config.batch_size):
            batch = symbols[start:start + config.batch_size]
            fetched = await asyncio.gather(
                *(self.candle_source.fetch_candles(s, timeframe.value, config.candle_limit) for s in batch),
                return_exceptions=True,
            )

            for symbol, candles in zip(batch, fetched):
                done += 1
                if isinstance(candles, Exception):
                    self.logger.warning("Candle fetch failed", symbol=symbol, timeframe=timeframe.value,
                                        error=str(candles))
                    continue

                with ScanContext(job_id=job.job_id, symbol=symbol, timeframe=timeframe.value):
                    evaluation = self.evaluate_symbol(candles, conditions, config.min_candles)
                    if evaluation is None:
                        continue
                    evaluated[symbol] = evaluation
                    if evaluation.matched:
                        log_scan_event(self.logger, "symbol_matched", symbol, timeframe.value,
                                       matched=True, reasons=evaluation.reasons)

            job.processed_steps = tf_index * len(symbols) + done
            job.progress = job.processed_steps / job.total_steps * 100
            if progress_callback is not None:
                progress_callback(job.processed_steps, job.total_steps)
            await self._publish(create_progress_event(
                "scanner_engine", job.job_id, job.processed_steps, job.total_steps, timeframe.value
            ))

            if start + config.batch_size < len(symbols) and config.batch_delay_seconds > 0:
                await asyncio.sleep(config.batch_delay_seconds)

        return evaluated

    def _collect_results(
        self,
        symbols: List[str],
        timeframes: List[Timeframe],
        evaluations: Dict[Timeframe, Dict[str, SymbolEvaluation]],
        tickers: Dict[str, TickerData],
    ) -> List[ScanResult]:
        primary = timeframes[0]
        results = []

        for symbol in symbols:
            per_timeframe = [evaluations[tf].get(symbol) for tf in timeframes]
            if not all(e is not None and e.matched for e in per_timeframe):
                continue

            evaluation = evaluations[primary][symbol]
            reasons = list(evaluation.reasons)
            if len(timeframes) > 1:
                reasons.append(f"Confluence: {len(timeframes)}/{len(timeframes)} TFs")

            ticker = tickers.get(symbol)
            results.append(ScanResult(
                symbol=symbol,
                price=evaluation.price,
                price_change_24h=ticker.price_change_percent if ticker else 0.0,
                volume_24h=ticker.quote_volume if ticker else 0.0,
                match_reasons=reasons,
                indicator_values=indicator_preview(evaluation.values),
                is_bullish=evaluation.is_bullish,
                timeframes=list(timeframes),
                trend=evaluation.values.text("trend", default="sideways"),
            ))

        results.sort(key=lambda r: abs(r.price_change_24h), reverse=True)
        return results

    def _record_success(self, scan_time: float, symbols: int, signals: int) -> None:
        stats = self.scan_stats
        stats['total_scans'] += 1
        stats['successful_scans'] += 1
        stats['symbols_scanned'] += symbols
        stats['signals_generated'] += signals

        if stats['successful_scans'] == 1:
            stats['average_scan_time'] = scan_time
        else:
            stats['average_scan_time'] = (
                (stats['average_scan_time'] * (stats['successful_scans'] - 1) + scan_time) /
                stats['successful_scans']
            )

    def get_scan_statistics(self) -> Dict[str, Any]:
        """Aggregate statistics plus the outcome of the latest job."""
        last = self.job_history[-1] if self.job_history else None
        return {
            **self.scan_stats,
            'jobs_run': len(self.job_history),
            'last_job_status': last.status.value if last else ScanStatus.IDLE.value,
        }
