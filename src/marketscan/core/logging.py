"""Structured logging for scanner, backtest and market-data components.

Log lines are rendered by structlog on top of the standard ``logging``
module and written to stderr, so command output on stdout stays clean.
"""

from __future__ import annotations

import logging
import sys
from typing import Any, Dict, List, Optional

import structlog
from structlog.contextvars import bind_contextvars, merge_contextvars, reset_contextvars
from structlog.stdlib import LoggerFactory


def configure_structlog(
    log_level: str = "INFO",
    json_format: bool = True,
    include_timestamp: bool = True,
    include_source: bool = False,
) -> None:
    """Configure structured logging.

    Args:
        log_level: Standard level name for the root logger
        json_format: Render JSON lines instead of the console format
        include_timestamp: Add an ISO timestamp to every entry
        include_source: Add the calling module, line and function
    """
    level = getattr(logging, log_level.upper())
    logging.basicConfig(format="%(message)s", stream=sys.stderr, level=level)
    logging.getLogger().setLevel(level)

    processors: List[Any] = [
        merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
    ]
    if include_timestamp:
        processors.append(structlog.processors.TimeStamper(fmt="iso"))
    if include_source:
        processors.append(structlog.processors.CallsiteParameterAdder({
            structlog.processors.CallsiteParameter.MODULE,
            structlog.processors.CallsiteParameter.LINENO,
            structlog.processors.CallsiteParameter.FUNC_NAME,
        }))
    processors += [
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer() if json_format else structlog.dev.ConsoleRenderer(),
    ]

    structlog.configure(
        processors=processors,
        context_class=dict,
        logger_factory=LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


class ScanContext:
    """Binds fields such as ``symbol`` and ``timeframe`` to every log line inside the block."""

    def __init__(self, **context: Any):
        self.context = context
        self._tokens: Optional[Dict[str, Any]] = None

    def __enter__(self) -> ScanContext:
        self._tokens = bind_contextvars(**self.context)
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        if self._tokens is not None:
            reset_contextvars(**self._tokens)
            self._tokens = None


def _present(fields: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in fields.items() if v is not None}


def log_scan_event(
    logger: structlog.BoundLogger,
    event_type: str,
    symbol: Optional[str] = None,
    timeframe: Optional[str] = None,
    matched: Optional[bool] = None,
    reasons: Optional[list] = None,
    **kwargs: Any,
) -> None:
    """Log a per-symbol scanner event; None fields are left out."""
    logger.info("Scan event", **_present(dict(
        event_type=event_type, symbol=symbol, timeframe=timeframe, matched=matched, reasons=reasons, **kwargs
    )))


def log_backtest_event(
    logger: structlog.BoundLogger,
    event_type: str,
    bar_index: Optional[int] = None,
    side: Optional[str] = None,
    price: Optional[float] = None,
    pnl: Optional[float] = None,
    exit_reason: Optional[str] = None,
    **kwargs: Any,
) -> None:
    """Log a simulated position open/close; None fields are left out."""
    logger.info("Backtest event", **_present(dict(
        event_type=event_type, bar_index=bar_index, side=side, price=price, pnl=pnl,
        exit_reason=exit_reason, **kwargs
    )))


def log_performance_metrics(
    logger: structlog.BoundLogger,
    operation: str,
    duration_ms: float,
    success: bool = True,
    **kwargs: Any,
) -> None:
    fields = dict(operation=operation, duration_ms=round(duration_ms, 2), success=success, **kwargs)
    if success:
        logger.info("Performance metric", **fields)
    else:
        logger.error("Performance metric (failed)", **fields)


def get_logger(name: str) -> structlog.BoundLogger:
    return structlog.get_logger(name)


def get_component_logger(component: str) -> structlog.BoundLogger:
    """Logger namespaced under ``marketscan``."""
    return structlog.get_logger(f"marketscan.{component}")


def get_scanner_logger() -> structlog.BoundLogger:
    return get_component_logger("scanner")


def get_backtest_logger() -> structlog.BoundLogger:
    return get_component_logger("backtest")


def get_market_data_logger() -> structlog.BoundLogger:
    return get_component_logger("market_data")


configure_structlog()
