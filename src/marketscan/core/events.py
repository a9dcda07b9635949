"""Event definitions for scanner progress, matches and alerts."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class EventType(str, Enum):
    """Event types published on the in-process bus."""

    # Scanner events
    SCANNER_JOB_STARTED = "scanner.job_started"
    SCANNER_PROGRESS = "scanner.progress"
    SCANNER_JOB_COMPLETED = "scanner.job_completed"
    SCANNER_JOB_ERROR = "scanner.job_error"

    # Alerts
    SCAN_MATCH = "alert.scan_match"
    PRICE_ALERT = "alert.price"

    # System events
    ERROR_OCCURRED = "error.occurred"


class EventPriority(str, Enum):
    """Event priority levels."""
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    CRITICAL = "critical"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Event(BaseModel):
    """Base event class for all bus messages."""

    event_id: str = Field(default_factory=lambda: str(uuid.uuid4()), description="Unique event identifier")
    event_type: EventType = Field(..., description="Type of event")
    priority: EventPriority = Field(default=EventPriority.NORMAL, description="Event priority")
    timestamp: datetime = Field(default_factory=_utcnow, description="Event timestamp")
    source: str = Field(..., description="Event source component")
    data: Dict[str, Any] = Field(default_factory=dict, description="Event payload")
    correlation_id: Optional[str] = Field(None, description="Correlation ID, e.g. the scan job id")

    def to_json(self) -> str:
        return self.model_dump_json()

    @classmethod
    def from_json(cls, json_str: str) -> Event:
        return cls.model_validate_json(json_str)


class AlertEvent(Event):
    """User-facing alert, e.g. a scan that produced matches."""

    title: str = Field(..., description="Short alert headline")
    message: str = Field(..., description="Alert body")
    symbol: Optional[str] = Field(None, description="Leading symbol, if any")


class ErrorEvent(Event):
    """System error event."""

    error_type: str = Field(..., description="Error type")
    error_message: str = Field(..., description="Error message")

    def __init__(self, **data):
        super().__init__(event_type=EventType.ERROR_OCCURRED, **data)


def create_progress_event(
    source: str,
    job_id: str,
    current: int,
    total: int,
    timeframe: Optional[str] = None,
) -> Event:
    """Create a scanner progress event."""
    return Event(
        event_type=EventType.SCANNER_PROGRESS,
        priority=EventPriority.LOW,
        source=source,
        correlation_id=job_id,
        data={"current": current, "total": total, "timeframe": timeframe},
    )


def create_scan_match_alert(
    source: str,
    title: str,
    message: str,
    symbol: Optional[str] = None,
    job_id: Optional[str] = None,
) -> AlertEvent:
    """Create a scan-match alert event."""
    return AlertEvent(
        event_type=EventType.SCAN_MATCH,
        priority=EventPriority.HIGH,
        source=source,
        correlation_id=job_id,
        title=title,
        message=message,
        symbol=symbol,
    )
