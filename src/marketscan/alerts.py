"""Alert center fed from the event bus.

Scan-match and price alerts published on an ``EventBus`` are collected here,
newest first, capped at ``MAX_ALERTS``.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, List, Optional

from pydantic import BaseModel, Field

from .core.event_bus import EventBus
from .core.events import AlertEvent, Event, EventType
from .core.logging import get_component_logger


logger = get_component_logger("alerts")

MAX_ALERTS = 100


class AlertType(str, Enum):
    SCAN_MATCH = "scan_match"
    PRICE_ALERT = "price_alert"


_EVENT_ALERT_TYPES = {
    EventType.SCAN_MATCH: AlertType.SCAN_MATCH,
    EventType.PRICE_ALERT: AlertType.PRICE_ALERT,
}


class Alert(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid.uuid4()), description="Alert identifier")
    type: AlertType = Field(..., description="Alert kind")
    title: str = Field(..., description="Headline")
    message: str = Field("", description="Body")
    symbol: Optional[str] = Field(None, description="Leading symbol")
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    read: bool = False


class AlertCenter:
    """Keeps the most recent alerts and their read state."""

    def __init__(self, bus: Optional[EventBus] = None, max_alerts: int = MAX_ALERTS):
        self.max_alerts = max_alerts
        self._alerts: List[Alert] = []
        self._unsubscribers: List[Callable[[], None]] = []
        if bus is not None:
            self.attach(bus)

    def attach(self, bus: EventBus) -> None:
        """Subscribe to alert events on ``bus``."""
        for event_type in _EVENT_ALERT_TYPES:
            self._unsubscribers.append(bus.subscribe(event_type, self._on_event))

    def detach(self) -> None:
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers.clear()

    def _on_event(self, event: Event) -> None:
        if isinstance(event, AlertEvent):
            title, message, symbol = event.title, event.message, event.symbol
        else:
            title = str(event.data.get("title", event.event_type.value))
            message = str(event.data.get("message", ""))
            symbol = event.data.get("symbol")
        self.add(_EVENT_ALERT_TYPES[event.event_type], title, message, symbol)

    def add(self, alert_type: AlertType, title: str, message: str = "", symbol: Optional[str] = None) -> Alert:
        alert = Alert(type=alert_type, title=title, message=message, symbol=symbol)
        self._alerts.insert(0, alert)
        del self._alerts[self.max_alerts:]
        logger.info("Alert added", alert_type=alert_type.value, title=title, symbol=symbol)
        return alert

    def alerts(self) -> List[Alert]:
        """Snapshot of current alerts, newest first."""
        return [alert.model_copy() for alert in self._alerts]

    def unread_count(self) -> int:
        return sum(1 for alert in self._alerts if not alert.read)

    def mark_read(self, alert_id: str) -> bool:
        """Mark one alert read. Returns False for an unknown id."""
        for alert in self._alerts:
            if alert.id == alert_id:
                alert.read = True
                return True
        return False

    def mark_all_read(self) -> None:
        for alert in self._alerts:
            alert.read = True

    def clear(self) -> None:
        self._alerts.clear()
