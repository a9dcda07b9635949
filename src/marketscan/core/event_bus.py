"""In-process publish/subscribe event bus."""

from __future__ import annotations

import asyncio
import inspect
from typing import Any, Callable, Dict, List

import structlog

from .events import ErrorEvent, Event, EventType


logger = structlog.get_logger(__name__)

Handler = Callable[[Event], Any]


class EventBus:
    """Async event bus delivering events to subscribers within one process.

    Handlers may be plain callables or coroutine functions. Delivery is
    sequential in subscription order; a failing handler is logged and
    reported as an ``ERROR_OCCURRED`` event without affecting the others.
    """

    def __init__(self, name: str = "default"):
        self.name = name
        self._subscribers: Dict[EventType, List[Handler]] = {}
        self._published: Dict[EventType, int] = {}

    def subscribe(self, event_type: EventType, handler: Handler) -> Callable[[], None]:
        """Subscribe to an event type. Returns a callable that unsubscribes."""
        handlers = self._subscribers.setdefault(event_type, [])
        if handler not in handlers:
            handlers.append(handler)
        logger.debug("Handler subscribed", bus=self.name, event_type=event_type.value)

        def _unsubscribe() -> None:
            self.unsubscribe(event_type, handler)

        return _unsubscribe

    def unsubscribe(self, event_type: EventType, handler: Handler) -> None:
        """Unsubscribe from an event type."""
        handlers = self._subscribers.get(event_type)
        if handlers and handler in handlers:
            handlers.remove(handler)
            logger.debug("Handler unsubscribed", bus=self.name, event_type=event_type.value)

    def subscriber_count(self, event_type: EventType) -> int:
        return len(self._subscribers.get(event_type, []))

    async def publish(self, event: Event) -> int:
        """Deliver an event to its subscribers. Returns the number of handlers that succeeded."""
        self._published[event.event_type] = self._published.get(event.event_type, 0) + 1
        handlers = list(self._subscribers.get(event.event_type, []))

        delivered = 0
        for handler in handlers:
            try:
                result = handler(event)
                if inspect.isawaitable(result):
                    await result
                delivered += 1
            except Exception as e:
                handler_name = getattr(handler, "__name__", repr(handler))
                logger.error(
                    "Event handler failed",
                    event_id=event.event_id,
                    event_type=event.event_type.value,
                    handler=handler_name,
                    error=str(e),
                )
                if event.event_type != EventType.ERROR_OCCURRED:
                    await self.publish(ErrorEvent(
                        source="event_bus",
                        correlation_id=event.event_id,
                        error_type=type(e).__name__,
                        error_message=str(e),
                        data={"handler": handler_name, "original_event_type": event.event_type.value},
                    ))

        return delivered

    def get_stats(self) -> Dict[str, Any]:
        """Published counts and subscriber counts per event type."""
        return {
            "published": {k.value: v for k, v in self._published.items()},
            "subscribers": {k.value: len(v) for k, v in self._subscribers.items()},
        }


async def wait_for_event(bus: EventBus, event_type: EventType, timeout: float = 5.0) -> Event:
    """Wait for the next event of a type; raises asyncio.TimeoutError when none arrives."""
    loop = asyncio.get_running_loop()
    future: asyncio.Future = loop.create_future()

    def _on_event(event: Event) -> None:
        if not future.done():
            future.set_result(event)

    unsubscribe = bus.subscribe(event_type, _on_event)
    try:
        return await asyncio.wait_for(future, timeout=timeout)
    finally:
        unsubscribe()
