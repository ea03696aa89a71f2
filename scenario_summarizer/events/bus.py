"""Async event bus carrying host events to subscribers."""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from typing import Awaitable, Callable, Optional

from scenario_summarizer.events.types import HostEvent, HostEventType

logger = logging.getLogger(__name__)

EventHandler = Callable[[HostEvent], Awaitable[None]]
Middleware = Callable[[HostEvent], Awaitable[Optional[HostEvent]]]


class EventBus:
    """Async pub/sub bus; events are dispatched in publish order."""

    def __init__(self, max_log: int = 1000) -> None:
        self._subscribers: dict[HostEventType, list[EventHandler]] = defaultdict(list)
        self._event_log: list[HostEvent] = []
        self._max_log = max_log
        self._middleware: list[Middleware] = []

    async def subscribe(
        self, event_type: HostEventType, handler: EventHandler
    ) -> None:
        """Register a handler for a specific event type."""
        self._subscribers[event_type].append(handler)

    async def unsubscribe(
        self, event_type: HostEventType, handler: EventHandler
    ) -> None:
        """Remove a handler; unknown handlers are ignored."""
        handlers = self._subscribers.get(event_type, [])
        if handler in handlers:
            handlers.remove(handler)

    def subscriber_count(self, event_type: HostEventType) -> int:
        return len(self._subscribers.get(event_type, []))

    async def publish(self, event: HostEvent) -> None:
        """Publish an event to all matching subscribers."""
        processed: Optional[HostEvent] = event
        for mw in self._middleware:
            processed = await mw(processed)
            if processed is None:
                return
        event = processed

        self._event_log.append(event)
        if len(self._event_log) > self._max_log:
            del self._event_log[: len(self._event_log) - self._max_log]

        handlers = list(self._subscribers.get(event.event_type, []))
        results = await asyncio.gather(
            *(handler(event) for handler in handlers), return_exceptions=True
        )

        for result in results:
            if isinstance(result, Exception):
                logger.error(
                    "Handler error for %s: %s",
                    event.event_type.value, result, exc_info=result,
                )

    def add_middleware(self, middleware: Middleware) -> None:
        """Add a middleware function to the processing chain."""
        self._middleware.append(middleware)

    def get_event_log(
        self, event_type: Optional[HostEventType] = None
    ) -> list[HostEvent]:
        """Retrieve logged events, optionally filtered by type."""
        events = self._event_log
        if event_type is not None:
            events = [e for e in events if e.event_type == event_type]
        return list(events)

    def clear_log(self) -> None:
        """Clear the event log."""
        self._event_log.clear()
