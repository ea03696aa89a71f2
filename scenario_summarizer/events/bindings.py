"""Reactions to host chat events.

Each handler checks the advisory flags in :class:`OperationState` before
starting work; none of them block. Handler failures are recorded in the
error ring and never reach the host.
"""

from __future__ import annotations

import asyncio
import functools
import logging
from typing import Awaitable, Callable, Optional

from scenario_summarizer.config import SummarizerSettings
from scenario_summarizer.events.bus import EventBus, EventHandler
from scenario_summarizer.events.types import HostEvent, HostEventType
from scenario_summarizer.injection import InjectionComposer
from scenario_summarizer.memory.store import SummaryStore
from scenario_summarizer.pipeline.summarizer import Summarizer
from scenario_summarizer.state import OperationState
from scenario_summarizer.visibility import VisibilityController

logger = logging.getLogger(__name__)

StatusObserver = Callable[[], None]


def _recorded(
    func: Callable[[EventBindings, HostEvent], Awaitable[None]]
) -> Callable[[EventBindings, HostEvent], Awaitable[None]]:
    @functools.wraps(func)
    async def wrapper(self: EventBindings, event: HostEvent) -> None:
        try:
            await func(self, event)
        except Exception as exc:
            self.state.record_error(
                f"events.{func.__name__}", exc,
                event_type=event.event_type.value,
                message_index=event.message_index,
            )

    return wrapper


class EventBindings:
    """Subscribes the summarizer to the host's event bus."""

    def __init__(
        self,
        bus: EventBus,
        store: SummaryStore,
        summarizer: Summarizer,
        injector: InjectionComposer,
        visibility: VisibilityController,
        settings: SummarizerSettings,
        state: OperationState,
        observer: Optional[StatusObserver] = None,
    ) -> None:
        self.bus = bus
        self.store = store
        self.summarizer = summarizer
        self.injector = injector
        self.visibility = visibility
        self.settings = settings
        self.state = state
        self.observer = observer
        self._registered = False
        self._handlers: dict[HostEventType, EventHandler] = {
            HostEventType.CHAT_CHANGED: self.on_chat_changed,
            HostEventType.MESSAGE_RECEIVED: self.on_message_received,
            HostEventType.GENERATION_STARTED: self.on_generation_started,
            HostEventType.GENERATION_ENDED: self.on_generation_ended,
            HostEventType.MESSAGE_SWIPED: self.on_message_swiped,
            HostEventType.MESSAGE_DELETED: self.on_message_deleted,
            HostEventType.BEFORE_GENERATION: self.on_before_generation,
        }

    @property
    def registered(self) -> bool:
        return self._registered

    async def register(self) -> None:
        if self._registered:
            logger.debug("Event handlers already registered")
            return
        for event_type, handler in self._handlers.items():
            await self.bus.subscribe(event_type, handler)
        self._registered = True
        logger.info("Event handlers registered")

    async def unregister(self) -> None:
        if not self._registered:
            return
        for event_type, handler in self._handlers.items():
            await self.bus.unsubscribe(event_type, handler)
        self._registered = False
        logger.info("Event handlers unregistered")

    async def update(self) -> None:
        """Follow the ``enabled`` setting: register and inject, or clear."""
        if self.settings.enabled:
            await self.register()
            await self.injector.inject()
        else:
            self.injector.clear()
        logger.info(
            "Event handlers updated: enabled=%s, automatic=%s",
            self.settings.enabled, self.settings.automatic_mode,
        )

    def _notify(self) -> None:
        if self.observer is None:
            return
        try:
            self.observer()
        except Exception as exc:
            self.state.record_error("events.status_observer", exc)

    def _auto_blocked(self) -> Optional[str]:
        if not self.settings.enabled or not self.settings.automatic_mode:
            return "disabled or manual mode"
        if self.state.is_chat_loading_cooldown():
            return "chat loading cooldown"
        if self.state.is_summarizing:
            return "already summarizing"
        if self.state.generation_in_progress:
            return "generation in progress"
        return None

    # -- handlers ---------------------------------------------------------

    @_recorded
    async def on_chat_changed(self, event: HostEvent) -> None:
        logger.info("Chat changed")
        self.state.set_chat_loading_cooldown(self.settings.chat_change_cooldown)
        self.store.reset_cache()
        self.visibility.clear_cache()
        await asyncio.sleep(self.settings.visibility_refresh_delay)
        self.visibility.apply()
        if self.settings.enabled:
            await self.injector.inject()
        else:
            self.injector.clear()
        self._notify()

    @_recorded
    async def on_message_received(self, event: HostEvent) -> None:
        reason = self._auto_blocked()
        if reason:
            logger.debug("Auto summary skipped on message %s: %s", event.message_index, reason)
            return
        await self.summarizer.run_auto_summary()
        self._notify()

    @_recorded
    async def on_generation_started(self, event: HostEvent) -> None:
        self.state.set_generation_lock()
        logger.debug("Generation started")

    @_recorded
    async def on_generation_ended(self, event: HostEvent) -> None:
        self.state.clear_generation_lock()
        if self._auto_blocked():
            return
        await asyncio.sleep(self.settings.auto_summary_delay)
        reason = self._auto_blocked()
        if reason:
            logger.debug("Auto summary after generation skipped: %s", reason)
            return
        await self.summarizer.run_auto_summary()
        self._notify()

    @_recorded
    async def on_message_swiped(self, event: HostEvent) -> None:
        index = event.message_index
        if index is None:
            return
        logger.info("Message #%d swiped", index)
        self.store.invalidate_on_swipe(index)
        await self.store.save()
        await self.injector.inject()
        self._notify()

    @_recorded
    async def on_message_deleted(self, event: HostEvent) -> None:
        index = event.message_index
        if index is None:
            return
        logger.info("Message #%d deleted", index)
        self.store.remap_after_deletion(index)
        await self.store.save()
        await self.injector.inject()
        self._notify()

    @_recorded
    async def on_before_generation(self, event: HostEvent) -> None:
        if self.settings.enabled:
            await self.injector.inject()
