"""Hides summarized messages from the host view.

Only flags the summarizer owns are touched: a message is hidden by setting
``is_system`` together with ``summarized_hidden``, and only messages
carrying ``summarized_hidden`` are ever shown again. Messages the user hid
are left alone.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional

from scenario_summarizer.config import SummarizerSettings
from scenario_summarizer.host import Host, Message
from scenario_summarizer.memory.store import SummaryStore
from scenario_summarizer.state import OperationState

logger = logging.getLogger(__name__)


@dataclass
class VisibilityStats:
    total: int = 0
    summarized: int = 0
    hidden: int = 0
    visible: int = 0


class VisibilityController:
    """Applies hide/show rules over the current chat."""

    def __init__(
        self,
        host: Host,
        store: SummaryStore,
        settings: SummarizerSettings,
        state: Optional[OperationState] = None,
    ) -> None:
        self.host = host
        self.store = store
        self.settings = settings
        self.state = state
        self._elements: dict[int, Any] = {}
        self._last_chat_length = 0

    def _element(self, index: int) -> Optional[Any]:
        if index not in self._elements:
            element = self.host.message_element(index)
            if element is None:
                return None
            self._elements[index] = element
        return self._elements[index]

    def clear_cache(self) -> None:
        self._elements.clear()
        self._last_chat_length = 0

    def _hide(self, index: int, message: Message) -> None:
        message.is_system = True
        message.summarized_hidden = True
        element = self._element(index)
        if element is not None:
            self.host.set_element_hidden(element, True)

    def _show(self, index: int, message: Message) -> None:
        message.is_system = False
        message.summarized_hidden = False
        element = self._element(index)
        if element is not None:
            self.host.set_element_hidden(element, False)

    def apply(self) -> tuple[int, int]:
        """Hide summarized messages older than the preserved tail.

        Returns ``(hidden, restored)`` counts for this pass.
        """
        try:
            return self._apply()
        except Exception as exc:
            self._record("visibility.apply", exc)
            return 0, 0

    def _apply(self) -> tuple[int, int]:
        ctx = self.host.get_context()
        if ctx is None or not ctx.chat:
            return 0, 0

        length = len(ctx.chat)
        if length != self._last_chat_length:
            self._elements.clear()
            self._last_chat_length = length

        if not self.settings.auto_hide_enabled:
            logger.debug("Auto-hide disabled, visibility unchanged")
            return 0, 0

        summaries = self.store.get_summaries()
        threshold = length - self.settings.preserve_recent_messages
        hidden = restored = 0

        for index, message in enumerate(ctx.chat):
            if self.host.is_user_hidden(message):
                continue
            if index in summaries and index < threshold:
                if not message.is_system:
                    self._hide(index, message)
                    hidden += 1
            elif message.summarized_hidden:
                self._show(index, message)
                restored += 1

        if hidden or restored:
            logger.info("Visibility updated: %d hidden, %d restored", hidden, restored)
        return hidden, restored

    def restore_all(self) -> int:
        """Show every message the summarizer hid."""
        ctx = self.host.get_context()
        if ctx is None:
            return 0
        restored = 0
        for index, message in enumerate(ctx.chat):
            if message.summarized_hidden:
                self._show(index, message)
                restored += 1
        logger.info("Restored %d summarized-hidden messages", restored)
        return restored

    def set_message_visibility(self, index: int, hide: bool) -> bool:
        ctx = self.host.get_context()
        if ctx is None or not 0 <= index < len(ctx.chat):
            return False
        message = ctx.chat[index]
        if hide:
            self._hide(index, message)
        elif message.summarized_hidden:
            self._show(index, message)
        return True

    def stats(self) -> VisibilityStats:
        ctx = self.host.get_context()
        if ctx is None:
            return VisibilityStats()
        summaries = self.store.get_relevant_summaries()
        hidden = sum(1 for m in ctx.chat if m.is_system)
        return VisibilityStats(
            total=len(ctx.chat),
            summarized=sum(1 for i in range(len(ctx.chat)) if i in summaries),
            hidden=hidden,
            visible=len(ctx.chat) - hidden,
        )

    def _record(self, context: str, exc: Exception) -> None:
        if self.state is not None:
            self.state.record_error(context, exc)
        else:
            logger.exception("%s failed", context)
