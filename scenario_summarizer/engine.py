"""Engine facade wiring store, builder, summarizer, injection and events."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Optional

from scenario_summarizer.config import AppConfig, SummarizerSettings
from scenario_summarizer.events.bindings import EventBindings, StatusObserver
from scenario_summarizer.events.bus import EventBus
from scenario_summarizer.events.middleware import EventFileLogger, EventLogger
from scenario_summarizer.host import Host, InMemoryHost
from scenario_summarizer.injection import InjectionComposer
from scenario_summarizer.llm.client import GenerateOptions, LLMSummaryClient, SummaryClient
from scenario_summarizer.llm.factory import LLMFactory
from scenario_summarizer.memory import transfer
from scenario_summarizer.memory.store import SummaryStore
from scenario_summarizer.pipeline.summarizer import Summarizer
from scenario_summarizer.prompts.builder import PromptBuilder
from scenario_summarizer.state import OperationState
from scenario_summarizer.utils.tokens import TokenCounter
from scenario_summarizer.visibility import VisibilityController

logger = logging.getLogger(__name__)


class SummarizerEngine:
    """Everything the summarizer needs for one host, built in one place."""

    def __init__(
        self,
        host: Host,
        client: SummaryClient,
        settings: Optional[SummarizerSettings] = None,
        counter: Optional[TokenCounter] = None,
        state: Optional[OperationState] = None,
        observer: Optional[StatusObserver] = None,
        options: Optional[GenerateOptions] = None,
    ) -> None:
        self.host = host
        self.client = client
        self.settings = settings or SummarizerSettings()
        self.state = state or OperationState()
        self.store = SummaryStore(host, self.state)
        self.builder = PromptBuilder(host, self.store, self.settings)
        self.visibility = VisibilityController(host, self.store, self.settings, self.state)
        self.injector = InjectionComposer(
            host, self.store, self.settings, counter=counter, state=self.state
        )
        self.summarizer = Summarizer(
            host,
            self.store,
            client,
            self.settings,
            self.state,
            builder=self.builder,
            visibility=self.visibility,
            injector=self.injector,
            options=options,
        )
        self.bindings = EventBindings(
            host.event_bus,
            self.store,
            self.summarizer,
            self.injector,
            self.visibility,
            self.settings,
            self.state,
            observer=observer,
        )

    @classmethod
    def from_config(
        cls,
        config: AppConfig,
        host: Optional[Host] = None,
        client: Optional[SummaryClient] = None,
    ) -> SummarizerEngine:
        """Build an engine from an :class:`AppConfig`.

        Without an explicit host the chat file named in the config is
        opened; without a client one is created from the ``llm`` section.
        """
        if host is None:
            if not config.chat_file:
                raise ValueError("No host given and no chat_file configured")
            bus = EventBus()
            bus.add_middleware(EventLogger())
            if config.event_log:
                bus.add_middleware(EventFileLogger(Path(config.event_log)))
            host = InMemoryHost.load(Path(config.chat_file), event_bus=bus)

        counter: Optional[TokenCounter] = None
        if client is None:
            if config.llm is None:
                raise ValueError("No summary client given and no llm configured")
            backend = LLMFactory.create_from_config(config.llm)
            client = LLMSummaryClient(backend)
            counter = backend.count_tokens

        return cls(host, client, settings=config.settings, counter=counter)

    # -- lifecycle --------------------------------------------------------

    async def start(self) -> None:
        """Register event handlers and install the current injection."""
        await self.bindings.update()
        self.visibility.apply()

    async def stop(self) -> None:
        await self.bindings.unregister()
        self.injector.clear()
        self.state.reset_all()

    async def aclose(self) -> None:
        await self.stop()
        closer = getattr(self.client, "aclose", None)
        if closer is not None:
            await closer()

    # -- import / export --------------------------------------------------

    def export_json(self, mode: transfer.ExportMode = transfer.ExportMode.ALL) -> dict[str, Any]:
        return transfer.export_bundle(self.store, mode)

    async def import_json(
        self,
        text: str,
        mode: transfer.ImportMode = transfer.ImportMode.MERGE,
        source_name: Optional[str] = None,
    ) -> transfer.ImportResult:
        result = transfer.import_json(self.store, text, mode, source_name)
        if result.success:
            await self.store.save()
            await self.injector.inject()
        return result

    # -- status -----------------------------------------------------------

    def status(self) -> dict[str, Any]:
        ctx = self.host.get_context()
        summaries = self.store.get_relevant_summaries()
        failed = [i for i, e in summaries.items() if e.kind.is_failed]
        invalidated = [i for i, e in summaries.items() if e.invalidated]
        stats = self.visibility.stats()
        return {
            "character": self.store.character_name(),
            "chat_id": ctx.chat_id if ctx is not None else None,
            "messages": stats.total,
            "summarized": len(summaries),
            "unsummarized": self.summarizer.count_unsummarized(),
            "hidden": stats.hidden,
            "failed": failed,
            "invalidated": invalidated,
            "legacy": len(self.store.get_legacy_summaries()),
            "characters": len(self.store.get_relevant_characters()),
            "events": len(self.store.get_relevant_events()),
            "items": len(self.store.get_relevant_items()),
            "summarizing": self.state.is_summarizing,
            "errors": self.state.error_count,
        }
