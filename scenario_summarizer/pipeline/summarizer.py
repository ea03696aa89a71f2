"""Summarization orchestrator: windows, model calls, parsing and writes."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Optional, Sequence

from scenario_summarizer.config import SummarizerSettings, SummaryMode
from scenario_summarizer.host import Host, Message, MessageGroup
from scenario_summarizer.injection import InjectionComposer
from scenario_summarizer.llm.client import GenerateOptions, SummaryClient
from scenario_summarizer.memory.kinds import (
    group_header,
    included_marker,
    strip_range_header,
)
from scenario_summarizer.memory.store import SummaryStore
from scenario_summarizer.parsing.response import (
    ParseResult,
    clean_entity_blocks,
    extract_characters,
    parse_batch_response,
    parse_individual_response,
)
from scenario_summarizer.pipeline.stages import PipelineTracker
from scenario_summarizer.prompts.builder import PromptBuilder
from scenario_summarizer.state import OperationState
from scenario_summarizer.visibility import VisibilityController

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int], None]

CANCELLED = "cancelled"


@dataclass
class SummaryResult:
    success: bool
    processed: int = 0
    error: Optional[str] = None


@dataclass
class ResummarizeResult:
    success: bool
    start: Optional[int] = None
    end: Optional[int] = None
    error: Optional[str] = None


@dataclass
class GroupResummarizeResult:
    success: bool
    success_count: int = 0
    fail_count: int = 0
    error: Optional[str] = None


class Summarizer:
    """Drives the summary model over unsummarized messages.

    ``visibility`` and ``injector`` are refreshed after every run; either
    may be left out when the caller handles that itself.
    """

    def __init__(
        self,
        host: Host,
        store: SummaryStore,
        client: SummaryClient,
        settings: SummarizerSettings,
        state: OperationState,
        builder: Optional[PromptBuilder] = None,
        visibility: Optional[VisibilityController] = None,
        injector: Optional[InjectionComposer] = None,
        options: Optional[GenerateOptions] = None,
    ) -> None:
        self.host = host
        self.store = store
        self.client = client
        self.settings = settings
        self.state = state
        self.builder = builder or PromptBuilder(host, store, settings)
        self.visibility = visibility
        self.injector = injector
        self.options = options or GenerateOptions()
        self.last_run: Optional[PipelineTracker] = None

    def request_stop(self) -> None:
        self.state.request_stop()

    # -- selection --------------------------------------------------------

    def _chat(self) -> list[Message]:
        ctx = self.host.get_context()
        return list(ctx.chat) if ctx is not None else []

    def _pending(self, chat: Sequence[Message], exclude_last: bool) -> list[int]:
        """Visible indices without a summary, optionally ignoring the last."""
        summaries = self.store.get_summaries()
        stop = len(chat) - 1 if exclude_last else len(chat)
        return [
            i for i in range(max(stop, 0))
            if i not in summaries and not self.host.is_user_hidden(chat[i])
        ]

    def first_unsummarized_index(self, exclude_last: bool = False) -> int:
        chat = self._chat()
        pending = self._pending(chat, exclude_last)
        return pending[0] if pending else len(chat)

    def count_unsummarized(self, exclude_last: bool = False) -> int:
        return len(self._pending(self._chat(), exclude_last))

    def _visible(self, chat: Sequence[Message], start: int, end: int) -> list[int]:
        return [i for i in range(start, end + 1) if not self.host.is_user_hidden(chat[i])]

    def _groups(self, chat: Sequence[Message], indices: list[int]) -> list[MessageGroup]:
        size = self.settings.batch_group_size
        return [
            MessageGroup(
                indices=indices[i:i + size],
                messages=[chat[j] for j in indices[i:i + size]],
            )
            for i in range(0, len(indices), size)
        ]

    # -- writes -----------------------------------------------------------

    def _merge_entities(self, parsed: ParseResult, first_index: int) -> None:
        settings = self.settings
        if settings.character_tracking_enabled and parsed.characters:
            self.store.merge_characters(parsed.characters, first_index)
        if settings.event_tracking_enabled:
            for event in parsed.events:
                self.store.add_event(
                    title=event.title,
                    description=event.description,
                    message_index=event.message_index,
                    participants=event.participants,
                    importance=event.importance,
                )
        if settings.item_tracking_enabled:
            for item in parsed.items:
                self.store.add_item(
                    name=item.name,
                    description=item.description,
                    owner=item.owner,
                    origin=item.origin,
                    status=item.status,
                    message_index=item.message_index,
                )

    async def _refresh(self) -> None:
        if self.visibility is not None:
            self.visibility.apply()
        if self.injector is not None:
            await self.injector.inject()

    async def _generate(self, prompt: str) -> str:
        return await self.client.generate(prompt, self.options)

    # -- runs -------------------------------------------------------------

    async def run_summary(
        self,
        start: Optional[int] = None,
        end: Optional[int] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> SummaryResult:
        """Summarize ``[start..end]``, or everything not yet summarized."""
        if self.state.is_summarizing:
            return SummaryResult(success=False, error="Summarization already in progress")
        chat = self._chat()
        if not chat:
            return SummaryResult(success=False, error="No chat messages")

        if start is not None and end is not None:
            start, end = max(start, 0), min(end, len(chat) - 1)
        else:
            start, end = self.first_unsummarized_index(), len(chat) - 1
        if start > end:
            return SummaryResult(success=True, processed=0)

        batch_mode = self.settings.summary_mode == SummaryMode.BATCH
        tracker = PipelineTracker("batch" if batch_mode else "individual")
        self.last_run = tracker
        self.state.start_summarizing()
        processed = 0
        logger.info(
            "Summarizing messages %d-%d (%s mode)",
            start, end, "batch" if batch_mode else "individual",
        )

        try:
            window_start = start
            while window_start <= end and not self.state.should_stop:
                window_end = min(window_start + self.settings.batch_size - 1, end)
                indices = self._visible(chat, window_start, window_end)
                if not indices:
                    window_start = window_end + 1
                    continue

                if on_progress is not None:
                    on_progress(window_end - start + 1, end - start + 1)

                stage = tracker.start_stage(indices[0], indices[-1])
                try:
                    if batch_mode:
                        groups = self._groups(chat, indices)
                        response = await self._generate(self.builder.build_batch(groups))
                    else:
                        pairs = [(i, chat[i]) for i in indices]
                        response = await self._generate(self.builder.build_individual(pairs))
                except Exception as exc:
                    tracker.fail_stage(stage, str(exc))
                    raise

                if self.state.should_stop:
                    tracker.cancel_stage(stage)
                    break

                parsed = (
                    parse_batch_response(response, groups)
                    if batch_mode
                    else parse_individual_response(response, indices)
                )
                self.store.set_summaries(parsed.summaries)
                self._merge_entities(parsed, indices[0])
                processed += len(parsed.summaries)
                tracker.complete_stage(stage, len(parsed.summaries), parsed.failed_indices)
                await self.store.save()

                window_start = window_end + 1

            await self._refresh()
        except Exception as exc:
            self.state.record_error("summarizer.run_summary", exc, start=start, end=end)
            return SummaryResult(success=False, processed=processed, error=str(exc))
        finally:
            self.state.stop_summarizing()

        if self.state.should_stop:
            logger.info("Summarization cancelled after %d messages", processed)
            return SummaryResult(success=False, processed=processed, error=CANCELLED)
        logger.info("Summarization finished: %d messages", processed)
        return SummaryResult(success=True, processed=processed)

    async def run_auto_summary(self) -> bool:
        """Summarize whole groups once enough messages are pending.

        The newest message is never counted so a swipe on it cannot leave
        a stale summary behind.
        """
        settings = self.settings
        if not settings.enabled or not settings.automatic_mode:
            logger.debug("Auto summary skipped: disabled or manual mode")
            return False
        if not self._chat():
            return False

        pending = self.count_unsummarized(exclude_last=True)
        if pending < settings.summary_interval:
            logger.debug(
                "Auto summary not triggered: %d < %d", pending, settings.summary_interval
            )
            return False

        group = settings.batch_group_size
        count = pending // group * group
        if count < group:
            logger.debug("Auto summary deferred: %d pending, need %d", pending, group)
            return False

        start = self.first_unsummarized_index(exclude_last=True)
        end = start + count - 1
        logger.info("Auto summary: messages %d-%d", start, end)
        result = await self.run_summary(start, end)
        return result.success

    async def resummarize(self, index: int) -> ResummarizeResult:
        """Regenerate the group ``index`` belongs to, or the single message."""
        chat = self._chat()
        if not 0 <= index < len(chat):
            return ResummarizeResult(success=False, error=f"Invalid message index: {index}")

        entry = self.store.get_summary(index)
        kind = entry.kind if entry is not None else None
        if kind is not None and kind.is_group and kind.start is not None:
            start, end = kind.start, kind.end
        else:
            start, end = index, index
        start, end = max(0, start), min(end, len(chat) - 1)
        indices = [index]
        if end > start:
            # user-hidden messages stay out of the regenerated group
            indices = self._visible(chat, start, end)
            if not indices:
                return ResummarizeResult(
                    success=False, error=f"No visible messages in #{start}-{end}"
                )
            start, end = indices[0], indices[-1]
            index = start if start == end else index

        try:
            if end > start:
                group = MessageGroup(indices=indices, messages=[chat[i] for i in indices])
                response = await self._generate(self.builder.build_batch([group]))
                if self.settings.character_tracking_enabled:
                    self.store.merge_characters(extract_characters(response, start), start)
                body = strip_range_header(clean_entity_blocks(response).strip()).strip()
                contents = {start: f"{group_header(start, end)}\n{body}"}
                contents.update({i: included_marker(start, end) for i in indices[1:]})
            else:
                response = await self._generate(self.builder.build_individual([(index, chat[index])]))
                parsed = parse_individual_response(response, [index])
                self._merge_entities(parsed, index)
                content = parsed.summaries.get(index)
                if index in parsed.failed_indices or not content:
                    content = f"#{index}\n{clean_entity_blocks(response).strip()}"
                contents = {index: content}

            self.store.set_summaries(contents)
            await self.store.save()
            if self.injector is not None:
                await self.injector.inject()
        except Exception as exc:
            self.state.record_error("summarizer.resummarize", exc, index=index)
            return ResummarizeResult(success=False, error=str(exc))

        logger.info("Resummarized #%d-%d", start, end)
        return ResummarizeResult(success=True, start=start, end=end)

    async def resummarize_groups(
        self, ranges: Sequence[tuple[int, int]]
    ) -> GroupResummarizeResult:
        """Regenerate several ranges in one call; failed groups keep old data."""
        chat = self._chat()
        if not chat or not ranges:
            return GroupResummarizeResult(success=False, error="No ranges given")

        groups = []
        for start, end in ranges:
            indices = [i for i in range(start, end + 1) if 0 <= i < len(chat)]
            if indices:
                groups.append(MessageGroup(indices=indices, messages=[chat[i] for i in indices]))
        if not groups:
            return GroupResummarizeResult(success=False, error="No valid groups")

        try:
            response = await self._generate(self.builder.build_batch(groups))
            parsed = parse_batch_response(response, groups)
            failed = set(parsed.failed_indices)
            contents: dict[int, str] = {}
            success_count = fail_count = 0
            for group in groups:
                if group.start in failed or group.start not in parsed.summaries:
                    fail_count += 1
                    continue
                contents.update({i: parsed.summaries[i] for i in group.indices})
                success_count += 1

            self.store.set_summaries(contents)
            self._merge_entities(parsed, groups[0].start)
            await self.store.save()
            if self.injector is not None:
                await self.injector.inject()
        except Exception as exc:
            self.state.record_error(
                "summarizer.resummarize_groups", exc, group_count=len(ranges)
            )
            return GroupResummarizeResult(
                success=False, fail_count=len(ranges), error=str(exc)
            )

        logger.info("Resummarized groups: %d ok, %d failed", success_count, fail_count)
        return GroupResummarizeResult(
            success=True, success_count=success_count, fail_count=fail_count
        )
