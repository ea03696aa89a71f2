"""Token-budgeted composition of the injected memory block."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional

from scenario_summarizer.config import EXTENSION_ID, SummarizerSettings, SummaryLanguage
from scenario_summarizer.host import Host
from scenario_summarizer.memory.kinds import strip_individual_header, strip_range_header
from scenario_summarizer.memory.store import SummaryStore
from scenario_summarizer.parsing.response import clean_catalog_sections, clean_entity_blocks
from scenario_summarizer.state import OperationState
from scenario_summarizer.utils.tokens import (
    TokenCounter,
    batch_count_tokens,
    count_tokens,
    count_tokens_approximate,
    quick_hash,
)

logger = logging.getLogger(__name__)

INJECTION_TAG = "[Scenario Summary]"
# Per-entry allowance for the heading rendered above it
ENTRY_OVERHEAD = 20

IMPORTANCE_LABELS: dict[SummaryLanguage, dict[str, str]] = {
    SummaryLanguage.KO: {"high": "높음", "medium": "중간", "low": "낮음"},
    SummaryLanguage.EN: {"high": "HIGH", "medium": "MED", "low": "LOW"},
    SummaryLanguage.JA: {"high": "高", "medium": "中", "low": "低"},
    SummaryLanguage.HYBRID: {"high": "HIGH", "medium": "MED", "low": "LOW"},
}
OWNER_LABELS: dict[SummaryLanguage, str] = {
    SummaryLanguage.KO: "소유:",
    SummaryLanguage.JA: "所有:",
}


@dataclass
class InjectionResult:
    text: str = ""
    tokens: int = 0
    skipped: set[int] = field(default_factory=set)
    included_legacy: int = 0
    included_current: int = 0
    skipped_legacy: int = 0
    error: Optional[str] = None

    @property
    def empty(self) -> bool:
        return not self.text


@dataclass
class _Candidate:
    content: str
    index: Optional[int] = None   # current entries
    order: Optional[int] = None   # legacy entries
    span: Optional[tuple[int, int]] = None  # group heads


class InjectionComposer:
    """Builds the ``[Scenario Summary]`` block and hands it to the host.

    Admission order is legacy (newest first), pinned, then the remaining
    entries newest first. Admission stops at the first entry that would
    overflow ``token_budget``; the indices of current entries left out are
    reported in :attr:`skipped`.
    """

    def __init__(
        self,
        host: Host,
        store: SummaryStore,
        settings: SummarizerSettings,
        counter: Optional[TokenCounter] = None,
        state: Optional[OperationState] = None,
    ) -> None:
        self.host = host
        self.store = store
        self.settings = settings
        self.counter: TokenCounter = counter or count_tokens_approximate
        self.state = state
        self.skipped: set[int] = set()
        self._cache: dict[str, list[int]] = {}
        self._cache_revision = -1

    # -- token counting ---------------------------------------------------

    def _sync_cache(self) -> None:
        if self._cache_revision != self.store.revision:
            self._cache.clear()
            self._cache_revision = self.store.revision

    async def _batch_count(self, texts: list[str]) -> list[int]:
        key = quick_hash("\x00".join(texts))
        if key not in self._cache:
            self._cache[key] = await batch_count_tokens(self.counter, texts)
        return self._cache[key]

    async def _count(self, text: str) -> int:
        key = quick_hash(text)
        if key not in self._cache:
            self._cache[key] = [await count_tokens(self.counter, text)]
        return self._cache[key][0]

    # -- sections ---------------------------------------------------------

    def header(self) -> str:
        return f"{INJECTION_TAG}\n# {self.store.character_name()} Summary\n\n"

    def _candidates(self) -> tuple[list[_Candidate], list[_Candidate]]:
        legacy = [
            _Candidate(content=e.content, order=e.order)
            for e in reversed(self.store.get_legacy_summaries())
            if e.content.strip()
        ]
        pinned: list[_Candidate] = []
        normal: list[_Candidate] = []
        for index, entry in sorted(
            self.store.get_relevant_summaries().items(), reverse=True
        ):
            if entry.kind.is_member or entry.invalidated:
                continue
            target = pinned if entry.pinned else normal
            kind = entry.kind
            span = (kind.start, kind.end) if kind.is_group_head else None
            target.append(_Candidate(content=entry.content, index=index, span=span))
        return legacy, pinned + normal

    @staticmethod
    def _clean(content: str) -> str:
        return clean_catalog_sections(clean_entity_blocks(content))

    def _render_current(self, candidate: _Candidate) -> str:
        body = self._clean(candidate.content)
        if candidate.span is not None:
            heading = f"### #{candidate.span[0]}~{candidate.span[1]}"
            body = strip_range_header(body).strip()
        else:
            heading = f"### #{candidate.index}"
            body = strip_individual_header(body).strip()
        return f"{heading}\n{body}\n\n"

    def _render_legacy(self, candidate: _Candidate) -> str:
        body = strip_range_header(self._clean(candidate.content)).strip()
        return f"{body}\n\n"

    def events_text(self) -> str:
        labels = IMPORTANCE_LABELS[self.settings.summary_language]
        lines: list[str] = []
        for event in self.store.get_relevant_events():
            line = f"- [{labels.get(event.importance, labels['medium'])}] {event.title}"
            if event.message_index is not None:
                line += f" (#{event.message_index})"
            lines.append(line)
            if event.description:
                lines.append(f"  {event.description}")
        return "\n".join(lines) + "\n" if lines else ""

    def items_text(self) -> str:
        language = self.settings.summary_language
        label = IMPORTANCE_LABELS[language]["medium"]
        owner_label = OWNER_LABELS.get(language, "by:")
        lines: list[str] = []
        for item in self.store.get_relevant_items():
            line = f"- [{label}] {item.name}"
            if item.status:
                line += f" [{item.status}]"
            if item.owner:
                line += f" {owner_label}{item.owner}"
            lines.append(line)
            if item.description:
                lines.append(f"  {item.description}")
        return "\n".join(lines) + "\n" if lines else ""

    # -- composition ------------------------------------------------------

    async def compose(self, ignore_budget: bool = False) -> InjectionResult:
        """Render the injection text; deterministic for a given store state."""
        self._sync_cache()
        legacy, current = self._candidates()
        if not legacy and not current:
            self.skipped = set()
            return InjectionResult()

        header = self.header()
        budget = self.settings.token_budget
        counts = await self._batch_count(
            [header] + [c.content for c in legacy] + [c.content for c in current]
        )
        used = counts[0]
        admitted_legacy: list[_Candidate] = []
        admitted_current: list[_Candidate] = []
        skipped: set[int] = set()
        skipped_legacy = 0
        full = False

        for candidate, tokens in zip(legacy + current, counts[1:]):
            if not full and (ignore_budget or used + tokens + ENTRY_OVERHEAD <= budget):
                used += tokens + ENTRY_OVERHEAD
                if candidate.index is None:
                    admitted_legacy.append(candidate)
                else:
                    admitted_current.append(candidate)
                continue
            full = True
            if candidate.index is None:
                skipped_legacy += 1
            else:
                skipped.add(candidate.index)

        self.skipped = skipped
        if not admitted_legacy and not admitted_current:
            logger.info("Nothing fits the %d-token budget", budget)
            return InjectionResult(skipped=skipped, skipped_legacy=skipped_legacy)

        parts = [header]
        if admitted_legacy:
            parts.append("--- PREVIOUS STORY ---\n")
            parts += [
                self._render_legacy(c)
                for c in sorted(admitted_legacy, key=lambda c: c.order)
            ]
            parts.append("--- CURRENT STORY ---\n")
        parts += [
            self._render_current(c)
            for c in sorted(admitted_current, key=lambda c: c.index)
        ]

        sections = (
            ("CHARACTERS", self.store.format_characters(for_ai=True)),
            ("EVENTS", self.events_text()),
            ("ITEMS", self.items_text()),
        )
        for title, text in sections:
            if not text:
                continue
            tokens = await self._count(text)
            if ignore_budget or used + tokens <= budget:
                body = text.rstrip("\n")
                parts.append(f"\n--- {title} ---\n{body}\n\n")
                used += tokens
            else:
                logger.info("%s section skipped: +%d tokens exceeds budget", title, tokens)

        if skipped or skipped_legacy:
            logger.info(
                "Token budget reached: %d current and %d legacy entries skipped",
                len(skipped), skipped_legacy,
            )
        return InjectionResult(
            text="".join(parts),
            tokens=used,
            skipped=skipped,
            included_legacy=len(admitted_legacy),
            included_current=len(admitted_current),
            skipped_legacy=skipped_legacy,
        )

    async def preview(self, ignore_budget: bool = False) -> InjectionResult:
        """Composition plus a footer naming what the budget left out."""
        try:
            result = await self.compose(ignore_budget=ignore_budget)
        except Exception as exc:
            self._record("injection.preview", exc)
            return InjectionResult(text=f"(preview failed: {exc})", error=str(exc))
        if result.empty and not result.skipped:
            result.text = "(no summaries to inject)"
            return result
        omitted = len(result.skipped) + result.skipped_legacy
        if omitted:
            result.text += f"\n... ({omitted} older summaries omitted: token budget exceeded) ..."
        return result

    async def inject(self) -> InjectionResult:
        """Install the current composition in the host; never raises."""
        try:
            ctx = self.host.get_context()
            if not self.settings.enabled or ctx is None or not ctx.chat:
                self.clear()
                return InjectionResult()
            result = await self.compose()
            self._set(result.text)
            if not result.empty:
                logger.info(
                    "Summary injected: %d legacy + %d current entries, ~%d tokens",
                    result.included_legacy, result.included_current, result.tokens,
                )
            return result
        except Exception as exc:
            self._record("injection.inject", exc)
            return InjectionResult(error=str(exc))

    def clear(self) -> None:
        try:
            self._set("")
        except Exception as exc:
            self._record("injection.clear", exc)

    def _set(self, text: str) -> None:
        self.host.set_injection(
            EXTENSION_ID,
            text,
            self.settings.injection_position,
            self.settings.injection_depth,
        )

    def _record(self, context: str, exc: Exception) -> None:
        if self.state is not None:
            self.state.record_error(context, exc)
        else:
            logger.exception("%s failed", context)
