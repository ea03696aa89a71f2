"""Assembles summarization prompts from settings, store state and messages."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Optional, Sequence

from jinja2 import Environment, FileSystemLoader

from scenario_summarizer.config import CategoryConfig, SummarizerSettings
from scenario_summarizer.host import ChatContext, Host, Message, MessageGroup
from scenario_summarizer.memory.store import PreviousContext, SummaryStore
from scenario_summarizer.prompts.defaults import (
    CHARACTER_OUTPUT_BLOCK,
    CONTINUITY_LABELS,
    DEFAULT_BATCH_PROMPT_TEMPLATE,
    DEFAULT_CATEGORY_LINE,
    DEFAULT_CHARACTER_PROMPT_TEMPLATE,
    DEFAULT_EVENT_PROMPT_TEMPLATE,
    DEFAULT_ITEM_PROMPT_TEMPLATE,
    DEFAULT_PROMPT_TEMPLATE,
    EVENT_OUTPUT_BLOCK,
    ITEM_OUTPUT_BLOCK,
    LANG_INSTRUCTIONS,
    LANG_REMINDERS,
    UNKNOWN_VALUE,
)

logger = logging.getLogger(__name__)

TEMPLATE_DIR = Path(__file__).parent / "templates"


class PromptBuilder:
    """Builds individual and batch prompts.

    Layout lives in jinja2 templates; user-supplied instruction texts are
    passed in as plain values and never evaluated as templates. Only the
    ``{{PREV_*}}`` placeholders and the ``{{user}}``/``{{char}}`` macros
    are substituted in them.
    """

    def __init__(
        self,
        host: Host,
        store: SummaryStore,
        settings: SummarizerSettings,
        template_dir: Optional[Path] = None,
    ) -> None:
        self.host = host
        self.store = store
        self.settings = settings
        self._env = Environment(
            loader=FileSystemLoader(str(template_dir or TEMPLATE_DIR)),
            trim_blocks=True,
            lstrip_blocks=True,
            autoescape=False,
        )

    def _render(self, template_name: str, **variables: Any) -> str:
        template = self._env.get_template(template_name)
        return self._apply_macros(template.render(**variables))

    def _apply_macros(self, text: str) -> str:
        ctx = self.host.get_context()
        if ctx is None:
            return text
        return (
            text.replace("{{user}}", ctx.name1 or "User")
            .replace("{{char}}", ctx.name2 or "Character")
        )

    # -- sections ---------------------------------------------------------

    def previous_context(self, start_index: int) -> PreviousContext:
        language = self.settings.summary_language
        labels: dict[str, list[str]] = {}
        for field_name, aliases in CONTINUITY_LABELS.items():
            configured = self.settings.categories.get(field_name)
            own = [configured.label] if configured and configured.label else []
            labels[field_name] = own + list(aliases)
        unknown = UNKNOWN_VALUE[language]
        previous = self.store.get_previous_context(start_index, labels, unknown=unknown)
        return previous or PreviousContext(unknown, unknown, unknown)

    def profile_info(self) -> str:
        """Character card, persona and (optionally) world info."""
        ctx = self.host.get_context()
        if ctx is None:
            return ""
        parts: list[str] = []

        card = ctx.character
        if card:
            lines = ["## Character Card Info"]
            for key, label in (("name", "Name"), ("description", "Description"),
                               ("personality", "Personality")):
                if card.get(key):
                    lines.append(f"* {label}: {card[key]}")
            # raw prompts carry the scenario through world info already
            if not self.settings.use_raw_prompt and card.get("scenario"):
                lines.append(f"* Scenario: {card['scenario']}")
            parts.append("\n".join(lines))

        if ctx.name1 or ctx.persona_description:
            lines = ["## Persona Info (User)"]
            if ctx.name1:
                lines.append(f"* Name: {ctx.name1}")
            if ctx.persona_description:
                lines.append(f"* Description: {ctx.persona_description}")
            parts.append("\n".join(lines))

        if self.settings.include_world_info and ctx.world_info:
            parts.append(self._world_info(ctx))

        return "\n\n".join(p for p in parts if p).strip()

    @staticmethod
    def _world_info(ctx: ChatContext) -> str:
        lines = ["## World Info / Lorebook"]
        for entry in ctx.world_info:
            content = entry.get("content") or entry.get("entry") or ""
            if not content:
                continue
            keys = entry.get("keys") or entry.get("key") or []
            key_str = ", ".join(keys) if isinstance(keys, list) else str(keys)
            lines.append(f"### {key_str}\n{content}\n" if key_str else f"{content}\n")
        return "\n".join(lines)

    def categories(self) -> list[CategoryConfig]:
        enabled = [
            CategoryConfig(
                enabled=True, label=cat.label or key, icon=cat.icon, prompt=cat.prompt
            )
            for key, cat in self.settings.ordered_categories()
            if cat.enabled
        ]
        if not enabled:
            enabled = [
                CategoryConfig(enabled=True, label="Scenario", prompt=DEFAULT_CATEGORY_LINE)
            ]
        return enabled

    def extraction_blocks(self) -> list[str]:
        settings = self.settings
        blocks: list[str] = []
        if settings.character_tracking_enabled:
            blocks.append(
                (settings.custom_character_prompt_template or DEFAULT_CHARACTER_PROMPT_TEMPLATE)
                + "\n\n" + CHARACTER_OUTPUT_BLOCK
            )
        if settings.event_tracking_enabled:
            blocks.append(
                (settings.custom_event_prompt_template or DEFAULT_EVENT_PROMPT_TEMPLATE)
                + "\n\n" + EVENT_OUTPUT_BLOCK
            )
        if settings.item_tracking_enabled:
            blocks.append(
                (settings.custom_item_prompt_template or DEFAULT_ITEM_PROMPT_TEMPLATE)
                + "\n\n" + ITEM_OUTPUT_BLOCK
            )
        return blocks

    def _instructions(self, template: str, previous: PreviousContext) -> str:
        return (
            template.replace("{{PREV_TIME}}", previous.time)
            .replace("{{PREV_LOCATION}}", previous.location)
            .replace("{{PREV_RELATIONSHIP}}", previous.relationship)
        )

    def _common(self, start_index: int, template: str) -> dict[str, Any]:
        settings = self.settings
        previous = self.previous_context(start_index)
        categories = self.categories()
        return {
            "lang_instruction": LANG_INSTRUCTIONS[settings.summary_language],
            "lang_reminder": LANG_REMINDERS[settings.summary_language],
            "instructions": self._instructions(template, previous),
            "profile": self.profile_info(),
            "previous": previous,
            "recent": self.store.get_recent_summaries_for_context(
                start_index, settings.summary_context_count
            ),
            "existing_characters": (
                self.store.format_characters(for_ai=True)
                if settings.character_tracking_enabled
                else ""
            ),
            "categories": categories,
            "example_label": categories[0].label,
            "extraction_blocks": self.extraction_blocks(),
        }

    # -- prompts ----------------------------------------------------------

    def build_individual(self, messages: Sequence[tuple[int, Message]]) -> str:
        """Prompt asking for one ``#N`` section per message."""
        if not messages:
            raise ValueError("Cannot build a prompt without messages")
        numbers = [index for index, _ in messages]
        variables = self._common(
            numbers[0], self.settings.custom_prompt_template or DEFAULT_PROMPT_TEMPLATE
        )
        return self._render(
            "individual.jinja2", messages=list(messages), numbers=numbers, **variables
        )

    def build_batch(self, groups: Sequence[MessageGroup]) -> str:
        """Prompt asking for one ``#S-E`` section per group."""
        if not groups:
            raise ValueError("Cannot build a prompt without groups")
        variables = self._common(
            groups[0].start,
            self.settings.custom_batch_prompt_template or DEFAULT_BATCH_PROMPT_TEMPLATE,
        )
        return self._render("batch.jinja2", groups=list(groups), **variables)
