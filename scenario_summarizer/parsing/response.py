"""Parsing of model replies into summaries and extracted entities.

Entity blocks (``[CHARACTERS]``, ``[EVENTS]``, ``[ITEMS]``) are pulled out
first; summaries are parsed from what remains. Every expected index gets
an entry: parsed text, or a failure placeholder. Nothing is dropped
silently.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Optional, Sequence

from scenario_summarizer.host import MessageGroup
from scenario_summarizer.memory.kinds import (
    INCOMPLETE_MARKER,
    MISSING_MARKER,
    PARSE_FAILED_MARKER,
    group_header,
    included_marker,
)
from scenario_summarizer.memory.models import CharacterEntry

logger = logging.getLogger(__name__)

CHARACTERS_BLOCK_RE = re.compile(
    r"\[CHARACTERS(?:_JSON)?\]\s*([\s\S]*?)\s*\[/.{0,5}CHARACTERS(?:_JSON)?\]", re.IGNORECASE
)
EVENTS_BLOCK_RE = re.compile(
    r"\[EVENTS(?:_JSON)?\]\s*([\s\S]*?)\s*\[/.{0,5}EVENTS(?:_JSON)?\]", re.IGNORECASE
)
ITEMS_BLOCK_RE = re.compile(
    r"\[ITEMS(?:_JSON)?\]\s*([\s\S]*?)\s*\[/.{0,5}ITEMS(?:_JSON)?\]", re.IGNORECASE
)
CATALOG_SECTION_RE = re.compile(r"\n*--- (?:CHARACTERS|EVENTS|ITEMS) ---[\s\S]*$")

# #0, [#0], 【#0】, **#0**, ## #0 on a line of their own
INDIVIDUAL_HEADER_LINE_RE = re.compile(
    r"^[ \t]*(?:\*\*)?(?:##[ \t]*)?(?:\[#|【#|#)(\d+)[\]】]?(?:\*\*)?[: \t]*$",
    re.MULTILINE,
)
_SPLIT_RE = re.compile(r"(?=(?:^|\n)\s*#\d+[\s:])")
_SPLIT_HEAD_RE = re.compile(r"^\s*#(\d+)[\s:]")
_SPLIT_STRIP_RE = re.compile(r"^\s*#\d+[\s:]*")

_FALLBACK_HEADER_RE = re.compile(r"^[#\[【]?\s*(\d+)\s*[-~]\s*(\d+)\s*[\]】]?")
_BULLET_RE = re.compile(r"^[*\-•]+\s*\*?\s*")
_CATEGORY_LINE_RE = re.compile(r"^[*\-•]\s*[^:：]+[:：]")
_LEADING_INT_RE = re.compile(r"^\s*#?(-?\d+)")

IMPORTANCE_LEVELS = ("high", "medium", "low")
MAX_FALLBACK_LINES = 10


@dataclass
class ExtractedEvent:
    title: str
    description: str = ""
    participants: list[str] = field(default_factory=list)
    importance: str = "high"
    message_index: Optional[int] = None


@dataclass
class ExtractedItem:
    name: str
    description: str = ""
    owner: str = ""
    origin: str = ""
    status: str = ""
    message_index: Optional[int] = None


@dataclass
class ParseResult:
    """Summaries keyed by message index plus extracted entities."""

    summaries: dict[int, str] = field(default_factory=dict)
    characters: dict[str, CharacterEntry] = field(default_factory=dict)
    events: list[ExtractedEvent] = field(default_factory=list)
    items: list[ExtractedItem] = field(default_factory=list)
    incomplete: bool = False

    @property
    def failed_indices(self) -> list[int]:
        return sorted(
            i for i, text in self.summaries.items()
            if PARSE_FAILED_MARKER in text or MISSING_MARKER in text
        )


# -- helpers --------------------------------------------------------------


def is_incomplete(text: str) -> bool:
    """Heuristic for a truncated reply."""
    stripped = (text or "").strip()
    if len(stripped) < 15:
        return True
    if stripped.count('"') % 2 != 0:
        return True
    opened = sum(stripped.count(c) for c in "([{")
    closed = sum(stripped.count(c) for c in ")]}")
    if opened > closed:
        return True
    for tag in ("CHARACTERS", "CHARACTERS_JSON"):
        if f"[{tag}]" in stripped and f"[/{tag}]" not in stripped:
            return True
    return False


def clean_entity_blocks(text: str) -> str:
    if not text:
        return text
    for pattern in (CHARACTERS_BLOCK_RE, EVENTS_BLOCK_RE, ITEMS_BLOCK_RE):
        text = pattern.sub("", text)
    return text.strip()


def clean_catalog_sections(text: str) -> str:
    """Drop trailing ``--- CHARACTERS/EVENTS/ITEMS ---`` sections."""
    if not text:
        return text
    return CATALOG_SECTION_RE.sub("", text).strip()


def _parse_index(value: str, fallback: int) -> int:
    match = _LEADING_INT_RE.match(value or "")
    return int(match.group(1)) if match else fallback


def _not_na(value: str) -> str:
    return "" if value == "N/A" else value


def _split_list(value: str) -> list[str]:
    return [p.strip() for p in value.split(",") if p.strip() and p.strip() != "N/A"]


def _pipe_rows(block: str) -> list[list[str]]:
    rows = []
    for line in block.split("\n"):
        if not line.strip() or "|" not in line:
            continue
        parts = [p.strip() for p in line.split("|")]
        if len(parts) >= 2 and parts[0]:
            rows.append(parts)
    return rows


def _cell(parts: list[str], i: int) -> str:
    return parts[i] if i < len(parts) else ""


def _block_contents(pattern: re.Pattern[str], text: str) -> list[str]:
    contents = []
    for match in pattern.finditer(text):
        content = match.group(1).strip()
        if content and content != "{}":
            contents.append(content)
    return contents


def _normalize_importance(value: str) -> str:
    lowered = (value or "").strip().lower()
    return lowered if lowered in IMPORTANCE_LEVELS else "high"


# -- entity extraction ----------------------------------------------------


def extract_characters(text: str, fallback_index: int) -> dict[str, CharacterEntry]:
    """Characters from pipe rows or the legacy ``{name: {...}}`` JSON form."""
    characters: dict[str, CharacterEntry] = {}
    for content in _block_contents(CHARACTERS_BLOCK_RE, text):
        if content.startswith("{"):
            try:
                data = json.loads(content)
            except json.JSONDecodeError as exc:
                logger.warning("Unparseable character JSON block: %s", exc)
                continue
            for name, info in data.items():
                if isinstance(info, dict) and name:
                    characters[name] = CharacterEntry.from_dict(info, name=name)
            continue

        for parts in _pipe_rows(content):
            name = parts[0]
            characters[name] = CharacterEntry(
                name=name,
                role=_not_na(_cell(parts, 1)),
                age=_not_na(_cell(parts, 2)),
                occupation=_not_na(_cell(parts, 3)),
                description=_not_na(_cell(parts, 4)),
                traits=_split_list(_cell(parts, 5)),
                relationship_with_user=_not_na(_cell(parts, 6)),
                first_appearance=_parse_index(_cell(parts, 7), fallback_index),
            )
    if characters:
        logger.debug("Extracted %d characters: %s", len(characters), ", ".join(characters))
    return characters


def extract_events(text: str, fallback_index: int) -> list[ExtractedEvent]:
    events: list[ExtractedEvent] = []
    for content in _block_contents(EVENTS_BLOCK_RE, text):
        if content.startswith("{"):
            try:
                data = json.loads(content)
            except json.JSONDecodeError as exc:
                logger.warning("Unparseable events JSON block: %s", exc)
                continue
            for raw in data.get("events") or []:
                if not isinstance(raw, dict) or not raw.get("title"):
                    continue
                index = raw.get("messageIndex")
                events.append(ExtractedEvent(
                    title=raw["title"],
                    description=raw.get("description") or "",
                    participants=list(raw.get("participants") or []),
                    importance=_normalize_importance(raw.get("importance") or "high"),
                    message_index=index if isinstance(index, int) else fallback_index,
                ))
            continue

        for parts in _pipe_rows(content):
            events.append(ExtractedEvent(
                title=parts[0],
                description=_cell(parts, 1),
                participants=_split_list(_cell(parts, 2)),
                importance=_normalize_importance(_cell(parts, 3) or "high"),
                message_index=_parse_index(_cell(parts, 4), fallback_index),
            ))
    return events


def extract_items(text: str, fallback_index: int) -> list[ExtractedItem]:
    items: list[ExtractedItem] = []
    for content in _block_contents(ITEMS_BLOCK_RE, text):
        if content.startswith("{"):
            try:
                data = json.loads(content)
            except json.JSONDecodeError as exc:
                logger.warning("Unparseable items JSON block: %s", exc)
                continue
            for raw in data.get("items") or []:
                if not isinstance(raw, dict) or not raw.get("name"):
                    continue
                index = raw.get("messageIndex")
                items.append(ExtractedItem(
                    name=raw["name"],
                    description=raw.get("description") or "",
                    owner=raw.get("owner") or "",
                    origin=raw.get("origin") or "",
                    status=raw.get("status") or "",
                    message_index=index if isinstance(index, int) else fallback_index,
                ))
            continue

        for parts in _pipe_rows(content):
            items.append(ExtractedItem(
                name=parts[0],
                description=_cell(parts, 1),
                owner=_cell(parts, 2),
                origin=_cell(parts, 3),
                status=_cell(parts, 4),
                message_index=_parse_index(_cell(parts, 5), fallback_index),
            ))
    return items


def _extract_entities(
    response: str, first_index: int, last_index: int
) -> tuple[ParseResult, str]:
    result = ParseResult(
        characters=extract_characters(response, first_index),
        events=extract_events(response, last_index),
        items=extract_items(response, last_index),
    )
    return result, clean_entity_blocks(response)


# -- individual mode ------------------------------------------------------


def split_individual(text: str, indices: Sequence[int]) -> dict[int, str]:
    """Map ``#N`` sections of ``text`` onto the expected indices.

    Tries a header scan, then a permissive split for headers with content
    on the same line, then maps headers onto the expected indices in
    order when the model numbered them differently.
    """
    expected = set(indices)
    found: dict[int, str] = {}

    headers = list(INDIVIDUAL_HEADER_LINE_RE.finditer(text))
    bodies = [
        text[h.end(): headers[i + 1].start() if i + 1 < len(headers) else len(text)].strip()
        for i, h in enumerate(headers)
    ]
    for header, body in zip(headers, bodies):
        number = int(header.group(1))
        if number in expected and body:
            found[number] = body

    if not found:
        for part in _SPLIT_RE.split(text):
            head = _SPLIT_HEAD_RE.match(part)
            if not head:
                continue
            number = int(head.group(1))
            body = _SPLIT_STRIP_RE.sub("", part, count=1).strip()
            if number in expected and body:
                found[number] = body

    if not found and headers:
        logger.debug("Mapping %d headers onto requested indices by position", len(headers))
        for index, body in zip(sorted(expected), bodies):
            if body:
                found[index] = body

    return found


def parse_individual_response(response: str, indices: Sequence[int]) -> ParseResult:
    """One ``#N`` entry per expected index, failures included."""
    ordered = sorted(indices)
    result, text = _extract_entities(response, ordered[0], ordered[-1])
    bodies = split_individual(text, ordered)

    for index in ordered:
        body = bodies.get(index)
        if body is None:
            result.summaries[index] = f"#{index}\n{PARSE_FAILED_MARKER}"
        elif is_incomplete(body):
            result.summaries[index] = f"#{index}\n{INCOMPLETE_MARKER}\n{body}"
        else:
            result.summaries[index] = f"#{index}\n{body}"

    logger.info("Parsed %d/%d individual summaries", len(bodies), len(ordered))
    return result


# -- batch mode -----------------------------------------------------------


def parse_fallback(text: str, start: int, end: int, total_groups: int = 1) -> Optional[str]:
    """Line scan for one group when none of the header patterns matched.

    Without a recognizable header, category lines are taken from the whole
    reply only when a single group was requested.
    """
    lines = text.split("\n")
    in_target = False
    collected: list[str] = []
    for raw in lines:
        line = raw.strip()
        header = _FALLBACK_HEADER_RE.match(line)
        if header:
            if int(header.group(1)) == start and int(header.group(2)) == end:
                in_target = True
                continue
            if in_target:
                break
        if in_target and line:
            collected.append(_BULLET_RE.sub("* ", line, count=1))

    if collected:
        return "\n".join(collected)

    if total_groups > 1:
        logger.debug("Fallback rejected for #%d-%d: %d groups, no header", start, end, total_groups)
        return None

    category_lines = [
        _BULLET_RE.sub("* ", raw.strip(), count=1)
        for raw in lines
        if _CATEGORY_LINE_RE.match(raw.strip())
    ]
    if 0 < len(category_lines) <= MAX_FALLBACK_LINES:
        return "\n".join(category_lines)
    return None


def _group_patterns(start: int, end: int) -> list[re.Pattern[str]]:
    return [
        re.compile(rf"#{start}-{end}\s*\n([\s\S]*?)(?=#\d+-\d+|===|\Z)"),
        re.compile(rf"#{start}\s*[-~]\s*{end}\s*\n([\s\S]*?)(?=#\d+|===|\Z)"),
        re.compile(rf"\[#{start}-{end}\]\s*\n?([\s\S]*?)(?=\[#\d+|===|\Z)"),
    ]


def _match_group(text: str, start: int, end: int, total_groups: int) -> Optional[str]:
    for pattern in _group_patterns(start, end):
        match = pattern.search(text)
        if match and match.group(1).strip():
            return match.group(1).strip()
    logger.debug("Header patterns missed #%d-%d, trying fallback", start, end)
    return parse_fallback(text, start, end, total_groups)


def _write_group(result: ParseResult, group: MessageGroup, body: str) -> None:
    result.summaries[group.start] = f"{group_header(group.start, group.end)}\n{body}"
    for index in group.members:
        result.summaries[index] = included_marker(group.start, group.end)


def parse_batch_response(response: str, groups: Sequence[MessageGroup]) -> ParseResult:
    """Group heads get ``#S-E`` summaries; members the included sentinel."""
    if not groups:
        return ParseResult()
    result, text = _extract_entities(response, groups[0].start, groups[-1].end)

    if is_incomplete(text):
        logger.warning("Incomplete reply; marking all %d groups", len(groups))
        result.incomplete = True
        for group in groups:
            body = _match_group(text, group.start, group.end, len(groups))
            _write_group(result, group, f"{INCOMPLETE_MARKER}\n{body}" if body else INCOMPLETE_MARKER)
        return result

    for group in groups:
        body = _match_group(text, group.start, group.end, len(groups))
        if body is None:
            logger.warning("No summary parsed for group #%d-%d", group.start, group.end)
            _write_group(result, group, PARSE_FAILED_MARKER)
        elif is_incomplete(body):
            _write_group(result, group, f"{INCOMPLETE_MARKER}\n{body}")
        else:
            _write_group(result, group, body)

    for group in groups:
        if group.start not in result.summaries:
            _write_group(result, group, MISSING_MARKER)

    logger.info("Parsed %d batch groups (%d entries)", len(groups), len(result.summaries))
    return result
