"""Summary store: the only writer of a chat's ChatMemory.

The store reads and writes the memory that lives in the host's chat
metadata under ``METADATA_KEY``. Reads migrate older shapes in place.
Every write bumps :attr:`SummaryStore.revision` so caches keyed on store
contents know when to drop their entries.

Store operations never raise: failures are logged, recorded in the
operation state's error ring, and the operation returns its empty value.
"""

from __future__ import annotations

import functools
import logging
import random
import re
import string
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Iterable, Mapping, Optional, TypeVar

from scenario_summarizer.config import DATA_VERSION, METADATA_KEY
from scenario_summarizer.errors import HostContractError
from scenario_summarizer.host import ChatContext, Host
from scenario_summarizer.memory.kinds import (
    INDIVIDUAL_HEADER_RE,
    KindTag,
    canonicalize_sentinels,
    parse_kind,
    with_range,
)
from scenario_summarizer.memory.migration import empty_memory, migrate
from scenario_summarizer.memory.models import (
    MAX_TRAITS,
    CharacterEntry,
    ChatMemory,
    EventEntry,
    ItemEntry,
    LegacyEntry,
    SummaryEntry,
    now_iso,
    now_ms,
)
from scenario_summarizer.state import OperationState

logger = logging.getLogger(__name__)

T = TypeVar("T")

IMPORTANCE_LEVELS = ("high", "medium", "low")

# Values that mean "carry the previous value forward" in continuity fields
PLACEHOLDER_VALUES = (
    "same", "unchanged", "unknown", "n/a",
    "동일", "불명", "없음",
    "同じ", "不明",
)


@dataclass
class PreviousContext:
    """Continuity fields taken from the latest prior summaries."""

    time: str
    location: str
    relationship: str


def _random_suffix(length: int = 9) -> str:
    alphabet = string.ascii_lowercase + string.digits
    return "".join(random.choice(alphabet) for _ in range(length))


def _display_stamp() -> str:
    return datetime.now().strftime("%Y-%m-%d %H:%M:%S")


def _guarded(default: Callable[[], T]) -> Callable[[Callable[..., T]], Callable[..., T]]:
    """Turn an exception inside a store operation into its empty result."""

    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @functools.wraps(func)
        def wrapper(self: SummaryStore, *args: Any, **kwargs: Any) -> T:
            try:
                return func(self, *args, **kwargs)
            except Exception as exc:
                self.record_error(f"store.{func.__name__}", exc)
                return default()

        return wrapper

    return decorator


def _none() -> None:
    return None


def _false() -> bool:
    return False


def _zero() -> int:
    return 0


def _empty_str() -> str:
    return ""


def drop_overlapping_groups(memory: ChatMemory, start: int, end: int) -> int:
    """Remove every stored group whose range overlaps ``start``..``end``.

    Groups are matched through heads and members alike, so a group whose
    head was already overwritten still loses its stray members.
    """
    ranges: set[tuple[int, int]] = set()
    for entry in memory.summaries.values():
        kind = entry.kind
        if kind.is_group and kind.start is not None and kind.end is not None:
            if kind.start <= end and start <= kind.end:
                ranges.add((kind.start, kind.end))
    if not ranges:
        return 0

    doomed = [
        index
        for index, entry in memory.summaries.items()
        if entry.kind.is_group and (entry.kind.start, entry.kind.end) in ranges
    ]
    for index in doomed:
        del memory.summaries[index]
    logger.debug("Dropped %d entries of groups overlapping #%d-%d", len(doomed), start, end)
    return len(doomed)


def clear_conflicting_groups(memory: ChatMemory, index: int, content: str) -> int:
    """Make room for ``content`` at ``index`` without overlapping ranges.

    A group head clears every group overlapping its range. Any other
    non-member summary clears the group covering its own index.
    """
    kind = parse_kind(content)
    if kind.is_member:
        return 0
    if kind.is_group_head and kind.start is not None and kind.end is not None:
        return drop_overlapping_groups(memory, kind.start, kind.end)
    return drop_overlapping_groups(memory, index, index)


class SummaryStore:
    """CRUD, relevance views and index maintenance over ChatMemory."""

    def __init__(self, host: Host, state: Optional[OperationState] = None) -> None:
        self._host = host
        self._state = state
        self._memory: Optional[ChatMemory] = None
        self._raw: Optional[dict[str, Any]] = None
        self.revision = 0

    # -- plumbing ---------------------------------------------------------

    def record_error(self, context: str, exc: BaseException) -> None:
        if self._state is not None:
            self._state.record_error(context, exc)
        else:
            logger.error("[%s] %s", context, exc, exc_info=exc)

    def _context(self) -> ChatContext:
        ctx = self._host.get_context()
        if ctx is None:
            raise HostContractError("Host returned no chat context")
        if ctx.chat_metadata is None:
            ctx.chat_metadata = {}
        return ctx

    def memory(self) -> ChatMemory:
        """Current chat's memory, created or migrated on first access."""
        ctx = self._context()
        raw = ctx.chat_metadata.get(METADATA_KEY)
        if self._memory is not None and raw is self._raw:
            return self._memory

        source = raw if isinstance(raw, dict) else empty_memory()
        migrated = migrate(source)
        self._memory = ChatMemory.from_dict(migrated)
        if migrated is not raw:
            raw = self._memory.to_dict()
            ctx.chat_metadata[METADATA_KEY] = raw
        self._raw = raw
        return self._memory

    def commit(self) -> None:
        """Write the in-memory model back to chat metadata."""
        memory = self.memory()
        memory.version = DATA_VERSION
        memory.last_update = _display_stamp()
        memory.recompute_last_index()
        raw = memory.to_dict()
        self._context().chat_metadata[METADATA_KEY] = raw
        self._raw = raw
        self.revision += 1

    def replace_memory(self, memory: ChatMemory) -> None:
        """Swap in a whole new model (used by full imports)."""
        self.memory()
        self._memory = memory
        self.commit()

    def reset_cache(self) -> None:
        """Forget the cached model; the next read reloads from metadata."""
        self._memory = None
        self._raw = None
        self.revision += 1

    async def save(self) -> bool:
        try:
            await self._host.persist()
        except Exception as exc:
            self.record_error("store.save", exc)
            return False
        logger.debug("Summary data saved")
        return True

    def chat_length(self) -> int:
        ctx = self._host.get_context()
        return len(ctx.chat) if ctx is not None else 0

    def character_name(self) -> str:
        ctx = self._host.get_context()
        return (ctx.name2 if ctx is not None else "") or "Character"

    def chat_id(self) -> Optional[str]:
        ctx = self._host.get_context()
        return ctx.chat_id if ctx is not None else None

    # -- summaries --------------------------------------------------------

    @_guarded(dict)
    def get_summaries(self) -> dict[int, SummaryEntry]:
        memory = self.memory()
        return {i: memory.summaries[i] for i in sorted(memory.summaries)}

    @_guarded(dict)
    def get_relevant_summaries(self) -> dict[int, SummaryEntry]:
        """Entries whose index, or group end, is within the current chat."""
        last = self.chat_length() - 1
        relevant: dict[int, SummaryEntry] = {}
        for index, entry in self.get_summaries().items():
            kind = entry.kind
            if kind.is_group_head and kind.end is not None:
                if kind.end <= last:
                    relevant[index] = entry
            elif index <= last:
                relevant[index] = entry
        return relevant

    @_guarded(_none)
    def get_summary(self, index: int) -> Optional[SummaryEntry]:
        return self.memory().summaries.get(index)

    def _write(self, memory: ChatMemory, contents: Mapping[int, str]) -> dict[int, SummaryEntry]:
        canonical = {i: canonicalize_sentinels(c) for i, c in contents.items()}
        pinned = {
            i for i in canonical
            if memory.summaries.get(i) is not None and memory.summaries[i].pinned
        }
        for index, content in canonical.items():
            clear_conflicting_groups(memory, index, content)

        written: dict[int, SummaryEntry] = {}
        for index, content in canonical.items():
            entry = SummaryEntry(message_index=index, content=content, pinned=index in pinned)
            memory.summaries[index] = entry
            written[index] = entry
        return written

    @_guarded(_none)
    def set_summary(self, index: int, content: str) -> Optional[SummaryEntry]:
        """Upsert one summary; a pinned entry stays pinned.

        Writing a group head replaces every stored group its range overlaps.
        """
        memory = self.memory()
        entry = self._write(memory, {index: content})[index]
        self.commit()
        return entry

    @_guarded(_zero)
    def set_summaries(self, contents: Mapping[int, str]) -> int:
        """Upsert several summaries with a single commit."""
        memory = self.memory()
        self._write(memory, contents)
        if contents:
            self.commit()
        return len(contents)

    @_guarded(_false)
    def pin_summary(self, index: int, pinned: bool = True) -> bool:
        entry = self.memory().summaries.get(index)
        if entry is None:
            return False
        entry.pinned = pinned
        self.commit()
        return True

    @_guarded(_none)
    def delete_summary(self, index: int) -> None:
        """Delete one summary, or the whole group it heads or belongs to."""
        memory = self.memory()
        entry = memory.summaries.get(index)
        if entry is None:
            return
        kind = entry.kind
        if kind.is_group and kind.start is not None and kind.end is not None:
            for i in range(kind.start, kind.end + 1):
                memory.summaries.pop(i, None)
            memory.summaries.pop(index, None)
        else:
            del memory.summaries[index]
        self.commit()

    @_guarded(_none)
    def remap_after_deletion(self, deleted: int) -> None:
        """Shift indices and ranges after message ``deleted`` was removed.

        Entries above ``deleted`` move down by one. A range bound after
        ``deleted`` moves down by one, so a deletion inside a group shrinks
        its end. Members of a group headed at ``deleted`` are dropped with
        their head, as is any group left with an empty range.
        """
        memory = self.memory()
        remapped: dict[int, SummaryEntry] = {}
        for index in sorted(memory.summaries):
            if index == deleted:
                continue
            entry = memory.summaries[index]
            kind = entry.kind
            content = entry.content
            if kind.is_group and kind.start is not None and kind.end is not None:
                if kind.is_member and kind.start == deleted:
                    continue
                start = kind.start - 1 if kind.start > deleted else kind.start
                end = kind.end - 1 if kind.end >= deleted else kind.end
                if end < start:
                    continue
                content = with_range(content, start, end)

            new_index = index - 1 if index > deleted else index
            if new_index != index and kind.tag in (KindTag.INDIVIDUAL, KindTag.FAILURE):
                content = INDIVIDUAL_HEADER_RE.sub(
                    lambda m: m.group(0).replace(m.group(1), str(new_index), 1),
                    content,
                    count=1,
                )
            entry.message_index = new_index
            entry.content = content
            remapped[new_index] = entry

        memory.summaries = remapped
        self.commit()
        logger.info("Summaries remapped after deletion of message #%d", deleted)

    @_guarded(_none)
    def invalidate_on_swipe(self, index: int) -> None:
        """Flag the group containing ``index``; drop an individual summary."""
        memory = self.memory()
        for key in sorted(memory.summaries):
            entry = memory.summaries[key]
            kind = entry.kind
            if kind.is_group_head:
                if kind.covers(index):
                    entry.invalidated = True
                    entry.invalid_reason = f"message #{index} swiped"
                    logger.info(
                        "Group #%s-%s invalidated by swipe of message #%d",
                        kind.start, kind.end, index,
                    )
            elif not kind.is_member and key == index:
                del memory.summaries[key]
                logger.info("Summary for message #%d deleted after swipe", index)
        self.commit()

    @_guarded(_zero)
    def cleanup_orphans(self) -> int:
        """Drop groups, members and individuals past the end of the chat."""
        memory = self.memory()
        last = self.chat_length() - 1
        doomed: set[int] = set()
        for index, entry in memory.summaries.items():
            kind = entry.kind
            if kind.is_group_head and kind.end is not None and kind.start is not None:
                if kind.end > last:
                    doomed.add(index)
                    doomed.update(
                        i for i in range(kind.start, kind.end + 1) if i in memory.summaries
                    )
            elif kind.is_member:
                if kind.end is not None and kind.end > last:
                    doomed.add(index)
            elif index > last:
                doomed.add(index)

        for index in doomed:
            memory.summaries.pop(index, None)
        if doomed:
            self.commit()
            logger.info(
                "Cleaned up %d orphaned summaries (message count: %d)",
                len(doomed), last + 1,
            )
        return len(doomed)

    @_guarded(_none)
    def clear_all_summaries(self) -> None:
        """Reset summaries, events and items; keep characters and legacy."""
        memory = self.memory()
        memory.summaries = {}
        memory.events = []
        memory.items = []
        self.commit()

    @_guarded(list)
    def search_summaries(self, query: str) -> list[SummaryEntry]:
        needle = query.lower()
        return [
            entry
            for _, entry in sorted(self.get_relevant_summaries().items())
            if needle in entry.content.lower()
        ]

    @_guarded(list)
    def search_legacy(self, query: str) -> list[LegacyEntry]:
        needle = query.lower()
        return [e for e in self.get_legacy_summaries() if needle in e.content.lower()]

    # -- characters -------------------------------------------------------

    @_guarded(dict)
    def get_characters(self) -> dict[str, CharacterEntry]:
        return dict(self.memory().characters)

    @_guarded(dict)
    def get_relevant_characters(self) -> dict[str, CharacterEntry]:
        last = self.chat_length() - 1
        return {
            name: char
            for name, char in self.memory().characters.items()
            if char.first_appearance is None or char.first_appearance <= last
        }

    @_guarded(_none)
    def get_character(self, name: str) -> Optional[CharacterEntry]:
        return self.memory().characters.get(name)

    @_guarded(_none)
    def set_character(self, name: str, **fields: Any) -> Optional[CharacterEntry]:
        """Create or update a character; ``None`` fields keep their value."""
        memory = self.memory()
        character = memory.characters.get(name) or CharacterEntry(name=name, created_at=now_ms())
        for key, value in fields.items():
            if value is None:
                continue
            if not hasattr(character, key) or key in ("name", "extra"):
                raise ValueError(f"Unknown character field: {key}")
            if key == "traits":
                value = list(value)[:MAX_TRAITS]
            setattr(character, key, value)
        character.last_update = now_iso()
        memory.characters[name] = character
        self.commit()
        return character

    @_guarded(_false)
    def delete_character(self, name: str) -> bool:
        memory = self.memory()
        if name not in memory.characters:
            return False
        del memory.characters[name]
        self.commit()
        return True

    @_guarded(_none)
    def clear_characters(self) -> None:
        self.memory().characters = {}
        self.commit()

    @_guarded(_zero)
    def merge_characters(
        self, extracted: Mapping[str, CharacterEntry], fallback_index: int
    ) -> int:
        """Merge extracted characters; returns how many were added or changed.

        An existing field is overwritten only by a non-empty, different
        value. New characters take the extracted first appearance, else
        ``fallback_index``.
        """
        memory = self.memory()
        touched = 0
        for name, info in extracted.items():
            existing = memory.characters.get(name)
            if existing is None:
                memory.characters[name] = CharacterEntry(
                    name=name,
                    role=info.role,
                    age=info.age,
                    occupation=info.occupation,
                    description=info.description,
                    traits=list(info.traits)[:MAX_TRAITS],
                    relationship_with_user=info.relationship_with_user,
                    first_appearance=(
                        info.first_appearance
                        if info.first_appearance is not None
                        else fallback_index
                    ),
                    created_at=now_ms(),
                )
                touched += 1
                continue

            changed = False
            for attr in ("role", "age", "occupation", "description", "relationship_with_user"):
                value = getattr(info, attr)
                if value and value != getattr(existing, attr):
                    setattr(existing, attr, value)
                    changed = True
            traits = list(info.traits)[:MAX_TRAITS]
            if traits and traits != existing.traits:
                existing.traits = traits
                changed = True
            if changed:
                existing.last_update = now_iso()
                touched += 1

        self.commit()
        return touched

    @_guarded(_empty_str)
    def format_characters(self, for_ai: bool = False) -> str:
        characters = sorted(
            self.get_relevant_characters().values(), key=lambda c: c.name
        )
        if not characters:
            return "" if for_ai else "No registered characters."

        lines: list[str] = []
        for char in characters:
            if for_ai:
                line = f"- {char.name}"
                details = [d for d in (char.role, char.age, char.occupation) if d]
                if details:
                    line += f" ({', '.join(details)})"
                if char.relationship_with_user:
                    line += f" [Relationship with {{{{user}}}}: {char.relationship_with_user}]"
                if char.traits:
                    line += f" [Traits: {', '.join(char.traits)}]"
                if char.description:
                    line += f" [Description: {char.description}]"
                lines.append(line)
            else:
                lines.append(f"【{char.name}】")
                for label, value in (
                    ("Role", char.role),
                    ("Age", char.age),
                    ("Occupation", char.occupation),
                    ("Description", char.description),
                    ("Traits", ", ".join(char.traits)),
                    ("Relationship with {{user}}", char.relationship_with_user),
                ):
                    if value:
                        lines.append(f"  {label}: {value}")
                if char.first_appearance is not None:
                    lines.append(f"  First appearance: #{char.first_appearance}")
                lines.append("")
        return "\n".join(lines).strip()

    # -- events -----------------------------------------------------------

    @_guarded(list)
    def get_events(self) -> list[EventEntry]:
        return list(self.memory().events)

    @_guarded(list)
    def get_relevant_events(self) -> list[EventEntry]:
        last = self.chat_length() - 1
        return [
            e for e in self.memory().events
            if e.message_index is None or e.message_index <= last
        ]

    @_guarded(_none)
    def get_event(self, event_id: str) -> Optional[EventEntry]:
        return next((e for e in self.memory().events if e.id == event_id), None)

    @_guarded(_none)
    def add_event(
        self,
        title: str = "",
        description: str = "",
        message_index: Optional[int] = None,
        participants: Optional[Iterable[str]] = None,
        importance: str = "medium",
        tags: Optional[Iterable[str]] = None,
    ) -> Optional[EventEntry]:
        event = EventEntry(
            id=f"evt_{now_ms()}_{_random_suffix()}",
            title=title or "Untitled",
            description=description,
            message_index=message_index,
            participants=list(participants or []),
            importance=importance if importance in IMPORTANCE_LEVELS else "medium",
            tags=list(tags or []),
        )
        self.memory().events.append(event)
        self.commit()
        return event

    @_guarded(_false)
    def update_event(self, event_id: str, **updates: Any) -> bool:
        event = self.get_event(event_id)
        if event is None:
            return False
        for key, value in updates.items():
            if not hasattr(event, key) or key in ("id", "extra"):
                raise ValueError(f"Unknown event field: {key}")
            setattr(event, key, value)
        event.updated_at = now_ms()
        self.commit()
        return True

    @_guarded(_false)
    def delete_event(self, event_id: str) -> bool:
        memory = self.memory()
        remaining = [e for e in memory.events if e.id != event_id]
        if len(remaining) == len(memory.events):
            return False
        memory.events = remaining
        self.commit()
        return True

    @_guarded(_none)
    def clear_events(self) -> None:
        self.memory().events = []
        self.commit()

    # -- items ------------------------------------------------------------

    @_guarded(list)
    def get_items(self) -> list[ItemEntry]:
        return list(self.memory().items)

    @_guarded(list)
    def get_relevant_items(self) -> list[ItemEntry]:
        last = self.chat_length() - 1
        return [
            i for i in self.memory().items
            if i.message_index is None or i.message_index <= last
        ]

    @_guarded(_none)
    def get_item(self, item_id: str) -> Optional[ItemEntry]:
        return next((i for i in self.memory().items if i.id == item_id), None)

    @_guarded(_none)
    def add_item(
        self,
        name: str = "",
        description: str = "",
        owner: str = "",
        origin: str = "",
        status: str = "",
        message_index: Optional[int] = None,
    ) -> Optional[ItemEntry]:
        """Add an item, or update the status of an item with the same name."""
        memory = self.memory()
        key = name.strip().lower()
        existing = next(
            (i for i in memory.items if key and i.name.strip().lower() == key), None
        )
        if existing is not None:
            if status and status != existing.status:
                existing.status = status
                existing.updated_at = now_ms()
                if message_index is not None and (
                    existing.message_index is None or message_index > existing.message_index
                ):
                    existing.message_index = message_index
                self.commit()
            return existing

        item = ItemEntry(
            id=f"itm_{now_ms()}_{_random_suffix()}",
            name=name or "Unnamed",
            description=description,
            owner=owner,
            origin=origin,
            status=status or "possessed",
            message_index=message_index,
        )
        memory.items.append(item)
        self.commit()
        return item

    @_guarded(_false)
    def update_item(self, item_id: str, **updates: Any) -> bool:
        item = self.get_item(item_id)
        if item is None:
            return False
        for key, value in updates.items():
            if not hasattr(item, key) or key in ("id", "extra"):
                raise ValueError(f"Unknown item field: {key}")
            setattr(item, key, value)
        item.updated_at = now_ms()
        self.commit()
        return True

    @_guarded(_false)
    def delete_item(self, item_id: str) -> bool:
        memory = self.memory()
        remaining = [i for i in memory.items if i.id != item_id]
        if len(remaining) == len(memory.items):
            return False
        memory.items = remaining
        self.commit()
        return True

    @_guarded(_none)
    def clear_items(self) -> None:
        self.memory().items = []
        self.commit()

    # -- legacy summaries -------------------------------------------------

    @_guarded(list)
    def get_legacy_summaries(self) -> list[LegacyEntry]:
        return sorted(self.memory().legacy_summaries, key=lambda e: e.order)

    def next_legacy_order(self) -> int:
        entries = self.memory().legacy_summaries
        return max((e.order for e in entries), default=-1) + 1

    @_guarded(_none)
    def add_legacy(
        self,
        content: str,
        imported_from: str = "unknown",
        original_index: Optional[int] = None,
        import_date: Optional[str] = None,
    ) -> Optional[LegacyEntry]:
        entry = LegacyEntry(
            order=self.next_legacy_order(),
            content=content,
            imported_from=imported_from,
            original_index=original_index,
            import_date=import_date,
        )
        self.memory().legacy_summaries.append(entry)
        self.commit()
        return entry

    @_guarded(_false)
    def update_legacy(self, order: int, content: str) -> bool:
        entry = next(
            (e for e in self.memory().legacy_summaries if e.order == order), None
        )
        if entry is None:
            return False
        entry.content = content
        entry.last_modified = now_iso()
        self.commit()
        return True

    @_guarded(_false)
    def delete_legacy(self, order: int) -> bool:
        memory = self.memory()
        remaining = [e for e in memory.legacy_summaries if e.order != order]
        if len(remaining) == len(memory.legacy_summaries):
            return False
        memory.legacy_summaries = remaining
        self.commit()
        return True

    @_guarded(_none)
    def clear_legacy(self) -> None:
        self.memory().legacy_summaries = []
        self.commit()

    @_guarded(_zero)
    def estimate_legacy_tokens(self) -> int:
        chars = sum(len(e.content) for e in self.memory().legacy_summaries)
        return -(-chars // 3)

    # -- prompt context ---------------------------------------------------

    @_guarded(_empty_str)
    def get_recent_summaries_for_context(self, before_index: int, count: int) -> str:
        """Latest ``count`` summaries before ``before_index``, oldest first.

        Legacy entries sort before current ones: their position is their
        ``order``, a current entry's is ``legacy_count + index``. ``0``
        disables the section and ``-1`` returns everything.
        """
        if count == 0:
            return ""
        memory = self.memory()
        legacy_count = len(memory.legacy_summaries)

        timeline: list[tuple[int, str]] = [
            (e.order, e.content) for e in memory.legacy_summaries if e.content
        ]
        for index, entry in memory.summaries.items():
            if index >= before_index or entry.kind.is_member:
                continue
            timeline.append((legacy_count + index, entry.content))

        timeline.sort(key=lambda t: t[0], reverse=True)
        chosen = timeline if count < 0 else timeline[:count]
        chosen.sort(key=lambda t: t[0])
        return "\n\n".join(content for _, content in chosen)

    @_guarded(_none)
    def get_previous_context(
        self,
        before_index: int,
        labels: Mapping[str, Iterable[str]],
        unknown: str = "Unknown",
    ) -> Optional[PreviousContext]:
        """Scan prior summaries newest first for time, location, relationship.

        ``labels`` maps each field to the category labels it may appear
        under. Per field, the first value that is not a placeholder wins.
        """
        memory = self.memory()
        patterns = {
            field_name: [
                re.compile(rf"\*\s*{re.escape(label)}\s*[：:]\s*(.+)")
                for label in dict.fromkeys(field_labels)
                if label
            ]
            for field_name, field_labels in labels.items()
        }
        found: dict[str, str] = {}

        for index in sorted(memory.summaries, reverse=True):
            if index >= before_index:
                continue
            content = memory.summaries[index].content
            for field_name, field_patterns in patterns.items():
                if field_name in found:
                    continue
                for pattern in field_patterns:
                    match = pattern.search(content)
                    if match and _is_meaningful(match.group(1)):
                        found[field_name] = match.group(1).strip()
                        break
            if len(found) == len(patterns):
                break

        return PreviousContext(
            time=found.get("time", unknown),
            location=found.get("location", unknown),
            relationship=found.get("relationship", unknown),
        )


def _is_meaningful(value: str) -> bool:
    lowered = value.strip().lower()
    if not lowered:
        return False
    return not any(placeholder in lowered for placeholder in PLACEHOLDER_VALUES)
