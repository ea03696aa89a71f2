"""JSON export and the three import modes for summary memory."""

from __future__ import annotations

import copy
import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

from scenario_summarizer.config import DATA_VERSION
from scenario_summarizer.memory.kinds import canonicalize_sentinels
from scenario_summarizer.memory.migration import migrate
from scenario_summarizer.memory.models import (
    CharacterEntry,
    ChatMemory,
    EventEntry,
    ItemEntry,
    LegacyEntry,
    SummaryEntry,
    now_iso,
    now_ms,
)
from scenario_summarizer.memory.store import SummaryStore, clear_conflicting_groups

logger = logging.getLogger(__name__)

_COLLECTIONS = ("summaries", "legacySummaries", "characters", "events", "items")


class ExportMode(str, Enum):
    CURRENT = "current"
    LEGACY = "legacy"
    ALL = "all"


class ImportMode(str, Enum):
    MERGE = "merge"      # add to what is there
    LEGACY = "legacy"    # everything becomes legacy entries
    FULL = "full"        # replace present collections


@dataclass
class ImportResult:
    success: bool
    error: Optional[str] = None
    count: int = 0
    legacy_count: int = 0
    character_count: int = 0
    event_count: int = 0
    item_count: int = 0
    character_name: Optional[str] = None


def export_summaries(store: SummaryStore) -> dict[str, Any]:
    """Snapshot of the whole memory in the ``{data: ...}`` envelope."""
    return {
        "exportDate": now_iso(),
        "characterName": store.character_name(),
        "chatId": store.chat_id(),
        "data": store.memory().to_dict(),
    }


def export_bundle(store: SummaryStore, mode: ExportMode = ExportMode.ALL) -> dict[str, Any]:
    """Flat bundle of the current and/or legacy collections."""
    mode = ExportMode(mode)
    data = store.memory().to_dict()
    bundle: dict[str, Any] = {
        "exportDate": now_iso(),
        "characterName": store.character_name(),
        "type": "full_export" if mode == ExportMode.ALL else mode.value,
        "version": DATA_VERSION,
    }
    if mode in (ExportMode.CURRENT, ExportMode.ALL):
        bundle["summaries"] = data["summaries"]
        bundle["characters"] = data["characters"]
        bundle["events"] = data["events"]
        bundle["items"] = data["items"]
    if mode in (ExportMode.LEGACY, ExportMode.ALL):
        bundle["legacySummaries"] = data["legacySummaries"]
    return bundle


def _unwrap(payload: dict[str, Any]) -> tuple[dict[str, Any], set[str]]:
    """Return the migrated payload and which collections it really carried."""
    body = payload.get("data") if isinstance(payload.get("data"), dict) else payload
    present = {key for key in _COLLECTIONS if key in body or (
        key == "summaries" and "entries" in body
    )}
    body = copy.deepcopy(body)
    body.setdefault("version", payload.get("version", DATA_VERSION))
    return migrate(body), present


def _import_entities(memory: ChatMemory, source: ChatMemory, result: ImportResult) -> None:
    """Add characters, events and items the target does not have yet.

    Message indices from another chat mean nothing here, so they are nulled.
    """
    base = now_ms()
    ordered = sorted(
        source.characters.values(),
        key=lambda c: (c.first_appearance is None, c.first_appearance or 0),
    )
    for offset, char in enumerate(ordered):
        if char.name in memory.characters:
            continue
        imported = CharacterEntry.from_dict(char.to_dict(), name=char.name)
        imported.first_appearance = None
        imported.created_at = base + offset
        memory.characters[char.name] = imported
        result.character_count += 1

    event_ids = {e.id for e in memory.events}
    event_titles = {e.title for e in memory.events}
    for event in source.events:
        if event.id in event_ids or event.title in event_titles:
            continue
        imported_event = EventEntry.from_dict(event.to_dict())
        imported_event.message_index = None
        memory.events.append(imported_event)
        event_ids.add(event.id)
        event_titles.add(event.title)
        result.event_count += 1

    item_ids = {i.id for i in memory.items}
    item_names = {i.name.strip().lower() for i in memory.items}
    for item in source.items:
        if item.id in item_ids or item.name.strip().lower() in item_names:
            continue
        imported_item = ItemEntry.from_dict(item.to_dict())
        imported_item.message_index = None
        memory.items.append(imported_item)
        item_ids.add(item.id)
        item_names.add(item.name.strip().lower())
        result.item_count += 1


def import_merge(store: SummaryStore, payload: dict[str, Any]) -> ImportResult:
    """Merge summaries by index and append legacy entries and entities.

    An imported group replaces every local group its range overlaps.
    """
    body, _ = _unwrap(payload)
    source = ChatMemory.from_dict(body)
    memory = store.memory()
    result = ImportResult(success=True, character_name=payload.get("characterName"))

    for index, entry in source.summaries.items():
        entry.content = canonicalize_sentinels(entry.content)
        clear_conflicting_groups(memory, index, entry.content)
    for index, entry in source.summaries.items():
        memory.summaries[index] = entry
        result.count += 1

    # Source orders are kept unless already taken
    taken = {e.order for e in memory.legacy_summaries}
    next_order = max(taken, default=-1) + 1
    for legacy in sorted(source.legacy_summaries, key=lambda e: e.order):
        if legacy.order in taken:
            legacy.order = next_order
        taken.add(legacy.order)
        next_order = max(next_order, legacy.order + 1)
        if legacy.imported_from == "unknown":
            legacy.imported_from = "full-import"
        memory.legacy_summaries.append(legacy)
        result.legacy_count += 1

    _import_entities(memory, source, result)
    store.commit()
    logger.info(
        "Merged import: %d summaries, %d legacy, %d characters",
        result.count, result.legacy_count, result.character_count,
    )
    return result


def import_legacy(
    store: SummaryStore, payload: dict[str, Any], source_name: Optional[str] = None
) -> ImportResult:
    """Turn another chat's legacy entries and summaries into legacy entries."""
    body, _ = _unwrap(payload)
    source = ChatMemory.from_dict(body)
    memory = store.memory()
    name = source_name or payload.get("characterName") or "unknown"
    result = ImportResult(success=True, character_name=payload.get("characterName"))
    import_date = now_iso()
    order = store.next_legacy_order()

    contents: list[tuple[str, Optional[int]]] = [
        (e.content, e.original_index)
        for e in sorted(source.legacy_summaries, key=lambda e: e.order)
        if e.content.strip()
    ]
    contents += [
        (entry.content, index)
        for index, entry in sorted(source.summaries.items())
        if entry.content.strip() and not entry.kind.is_member
    ]
    for content, original_index in contents:
        memory.legacy_summaries.append(
            LegacyEntry(
                order=order,
                content=canonicalize_sentinels(content),
                imported_from=name,
                original_index=original_index,
                import_date=import_date,
            )
        )
        order += 1
    result.count = len(contents)
    result.legacy_count = len(contents)

    _import_entities(memory, source, result)
    if not (result.count or result.character_count or result.event_count or result.item_count):
        return ImportResult(success=False, error="Nothing to import")

    store.commit()
    logger.info("Imported %d entries as legacy summaries from %s", result.count, name)
    return result


def import_full(store: SummaryStore, payload: dict[str, Any]) -> ImportResult:
    """Replace every collection the payload carries."""
    body, present = _unwrap(payload)
    if not present:
        return ImportResult(success=False, error="Nothing to import")
    source = ChatMemory.from_dict(body)
    current = store.memory()
    replacement = ChatMemory(
        summaries=source.summaries if "summaries" in present else current.summaries,
        legacy_summaries=(
            source.legacy_summaries if "legacySummaries" in present else current.legacy_summaries
        ),
        characters=source.characters if "characters" in present else current.characters,
        events=source.events if "events" in present else current.events,
        items=source.items if "items" in present else current.items,
    )
    store.replace_memory(replacement)
    logger.info("Full import replaced: %s", ", ".join(sorted(present)))
    return ImportResult(
        success=True,
        count=len(replacement.summaries),
        legacy_count=len(replacement.legacy_summaries),
        character_count=len(replacement.characters),
        event_count=len(replacement.events),
        item_count=len(replacement.items),
        character_name=payload.get("characterName"),
    )


def import_json(
    store: SummaryStore,
    text: str,
    mode: ImportMode = ImportMode.MERGE,
    source_name: Optional[str] = None,
) -> ImportResult:
    """Parse ``text`` and import it; bad input yields a failed result."""
    try:
        payload = json.loads(text)
    except json.JSONDecodeError as exc:
        logger.warning("Import rejected: invalid JSON (%s)", exc)
        return ImportResult(success=False, error=f"Invalid JSON: {exc}")
    if not isinstance(payload, dict):
        return ImportResult(success=False, error="Import data must be a JSON object")

    mode = ImportMode(mode)
    try:
        if mode == ImportMode.LEGACY:
            return import_legacy(store, payload, source_name)
        if mode == ImportMode.FULL:
            return import_full(store, payload)
        return import_merge(store, payload)
    except Exception as exc:
        store.record_error(f"import.{mode.value}", exc)
        return ImportResult(success=False, error=str(exc))
