"""Persisted data model of one chat's summary memory.

Field names are snake_case in Python; ``to_dict``/``from_dict`` use the
camelCase wire names so exported files stay interchangeable with older
releases. Unknown keys are carried in ``extra`` and written back unchanged.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

from scenario_summarizer.config import DATA_VERSION
from scenario_summarizer.memory.kinds import SummaryKind, parse_kind

logger = logging.getLogger(__name__)

MAX_TRAITS = 10


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def now_ms() -> int:
    return int(time.time() * 1000)


def _extra(data: dict[str, Any], known: set[str]) -> dict[str, Any]:
    return {k: v for k, v in data.items() if k not in known}


def _optional_int(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


@dataclass
class SummaryEntry:
    """A summary stored at one message index."""

    message_index: int
    content: str
    timestamp: str = field(default_factory=now_iso)
    pinned: bool = False
    invalidated: bool = False
    invalid_reason: Optional[str] = None
    migrated_from: Optional[str] = None
    migrated: bool = False
    extra: dict[str, Any] = field(default_factory=dict)

    _KNOWN = {
        "messageIndex", "content", "timestamp", "pinned", "invalidated",
        "invalidReason", "migratedFrom", "migrated",
    }

    @property
    def kind(self) -> SummaryKind:
        return parse_kind(self.content)

    def to_dict(self) -> dict[str, Any]:
        data = dict(self.extra)
        data.update({
            "messageIndex": self.message_index,
            "content": self.content,
            "timestamp": self.timestamp,
        })
        if self.pinned:
            data["pinned"] = True
        if self.invalidated:
            data["invalidated"] = True
        if self.invalid_reason:
            data["invalidReason"] = self.invalid_reason
        if self.migrated_from:
            data["migratedFrom"] = self.migrated_from
        if self.migrated:
            data["migrated"] = True
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any], index: Optional[int] = None) -> SummaryEntry:
        message_index = index if index is not None else _optional_int(data.get("messageIndex"))
        return cls(
            message_index=message_index if message_index is not None else 0,
            content=str(data.get("content") or ""),
            timestamp=data.get("timestamp") or now_iso(),
            pinned=bool(data.get("pinned", False)),
            invalidated=bool(data.get("invalidated", False)),
            invalid_reason=data.get("invalidReason"),
            migrated_from=data.get("migratedFrom"),
            migrated=bool(data.get("migrated", False)),
            extra=_extra(data, cls._KNOWN),
        )


@dataclass
class LegacyEntry:
    """A summary carried over from another chat, ordered by ``order``."""

    order: int
    content: str
    timestamp: str = field(default_factory=now_iso)
    imported_from: str = "unknown"
    original_index: Optional[int] = None
    import_date: Optional[str] = None
    last_modified: Optional[str] = None
    extra: dict[str, Any] = field(default_factory=dict)

    _KNOWN = {
        "order", "content", "timestamp", "importedFrom", "originalIndex",
        "importDate", "lastModified",
    }

    def to_dict(self) -> dict[str, Any]:
        data = dict(self.extra)
        data.update({
            "order": self.order,
            "content": self.content,
            "timestamp": self.timestamp,
            "importedFrom": self.imported_from,
            "originalIndex": self.original_index,
        })
        if self.import_date:
            data["importDate"] = self.import_date
        if self.last_modified:
            data["lastModified"] = self.last_modified
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> LegacyEntry:
        return cls(
            order=_optional_int(data.get("order")) or 0,
            content=str(data.get("content") or ""),
            timestamp=data.get("timestamp") or now_iso(),
            imported_from=data.get("importedFrom") or "unknown",
            original_index=_optional_int(data.get("originalIndex")),
            import_date=data.get("importDate"),
            last_modified=data.get("lastModified"),
            extra=_extra(data, cls._KNOWN),
        )


@dataclass
class CharacterEntry:
    """Catalog entry for a character seen in the chat."""

    name: str
    role: str = ""
    age: str = ""
    occupation: str = ""
    description: str = ""
    traits: list[str] = field(default_factory=list)
    relationship_with_user: str = ""
    first_appearance: Optional[int] = None
    created_at: Optional[int] = None
    last_update: str = field(default_factory=now_iso)
    extra: dict[str, Any] = field(default_factory=dict)

    _KNOWN = {
        "name", "role", "age", "occupation", "description", "traits",
        "relationshipWithUser", "firstAppearance", "createdAt", "lastUpdate",
    }

    def to_dict(self) -> dict[str, Any]:
        data = dict(self.extra)
        data.update({
            "name": self.name,
            "role": self.role,
            "age": self.age,
            "occupation": self.occupation,
            "description": self.description,
            "traits": list(self.traits),
            "relationshipWithUser": self.relationship_with_user,
            "firstAppearance": self.first_appearance,
            "lastUpdate": self.last_update,
        })
        if self.created_at is not None:
            data["createdAt"] = self.created_at
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any], name: Optional[str] = None) -> CharacterEntry:
        traits = data.get("traits") or []
        if isinstance(traits, str):
            traits = [t.strip() for t in traits.split(",") if t.strip()]
        return cls(
            name=name or str(data.get("name") or ""),
            role=str(data.get("role") or ""),
            age=str(data.get("age") or ""),
            occupation=str(data.get("occupation") or ""),
            description=str(data.get("description") or ""),
            traits=[str(t) for t in traits][:MAX_TRAITS],
            relationship_with_user=str(data.get("relationshipWithUser") or ""),
            first_appearance=_optional_int(data.get("firstAppearance")),
            created_at=_optional_int(data.get("createdAt")),
            last_update=data.get("lastUpdate") or now_iso(),
            extra=_extra(data, cls._KNOWN),
        )


@dataclass
class EventEntry:
    """A pivotal story event."""

    id: str
    title: str
    description: str = ""
    message_index: Optional[int] = None
    participants: list[str] = field(default_factory=list)
    importance: str = "medium"  # high | medium | low
    tags: list[str] = field(default_factory=list)
    created_at: int = field(default_factory=now_ms)
    updated_at: int = field(default_factory=now_ms)
    extra: dict[str, Any] = field(default_factory=dict)

    _KNOWN = {
        "id", "title", "description", "messageIndex", "participants",
        "importance", "tags", "createdAt", "updatedAt",
    }

    def to_dict(self) -> dict[str, Any]:
        data = dict(self.extra)
        data.update({
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "messageIndex": self.message_index,
            "participants": list(self.participants),
            "importance": self.importance,
            "tags": list(self.tags),
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        })
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> EventEntry:
        return cls(
            id=str(data.get("id") or ""),
            title=str(data.get("title") or ""),
            description=str(data.get("description") or ""),
            message_index=_optional_int(data.get("messageIndex")),
            participants=list(data.get("participants") or []),
            importance=str(data.get("importance") or "medium"),
            tags=list(data.get("tags") or []),
            created_at=_optional_int(data.get("createdAt")) or now_ms(),
            updated_at=_optional_int(data.get("updatedAt")) or now_ms(),
            extra=_extra(data, cls._KNOWN),
        )


@dataclass
class ItemEntry:
    """A story-relevant item and who holds it."""

    id: str
    name: str
    description: str = ""
    owner: str = ""
    origin: str = ""
    status: str = "possessed"
    message_index: Optional[int] = None
    created_at: int = field(default_factory=now_ms)
    updated_at: int = field(default_factory=now_ms)
    extra: dict[str, Any] = field(default_factory=dict)

    _KNOWN = {
        "id", "name", "description", "owner", "origin", "status",
        "messageIndex", "createdAt", "updatedAt",
    }

    def to_dict(self) -> dict[str, Any]:
        data = dict(self.extra)
        data.update({
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "owner": self.owner,
            "origin": self.origin,
            "status": self.status,
            "messageIndex": self.message_index,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        })
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ItemEntry:
        return cls(
            id=str(data.get("id") or ""),
            name=str(data.get("name") or ""),
            description=str(data.get("description") or ""),
            owner=str(data.get("owner") or ""),
            origin=str(data.get("origin") or ""),
            status=str(data.get("status") or "possessed"),
            message_index=_optional_int(data.get("messageIndex")),
            created_at=_optional_int(data.get("createdAt")) or now_ms(),
            updated_at=_optional_int(data.get("updatedAt")) or now_ms(),
            extra=_extra(data, cls._KNOWN),
        )


@dataclass
class ChatMemory:
    """Everything the summarizer keeps for one chat."""

    version: int = DATA_VERSION
    summaries: dict[int, SummaryEntry] = field(default_factory=dict)
    legacy_summaries: list[LegacyEntry] = field(default_factory=list)
    characters: dict[str, CharacterEntry] = field(default_factory=dict)
    events: list[EventEntry] = field(default_factory=list)
    items: list[ItemEntry] = field(default_factory=list)
    last_summarized_index: int = -1
    last_update: Optional[str] = None

    def recompute_last_index(self) -> None:
        self.last_summarized_index = max(self.summaries) if self.summaries else -1

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": self.version,
            "summaries": {
                str(i): self.summaries[i].to_dict() for i in sorted(self.summaries)
            },
            "legacySummaries": [s.to_dict() for s in self.legacy_summaries],
            "characters": {n: c.to_dict() for n, c in self.characters.items()},
            "events": [e.to_dict() for e in self.events],
            "items": [i.to_dict() for i in self.items],
            "lastSummarizedIndex": self.last_summarized_index,
            "lastUpdate": self.last_update,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ChatMemory:
        """Build from an already-migrated dict; corrupt entries are skipped."""
        memory = cls(
            version=_optional_int(data.get("version")) or DATA_VERSION,
            last_update=data.get("lastUpdate"),
        )

        for key, raw in (data.get("summaries") or {}).items():
            index = _optional_int(key)
            if index is None or index < 0 or not isinstance(raw, dict):
                logger.warning("Skipping corrupt summary entry at key %r", key)
                continue
            memory.summaries[index] = SummaryEntry.from_dict(raw, index=index)

        for raw in data.get("legacySummaries") or []:
            if isinstance(raw, dict):
                memory.legacy_summaries.append(LegacyEntry.from_dict(raw))

        for name, raw in (data.get("characters") or {}).items():
            if isinstance(raw, dict):
                memory.characters[name] = CharacterEntry.from_dict(raw, name=name)

        memory.events = [
            EventEntry.from_dict(e) for e in data.get("events") or [] if isinstance(e, dict)
        ]
        memory.items = [
            ItemEntry.from_dict(i) for i in data.get("items") or [] if isinstance(i, dict)
        ]
        memory.recompute_last_index()
        return memory
