"""Host capability interface and a JSON-file backed implementation.

The summarizer never talks to a chat application directly. Everything it
needs (the message list, chat metadata, persistence, the event stream and
the prompt-injection hook) goes through :class:`Host`.
"""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

from scenario_summarizer.config import InjectionPosition
from scenario_summarizer.events.bus import EventBus

logger = logging.getLogger(__name__)


@dataclass
class Message:
    """One chat message as seen by the summarizer."""

    name: str = ""
    text: str = ""
    is_user: bool = False
    is_system: bool = False
    user_hidden: bool = False
    summarized_hidden: bool = False  # set and cleared only by the visibility controller
    extra: dict[str, Any] = field(default_factory=dict)

    @property
    def speaker(self) -> str:
        if self.name:
            return self.name
        return "User" if self.is_user else "Character"

    def to_dict(self) -> dict[str, Any]:
        data = dict(self.extra)
        data.update({
            "name": self.name,
            "mes": self.text,
            "is_user": self.is_user,
            "is_system": self.is_system,
        })
        if self.user_hidden:
            data["_userHidden"] = True
        if self.summarized_hidden:
            data["_summarizedHidden"] = True
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Message:
        known = {"name", "mes", "is_user", "is_system", "_userHidden", "_summarizedHidden"}
        return cls(
            name=data.get("name", ""),
            text=data.get("mes", ""),
            is_user=bool(data.get("is_user", False)),
            is_system=bool(data.get("is_system", False)),
            user_hidden=bool(data.get("_userHidden", False)),
            summarized_hidden=bool(data.get("_summarizedHidden", False)),
            extra={k: v for k, v in data.items() if k not in known},
        )


@dataclass
class MessageGroup:
    """Messages summarized together under one ``#S-E`` header.

    Indices need not be contiguous: user-hidden messages are left out.
    """

    indices: list[int]
    messages: list[Message]

    @property
    def start(self) -> int:
        return self.indices[0]

    @property
    def end(self) -> int:
        return self.indices[-1]

    @property
    def members(self) -> list[int]:
        return self.indices[1:]

    def pairs(self) -> list[tuple[int, Message]]:
        return list(zip(self.indices, self.messages))


@dataclass
class ChatContext:
    """Snapshot of the host state the core reads from."""

    chat: list[Message] = field(default_factory=list)
    chat_id: Optional[str] = None
    name1: str = ""  # user
    name2: str = ""  # character
    chat_metadata: dict[str, Any] = field(default_factory=dict)
    characters: list[dict[str, Any]] = field(default_factory=list)
    character_id: Optional[int] = None
    world_info: list[dict[str, Any]] = field(default_factory=list)
    persona_description: str = ""

    @property
    def character(self) -> Optional[dict[str, Any]]:
        if self.character_id is None:
            return None
        if 0 <= self.character_id < len(self.characters):
            return self.characters[self.character_id]
        return None

    @property
    def last_index(self) -> int:
        return len(self.chat) - 1


class Host(ABC):
    """Narrow capability interface the core consumes."""

    def __init__(self, event_bus: Optional[EventBus] = None) -> None:
        self.event_bus = event_bus or EventBus()

    @abstractmethod
    def get_context(self) -> Optional[ChatContext]:
        """Return the current chat, or None when no chat is open."""
        ...

    @abstractmethod
    async def persist(self) -> None:
        """Store chat metadata back to the host."""
        ...

    @abstractmethod
    def set_injection(
        self,
        extension_id: str,
        content: str,
        position: InjectionPosition,
        depth: int,
    ) -> None:
        """Install (or clear, with empty content) the injected prompt."""
        ...

    def is_user_hidden(self, message: Message) -> bool:
        """True when the user, not the summarizer, hid this message."""
        return message.user_hidden

    def message_element(self, index: int) -> Optional[Any]:
        """Rendered handle for a message, if the host has a view."""
        return None

    def set_element_hidden(self, element: Any, hidden: bool) -> None:
        """Reflect a visibility change on a rendered message handle."""
        return None


@dataclass
class Injection:
    """Last value handed to :meth:`Host.set_injection`."""

    extension_id: str
    content: str
    position: InjectionPosition
    depth: int


class InMemoryHost(Host):
    """Host backed by an in-process chat, optionally mirrored to a JSON file."""

    def __init__(
        self,
        context: Optional[ChatContext] = None,
        chat_path: Optional[Path] = None,
        event_bus: Optional[EventBus] = None,
    ) -> None:
        super().__init__(event_bus)
        self.context = context if context is not None else ChatContext()
        self.chat_path = chat_path
        self.injections: dict[str, Injection] = {}
        self.persist_count = 0

    @classmethod
    def load(cls, chat_path: Path, event_bus: Optional[EventBus] = None) -> InMemoryHost:
        """Open a chat file written by :meth:`persist`."""
        if not chat_path.exists():
            raise FileNotFoundError(f"Chat file not found: {chat_path}")
        raw = json.loads(chat_path.read_text(encoding="utf-8"))
        context = ChatContext(
            chat=[Message.from_dict(m) for m in raw.get("messages", [])],
            chat_id=raw.get("chat_id") or chat_path.stem,
            name1=raw.get("name1", ""),
            name2=raw.get("name2", ""),
            chat_metadata=raw.get("chat_metadata") or {},
            characters=raw.get("characters") or [],
            character_id=raw.get("character_id"),
            world_info=raw.get("world_info") or [],
            persona_description=raw.get("persona_description", ""),
        )
        return cls(context=context, chat_path=chat_path, event_bus=event_bus)

    def get_context(self) -> Optional[ChatContext]:
        return self.context

    async def persist(self) -> None:
        self.persist_count += 1
        if self.chat_path is None:
            return
        ctx = self.context
        data = {
            "chat_id": ctx.chat_id,
            "name1": ctx.name1,
            "name2": ctx.name2,
            "character_id": ctx.character_id,
            "characters": ctx.characters,
            "world_info": ctx.world_info,
            "persona_description": ctx.persona_description,
            "messages": [m.to_dict() for m in ctx.chat],
            "chat_metadata": ctx.chat_metadata,
        }
        self.chat_path.parent.mkdir(parents=True, exist_ok=True)
        self.chat_path.write_text(
            json.dumps(data, ensure_ascii=False, indent=2), encoding="utf-8"
        )
        logger.debug("Chat persisted to %s", self.chat_path)

    def set_injection(
        self,
        extension_id: str,
        content: str,
        position: InjectionPosition,
        depth: int,
    ) -> None:
        self.injections[extension_id] = Injection(
            extension_id=extension_id,
            content=content,
            position=position,
            depth=depth,
        )

    def injection_text(self, extension_id: str) -> str:
        injection = self.injections.get(extension_id)
        return injection.content if injection else ""
