"""Host event types delivered to the summarizer."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional


class HostEventType(str, Enum):
    """Chat lifecycle events the summarizer reacts to."""

    CHAT_CHANGED = "chat_changed"
    MESSAGE_RECEIVED = "message_received"
    GENERATION_STARTED = "generation_started"
    GENERATION_ENDED = "generation_ended"
    MESSAGE_SWIPED = "message_swiped"
    MESSAGE_DELETED = "message_deleted"
    BEFORE_GENERATION = "before_generation"


@dataclass
class HostEvent:
    """A single event published by the host."""

    event_type: HostEventType
    payload: dict[str, Any] = field(default_factory=dict)
    source: str = "host"
    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: datetime = field(
        default_factory=lambda: datetime.now(timezone.utc)
    )

    @property
    def message_index(self) -> Optional[int]:
        """Index of the affected message for swipe/delete/receive events."""
        value = self.payload.get("message_index")
        return int(value) if value is not None else None
