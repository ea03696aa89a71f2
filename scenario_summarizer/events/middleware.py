"""Event middleware for logging and replay files."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Optional

from scenario_summarizer.events.types import HostEvent

logger = logging.getLogger(__name__)


class EventLogger:
    """Logs all events for debugging."""

    async def __call__(self, event: HostEvent) -> Optional[HostEvent]:
        logger.debug(
            "[%s] -> %s (id=%s, index=%s)",
            event.source,
            event.event_type.value,
            event.event_id[:8],
            event.message_index if event.message_index is not None else "none",
        )
        return event


class EventFileLogger:
    """Appends events to a JSONL file for replay/debugging."""

    def __init__(self, log_path: Path) -> None:
        self._log_path = log_path
        self._log_path.parent.mkdir(parents=True, exist_ok=True)

    async def __call__(self, event: HostEvent) -> Optional[HostEvent]:
        record = {
            "event_type": event.event_type.value,
            "source": event.source,
            "event_id": event.event_id,
            "message_index": event.message_index,
            "timestamp": event.timestamp.isoformat(),
            "payload_keys": list(event.payload.keys()),
        }
        with open(self._log_path, "a", encoding="utf-8") as f:
            f.write(json.dumps(record) + "\n")
        return event
