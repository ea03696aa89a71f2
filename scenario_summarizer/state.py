"""Process-local operation flags and the bounded error log."""

from __future__ import annotations

import logging
import time
import traceback
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)

MAX_ERROR_LOGS = 50


@dataclass
class ErrorRecord:
    """One entry of the error ring."""

    context: str
    message: str
    error_type: str
    traceback: str = ""
    details: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(
        default_factory=lambda: datetime.now(timezone.utc)
    )

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "context": self.context,
            "message": self.message,
            "errorType": self.error_type,
            "traceback": self.traceback,
            "details": self.details,
        }


class OperationState:
    """Advisory lock set shared by the summarizer and the event bindings.

    None of the flags block; callers check them before starting work.
    The chat-loading cooldown is a deadline on a monotonic clock so it
    expires on its own without a timer task.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self.is_summarizing = False
        self.should_stop = False
        self.generation_in_progress = False
        self._cooldown_until = 0.0
        self._errors: deque[ErrorRecord] = deque(maxlen=MAX_ERROR_LOGS)

    # -- summarization ----------------------------------------------------

    def start_summarizing(self) -> None:
        self.is_summarizing = True
        self.should_stop = False

    def stop_summarizing(self) -> None:
        self.is_summarizing = False

    def request_stop(self) -> None:
        self.should_stop = True
        logger.info("Stop requested for running summarization")

    # -- host generation --------------------------------------------------

    def set_generation_lock(self) -> None:
        self.generation_in_progress = True

    def clear_generation_lock(self) -> None:
        self.generation_in_progress = False

    # -- chat loading -----------------------------------------------------

    def set_chat_loading_cooldown(self, seconds: float = 2.0) -> None:
        self._cooldown_until = self._clock() + seconds

    def is_chat_loading_cooldown(self) -> bool:
        return self._clock() < self._cooldown_until

    def reset_all(self) -> None:
        self.is_summarizing = False
        self.should_stop = False
        self.generation_in_progress = False
        self._cooldown_until = 0.0

    # -- error ring -------------------------------------------------------

    def record_error(
        self, context: str, error: BaseException, **details: Any
    ) -> ErrorRecord:
        """Append an error, newest first; the ring keeps the last 50."""
        record = ErrorRecord(
            context=context,
            message=str(error),
            error_type=type(error).__name__,
            traceback="".join(
                traceback.format_exception(
                    type(error), error, error.__traceback__
                )
            ),
            details=details,
        )
        self._errors.appendleft(record)
        logger.error("[%s] %s: %s", context, record.error_type, record.message)
        return record

    def get_errors(self, limit: int = 10) -> list[ErrorRecord]:
        return list(self._errors)[:limit]

    def clear_errors(self) -> None:
        self._errors.clear()

    @property
    def last_error(self) -> Optional[ErrorRecord]:
        return self._errors[0] if self._errors else None

    @property
    def error_count(self) -> int:
        return len(self._errors)
