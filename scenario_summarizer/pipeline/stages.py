"""Per-window status tracking for a summarization run."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional


class StageStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class StageResult:
    """One model call over a window of messages."""

    stage_name: str
    status: StageStatus
    start_index: int
    end_index: int
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    processed: int = 0
    failed_indices: list[int] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def duration_seconds(self) -> Optional[float]:
        if self.started_at and self.completed_at:
            return (self.completed_at - self.started_at).total_seconds()
        return None


class PipelineTracker:
    """Records each window of a run; kept as ``Summarizer.last_run``."""

    def __init__(self, label: str = "summary") -> None:
        self.label = label
        self._stages: list[StageResult] = []

    def start_stage(self, start_index: int, end_index: int) -> StageResult:
        result = StageResult(
            stage_name=f"{self.label} #{start_index}-{end_index}",
            status=StageStatus.RUNNING,
            start_index=start_index,
            end_index=end_index,
            started_at=datetime.now(timezone.utc),
        )
        self._stages.append(result)
        return result

    def complete_stage(
        self,
        result: StageResult,
        processed: int,
        failed_indices: Optional[list[int]] = None,
    ) -> None:
        result.status = StageStatus.COMPLETED
        result.completed_at = datetime.now(timezone.utc)
        result.processed = processed
        result.failed_indices = list(failed_indices or [])

    def fail_stage(self, result: StageResult, error: str) -> None:
        result.status = StageStatus.FAILED
        result.completed_at = datetime.now(timezone.utc)
        result.error = error

    def cancel_stage(self, result: StageResult) -> None:
        result.status = StageStatus.CANCELLED
        result.completed_at = datetime.now(timezone.utc)

    @property
    def stages(self) -> list[StageResult]:
        return list(self._stages)

    @property
    def processed(self) -> int:
        return sum(s.processed for s in self._stages)

    def summary(self) -> dict[str, Any]:
        return {
            "label": self.label,
            "windows": len(self._stages),
            "processed": self.processed,
            "failed_indices": sorted(
                i for s in self._stages for i in s.failed_indices
            ),
            "stages": [
                {
                    "name": s.stage_name,
                    "status": s.status.value,
                    "processed": s.processed,
                    "duration": s.duration_seconds,
                    "error": s.error,
                }
                for s in self._stages
            ],
        }
