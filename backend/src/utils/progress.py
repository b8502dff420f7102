"""
In-memory progress tracking for long-running location rewrites.

Location delete and merge rewrite every event that references the
location. The tracker records how far such an operation has progressed so
a caller can poll it from another request while the rewrite runs.

Progress is keyed by the location GUID and is transient: it lives only in
process memory and is replaced when the next operation for the same key
starts.
"""

import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, Optional


class OperationStatus(Enum):
    """Status of a tracked operation."""
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class OperationProgress:
    """
    Progress snapshot for a single operation.

    Attributes:
        location_guid: Key of the operation (target location GUID)
        operation: Operation name ('delete' or 'merge')
        status: Current status
        processed: Number of events rewritten so far
        total: Number of events to rewrite
        started_at: When the operation started
        finished_at: When it reached a final status
        error: Error message for failed operations
    """
    location_guid: str
    operation: str
    status: OperationStatus
    processed: int
    total: int
    started_at: datetime
    finished_at: Optional[datetime] = None
    error: Optional[str] = None

    @property
    def percent(self) -> int:
        if self.total == 0:
            return 100
        return int(self.processed * 100 / self.total)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for API responses."""
        return {
            "location_guid": self.location_guid,
            "operation": self.operation,
            "status": self.status.value,
            "processed": self.processed,
            "total": self.total,
            "percent": self.percent,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "error": self.error,
        }


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class OperationProgressTracker:
    """
    Thread-safe registry of operation progress.

    All reads return copies so a poller never observes a half-updated entry.
    """

    def __init__(self, clock: Callable[[], datetime] = _utcnow):
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: Dict[str, OperationProgress] = {}

    def start(self, location_guid: str, operation: str, total: int) -> OperationProgress:
        """
        Begin tracking an operation, replacing any previous entry for the key.
        """
        progress = OperationProgress(
            location_guid=location_guid,
            operation=operation,
            status=OperationStatus.RUNNING,
            processed=0,
            total=total,
            started_at=self._clock(),
        )
        with self._lock:
            self._entries[location_guid] = progress
        return self._copy(progress)

    def advance(self, location_guid: str, processed: int) -> None:
        """Record the processed count of a running operation."""
        with self._lock:
            progress = self._entries.get(location_guid)
            if progress and progress.status == OperationStatus.RUNNING:
                progress.processed = processed

    def complete(self, location_guid: str) -> None:
        self._finish(location_guid, OperationStatus.COMPLETED)

    def fail(self, location_guid: str, error: str) -> None:
        self._finish(location_guid, OperationStatus.FAILED, error)

    def cancel(self, location_guid: str) -> None:
        self._finish(location_guid, OperationStatus.CANCELLED)

    def get(self, location_guid: str) -> Optional[OperationProgress]:
        """Get a copy of the progress for a key, or None if nothing is tracked."""
        with self._lock:
            progress = self._entries.get(location_guid)
            return self._copy(progress) if progress else None

    def is_running(self, location_guid: str) -> bool:
        with self._lock:
            progress = self._entries.get(location_guid)
            return progress is not None and progress.status == OperationStatus.RUNNING

    def _finish(
        self,
        location_guid: str,
        status: OperationStatus,
        error: Optional[str] = None,
    ) -> None:
        with self._lock:
            progress = self._entries.get(location_guid)
            if progress is None:
                return
            progress.status = status
            progress.finished_at = self._clock()
            progress.error = error
            if status == OperationStatus.COMPLETED:
                progress.processed = progress.total

    @staticmethod
    def _copy(progress: OperationProgress) -> OperationProgress:
        return OperationProgress(**progress.__dict__)
