"""
Engine state types: session states, progress tracking and the bounded log.

EngineState is the only view external code gets of a FlashingEngine. It is
immutable; the engine replaces it wholesale on every mutation.
"""

from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Deque, Optional, Tuple

LOG_CAPACITY = 100


class SessionState(Enum):
    """Connection lifecycle of a FlashingEngine."""
    DISCONNECTED = "disconnected"
    CONNECTED = "connected"
    FLASHING = "flashing"


class LogCategory(Enum):
    """Category of an engine log entry."""
    INFO = "info"
    SUCCESS = "success"
    ERROR = "error"
    WARNING = "warning"


@dataclass(frozen=True)
class LogEntry:
    message: str
    category: LogCategory
    timestamp: datetime

    def format(self) -> str:
        return f"{self.timestamp:%H:%M:%S} [{self.category.value}] {self.message}"


@dataclass(frozen=True)
class Progress:
    """
    Transfer progress for one flash job.

    Attributes:
        current: Bytes sent so far
        total: Image length
        percentage: 0-100; 100 only when current == total and total > 0
    """
    current: int = 0
    total: int = 0
    percentage: int = 0

    @classmethod
    def of(cls, current: int, total: int) -> "Progress":
        if total <= 0:
            return cls(current=0, total=0, percentage=0)
        # half-up rounding of current / total * 100
        percentage = (current * 200 + total) // (2 * total)
        if current < total:
            percentage = min(percentage, 99)
        return cls(current=current, total=total, percentage=percentage)


class ProgressTracker:
    """Accumulates chunk sizes into a monotonic Progress value."""

    def __init__(self) -> None:
        self._progress = Progress()

    @property
    def progress(self) -> Progress:
        return self._progress

    def start(self, total: int) -> Progress:
        self._progress = Progress(current=0, total=total, percentage=0)
        return self._progress

    def advance(self, chunk_size: int) -> Progress:
        total = self._progress.total
        current = min(self._progress.current + chunk_size, total)
        self._progress = Progress.of(current, total)
        return self._progress

    def complete(self) -> Progress:
        """Force progress to the end of the image."""
        total = self._progress.total
        self._progress = Progress.of(total, total)
        return self._progress


class LogSink:
    """Append-only FIFO of LogEntry, keeping the most recent `capacity` entries."""

    def __init__(self, capacity: int = LOG_CAPACITY) -> None:
        self._entries: Deque[LogEntry] = deque(maxlen=capacity)

    def __len__(self) -> int:
        return len(self._entries)

    def append(self, message: str, category: LogCategory = LogCategory.INFO) -> LogEntry:
        entry = LogEntry(message=message, category=category, timestamp=datetime.now(timezone.utc))
        self._entries.append(entry)
        return entry

    def entries(self) -> Tuple[LogEntry, ...]:
        return tuple(self._entries)

    def clear(self) -> None:
        self._entries.clear()


@dataclass(frozen=True)
class EngineState:
    """Read-only snapshot of a FlashingEngine."""
    session: SessionState = SessionState.DISCONNECTED
    progress: Progress = field(default_factory=Progress)
    logs: Tuple[LogEntry, ...] = ()
    error: Optional[str] = None

    @property
    def connected(self) -> bool:
        return self.session is not SessionState.DISCONNECTED

    @property
    def flashing(self) -> bool:
        return self.session is SessionState.FLASHING

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "connected": self.connected,
            "flashing": self.flashing,
            "progress": {
                "current": self.progress.current,
                "total": self.progress.total,
                "percentage": self.progress.percentage,
            },
            "logs": [
                {
                    "message": entry.message,
                    "type": entry.category.value,
                    "timestamp": entry.timestamp.isoformat(),
                }
                for entry in self.logs
            ],
            "error": self.error,
        }
