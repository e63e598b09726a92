"""Data models for the file watcher package."""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Optional
import time


class NotificationKind(Enum):
    """Kinds of raw change notifications produced by the watcher."""
    ADD = "add"
    CHANGE = "change"
    UNLINK = "unlink"
    ADD_DIR = "addDir"
    UNLINK_DIR = "unlinkDir"


@dataclass(frozen=True)
class RawNotification:
    """
    A normalized, debounced change notification.

    Attributes:
        kind: What happened to the path
        path: Full absolute path to the affected entry
        is_directory: Whether the entry is a directory
        timestamp: Unix timestamp when the change was last seen
    """
    kind: NotificationKind
    path: Path
    is_directory: bool = False
    timestamp: float = field(default_factory=time.time)

    def __post_init__(self):
        if not self.path.is_absolute():
            raise ValueError(f"path must be absolute: {self.path}")

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            "kind": self.kind.value,
            "path": str(self.path),
            "is_directory": self.is_directory,
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "RawNotification":
        """Create from dictionary."""
        return cls(
            kind=NotificationKind(data["kind"]),
            path=Path(data["path"]),
            is_directory=data.get("is_directory", False),
            timestamp=data.get("timestamp", time.time()),
        )


@dataclass
class RawFSEvent:
    """
    Raw event from the filesystem watcher before processing.

    Attributes:
        event_type: Raw event type string (created, deleted, modified, moved)
        src_path: Source path of the event
        dest_path: Destination path (for move events)
        is_directory: Whether this is a directory event
        timestamp: Unix timestamp when the event occurred
    """
    event_type: str
    src_path: Path
    dest_path: Optional[Path] = None
    is_directory: bool = False
    timestamp: float = field(default_factory=time.time)
