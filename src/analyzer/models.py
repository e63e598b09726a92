"""
Data models for the analyzer package.
"""

import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple


class EventType(Enum):
    """Classified file event types."""
    CREATE = "create"
    MODIFY = "modify"
    DELETE = "delete"
    CREATE_DIR = "create_dir"
    DELETE_DIR = "delete_dir"
    OTHER = "other"


ALERT_TYPE_HIGH_RISK = "high_risk_activity"


def to_iso(timestamp: float) -> str:
    """Format a Unix timestamp as an ISO-8601 UTC string."""
    return datetime.fromtimestamp(timestamp, tz=timezone.utc).isoformat()


@dataclass(frozen=True)
class FileEvent:
    """
    One classified, scored filesystem change.

    Attributes:
        event_type: Classified type of the change
        path: Absolute path at time of observation
        name: Last path segment
        extension: Lower-cased extension without the dot ("" if none)
        is_external_drive: Heuristic removable/non-system drive flag
        risk_score: Score in [0, 100]; set once before persistence
        actor: OS user name that observed the change
        process_name: Best-effort process label
        created_at: Capture timestamp (Unix seconds)
        id: Row id assigned by the store, None before persistence
    """
    event_type: EventType
    path: Path
    name: str
    extension: str = ""
    is_external_drive: bool = False
    risk_score: int = 0
    actor: str = ""
    process_name: str = "system"
    created_at: float = field(default_factory=time.time)
    id: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "id": self.id,
            "event_type": self.event_type.value,
            "file_path": str(self.path),
            "file_name": self.name,
            "file_extension": self.extension,
            "is_external_drive": self.is_external_drive,
            "risk_score": self.risk_score,
            "user_id": self.actor,
            "process_name": self.process_name,
            "created_at": to_iso(self.created_at),
        }

    def to_payload(self) -> Dict[str, Any]:
        """Payload for the ``file_event`` notification topic."""
        return {
            "id": self.id,
            "event_type": self.event_type.value,
            "file_path": str(self.path),
            "file_name": self.name,
            "risk_score": self.risk_score,
            "timestamp": to_iso(self.created_at),
        }

    @classmethod
    def from_row(cls, row) -> "FileEvent":
        """Create from a ``file_events`` row."""
        try:
            event_type = EventType(row["event_type"])
        except ValueError:
            event_type = EventType.OTHER
        return cls(
            id=row["id"],
            event_type=event_type,
            path=Path(row["file_path"]),
            name=row["file_name"],
            extension=row["file_extension"] or "",
            is_external_drive=bool(row["is_external_drive"]),
            risk_score=row["risk_score"],
            actor=row["user_id"] or "",
            process_name=row["process_name"] or "",
            created_at=row["created_at"],
        )


@dataclass(frozen=True)
class Alert:
    """
    Alert raised for a single high-risk file event.

    Attributes:
        alert_type: Fixed alert category
        description: Human-readable summary
        severity: 1-5, derived from risk_score
        risk_score: Copy of the source event's score
        source_event_id: Id of the file event that raised the alert
        resolved: Set only by an operator
        created_at: Unix timestamp of creation
        id: Row id assigned by the store
    """
    alert_type: str
    description: str
    severity: int
    risk_score: int
    source_event_id: Optional[int]
    resolved: bool = False
    created_at: float = field(default_factory=time.time)
    id: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "id": self.id,
            "alert_type": self.alert_type,
            "description": self.description,
            "severity": self.severity,
            "risk_score": self.risk_score,
            "file_event_id": self.source_event_id,
            "resolved": self.resolved,
            "created_at": to_iso(self.created_at),
        }

    def to_payload(self) -> Dict[str, Any]:
        """Payload for the ``risk_alert`` notification topic."""
        return {
            "alert_type": self.alert_type,
            "description": self.description,
            "severity": self.severity,
            "risk_score": self.risk_score,
            "file_event_id": self.source_event_id,
        }

    @classmethod
    def from_row(cls, row) -> "Alert":
        """Create from a ``risk_alerts`` row."""
        return cls(
            id=row["id"],
            alert_type=row["alert_type"],
            description=row["description"],
            severity=row["severity"],
            risk_score=row["risk_score"],
            source_event_id=row["file_event_id"],
            resolved=bool(row["resolved"]),
            created_at=row["created_at"],
        )


@dataclass(frozen=True)
class AnomalyWindow:
    """The time range and events an anomaly was computed over."""
    user_id: str
    start: float
    end: float
    event_ids: Tuple[int, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "user_id": self.user_id,
            "start": to_iso(self.start),
            "end": to_iso(self.end),
            "event_count": len(self.event_ids),
        }


@dataclass(frozen=True)
class Anomaly:
    """A deviation of observed activity from the user's baseline."""
    kind: str
    description: str
    severity: int
    observed: float
    threshold: float
    window: AnomalyWindow

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.kind,
            "description": self.description,
            "severity": self.severity,
            "observed": self.observed,
            "threshold": self.threshold,
            "window": self.window.to_dict(),
        }


@dataclass(frozen=True)
class BaselineStats:
    """Raw aggregates over a user's history, as returned by the store."""
    user_id: str
    since: float
    until: float
    total_events: int = 0
    delete_events: int = 0
    external_events: int = 0
    extension_counts: Tuple[Tuple[str, int], ...] = ()


@dataclass(frozen=True)
class Baseline:
    """Per-user rolling activity averages used as the anomaly reference."""
    user_id: str
    avg_events_per_hour: float
    avg_deletes_per_hour: float
    avg_external_per_hour: float
    common_extensions: Tuple[str, ...] = ()
    sample_size: int = 0
    is_fallback: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "user_id": self.user_id,
            "avg_events_per_hour": self.avg_events_per_hour,
            "avg_deletes_per_hour": self.avg_deletes_per_hour,
            "avg_external_per_hour": self.avg_external_per_hour,
            "common_extensions": list(self.common_extensions),
            "sample_size": self.sample_size,
            "is_fallback": self.is_fallback,
        }


def count_by_type(events: List[FileEvent]) -> Dict[EventType, int]:
    """Count events per event type."""
    counts: Dict[EventType, int] = {}
    for event in events:
        counts[event.event_type] = counts.get(event.event_type, 0) + 1
    return counts
