"""Classification of raw watcher notifications into typed file events."""

import getpass
import logging
import os
import re
import threading
import time
from pathlib import Path, PurePath
from typing import Callable, Optional

from src.watcher.models import NotificationKind, RawNotification

from .models import EventType, FileEvent

logger = logging.getLogger(__name__)

KIND_TO_EVENT_TYPE = {
    NotificationKind.ADD: EventType.CREATE,
    NotificationKind.CHANGE: EventType.MODIFY,
    NotificationKind.UNLINK: EventType.DELETE,
    NotificationKind.ADD_DIR: EventType.CREATE_DIR,
    NotificationKind.UNLINK_DIR: EventType.DELETE_DIR,
}

# Mount points used for removable media on Linux and macOS
REMOVABLE_MEDIA_PREFIXES = ("/media/", "/run/media/", "/mnt/", "/Volumes/")

_DRIVE_LETTER = re.compile(r"^([A-Za-z]):[\\/]")
_SEPARATORS = re.compile(r"[\\/]")


def event_type_for(kind) -> EventType:
    """
    Map a notification kind to an event type.

    Accepts a NotificationKind or its string value. Anything unknown maps
    to EventType.OTHER.
    """
    if not isinstance(kind, NotificationKind):
        try:
            kind = NotificationKind(kind)
        except ValueError:
            logger.warning(f"Unknown notification kind: {kind!r}")
            return EventType.OTHER
    return KIND_TO_EVENT_TYPE.get(kind, EventType.OTHER)


def path_name(path: str) -> str:
    """Last segment of a POSIX or Windows style path."""
    return _SEPARATORS.split(path.rstrip("\\/"))[-1]


def file_extension(name: Optional[str]) -> str:
    """Lower-cased extension without the leading dot, or "" if there is none."""
    if not name:
        return ""
    suffix = PurePath(name).suffix
    return suffix[1:].lower() if suffix else ""


def is_external_drive(path: str, system_drive: Optional[str] = None) -> bool:
    """
    Best-effort guess at whether a path lives on removable or secondary media.

    True for removable-media mount prefixes, and for drive letters other
    than the system drive. Network drives may be misclassified.
    """
    if path.startswith(REMOVABLE_MEDIA_PREFIXES):
        return True

    match = _DRIVE_LETTER.match(path)
    if match:
        system_drive = system_drive or os.environ.get("SYSTEMDRIVE", "C:")
        return match.group(1).upper() != system_drive.rstrip(":\\/").upper()

    return False


def classify(
    kind,
    path: Path,
    actor: str = "",
    created_at: Optional[float] = None,
    system_drive: Optional[str] = None,
) -> FileEvent:
    """
    Build an unscored FileEvent from a notification kind and path.

    Pure: performs no filesystem access.
    """
    path_str = str(path)
    name = path_name(path_str)
    return FileEvent(
        event_type=event_type_for(kind),
        path=Path(path_str),
        name=name,
        extension=file_extension(name),
        is_external_drive=is_external_drive(path_str, system_drive),
        actor=actor,
        created_at=time.time() if created_at is None else created_at,
    )


def current_user() -> str:
    """OS-reported user name, or "unknown" if none can be found."""
    try:
        return getpass.getuser()
    except Exception:
        return "unknown"


class EventClassifier:
    """
    Stamps classified events with the acting user and a capture time.

    Capture times never go backwards for a given classifier, even if the
    wall clock does.
    """

    def __init__(
        self,
        actor: Optional[str] = None,
        clock: Callable[[], float] = time.time,
        system_drive: Optional[str] = None,
    ):
        self.actor = actor or current_user()
        self.system_drive = system_drive
        self._clock = clock
        self._last = 0.0
        self._lock = threading.Lock()

    def _next_timestamp(self) -> float:
        with self._lock:
            self._last = max(self._last, self._clock())
            return self._last

    def classify(self, notification: RawNotification) -> FileEvent:
        """Classify a watcher notification."""
        return classify(
            notification.kind,
            notification.path,
            actor=self.actor,
            created_at=self._next_timestamp(),
            system_drive=self.system_drive,
        )
