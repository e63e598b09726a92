"""Event processing: write-stability debouncing and normalization of raw FS events."""

import logging
import os
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple

from .config import WatcherConfig
from .models import NotificationKind, RawFSEvent, RawNotification
from .root_manager import RootManager

logger = logging.getLogger(__name__)

FileStat = Optional[Tuple[int, int]]


def stat_file(path: Path) -> FileStat:
    """Return (size, mtime_ns) for a file, or None if it cannot be read."""
    try:
        st = os.stat(path)
    except OSError:
        return None
    return st.st_size, st.st_mtime_ns


@dataclass
class PendingWrite:
    """A file write waiting for the path to go quiet."""
    kind: NotificationKind
    path: Path
    last_activity: float
    stat: FileStat = None


class StabilityDebouncer:
    """
    Holds file writes until the file stops changing.

    A pending path is emitted once no notification has arrived and its
    (size, mtime) stat has not moved for the stability threshold. Every
    poll re-stats the file; a changed stat restarts the quiet clock.
    """

    def __init__(
        self,
        stability_threshold_ms: int = 2000,
        stat_fn: Callable[[Path], FileStat] = stat_file,
    ):
        """
        Initialize the debouncer.

        Args:
            stability_threshold_ms: Quiet time required before emitting
            stat_fn: Function returning a comparable snapshot of a file
        """
        self.stability_threshold_ms = stability_threshold_ms
        self._stat_fn = stat_fn
        self._pending: Dict[Path, PendingWrite] = {}
        self._lock = threading.Lock()

    def add(self, kind: NotificationKind, path: Path, timestamp: float) -> None:
        """
        Record a write to a path.

        Coalescing rules:
        - ADD then CHANGE → single ADD
        - CHANGE then CHANGE → single CHANGE
        Each write restarts the quiet clock.
        """
        snapshot = self._stat_fn(path)

        with self._lock:
            existing = self._pending.get(path)
            if existing is None:
                self._pending[path] = PendingWrite(kind, path, timestamp, snapshot)
                return

            if kind == NotificationKind.ADD:
                existing.kind = NotificationKind.ADD
            existing.last_activity = max(existing.last_activity, timestamp)
            existing.stat = snapshot

    def cancel(self, path: Path) -> Optional[NotificationKind]:
        """
        Drop a pending write.

        Returns:
            The kind of the dropped write, or None if nothing was pending
        """
        with self._lock:
            pending = self._pending.pop(path, None)
        return pending.kind if pending else None

    def poll(self, current_time: float) -> List[RawNotification]:
        """
        Re-stat pending files and return those that have been quiet long enough.

        Args:
            current_time: Current timestamp

        Returns:
            Notifications ready to emit
        """
        window_sec = self.stability_threshold_ms / 1000.0

        with self._lock:
            paths = list(self._pending.keys())

        # Stat outside the lock so slow stats never block incoming events
        snapshots = {path: self._stat_fn(path) for path in paths}

        ready = []
        with self._lock:
            for path, snapshot in snapshots.items():
                pending = self._pending.get(path)
                if pending is None:
                    continue
                if snapshot != pending.stat:
                    pending.stat = snapshot
                    pending.last_activity = current_time
                    continue
                if (current_time - pending.last_activity) >= window_sec:
                    del self._pending[path]
                    ready.append(RawNotification(
                        kind=pending.kind,
                        path=path,
                        timestamp=pending.last_activity,
                    ))

        return ready

    def pending_count(self) -> int:
        """Get number of writes waiting to settle."""
        with self._lock:
            return len(self._pending)

    def clear(self) -> None:
        """Discard all pending writes without emitting them."""
        with self._lock:
            self._pending.clear()


class EventProcessor:
    """
    Turns raw watchdog events into ordered RawNotifications.

    File creations and modifications go through the stability debouncer.
    Directory events and deletions are released on the next flush.
    Moves are split into an unlink of the source and an add of the
    destination.
    """

    def __init__(
        self,
        root_manager: RootManager,
        config: Optional[WatcherConfig] = None,
        stat_fn: Callable[[Path], FileStat] = stat_file,
    ):
        """
        Initialize the event processor.

        Args:
            root_manager: Manager for watched roots
            config: Watcher configuration
            stat_fn: File snapshot function used by the debouncer
        """
        self.root_manager = root_manager
        self.config = config or WatcherConfig()
        self._debouncer = StabilityDebouncer(self.config.stability_threshold_ms, stat_fn)
        self._ready: List[RawNotification] = []
        self._lock = threading.Lock()

    def process(self, raw_event: RawFSEvent) -> None:
        """
        Process a raw filesystem event.

        Args:
            raw_event: The raw event from the filesystem watcher
        """
        logger.debug(f"EventProcessor.process: {raw_event.event_type} - {raw_event.src_path}")

        if raw_event.event_type == "moved":
            self._handle_delete(raw_event.src_path, raw_event.is_directory, raw_event.timestamp)
            if raw_event.dest_path is not None:
                self._handle_create(raw_event.dest_path, raw_event.is_directory, raw_event.timestamp)
        elif raw_event.event_type == "deleted":
            self._handle_delete(raw_event.src_path, raw_event.is_directory, raw_event.timestamp)
        elif raw_event.event_type == "created":
            self._handle_create(raw_event.src_path, raw_event.is_directory, raw_event.timestamp)
        elif raw_event.event_type == "modified":
            self._handle_modify(raw_event.src_path, raw_event.is_directory, raw_event.timestamp)
        else:
            logger.warning(f"Ignoring unknown raw event type: {raw_event.event_type}")

    def _release(self, kind: NotificationKind, path: Path, is_directory: bool, timestamp: float) -> None:
        with self._lock:
            self._ready.append(RawNotification(kind, path, is_directory, timestamp))

    def _handle_create(self, path: Path, is_directory: bool, timestamp: float) -> None:
        path = path.resolve()
        if not self.root_manager.is_under_any_root(path):
            return

        if is_directory:
            self._release(NotificationKind.ADD_DIR, path, True, timestamp)
        else:
            self._debouncer.add(NotificationKind.ADD, path, timestamp)

    def _handle_modify(self, path: Path, is_directory: bool, timestamp: float) -> None:
        if is_directory:
            return
        path = path.resolve()
        if not self.root_manager.is_under_any_root(path):
            return

        self._debouncer.add(NotificationKind.CHANGE, path, timestamp)

    def _handle_delete(self, path: Path, is_directory: bool, timestamp: float) -> None:
        path = path.resolve()
        if not self.root_manager.is_under_any_root(path):
            return

        if is_directory:
            self._release(NotificationKind.UNLINK_DIR, path, True, timestamp)
            return

        dropped = self._debouncer.cancel(path)
        if dropped == NotificationKind.ADD:
            # Created and removed before it ever settled
            return
        self._release(NotificationKind.UNLINK, path, False, timestamp)

    def flush(self, current_time: Optional[float] = None) -> List[RawNotification]:
        """
        Collect notifications that are ready to emit.

        Returns:
            Released directory/delete notifications followed by settled writes
        """
        current_time = time.time() if current_time is None else current_time

        with self._lock:
            ready = self._ready
            self._ready = []

        ready.extend(self._debouncer.poll(current_time))
        return ready

    def pending_count(self) -> int:
        """Number of notifications not yet emitted."""
        with self._lock:
            released = len(self._ready)
        return released + self._debouncer.pending_count()

    def clear(self) -> None:
        """Discard all pending state."""
        with self._lock:
            self._ready.clear()
        self._debouncer.clear()
