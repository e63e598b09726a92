"""File system watcher using watchdog library."""

import logging
import threading
import time
from pathlib import Path
from typing import Callable, Dict, List, Optional

from watchdog.observers import Observer
from watchdog.events import (
    FileSystemEventHandler,
    DirCreatedEvent,
    DirDeletedEvent,
    DirModifiedEvent,
    DirMovedEvent,
)

from .models import RawFSEvent
from .config import WatcherConfig

logger = logging.getLogger(__name__)

RootErrorCallback = Callable[[Path, str], None]


class FSEventHandler(FileSystemEventHandler):
    """Handler that converts watchdog events to RawFSEvent."""

    def __init__(
        self,
        callback: Callable[[RawFSEvent], None],
        config: WatcherConfig,
        root: Path,
        on_root_error: Optional[RootErrorCallback] = None,
    ):
        super().__init__()
        self.callback = callback
        self.config = config
        self.root = root
        self.on_root_error = on_root_error

    def _should_ignore(self, path: Path) -> bool:
        """Check if the path should be ignored, judged relative to the root."""
        try:
            relative = path.relative_to(self.root)
        except ValueError:
            relative = path
        return self.config.should_ignore(relative)

    def _emit(self, event_type: str, src_path: Path, dest_path: Optional[Path] = None, is_directory: bool = False):
        """Emit a RawFSEvent to the callback."""
        if dest_path is None and self._should_ignore(src_path):
            return
        raw_event = RawFSEvent(
            event_type=event_type,
            src_path=src_path,
            dest_path=dest_path,
            is_directory=is_directory,
            timestamp=time.time(),
        )
        try:
            self.callback(raw_event)
        except Exception as e:
            logger.error(f"Error handling {event_type} event for {src_path}: {e}")

    def on_created(self, event):
        is_dir = isinstance(event, DirCreatedEvent)
        self._emit("created", Path(event.src_path), is_directory=is_dir)

    def on_deleted(self, event):
        src_path = Path(event.src_path)
        if src_path == self.root:
            if self.on_root_error:
                self.on_root_error(self.root, "root path was removed")
            return
        is_dir = isinstance(event, DirDeletedEvent)
        self._emit("deleted", src_path, is_directory=is_dir)

    def on_modified(self, event):
        # Directory mtime changes only mirror changes to their children
        if isinstance(event, DirModifiedEvent):
            return
        self._emit("modified", Path(event.src_path))

    def on_moved(self, event):
        is_dir = isinstance(event, DirMovedEvent)
        src_path = Path(event.src_path)
        dest_path = Path(event.dest_path)
        src_ignored = self._should_ignore(src_path)
        dest_ignored = self._should_ignore(dest_path)

        if src_ignored and dest_ignored:
            return
        # A temp file renamed into place is a new visible file, and a file
        # renamed to an ignored name is gone from view.
        if src_ignored:
            self._emit("created", dest_path, is_directory=is_dir)
        elif dest_ignored:
            self._emit("deleted", src_path, is_directory=is_dir)
        else:
            self._emit("moved", src_path, dest_path, is_directory=is_dir)


class FSWatcherPool:
    """
    Manages multiple watchdog observers, one per root.

    A root that cannot be watched is reported through ``on_root_error``
    and never takes the other roots down with it.
    """

    def __init__(
        self,
        event_callback: Callable[[RawFSEvent], None],
        config: Optional[WatcherConfig] = None,
        on_root_error: Optional[RootErrorCallback] = None,
    ):
        """
        Initialize the watcher pool.

        Args:
            event_callback: Callback function for raw filesystem events
            config: Watcher configuration
            on_root_error: Callback for root-scoped failures
        """
        self.event_callback = event_callback
        self.config = config or WatcherConfig()
        self.on_root_error = on_root_error
        self._observers: Dict[Path, Observer] = {}
        self._handlers: Dict[Path, FSEventHandler] = {}
        self._lock = threading.Lock()

    def _report_root_error(self, root: Path, reason: str) -> None:
        if self.on_root_error:
            self.on_root_error(root, reason)
        else:
            logger.error(f"Watch root failed: {root} ({reason})")

    def start_watching(self, root: Path) -> bool:
        """
        Start watching a root directory.

        Args:
            root: Path to the root directory

        Returns:
            True if watching started, False if already watching or the
            root could not be watched
        """
        root = root.resolve()

        with self._lock:
            if root in self._observers:
                return False

            observer = Observer()
            handler = FSEventHandler(self.event_callback, self.config, root, self._report_root_error)

            try:
                observer.schedule(
                    handler,
                    str(root),
                    recursive=self.config.recursive,
                )
                observer.start()
            except Exception as e:
                observer.stop()
                failure = str(e)
            else:
                self._observers[root] = observer
                self._handlers[root] = handler
                return True

        self._report_root_error(root, failure)
        return False

    def stop_watching(self, root: Path) -> bool:
        """
        Stop watching a root directory.

        Returns:
            True if watching stopped, False if not watching
        """
        root = root.resolve()

        with self._lock:
            if root not in self._observers:
                return False

            observer = self._observers.pop(root)
            self._handlers.pop(root, None)

        observer.stop()
        observer.join(timeout=5.0)
        return True

    def stop_all(self) -> int:
        """
        Stop all watchers.

        Returns:
            Number of watchers stopped
        """
        with self._lock:
            observers = list(self._observers.values())
            self._observers.clear()
            self._handlers.clear()

        for observer in observers:
            observer.stop()

        for observer in observers:
            observer.join(timeout=5.0)

        return len(observers)

    def check_health(self) -> List[Path]:
        """
        Detect observers whose thread has died and drop them.

        Returns:
            List of roots that were found dead
        """
        with self._lock:
            dead = [root for root, observer in self._observers.items() if not observer.is_alive()]
            for root in dead:
                self._observers.pop(root, None)
                self._handlers.pop(root, None)

        for root in dead:
            self._report_root_error(root, "observer thread stopped")
        return dead

    def is_watching(self, root: Path) -> bool:
        """Check if a root is being watched."""
        root = root.resolve()

        with self._lock:
            return root in self._observers

    def get_watched_roots(self) -> list:
        """Get list of currently watched roots."""
        with self._lock:
            return list(self._observers.keys())

    def __len__(self) -> int:
        """Return the number of active watchers."""
        with self._lock:
            return len(self._observers)
