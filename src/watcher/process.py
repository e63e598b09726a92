"""Main watcher process orchestrator."""

import logging
import threading
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional

from .config import WatcherConfig
from .exceptions import RootError, WatcherAlreadyRunningError, WatcherNotRunningError
from .models import RawNotification
from .root_manager import RootManager
from .fs_watcher import FSWatcherPool
from .event_processor import EventProcessor

logger = logging.getLogger(__name__)


class WatcherProcess:
    """
    Main orchestrator for the file watcher.

    Coordinates root management, filesystem watching and debounced event
    processing, and hands each settled notification to a callback.
    """

    def __init__(
        self,
        config: Optional[WatcherConfig] = None,
        on_notification: Optional[Callable[[RawNotification], None]] = None,
        initial_roots: Optional[List[Path]] = None,
    ):
        """
        Initialize the watcher process.

        Args:
            config: Watcher configuration
            on_notification: Callback for each settled notification
            initial_roots: Root folders to watch (overrides config.paths)
        """
        self.config = config or WatcherConfig()
        self.on_notification = on_notification
        self._initial_roots = list(initial_roots) if initial_roots else list(self.config.paths)

        self._root_manager = RootManager()
        self._event_processor = EventProcessor(self._root_manager, self.config)
        self._fs_watcher_pool = FSWatcherPool(
            self._event_processor.process,
            self.config,
            on_root_error=self._on_root_error,
        )

        self._running = False
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._lock = threading.Lock()

    def _on_root_error(self, root: Path, reason: str) -> None:
        """Record a root-scoped failure; the flush loop stops its observer."""
        self._root_manager.mark_failed(root, reason)

    def add_root(self, root: Path) -> bool:
        """
        Start watching a root folder.

        Failures are recorded as failed roots rather than raised.

        Returns:
            True if the root is now being watched
        """
        root = root.resolve()
        try:
            self._root_manager.add_root(root)
        except RootError as e:
            if self._root_manager.has_root(root):
                if self._fs_watcher_pool.is_watching(root):
                    logger.debug(f"Root already being watched: {root}")
                    return True
                return self._fs_watcher_pool.start_watching(root)
            self._root_manager.mark_failed(root, str(e))
            return False

        if not self._fs_watcher_pool.start_watching(root):
            return False

        logger.info(f"Watching root: {root}")
        return True

    def remove_root(self, root: Path) -> bool:
        """Stop watching a root folder."""
        root = root.resolve()
        stopped = self._fs_watcher_pool.stop_watching(root)
        removed = self._root_manager.remove_root(root)
        return stopped or removed

    def get_roots(self) -> List[Path]:
        """Get the current list of watched roots."""
        return sorted(self._root_manager.get_roots())

    @property
    def failed_roots(self) -> Dict[Path, str]:
        """Roots that failed, with the reason. They are not retried."""
        return self._root_manager.get_failed()

    def start(self) -> None:
        """
        Start the watcher (blocking).

        Blocks until stop() is called from another thread.
        """
        self.start_async()
        try:
            while not self._stop_event.is_set():
                self._stop_event.wait(timeout=0.5)
        except KeyboardInterrupt:
            pass
        finally:
            self.stop()

    def start_async(self, roots: Optional[Iterable[Path]] = None) -> None:
        """
        Start watching in the background.

        Args:
            roots: Root folders to watch (defaults to the initial roots)

        Raises:
            WatcherAlreadyRunningError: If already running
        """
        with self._lock:
            if self._running:
                raise WatcherAlreadyRunningError("Watcher is already running")

            self._running = True
            self._stop_event.clear()

        if roots is not None:
            self._initial_roots = list(roots)

        for root in self._initial_roots:
            self.add_root(Path(root))

        self._thread = threading.Thread(target=self._flush_loop, name="WatcherFlush", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        """
        Stop the watcher.

        Pending debounce state is discarded, not flushed, and every root is
        forgotten so a later start watches only the roots it is given.
        """
        self._stop_event.set()

        with self._lock:
            if not self._running:
                return
            self._running = False

        self._fs_watcher_pool.stop_all()
        self._event_processor.clear()
        self._root_manager.clear()

        if self._thread and self._thread.is_alive() and self._thread is not threading.current_thread():
            self._thread.join(timeout=2.0)
        self._thread = None

    def restart(self, roots: Iterable[Path]) -> None:
        """Stop and start again with a new path set."""
        self.stop()
        self.start_async(list(roots))

    def _dispatch(self, notification: RawNotification) -> None:
        if self.on_notification is None:
            return
        try:
            self.on_notification(notification)
        except Exception as e:
            logger.error(f"Notification handler failed for {notification.path}: {e}")

    def _reap_failed_roots(self) -> None:
        """Stop observers for roots that have failed."""
        self._fs_watcher_pool.check_health()
        failed = self._root_manager.get_failed()
        for root in self._fs_watcher_pool.get_watched_roots():
            if root in failed:
                self._fs_watcher_pool.stop_watching(root)

    def _flush_loop(self) -> None:
        """Worker loop that periodically releases settled notifications."""
        flush_interval = self.config.poll_interval_ms / 1000.0
        logger.debug(f"Flush loop started, interval={flush_interval}s")

        while not self._stop_event.is_set():
            try:
                for notification in self._event_processor.flush():
                    if self._stop_event.is_set():
                        break
                    self._dispatch(notification)
                self._reap_failed_roots()
            except Exception as e:
                logger.error(f"Flush loop error: {e}")

            self._stop_event.wait(timeout=flush_interval)

    def flush_now(self) -> List[RawNotification]:
        """
        Run one flush pass synchronously and dispatch the results.

        Raises:
            WatcherNotRunningError: If the watcher has not been started
        """
        if not self._running:
            raise WatcherNotRunningError("Watcher is not running")
        notifications = self._event_processor.flush()
        for notification in notifications:
            self._dispatch(notification)
        return notifications

    def pending_count(self) -> int:
        """Number of notifications still waiting in the debouncer."""
        return self._event_processor.pending_count()

    @property
    def is_running(self) -> bool:
        """Check if the watcher is running."""
        return self._running

    def close(self) -> None:
        """Stop the watcher and release all resources."""
        self.stop()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
