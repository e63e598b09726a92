"""
File Watcher Package

Monitors root folders for file system changes and produces a stream of
normalized, debounced change notifications.

Features:
- Root resolution from explicit paths, settings, environment or defaults
- Notifications: add, change, unlink, addDir, unlinkDir
- Write-stability debouncing (a file is reported once it stops changing)
- Hidden and noise directory filtering
- Per-root failure isolation and restartable watching
"""

from .models import (
    NotificationKind,
    RawNotification,
    RawFSEvent,
)

from .config import WatcherConfig

from .exceptions import (
    WatcherError,
    RootError,
    RootNotFoundError,
    RootAlreadyExistsError,
    WatcherAlreadyRunningError,
    WatcherNotRunningError,
)

from .root_manager import RootManager, resolve_watch_paths, default_watch_paths
from .fs_watcher import FSWatcherPool, FSEventHandler
from .event_processor import EventProcessor, StabilityDebouncer
from .process import WatcherProcess


__all__ = [
    # Models
    "NotificationKind",
    "RawNotification",
    "RawFSEvent",
    # Config
    "WatcherConfig",
    # Exceptions
    "WatcherError",
    "RootError",
    "RootNotFoundError",
    "RootAlreadyExistsError",
    "WatcherAlreadyRunningError",
    "WatcherNotRunningError",
    # Components
    "RootManager",
    "resolve_watch_paths",
    "default_watch_paths",
    "FSWatcherPool",
    "FSEventHandler",
    "EventProcessor",
    "StabilityDebouncer",
    # Main Process
    "WatcherProcess",
]

__version__ = "0.1.0"
