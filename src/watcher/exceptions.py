"""Custom exceptions for the file watcher package."""


class WatcherError(Exception):
    """Base exception for all watcher errors."""
    pass


class RootError(WatcherError):
    """Error related to root folder management."""
    pass


class RootNotFoundError(RootError):
    """Specified root folder does not exist."""
    pass


class RootAlreadyExistsError(RootError):
    """Root folder is already being watched."""
    pass


class WatcherAlreadyRunningError(WatcherError):
    """Watcher process is already running."""
    pass


class WatcherNotRunningError(WatcherError):
    """Operation requires a running watcher process."""
    pass
