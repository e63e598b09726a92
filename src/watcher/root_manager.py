"""Resolution and thread-safe management of watched root folders."""

import logging
import os
import threading
from pathlib import Path
from typing import Dict, FrozenSet, Iterable, List, Mapping, Optional, Set, Union

from .exceptions import RootNotFoundError, RootAlreadyExistsError

logger = logging.getLogger(__name__)

MONITORING_PATHS_ENV = "MONITORING_PATHS"


def default_watch_paths(home: Optional[Path] = None) -> List[Path]:
    """Platform default folders: the user's Documents, Downloads and Desktop."""
    home = home or Path.home()
    return [home / "Documents", home / "Downloads", home / "Desktop"]


def split_path_list(value: Optional[str]) -> List[Path]:
    """Split a comma-separated path list, dropping blanks."""
    if not value:
        return []
    return [Path(p.strip()).expanduser() for p in value.split(",") if p.strip()]


def resolve_watch_paths(
    explicit: Optional[Iterable[Path]] = None,
    configured: Optional[Union[str, Iterable[Path]]] = None,
    environ: Optional[Mapping[str, str]] = None,
    home: Optional[Path] = None,
) -> List[Path]:
    """
    Derive the ordered list of directories to watch.

    The first non-empty source wins: explicit paths, the persisted
    ``monitoring_paths`` setting, the ``MONITORING_PATHS`` environment
    variable, then the platform defaults. Duplicates are dropped while
    keeping the first occurrence.

    Args:
        explicit: Paths given directly (CLI or config)
        configured: Persisted paths, as a list or the raw comma-separated value
        environ: Environment mapping (defaults to os.environ)
        home: Home directory used for the defaults

    Returns:
        List of absolute paths
    """
    environ = os.environ if environ is None else environ

    candidates = [Path(p).expanduser() for p in (explicit or [])]
    if not candidates:
        if isinstance(configured, str):
            candidates = split_path_list(configured)
        else:
            candidates = [Path(p).expanduser() for p in (configured or [])]
    if not candidates:
        candidates = split_path_list(environ.get(MONITORING_PATHS_ENV))
    if not candidates:
        candidates = default_watch_paths(home)

    resolved: List[Path] = []
    for path in candidates:
        path = path.resolve()
        if path not in resolved:
            resolved.append(path)
    return resolved


class RootManager:
    """
    Thread-safe management of root folders being watched.

    Tracks active roots and roots that failed, and answers which root
    a given path belongs to.
    """

    def __init__(self):
        """Initialize the root manager."""
        self._roots: Set[Path] = set()
        self._failed: Dict[Path, str] = {}
        self._lock = threading.RLock()

    def add_root(self, path: Path, must_exist: bool = True) -> bool:
        """
        Add a root folder to watch.

        Args:
            path: Path to the root folder
            must_exist: If True, raise error if path doesn't exist

        Returns:
            True if the root was added

        Raises:
            RootNotFoundError: If must_exist and path doesn't exist
            RootAlreadyExistsError: If the root or an overlapping root is watched
        """
        path = path.resolve()

        if must_exist and not path.is_dir():
            raise RootNotFoundError(f"Root folder does not exist: {path}")

        with self._lock:
            if path in self._roots:
                raise RootAlreadyExistsError(f"Root already being watched: {path}")

            # Overlapping roots would report the same change twice
            for existing in self._roots:
                if path.is_relative_to(existing):
                    raise RootAlreadyExistsError(
                        f"'{path}' is already inside watched root '{existing}'"
                    )
                if existing.is_relative_to(path):
                    raise RootAlreadyExistsError(
                        f"'{path}' contains already-watched root '{existing}'"
                    )

            self._roots.add(path)
            self._failed.pop(path, None)
            return True

    def remove_root(self, path: Path) -> bool:
        """
        Remove a root folder from watching.

        Returns:
            True if the root was removed, False if not found
        """
        path = path.resolve()

        with self._lock:
            if path in self._roots:
                self._roots.discard(path)
                return True
            return False

    def mark_failed(self, path: Path, reason: str) -> None:
        """Move a root to the failed set. It is not retried."""
        path = path.resolve()

        with self._lock:
            self._roots.discard(path)
            self._failed[path] = reason
        logger.error(f"Watch root failed: {path} ({reason})")

    def get_failed(self) -> Dict[Path, str]:
        """Get failed roots and the reason each one failed."""
        with self._lock:
            return dict(self._failed)

    def get_roots(self) -> FrozenSet[Path]:
        """Get the current set of active root folders."""
        with self._lock:
            return frozenset(self._roots)

    def find_root_for_path(self, path: Path) -> Optional[Path]:
        """
        Find which root folder contains the given path.

        Returns:
            The root path that contains this path, or None
        """
        path = path.resolve()

        with self._lock:
            for root in self._roots:
                if path.is_relative_to(root):
                    return root
            return None

    def is_under_any_root(self, path: Path) -> bool:
        """Check if a path is under any watched root."""
        return self.find_root_for_path(path) is not None

    def has_root(self, path: Path) -> bool:
        """Check if a specific path is a watched root."""
        path = path.resolve()

        with self._lock:
            return path in self._roots

    def clear(self) -> int:
        """
        Remove all roots, including failed ones.

        Returns:
            Number of active roots removed
        """
        with self._lock:
            count = len(self._roots)
            self._roots.clear()
            self._failed.clear()
            return count

    def __len__(self) -> int:
        """Return the number of watched roots."""
        with self._lock:
            return len(self._roots)

    def __contains__(self, path: Path) -> bool:
        """Check if a path is a watched root."""
        return self.has_root(path)
