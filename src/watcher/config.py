"""Configuration for the file watcher package."""

import fnmatch
from dataclasses import dataclass, field
from pathlib import Path
from typing import List


# Directory names that are never worth watching
NOISE_DIRECTORIES = frozenset({
    ".git",
    ".svn",
    ".hg",
    "node_modules",
    "__pycache__",
    ".venv",
})


@dataclass
class WatcherConfig:
    """
    Configuration options for the file watcher.

    Attributes:
        paths: Explicit root folders to watch (empty means resolve defaults)
        stability_threshold_ms: Quiet time a written file needs before it is emitted
        poll_interval_ms: Interval for re-probing pending files and flushing
        ignore_hidden: Whether to drop dotfiles and dot-directories
        ignore_patterns: Extra glob patterns for paths to ignore
        recursive: Whether to watch directories recursively
    """
    paths: List[Path] = field(default_factory=list)
    stability_threshold_ms: int = 2000
    poll_interval_ms: int = 100
    ignore_hidden: bool = True
    ignore_patterns: List[str] = field(default_factory=lambda: [
        "*.swp",
        "*.swo",
        "*~",
        "Thumbs.db",
    ])
    recursive: bool = True

    def __post_init__(self):
        self.paths = [Path(p) for p in self.paths]

    def should_ignore(self, path: Path) -> bool:
        """
        Check if a path should be ignored.

        Hidden components and noise directories anywhere in the path are
        ignored, as are names matching any of the ignore patterns.

        Args:
            path: Path to check

        Returns:
            True if the path should be ignored
        """
        for part in path.parts:
            if part in NOISE_DIRECTORIES:
                return True
            if self.ignore_hidden and part.startswith(".") and part not in (".", ".."):
                return True

        path_str = str(path)
        name = path.name

        for pattern in self.ignore_patterns:
            if fnmatch.fnmatch(name, pattern):
                return True
            if fnmatch.fnmatch(path_str, f"*/{pattern}"):
                return True
            if fnmatch.fnmatch(path_str, pattern):
                return True

        return False
