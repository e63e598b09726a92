"""
Operator settings persisted in a SQLite key-value table next to the event log.
"""

import logging
import sqlite3
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Tuple

from src.watcher.root_manager import split_path_list

logger = logging.getLogger(__name__)

# Default values
DEFAULT_SETTINGS: Dict[str, str] = {
    "monitoring_paths": "",
    # Display/filter thresholds for the dashboard; alerting does not read them
    "high_risk_threshold": "70",
    "medium_risk_threshold": "40",
    "anomaly_interval_s": "300",
}

# Keys whose values must parse as non-negative integers
INTEGER_SETTINGS = frozenset({"high_risk_threshold", "medium_risk_threshold", "anomaly_interval_s"})


class SettingsManager:
    """Manages operator settings stored in the event database."""

    def __init__(self, db_path: Path):
        self._db_path = db_path

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self._db_path))
        conn.row_factory = sqlite3.Row
        return conn

    def _ensure_table(self, conn: sqlite3.Connection) -> None:
        conn.execute("""
            CREATE TABLE IF NOT EXISTS settings (
                key TEXT PRIMARY KEY,
                value TEXT
            )
        """)

    def get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        """Get a setting value by key, falling back to the built-in default."""
        with self._connect() as conn:
            self._ensure_table(conn)
            row = conn.execute(
                "SELECT value FROM settings WHERE key = ?", (key,)
            ).fetchone()
        if row is not None:
            return row["value"]
        return default if default is not None else DEFAULT_SETTINGS.get(key)

    def set(self, key: str, value: Optional[str]) -> None:
        """Set a setting value (None deletes it)."""
        with self._connect() as conn:
            self._ensure_table(conn)
            if value is None:
                conn.execute("DELETE FROM settings WHERE key = ?", (key,))
            else:
                conn.execute(
                    "INSERT OR REPLACE INTO settings (key, value) VALUES (?, ?)",
                    (key, value),
                )

    def update(self, values: Mapping[str, object]) -> None:
        """
        Set several known settings at once.

        Raises:
            ValueError: On an unknown key or a non-integer value for an integer key
        """
        cleaned = {}
        for key, value in values.items():
            if key not in DEFAULT_SETTINGS:
                raise ValueError(f"Unknown setting: {key}")
            value = str(value).strip()
            if key in INTEGER_SETTINGS and not value.isdigit():
                raise ValueError(f"Setting {key} must be a non-negative integer")
            cleaned[key] = value
        for key, value in cleaned.items():
            self.set(key, value)

    def get_all(self) -> Dict[str, str]:
        """Get all settings, with defaults filled in."""
        with self._connect() as conn:
            self._ensure_table(conn)
            rows = conn.execute("SELECT key, value FROM settings").fetchall()
        settings = dict(DEFAULT_SETTINGS)
        settings.update({row["key"]: row["value"] for row in rows})
        return settings

    def _get_int(self, key: str) -> int:
        value = self.get(key)
        try:
            return int(value)
        except (TypeError, ValueError):
            logger.warning(f"Invalid integer setting {key}={value!r}, using default")
            return int(DEFAULT_SETTINGS[key])

    # --- High-level settings ---

    def get_monitoring_paths(self) -> List[Path]:
        return split_path_list(self.get("monitoring_paths"))

    def set_monitoring_paths(self, paths: List[Path]) -> None:
        self.set("monitoring_paths", ",".join(str(p) for p in paths))

    def get_high_risk_threshold(self) -> int:
        return self._get_int("high_risk_threshold")

    def get_medium_risk_threshold(self) -> int:
        return self._get_int("medium_risk_threshold")

    def get_anomaly_interval(self) -> int:
        return self._get_int("anomaly_interval_s")

    def risk_level_ranges(self) -> Dict[str, Tuple[int, int]]:
        """Inclusive score ranges for the high/medium/low event filters."""
        high = self.get_high_risk_threshold()
        medium = self.get_medium_risk_threshold()
        return {
            "high": (high, 100),
            "medium": (medium, high - 1),
            "low": (0, medium - 1),
        }
