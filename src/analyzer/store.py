"""
SQLite event and alert store.
"""

import logging
import sqlite3
import threading
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from .config import ALERT_THRESHOLD
from .models import Alert, BaselineStats, EventType, FileEvent
from .exceptions import AlertNotFoundError, DuplicateAlertError, StoreError

logger = logging.getLogger(__name__)

SCHEMA = """
    CREATE TABLE IF NOT EXISTS file_events (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        event_type TEXT NOT NULL,
        file_path TEXT NOT NULL,
        file_name TEXT NOT NULL,
        file_extension TEXT,
        user_id TEXT,
        process_name TEXT,
        is_external_drive INTEGER DEFAULT 0,
        risk_score INTEGER DEFAULT 0,
        created_at REAL NOT NULL
    );

    CREATE TABLE IF NOT EXISTS risk_alerts (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        alert_type TEXT NOT NULL,
        description TEXT NOT NULL,
        severity INTEGER NOT NULL,
        risk_score INTEGER NOT NULL,
        file_event_id INTEGER UNIQUE REFERENCES file_events(id),
        resolved INTEGER DEFAULT 0,
        created_at REAL NOT NULL,
        updated_at REAL NOT NULL
    );

    CREATE INDEX IF NOT EXISTS idx_file_events_user_time ON file_events(user_id, created_at);
    CREATE INDEX IF NOT EXISTS idx_file_events_time ON file_events(created_at);
    CREATE INDEX IF NOT EXISTS idx_risk_alerts_resolved ON risk_alerts(resolved);
"""

# Risk level filters used by the event listing (inclusive bounds)
RISK_LEVEL_RANGES: Dict[str, Tuple[int, int]] = {
    "high": (70, 100),
    "medium": (40, 69),
    "low": (0, 39),
}


class EventStore:
    """
    SQLite-backed store for file events and alerts.

    Each thread gets its own connection. Writes wait at most ``timeout``
    seconds for a lock; any sqlite failure surfaces as StoreError.
    """

    def __init__(self, db_path: Path, timeout: float = 5.0):
        """
        Initialize the event store.

        Args:
            db_path: Path to the SQLite database file
            timeout: Seconds to wait for a database lock
        """
        self.db_path = Path(db_path)
        self.timeout = timeout
        self._local = threading.local()
        self._connections: List[sqlite3.Connection] = []
        self._conn_lock = threading.Lock()
        self._closed = False

        self._init_db()

    def _get_connection(self) -> sqlite3.Connection:
        """Get a thread-local database connection."""
        if self._closed:
            raise StoreError("Store is closed")

        conn = getattr(self._local, "conn", None)
        if conn is None:
            conn = sqlite3.connect(
                str(self.db_path),
                timeout=self.timeout,
                check_same_thread=False,
                isolation_level=None,  # Autocommit mode
            )
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA journal_mode=WAL")
            conn.execute("PRAGMA synchronous=NORMAL")
            self._local.conn = conn
            with self._conn_lock:
                self._connections.append(conn)
        return conn

    @contextmanager
    def _cursor(self):
        """Yield a connection, converting sqlite errors to StoreError."""
        conn = self._get_connection()
        try:
            yield conn
        except sqlite3.Error as e:
            raise StoreError(f"Event store error: {e}") from e

    def _init_db(self) -> None:
        """Initialize the database schema."""
        with self._cursor() as conn:
            conn.executescript(SCHEMA)

    # Writes

    def insert_file_event(self, event: FileEvent) -> int:
        """
        Persist a scored file event.

        Returns:
            The new row id
        """
        with self._cursor() as conn:
            cursor = conn.execute(
                """
                INSERT INTO file_events (
                    event_type, file_path, file_name, file_extension, user_id,
                    process_name, is_external_drive, risk_score, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    event.event_type.value,
                    str(event.path),
                    event.name,
                    event.extension,
                    event.actor,
                    event.process_name,
                    1 if event.is_external_drive else 0,
                    event.risk_score,
                    event.created_at,
                ),
            )
            return cursor.lastrowid

    def insert_alert(self, alert: Alert) -> int:
        """
        Persist an alert. At most one alert is stored per file event.

        Returns:
            The new row id

        Raises:
            DuplicateAlertError: If the event already has an alert
        """
        now = time.time()
        try:
            with self._cursor() as conn:
                cursor = conn.execute(
                    """
                    INSERT INTO risk_alerts (
                        alert_type, description, severity, risk_score,
                        file_event_id, resolved, created_at, updated_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        alert.alert_type,
                        alert.description,
                        alert.severity,
                        alert.risk_score,
                        alert.source_event_id,
                        1 if alert.resolved else 0,
                        alert.created_at,
                        now,
                    ),
                )
                return cursor.lastrowid
        except StoreError as e:
            if isinstance(e.__cause__, sqlite3.IntegrityError):
                existing = self.get_alert_for_event(alert.source_event_id)
                raise DuplicateAlertError(
                    f"Alert already exists for file event {alert.source_event_id}",
                    existing_id=existing.id if existing else None,
                ) from e
            raise

    def resolve_alert(self, alert_id: int, resolved: bool = True) -> Alert:
        """
        Set an alert's resolved flag (operator action).

        Raises:
            AlertNotFoundError: If the alert does not exist
        """
        with self._cursor() as conn:
            cursor = conn.execute(
                "UPDATE risk_alerts SET resolved = ?, updated_at = ? WHERE id = ?",
                (1 if resolved else 0, time.time(), alert_id),
            )
            if cursor.rowcount == 0:
                raise AlertNotFoundError(f"Alert not found: {alert_id}")
        return self.get_alert(alert_id)

    # Pipeline reads

    def query_recent_events(
        self,
        user_id: Optional[str],
        since: float,
        until: Optional[float] = None,
    ) -> List[FileEvent]:
        """
        Events for a user (or all users if None) in [since, until), oldest first.
        """
        clauses = ["created_at >= ?"]
        params: List[Any] = [since]
        if until is not None:
            clauses.append("created_at < ?")
            params.append(until)
        if user_id is not None:
            clauses.append("user_id = ?")
            params.append(user_id)

        with self._cursor() as conn:
            rows = conn.execute(
                f"SELECT * FROM file_events WHERE {' AND '.join(clauses)} ORDER BY created_at, id",
                params,
            ).fetchall()
        return [FileEvent.from_row(row) for row in rows]

    def query_baseline(self, user_id: Optional[str], since: float, until: float) -> BaselineStats:
        """Aggregate a user's history over [since, until)."""
        user_clause = "" if user_id is None else " AND user_id = ?"
        params: List[Any] = [since, until] + ([] if user_id is None else [user_id])

        with self._cursor() as conn:
            totals = conn.execute(
                f"""
                SELECT
                    COUNT(*) AS total,
                    COALESCE(SUM(CASE WHEN event_type = ? THEN 1 ELSE 0 END), 0) AS deletes,
                    COALESCE(SUM(is_external_drive), 0) AS external
                FROM file_events
                WHERE created_at >= ? AND created_at < ?{user_clause}
                """,
                [EventType.DELETE.value] + params,
            ).fetchone()
            extensions = conn.execute(
                f"""
                SELECT file_extension, COUNT(*) AS count
                FROM file_events
                WHERE created_at >= ? AND created_at < ?{user_clause}
                    AND file_extension IS NOT NULL AND file_extension != ''
                GROUP BY file_extension
                ORDER BY count DESC, file_extension
                """,
                params,
            ).fetchall()

        return BaselineStats(
            user_id=user_id or "",
            since=since,
            until=until,
            total_events=totals["total"],
            delete_events=totals["deletes"],
            external_events=totals["external"],
            extension_counts=tuple((row["file_extension"], row["count"]) for row in extensions),
        )

    # Operator reads

    def get_event(self, event_id: int) -> Optional[FileEvent]:
        with self._cursor() as conn:
            row = conn.execute("SELECT * FROM file_events WHERE id = ?", (event_id,)).fetchone()
        return FileEvent.from_row(row) if row else None

    def list_events(
        self,
        event_type: Optional[str] = None,
        risk_level: Optional[str] = None,
        search: Optional[str] = None,
        since: Optional[float] = None,
        limit: int = 50,
        offset: int = 0,
        risk_ranges: Optional[Dict[str, Tuple[int, int]]] = None,
    ) -> Tuple[List[FileEvent], int]:
        """
        Filtered, newest-first page of events.

        ``risk_ranges`` overrides the default high/medium/low score bounds.

        Returns:
            (events, total matching count)
        """
        clauses: List[str] = []
        params: List[Any] = []
        if event_type:
            clauses.append("event_type = ?")
            params.append(event_type)
        ranges = risk_ranges or RISK_LEVEL_RANGES
        if risk_level in ranges:
            low, high = ranges[risk_level]
            clauses.append("risk_score BETWEEN ? AND ?")
            params.extend([low, high])
        if search:
            clauses.append("(file_path LIKE ? OR file_name LIKE ?)")
            params.extend([f"%{search}%", f"%{search}%"])
        if since is not None:
            clauses.append("created_at >= ?")
            params.append(since)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""

        with self._cursor() as conn:
            total = conn.execute(f"SELECT COUNT(*) FROM file_events {where}", params).fetchone()[0]
            rows = conn.execute(
                f"SELECT * FROM file_events {where} ORDER BY created_at DESC, id DESC LIMIT ? OFFSET ?",
                params + [limit, offset],
            ).fetchall()
        return [FileEvent.from_row(row) for row in rows], total

    def high_risk_events(self, threshold: int = ALERT_THRESHOLD, limit: int = 50) -> List[FileEvent]:
        """Newest events scoring strictly above the threshold."""
        with self._cursor() as conn:
            rows = conn.execute(
                "SELECT * FROM file_events WHERE risk_score > ? ORDER BY created_at DESC, id DESC LIMIT ?",
                (threshold, limit),
            ).fetchall()
        return [FileEvent.from_row(row) for row in rows]

    def external_drive_events(self, limit: int = 100) -> List[FileEvent]:
        with self._cursor() as conn:
            rows = conn.execute(
                "SELECT * FROM file_events WHERE is_external_drive = 1 ORDER BY created_at DESC, id DESC LIMIT ?",
                (limit,),
            ).fetchall()
        return [FileEvent.from_row(row) for row in rows]

    def get_alert(self, alert_id: int) -> Alert:
        with self._cursor() as conn:
            row = conn.execute("SELECT * FROM risk_alerts WHERE id = ?", (alert_id,)).fetchone()
        if row is None:
            raise AlertNotFoundError(f"Alert not found: {alert_id}")
        return Alert.from_row(row)

    def get_alert_for_event(self, event_id: int) -> Optional[Alert]:
        with self._cursor() as conn:
            row = conn.execute(
                "SELECT * FROM risk_alerts WHERE file_event_id = ?", (event_id,)
            ).fetchone()
        return Alert.from_row(row) if row else None

    def list_alerts(self, resolved: Optional[bool] = None, limit: int = 50, offset: int = 0) -> List[Alert]:
        where = ""
        params: List[Any] = []
        if resolved is not None:
            where = "WHERE resolved = ?"
            params.append(1 if resolved else 0)
        with self._cursor() as conn:
            rows = conn.execute(
                f"SELECT * FROM risk_alerts {where} ORDER BY created_at DESC, id DESC LIMIT ? OFFSET ?",
                params + [limit, offset],
            ).fetchall()
        return [Alert.from_row(row) for row in rows]

    def alert_counts(self) -> Dict[str, int]:
        with self._cursor() as conn:
            row = conn.execute(
                """
                SELECT COUNT(*) AS total,
                       COALESCE(SUM(CASE WHEN resolved = 0 THEN 1 ELSE 0 END), 0) AS unresolved
                FROM risk_alerts
                """
            ).fetchone()
        return {"total": row["total"], "unresolved": row["unresolved"]}

    def event_stats(self, threshold: int = ALERT_THRESHOLD) -> Dict[str, Any]:
        """Counts by type, average score, high-risk and external-drive counts."""
        with self._cursor() as conn:
            by_type = conn.execute(
                "SELECT event_type, COUNT(*) AS count FROM file_events GROUP BY event_type ORDER BY event_type"
            ).fetchall()
            summary = conn.execute(
                """
                SELECT
                    COUNT(*) AS total,
                    AVG(risk_score) AS average,
                    COALESCE(SUM(CASE WHEN risk_score > ? THEN 1 ELSE 0 END), 0) AS high_risk,
                    COALESCE(SUM(is_external_drive), 0) AS external
                FROM file_events
                """,
                (threshold,),
            ).fetchone()
        return {
            "event_types": {row["event_type"]: row["count"] for row in by_type},
            "total": summary["total"],
            "average_risk": round(summary["average"], 2) if summary["average"] is not None else 0.0,
            "high_risk_count": summary["high_risk"],
            "external_drive_count": summary["external"],
        }

    def risk_distribution(self) -> Dict[str, int]:
        """Event counts per display risk level."""
        with self._cursor() as conn:
            rows = conn.execute(
                """
                SELECT
                    CASE
                        WHEN risk_score <= 20 THEN 'Very Low'
                        WHEN risk_score <= 40 THEN 'Low'
                        WHEN risk_score <= 60 THEN 'Medium'
                        WHEN risk_score <= 80 THEN 'High'
                        ELSE 'Very High'
                    END AS risk_level,
                    COUNT(*) AS count
                FROM file_events
                GROUP BY risk_level
                """
            ).fetchall()
        return {row["risk_level"]: row["count"] for row in rows}

    def timeline(self, since: float) -> List[Dict[str, Any]]:
        """Hourly event counts and average score since a timestamp."""
        with self._cursor() as conn:
            rows = conn.execute(
                """
                SELECT
                    CAST(created_at / 3600 AS INTEGER) * 3600 AS hour,
                    COUNT(*) AS count,
                    AVG(risk_score) AS avg_risk
                FROM file_events
                WHERE created_at >= ?
                GROUP BY hour
                ORDER BY hour
                """,
                (since,),
            ).fetchall()
        return [
            {"hour": row["hour"], "count": row["count"], "avg_risk": round(row["avg_risk"], 2)}
            for row in rows
        ]

    def close(self) -> None:
        """Close every connection opened by this store."""
        if self._closed:
            return

        self._closed = True
        with self._conn_lock:
            connections = self._connections
            self._connections = []
        for conn in connections:
            try:
                conn.close()
            except sqlite3.Error:
                pass
        self._local = threading.local()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
