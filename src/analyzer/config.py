"""
Configuration for the analyzer package.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

# Alerting threshold: an event alerts when its score is strictly above this.
ALERT_THRESHOLD = 70

DB_PATH_ENV = "SENTRY_DB_PATH"


@dataclass
class BaselineConfig:
    """Configuration for baseline tracking and anomaly windows."""
    window_hours: float = 24.0
    history_hours: float = 24.0
    min_history_events: int = 24
    cache_ttl_s: float = 60.0


@dataclass
class AnalyzerConfig:
    """Main configuration for the risk pipeline."""
    db_path: Path = field(default_factory=lambda: Path(os.environ.get(DB_PATH_ENV, "sentry.db")))

    # Alerting
    alert_threshold: int = ALERT_THRESHOLD

    # Processing
    max_workers: int = 4
    store_timeout_s: float = 5.0
    # None means use the persisted anomaly_interval_s setting
    anomaly_interval_s: Optional[float] = None
    bus_backlog: int = 256

    # Baseline / anomaly
    baseline: BaselineConfig = field(default_factory=BaselineConfig)

    # API server
    api_host: str = "127.0.0.1"
    api_port: int = 5001
    serve_api: bool = True

    # Identity override (defaults to the OS user)
    actor: Optional[str] = None

    def __post_init__(self):
        if isinstance(self.db_path, str):
            self.db_path = Path(self.db_path)
        if isinstance(self.baseline, dict):
            self.baseline = BaselineConfig(**self.baseline)
