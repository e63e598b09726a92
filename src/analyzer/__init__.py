"""
Risk Analyzer Package

Turns settled file-change notifications into scored, persisted file events,
raises alerts for high-risk activity and flags deviations from each user's
activity baseline.

Features:
- Deterministic additive risk scoring (0-100)
- Threshold alerts with 1-5 severity, at most one per event
- Rolling per-user baselines with an explicit fallback
- Rule-table anomaly detection (volume, deletions, external drives)
- In-process pub/sub with bounded, drop-oldest subscriber backlogs
- SQLite event log and REST/SSE API
"""

from .models import (
    EventType,
    FileEvent,
    Alert,
    Anomaly,
    AnomalyWindow,
    Baseline,
    BaselineStats,
)

from .config import AnalyzerConfig, BaselineConfig, ALERT_THRESHOLD

from .exceptions import (
    AnalyzerError,
    StoreError,
    AlertNotFoundError,
    DuplicateAlertError,
    PipelineError,
)

from .classifier import EventClassifier, classify, is_external_drive
from .scoring import score, score_breakdown, risk_level
from .baseline import BaselineTracker, fallback_baseline
from .anomaly import AnomalyDetector, AnomalyRule, evaluate, DEFAULT_RULES
from .alerts import AlertEmitter, should_alert, alert_severity
from .bus import EventBus, Subscription, TOPIC_FILE_EVENT, TOPIC_RISK_ALERT, TOPIC_ANOMALY
from .store import EventStore
from .settings import SettingsManager
from .process import RiskPipeline


__all__ = [
    # Models
    "EventType",
    "FileEvent",
    "Alert",
    "Anomaly",
    "AnomalyWindow",
    "Baseline",
    "BaselineStats",
    # Config
    "AnalyzerConfig",
    "BaselineConfig",
    "ALERT_THRESHOLD",
    # Exceptions
    "AnalyzerError",
    "StoreError",
    "AlertNotFoundError",
    "DuplicateAlertError",
    "PipelineError",
    # Components
    "EventClassifier",
    "classify",
    "is_external_drive",
    "score",
    "score_breakdown",
    "risk_level",
    "BaselineTracker",
    "fallback_baseline",
    "AnomalyDetector",
    "AnomalyRule",
    "evaluate",
    "DEFAULT_RULES",
    "AlertEmitter",
    "should_alert",
    "alert_severity",
    "EventBus",
    "Subscription",
    "TOPIC_FILE_EVENT",
    "TOPIC_RISK_ALERT",
    "TOPIC_ANOMALY",
    "EventStore",
    "SettingsManager",
    # Main Process
    "RiskPipeline",
]

__version__ = "0.1.0"
