"""
Deterministic risk scoring for file events.

The score is the sum of independent rule contributions, clamped to
[0, 100]. Everything here is pure so it can be checked rule by rule.
"""

import re
from typing import Dict, List, Tuple

from .models import EventType, FileEvent

MIN_SCORE = 0
MAX_SCORE = 100

BASE_SCORES: Dict[EventType, int] = {
    EventType.CREATE: 30,
    EventType.MODIFY: 20,
    EventType.DELETE: 40,
    EventType.CREATE_DIR: 15,
    EventType.DELETE_DIR: 35,
}
DEFAULT_BASE_SCORE = 10

EXTERNAL_DRIVE_BONUS = 30

# Executables and scripts
HIGH_RISK_EXTENSIONS = frozenset({
    "exe", "bat", "cmd", "ps1", "vbs", "js", "jar", "sh", "py", "dll",
})
HIGH_RISK_EXTENSION_BONUS = 25

# Documents and data files likely to hold sensitive content
SENSITIVE_EXTENSIONS = frozenset({
    "pdf", "doc", "docx", "xls", "xlsx", "csv", "ppt", "pptx", "txt", "rtf",
    "db", "sql", "json", "xml", "config", "env",
})
SENSITIVE_EXTENSION_BONUS = 15

SENSITIVE_NAME_PATTERNS: Tuple[re.Pattern, ...] = tuple(
    re.compile(word, re.IGNORECASE)
    for word in (
        "password", "secret", "confidential", "private",
        "account", "credit", "ssn", "social", "bank",
    )
)
SENSITIVE_NAME_BONUS = 20

TEMP_PATH_MARKERS = ("temp", "tmp")
TEMP_PATH_BONUS = 10

RISK_LEVELS: List[Tuple[int, str]] = [
    (20, "Very Low"),
    (40, "Low"),
    (60, "Medium"),
    (80, "High"),
    (MAX_SCORE, "Very High"),
]


def _extension_bonus(extension: str) -> int:
    extension = (extension or "").lower()
    if extension in HIGH_RISK_EXTENSIONS:
        return HIGH_RISK_EXTENSION_BONUS
    if extension in SENSITIVE_EXTENSIONS:
        return SENSITIVE_EXTENSION_BONUS
    return 0


def _name_bonus(name: str) -> int:
    name = name or ""
    for pattern in SENSITIVE_NAME_PATTERNS:
        if pattern.search(name):
            return SENSITIVE_NAME_BONUS
    return 0


def _path_bonus(path: str) -> int:
    lowered = path.lower()
    if any(marker in lowered for marker in TEMP_PATH_MARKERS):
        return TEMP_PATH_BONUS
    return 0


def score_breakdown(event: FileEvent) -> Dict[str, int]:
    """
    Per-rule contributions for an event, in rule order.

    Returns:
        Mapping of rule name to points awarded (0 when the rule did not fire)
    """
    return {
        "event_type": BASE_SCORES.get(event.event_type, DEFAULT_BASE_SCORE),
        "external_drive": EXTERNAL_DRIVE_BONUS if event.is_external_drive else 0,
        "extension": _extension_bonus(event.extension),
        "sensitive_name": _name_bonus(event.name),
        "temp_path": _path_bonus(str(event.path)),
    }


def clamp(value: int) -> int:
    return min(max(value, MIN_SCORE), MAX_SCORE)


def score(event: FileEvent) -> int:
    """Risk score of an event, in [0, 100]."""
    return clamp(sum(score_breakdown(event).values()))


def risk_level(value: int) -> str:
    """Bucket a score into a display risk level."""
    for upper, label in RISK_LEVELS:
        if value <= upper:
            return label
    return RISK_LEVELS[-1][1]
