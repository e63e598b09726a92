"""
Baseline-relative anomaly detection.

Each rule compares one metric over the detection window against a
multiple of a baseline average. A rule fires when the observed value is
strictly greater than the multiple. Rules are independent and every pass
is a fresh judgment with no memory of earlier findings.
"""

import logging
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Sequence

from .baseline import BaselineTracker, SECONDS_PER_HOUR
from .config import BaselineConfig
from .models import Anomaly, AnomalyWindow, Baseline, EventType, FileEvent, count_by_type
from .store import EventStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AnomalyRule:
    """An "observed > multiplier x baseline" check."""
    kind: str
    description: str
    severity: int
    multiplier: float
    observe: Callable[[Sequence[FileEvent]], float]
    reference: Callable[[Baseline], float]

    def check(self, events: Sequence[FileEvent], baseline: Baseline, window: AnomalyWindow) -> Optional[Anomaly]:
        observed = self.observe(events)
        threshold = self.multiplier * self.reference(baseline)
        if observed > threshold:
            return Anomaly(
                kind=self.kind,
                description=self.description,
                severity=self.severity,
                observed=observed,
                threshold=threshold,
                window=window,
            )
        return None


def _total(events: Sequence[FileEvent]) -> float:
    return len(events)


def _deletes(events: Sequence[FileEvent]) -> float:
    return count_by_type(list(events)).get(EventType.DELETE, 0)


def _external(events: Sequence[FileEvent]) -> float:
    return sum(1 for e in events if e.is_external_drive)


HIGH_VOLUME = AnomalyRule(
    kind="high_volume",
    description="Unusually high number of file operations",
    severity=3,
    multiplier=3.0,
    observe=_total,
    reference=lambda b: b.avg_events_per_hour,
)

HIGH_DELETION = AnomalyRule(
    kind="high_deletion",
    description="Unusually high number of file deletions",
    severity=4,
    multiplier=2.0,
    observe=_deletes,
    reference=lambda b: b.avg_deletes_per_hour,
)

HIGH_EXTERNAL_DRIVE = AnomalyRule(
    kind="high_external_drive",
    description="Unusually high number of external drive operations",
    severity=3,
    multiplier=3.0,
    observe=_external,
    reference=lambda b: b.avg_external_per_hour,
)

DEFAULT_RULES = (HIGH_VOLUME, HIGH_DELETION, HIGH_EXTERNAL_DRIVE)


def evaluate(
    events: Sequence[FileEvent],
    baseline: Baseline,
    window: AnomalyWindow,
    rules: Sequence[AnomalyRule] = DEFAULT_RULES,
) -> List[Anomaly]:
    """Run every rule over a window of events. Pure."""
    findings = []
    for rule in rules:
        anomaly = rule.check(events, baseline, window)
        if anomaly is not None:
            findings.append(anomaly)
    return findings


class AnomalyDetector:
    """Loads a user's recent events and baseline and evaluates the rule table."""

    def __init__(
        self,
        store: EventStore,
        tracker: BaselineTracker,
        config: Optional[BaselineConfig] = None,
        rules: Sequence[AnomalyRule] = DEFAULT_RULES,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.tracker = tracker
        self.config = config or tracker.config
        self.rules = tuple(rules)
        self._clock = clock

    def window_range(self, now: float):
        return now - self.config.window_hours * SECONDS_PER_HOUR, now

    def detect(self, user_id: Optional[str], now: Optional[float] = None) -> List[Anomaly]:
        """
        Evaluate the detection window ending at ``now`` for one user
        (or across all users when user_id is None).

        Without ``now`` the baseline may come from the tracker's cache.
        """
        return self._detect(user_id, self._clock() if now is None else now, cached=now is None)

    def _detect(self, user_id: Optional[str], now: float, cached: bool) -> List[Anomaly]:
        start, end = self.window_range(now)

        events = self.store.query_recent_events(user_id, start, end)
        baseline = self.tracker.get_baseline(user_id, now=None if cached else now)
        window = AnomalyWindow(
            user_id=user_id or "",
            start=start,
            end=end,
            event_ids=tuple(e.id for e in events if e.id is not None),
        )

        findings = evaluate(events, baseline, window, self.rules)
        for anomaly in findings:
            logger.info(
                f"Anomaly {anomaly.kind} for {window.user_id or 'all users'}: "
                f"{anomaly.observed:g} > {anomaly.threshold:g}"
            )
        return findings

    def detect_all(self, now: Optional[float] = None) -> Dict[str, List[Anomaly]]:
        """Run detection for every user active in the current window."""
        cached = now is None
        now = self._clock() if now is None else now
        start, end = self.window_range(now)

        users = sorted({e.actor for e in self.store.query_recent_events(None, start, end)})
        results = {}
        for user_id in users:
            findings = self._detect(user_id, now, cached)
            if findings:
                results[user_id] = findings
        return results
