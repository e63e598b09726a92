"""
Threshold alerting for scored file events.
"""

import logging
import math
from dataclasses import replace
from typing import Optional

from .bus import EventBus, TOPIC_RISK_ALERT
from .config import ALERT_THRESHOLD
from .exceptions import DuplicateAlertError, StoreError
from .models import ALERT_TYPE_HIGH_RISK, Alert, FileEvent
from .store import EventStore

logger = logging.getLogger(__name__)

MIN_SEVERITY = 1
MAX_SEVERITY = 5


def should_alert(score: int, threshold: int = ALERT_THRESHOLD) -> bool:
    """True when a score is strictly above the alert threshold."""
    return score > threshold


def alert_severity(score: int) -> int:
    """Map a 0-100 risk score to a 1-5 severity."""
    return min(max(math.ceil(score / 20), MIN_SEVERITY), MAX_SEVERITY)


def build_alert(event: FileEvent) -> Alert:
    """Construct (but do not persist) the alert for a scored event."""
    return Alert(
        alert_type=ALERT_TYPE_HIGH_RISK,
        description=f"High risk {event.event_type.value} activity detected on file: {event.name}",
        severity=alert_severity(event.risk_score),
        risk_score=event.risk_score,
        source_event_id=event.id,
        created_at=event.created_at,
    )


class AlertEmitter:
    """Persists and publishes an alert for every event over the threshold."""

    def __init__(self, store: EventStore, bus: EventBus, threshold: int = ALERT_THRESHOLD):
        self.store = store
        self.bus = bus
        self.threshold = threshold

    def evaluate(self, event: FileEvent) -> Optional[Alert]:
        """
        Raise an alert for a persisted, scored event if it warrants one.

        Returns:
            The stored Alert, or None if no alert was raised
        """
        if not should_alert(event.risk_score, self.threshold):
            return None

        alert = build_alert(event)
        try:
            alert_id = self.store.insert_alert(alert)
        except DuplicateAlertError as e:
            logger.debug(f"Alert for event {event.id} already exists (id={e.existing_id})")
            return None
        except StoreError as e:
            logger.error(f"Failed to persist alert for {event.path}: {e}")
            return None

        stored = replace(alert, id=alert_id)
        logger.warning(f"{stored.description} (score={stored.risk_score}, severity={stored.severity})")
        self.bus.publish(TOPIC_RISK_ALERT, stored.to_payload())
        return stored
