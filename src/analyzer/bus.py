"""In-process publish/subscribe with bounded, non-blocking fan-out."""

import logging
import threading
from collections import deque
from typing import Any, Deque, Dict, FrozenSet, Iterable, List, Optional, Tuple

logger = logging.getLogger(__name__)

TOPIC_FILE_EVENT = "file_event"
TOPIC_RISK_ALERT = "risk_alert"
TOPIC_ANOMALY = "anomaly"

Message = Tuple[str, Dict[str, Any]]


class Subscription:
    """
    A subscriber handle with its own bounded backlog.

    When the backlog is full the oldest message is dropped so the
    publisher never waits.
    """

    def __init__(self, topics: Optional[Iterable[str]] = None, max_backlog: int = 256):
        self.topics: Optional[FrozenSet[str]] = frozenset(topics) if topics else None
        self.max_backlog = max_backlog
        self.dropped = 0
        self._messages: Deque[Message] = deque()
        self._cond = threading.Condition()
        self._closed = False

    def wants(self, topic: str) -> bool:
        return self.topics is None or topic in self.topics

    def offer(self, topic: str, payload: Dict[str, Any]) -> bool:
        """
        Queue a message without blocking.

        Returns:
            False if the subscription is closed
        """
        with self._cond:
            if self._closed:
                return False
            if len(self._messages) >= self.max_backlog:
                self._messages.popleft()
                self.dropped += 1
            self._messages.append((topic, payload))
            self._cond.notify()
            return True

    def get(self, timeout: Optional[float] = None) -> Optional[Message]:
        """
        Wait for the next message.

        Returns:
            (topic, payload), or None on timeout or once closed and drained
        """
        with self._cond:
            if not self._messages and not self._closed:
                self._cond.wait(timeout)
            if self._messages:
                return self._messages.popleft()
            return None

    def drain(self) -> List[Message]:
        """Take every queued message without waiting."""
        with self._cond:
            messages = list(self._messages)
            self._messages.clear()
            return messages

    def close(self) -> None:
        with self._cond:
            self._closed = True
            self._cond.notify_all()

    @property
    def closed(self) -> bool:
        return self._closed

    def __len__(self) -> int:
        with self._cond:
            return len(self._messages)


class EventBus:
    """
    Registry of live subscriptions.

    ``publish`` copies the subscriber list under the lock and delivers
    outside it, so subscribers can come and go during delivery.
    """

    def __init__(self, default_backlog: int = 256):
        self.default_backlog = default_backlog
        self._subscribers: List[Subscription] = []
        self._lock = threading.Lock()

    def subscribe(
        self,
        topics: Optional[Iterable[str]] = None,
        max_backlog: Optional[int] = None,
    ) -> Subscription:
        """Register a new subscription (all topics if none given)."""
        sub = Subscription(topics, max_backlog or self.default_backlog)
        with self._lock:
            self._subscribers.append(sub)
        logger.debug(f"Subscriber added ({len(self)} active)")
        return sub

    def unsubscribe(self, sub: Subscription) -> None:
        """Close and remove a subscription."""
        sub.close()
        with self._lock:
            try:
                self._subscribers.remove(sub)
            except ValueError:
                pass

    def publish(self, topic: str, payload: Dict[str, Any]) -> int:
        """
        Deliver a message to every interested subscriber.

        Returns:
            Number of subscriptions the message was queued on
        """
        with self._lock:
            subscribers = list(self._subscribers)

        delivered = 0
        stale = []
        for sub in subscribers:
            if not sub.wants(topic):
                continue
            try:
                if sub.offer(topic, payload):
                    delivered += 1
                else:
                    stale.append(sub)
            except Exception as e:
                logger.warning(f"Dropping subscriber after delivery failure: {e}")
                stale.append(sub)

        if stale:
            with self._lock:
                self._subscribers = [s for s in self._subscribers if s not in stale]

        return delivered

    def close(self) -> None:
        """Close every subscription."""
        with self._lock:
            subscribers = self._subscribers
            self._subscribers = []
        for sub in subscribers:
            sub.close()

    def __len__(self) -> int:
        with self._lock:
            return len(self._subscribers)
