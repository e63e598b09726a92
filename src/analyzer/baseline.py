"""Per-user rolling activity baselines computed from the event log."""

import logging
import threading
import time
from typing import Callable, Dict, Optional, Tuple

from .config import BaselineConfig
from .models import Baseline, BaselineStats
from .store import EventStore

logger = logging.getLogger(__name__)

SECONDS_PER_HOUR = 3600.0

# Used when a user has too little history to average
FALLBACK_EVENTS_PER_HOUR = 20.0
FALLBACK_DELETES_PER_HOUR = 5.0
FALLBACK_EXTERNAL_PER_HOUR = 3.0
FALLBACK_EXTENSIONS = ("docx", "pdf", "jpg", "png")

TOP_EXTENSIONS = 10


def fallback_baseline(user_id: str, sample_size: int = 0) -> Baseline:
    """The fixed default baseline for users without enough history."""
    return Baseline(
        user_id=user_id,
        avg_events_per_hour=FALLBACK_EVENTS_PER_HOUR,
        avg_deletes_per_hour=FALLBACK_DELETES_PER_HOUR,
        avg_external_per_hour=FALLBACK_EXTERNAL_PER_HOUR,
        common_extensions=FALLBACK_EXTENSIONS,
        sample_size=sample_size,
        is_fallback=True,
    )


def baseline_from_stats(stats: BaselineStats, min_events: int) -> Baseline:
    """
    Turn raw history aggregates into hourly averages.

    Falls back to the default baseline when the history holds fewer than
    ``min_events`` events.
    """
    if stats.total_events < min_events:
        return fallback_baseline(stats.user_id, stats.total_events)

    hours = max((stats.until - stats.since) / SECONDS_PER_HOUR, 1.0)
    return Baseline(
        user_id=stats.user_id,
        avg_events_per_hour=stats.total_events / hours,
        avg_deletes_per_hour=stats.delete_events / hours,
        avg_external_per_hour=stats.external_events / hours,
        common_extensions=tuple(ext for ext, _ in stats.extension_counts[:TOP_EXTENSIONS]),
        sample_size=stats.total_events,
        is_fallback=False,
    )


class BaselineTracker:
    """
    Computes baselines on request and caches them briefly.

    The history window ends where the detection window starts, so the
    activity being judged never feeds its own reference.
    """

    def __init__(
        self,
        store: EventStore,
        config: Optional[BaselineConfig] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.config = config or BaselineConfig()
        self._clock = clock
        self._cache: Dict[str, Tuple[float, Baseline]] = {}
        self._lock = threading.Lock()

    def history_range(self, now: float) -> Tuple[float, float]:
        """The [since, until) range a baseline is computed over."""
        until = now - self.config.window_hours * SECONDS_PER_HOUR
        since = until - self.config.history_hours * SECONDS_PER_HOUR
        return since, until

    def get_baseline(self, user_id: str, now: Optional[float] = None) -> Baseline:
        """
        Get the baseline for a user, from cache if still fresh.

        Args:
            user_id: User identity
            now: Reference time; an explicit value bypasses the cache
        """
        current = self._clock()
        if now is not None:
            since, until = self.history_range(now)
            return baseline_from_stats(
                self.store.query_baseline(user_id, since, until),
                self.config.min_history_events,
            )

        with self._lock:
            cached = self._cache.get(user_id)
            if cached and (current - cached[0]) < self.config.cache_ttl_s:
                return cached[1]

        since, until = self.history_range(current)
        stats = self.store.query_baseline(user_id, since, until)
        baseline = baseline_from_stats(stats, self.config.min_history_events)
        if baseline.is_fallback:
            logger.debug(
                f"Using fallback baseline for {user_id} "
                f"({stats.total_events} events < {self.config.min_history_events})"
            )

        with self._lock:
            self._cache[user_id] = (current, baseline)
        return baseline

    def invalidate(self, user_id: Optional[str] = None) -> None:
        """Drop cached baselines for one user or everyone."""
        with self._lock:
            if user_id is None:
                self._cache.clear()
            else:
                self._cache.pop(user_id, None)
