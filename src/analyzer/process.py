"""
Main risk pipeline process.
"""

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import replace
from pathlib import Path
from typing import Iterable, List, Optional

from src.watcher import WatcherConfig, WatcherProcess, RawNotification, resolve_watch_paths

from .alerts import AlertEmitter
from .anomaly import AnomalyDetector
from .api_server import PipelineAPIService
from .baseline import BaselineTracker
from .bus import EventBus, TOPIC_ANOMALY, TOPIC_FILE_EVENT
from .classifier import EventClassifier
from .config import AnalyzerConfig
from .exceptions import PipelineError, StoreError
from .models import Anomaly, FileEvent
from .scoring import score
from .settings import SettingsManager
from .store import EventStore

logger = logging.getLogger(__name__)


class RiskPipeline:
    """
    Main risk pipeline process.

    Consumes settled watcher notifications and runs each one through
    classify, score, persist, publish and alert on a worker pool. A timer
    thread runs anomaly detection over the stored event log.
    """

    def __init__(
        self,
        config: Optional[AnalyzerConfig] = None,
        watcher_config: Optional[WatcherConfig] = None,
        store: Optional[EventStore] = None,
        bus: Optional[EventBus] = None,
    ):
        """
        Initialize the risk pipeline.

        Args:
            config: Analyzer configuration
            watcher_config: Watcher configuration (paths are resolved on start)
            store: Custom event store
            bus: Custom event bus
        """
        self.config = config or AnalyzerConfig()
        self.watcher_config = watcher_config or WatcherConfig()

        logger.debug(f"RiskPipeline initializing, db_path={self.config.db_path}")

        self.store = store or EventStore(self.config.db_path, timeout=self.config.store_timeout_s)
        self.settings = SettingsManager(self.config.db_path)
        self.bus = bus or EventBus(default_backlog=self.config.bus_backlog)

        self.classifier = EventClassifier(actor=self.config.actor)
        self.tracker = BaselineTracker(self.store, self.config.baseline)
        self.detector = AnomalyDetector(self.store, self.tracker)
        self.emitter = AlertEmitter(self.store, self.bus, threshold=self.config.alert_threshold)

        self._watcher = WatcherProcess(self.watcher_config, on_notification=self.submit)
        self._executor: Optional[ThreadPoolExecutor] = None
        self._api_service: Optional[PipelineAPIService] = None

        self._running = False
        self._stop_event = threading.Event()
        self._anomaly_thread: Optional[threading.Thread] = None
        self._lock = threading.Lock()

    # Unit of work

    def handle(self, notification: RawNotification) -> Optional[FileEvent]:
        """
        Run one notification through the pipeline synchronously.

        Returns:
            The persisted FileEvent, or None if it was dropped
        """
        event = self.classifier.classify(notification)
        event = replace(event, risk_score=score(event))

        try:
            event_id = self.store.insert_file_event(event)
        except StoreError as e:
            logger.error(f"Dropping event for {event.path}: {e}")
            return None
        event = replace(event, id=event_id)

        logger.debug(f"{event.event_type.value} {event.path} score={event.risk_score}")
        self.bus.publish(TOPIC_FILE_EVENT, event.to_payload())
        self.emitter.evaluate(event)
        return event

    def _run(self, notification: RawNotification) -> Optional[FileEvent]:
        try:
            return self.handle(notification)
        except Exception as e:
            logger.exception(f"Pipeline failed for {notification.path}: {e}")
            return None

    def submit(self, notification: RawNotification) -> Optional[Future]:
        """
        Schedule a notification on the worker pool.

        Returns:
            The Future, or None if the pipeline is not accepting work
        """
        executor = self._executor
        if executor is None:
            logger.debug(f"Pipeline not running, ignoring {notification.path}")
            return None
        try:
            return executor.submit(self._run, notification)
        except RuntimeError:
            # Executor was shut down between the check and the submit
            return None

    # Anomaly detection

    def run_anomaly_pass(self, user_id: Optional[str] = None, now: Optional[float] = None) -> List[Anomaly]:
        """
        Run anomaly detection once and publish every finding.

        Args:
            user_id: One user, or every user active in the window when None
            now: Reference time (defaults to the current time)
        """
        try:
            if user_id is None:
                findings = [a for found in self.detector.detect_all(now=now).values() for a in found]
            else:
                findings = self.detector.detect(user_id, now=now)
        except StoreError as e:
            logger.error(f"Anomaly pass failed: {e}")
            return []

        for anomaly in findings:
            self.bus.publish(TOPIC_ANOMALY, anomaly.to_dict())
        return findings

    def anomaly_interval(self) -> float:
        """Seconds between timer passes: the config value, else the persisted setting."""
        if self.config.anomaly_interval_s is not None:
            return self.config.anomaly_interval_s
        return float(self.settings.get_anomaly_interval())

    def _anomaly_loop(self, interval: float) -> None:
        logger.debug(f"Anomaly loop started, interval={interval}s")
        while not self._stop_event.wait(timeout=interval):
            try:
                findings = self.run_anomaly_pass()
                logger.info(f"Anomaly pass complete: {len(findings)} finding(s)")
            except Exception as e:
                logger.error(f"Anomaly loop error: {e}")

    # Lifecycle

    def resolve_paths(self, paths: Optional[Iterable[Path]] = None) -> List[Path]:
        """Watch paths from explicit input, settings, environment or defaults."""
        explicit = list(paths) if paths else list(self.watcher_config.paths) or None
        return resolve_watch_paths(explicit=explicit, configured=self.settings.get_monitoring_paths())

    def start(self, paths: Optional[Iterable[Path]] = None) -> None:
        """
        Start the pipeline in the background.

        Raises:
            PipelineError: If already running
        """
        with self._lock:
            if self._running:
                raise PipelineError("Pipeline is already running")
            self._running = True
            self._stop_event.clear()

        self._executor = ThreadPoolExecutor(
            max_workers=self.config.max_workers,
            thread_name_prefix="RiskWorker",
        )

        roots = self.resolve_paths(paths)
        self._watcher.start_async(roots)
        logger.info(f"Monitoring {len(self._watcher.get_roots())} of {len(roots)} path(s)")
        for root, reason in self._watcher.failed_roots.items():
            logger.warning(f"  not watched: {root} ({reason})")

        interval = self.anomaly_interval()
        if interval > 0:
            self._anomaly_thread = threading.Thread(
                target=self._anomaly_loop, args=(interval,), name="AnomalyTimer", daemon=True
            )
            self._anomaly_thread.start()

        if self.config.serve_api and self._api_service is None:
            self._api_service = PipelineAPIService(self.config.api_host, self.config.api_port, self)
            try:
                self._api_service.start()
                logger.info(
                    "Pipeline API listening on http://%s:%s",
                    self._api_service.host,
                    self._api_service.port,
                )
            except OSError as exc:
                logger.error("Failed to start pipeline API: %s", exc)
                self._api_service = None

        logger.info("Risk pipeline started")

    def stop(self) -> None:
        """
        Stop the pipeline.

        Queued work that has not started is cancelled.
        """
        self._stop_event.set()
        with self._lock:
            if not self._running:
                return
            self._running = False

        self._watcher.stop()

        executor, self._executor = self._executor, None
        if executor is not None:
            executor.shutdown(wait=True, cancel_futures=True)

        if self._anomaly_thread and self._anomaly_thread.is_alive():
            self._anomaly_thread.join(timeout=2.0)
        self._anomaly_thread = None

        if self._api_service:
            self._api_service.stop()
            self._api_service = None

        logger.info("Risk pipeline stopped")

    def restart(self, paths: Iterable[Path]) -> None:
        """Replace the watched path set, keeping the pipeline running."""
        roots = self.resolve_paths(paths)
        self._watcher.restart(roots)
        logger.info(f"Watch paths replaced: {len(self._watcher.get_roots())} root(s)")

    def get_roots(self) -> List[Path]:
        return self._watcher.get_roots()

    @property
    def failed_roots(self):
        return self._watcher.failed_roots

    @property
    def is_running(self) -> bool:
        return self._running

    def close(self) -> None:
        """Stop the pipeline and close the store."""
        self.stop()
        self.bus.close()
        self.store.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
