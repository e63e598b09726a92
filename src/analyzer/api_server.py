"""Risk pipeline REST API server, FastAPI edition."""

import asyncio
import json
import logging
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, AsyncIterator, Dict, List, Optional, TYPE_CHECKING

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse

from .anomaly import AnomalyDetector
from .baseline import BaselineTracker
from .bus import EventBus, Subscription
from .classifier import current_user
from .config import ALERT_THRESHOLD
from .exceptions import AlertNotFoundError, StoreError
from .models import to_iso
from .settings import SettingsManager
from .store import EventStore

if TYPE_CHECKING:
    from .process import RiskPipeline

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 86400

# How often an idle SSE stream re-checks its subscription
SSE_POLL_S = 0.25

DATE_RANGES = {
    "today": None,  # since local midnight
    "week": 7 * SECONDS_PER_DAY,
    "month": 30 * SECONDS_PER_DAY,
}

# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class PipelineAPIConfig:
    db_path: Path
    alert_threshold: int = ALERT_THRESHOLD
    keepalive_s: float = 15.0
    store_timeout_s: float = 5.0


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _since_for_range(date_range: Optional[str], now: Optional[float] = None) -> Optional[float]:
    if not date_range or date_range == "all" or date_range not in DATE_RANGES:
        return None
    now = time.time() if now is None else now
    span = DATE_RANGES[date_range]
    if span is None:
        local = time.localtime(now)
        return now - (local.tm_hour * 3600 + local.tm_min * 60 + local.tm_sec)
    return now - span


def _split_topics(topics: Optional[str]) -> Optional[List[str]]:
    if not topics:
        return None
    return [t.strip() for t in topics.split(",") if t.strip()] or None


async def iter_sse(
    bus: EventBus,
    sub: Subscription,
    keepalive_s: float = 15.0,
    request: Optional[Request] = None,
    poll_s: float = SSE_POLL_S,
) -> AsyncIterator[str]:
    """
    Render a subscription as Server-Sent Events.

    Polls the subscription without blocking, so an idle stream holds no
    worker thread. Emits a keep-alive comment after ``keepalive_s`` of
    silence. Ends once the subscription is closed and drained or the client
    disconnects; always unsubscribes.
    """
    loop = asyncio.get_running_loop()
    try:
        yield ": connected\n\n"
        last_sent = loop.time()
        while True:
            closed = sub.closed
            message = sub.get(timeout=0)
            if message is None:
                if closed:
                    break
                if request is not None and await request.is_disconnected():
                    break
                if loop.time() - last_sent >= keepalive_s:
                    yield ": keep-alive\n\n"
                    last_sent = loop.time()
                await asyncio.sleep(min(poll_s, keepalive_s))
                continue
            topic, payload = message
            yield f"event: {topic}\ndata: {json.dumps(payload)}\n\n"
            last_sent = loop.time()
    finally:
        bus.unsubscribe(sub)


# ---------------------------------------------------------------------------
# App factory
# ---------------------------------------------------------------------------

def create_app(
    cfg: PipelineAPIConfig,
    pipeline: Optional["RiskPipeline"] = None,
    store: Optional[EventStore] = None,
    bus: Optional[EventBus] = None,
) -> FastAPI:
    app = FastAPI(title="File Risk Sentry API", docs_url=None, redoc_url=None)

    if pipeline is not None:
        store = pipeline.store
        bus = pipeline.bus
        settings = pipeline.settings
        detector = pipeline.detector
    else:
        store = store or EventStore(cfg.db_path, timeout=cfg.store_timeout_s)
        bus = bus or EventBus()
        settings = SettingsManager(cfg.db_path)
        detector = AnomalyDetector(store, BaselineTracker(store))

    app.state.cfg = cfg
    app.state.pipeline = pipeline
    app.state.store = store
    app.state.bus = bus

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(AlertNotFoundError)
    async def alert_not_found(request: Request, exc: AlertNotFoundError):
        return JSONResponse({"error": str(exc)}, status_code=404)

    @app.exception_handler(StoreError)
    async def store_error(request: Request, exc: StoreError):
        logger.error(f"{request.method} {request.url.path} failed: {exc}")
        return JSONResponse({"error": "Event store unavailable"}, status_code=503)

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    @app.get("/api/events")
    def list_events(
        event_type: Optional[str] = None,
        risk_level: Optional[str] = None,
        search: Optional[str] = None,
        date_range: Optional[str] = None,
        page: int = 1,
        limit: int = 50,
    ):
        ranges = settings.risk_level_ranges()
        if risk_level and risk_level not in ranges:
            return JSONResponse({"error": f"Unknown risk level: {risk_level}"}, status_code=400)
        page = max(page, 1)
        limit = min(max(limit, 1), 500)
        events, total = store.list_events(
            event_type=event_type,
            risk_level=risk_level,
            search=search,
            since=_since_for_range(date_range),
            limit=limit,
            offset=(page - 1) * limit,
            risk_ranges=ranges,
        )
        return {
            "events": [e.to_dict() for e in events],
            "pagination": {
                "page": page,
                "limit": limit,
                "total": total,
                "pages": (total + limit - 1) // limit,
            },
        }

    @app.get("/api/events/recent")
    def recent_events(limit: int = 100):
        events, _ = store.list_events(since=time.time() - SECONDS_PER_DAY, limit=limit)
        return [e.to_dict() for e in events]

    @app.get("/api/events/high-risk")
    def high_risk_events(limit: int = 50):
        return [e.to_dict() for e in store.high_risk_events(cfg.alert_threshold, limit=limit)]

    @app.get("/api/events/stats")
    def event_stats():
        return store.event_stats(cfg.alert_threshold)

    @app.get("/api/events/{event_id}")
    def get_event(event_id: int):
        event = store.get_event(event_id)
        if event is None:
            return JSONResponse({"error": "Event not found"}, status_code=404)
        return event.to_dict()

    # ------------------------------------------------------------------
    # Alerts
    # ------------------------------------------------------------------

    @app.get("/api/alerts")
    def list_alerts(resolved: Optional[bool] = None, limit: int = 50, offset: int = 0):
        return [a.to_dict() for a in store.list_alerts(resolved=resolved, limit=limit, offset=offset)]

    @app.patch("/api/alerts/{alert_id}/resolve")
    async def resolve_alert(alert_id: int, request: Request):
        resolved = True
        body = await request.body()
        if body:
            try:
                payload = json.loads(body)
            except json.JSONDecodeError:
                return JSONResponse({"error": "Invalid JSON body"}, status_code=400)
            if not isinstance(payload, dict):
                return JSONResponse({"error": "Body must be an object"}, status_code=400)
            resolved = bool(payload.get("resolved", True))
        alert = store.resolve_alert(alert_id, resolved)
        logger.info(f"Alert {alert_id} marked {'resolved' if resolved else 'unresolved'}")
        return alert.to_dict()

    # ------------------------------------------------------------------
    # Analytics
    # ------------------------------------------------------------------

    @app.get("/api/analytics/anomalies")
    def anomalies(user: Optional[str] = None):
        user_id = user or current_user()
        if pipeline is not None:
            findings = pipeline.run_anomaly_pass(user_id)
        else:
            findings = detector.detect(user_id)
        return [a.to_dict() for a in findings]

    @app.get("/api/analytics/risk-summary")
    def risk_summary():
        counts = store.alert_counts()
        return {
            "risk_distribution": store.risk_distribution(),
            "alerts_count": counts["total"],
            "unresolved_alerts_count": counts["unresolved"],
        }

    @app.get("/api/analytics/timeline")
    def timeline(hours: int = 24):
        since = time.time() - max(hours, 1) * 3600
        return [
            {"hour": to_iso(row["hour"]), "count": row["count"], "avg_risk": row["avg_risk"]}
            for row in store.timeline(since)
        ]

    @app.get("/api/analytics/external-drives")
    def external_drives(limit: int = 100):
        return [e.to_dict() for e in store.external_drive_events(limit=limit)]

    # ------------------------------------------------------------------
    # Settings / health
    # ------------------------------------------------------------------

    @app.get("/api/settings")
    def get_settings():
        return settings.get_all()

    @app.put("/api/settings")
    async def put_settings(request: Request):
        try:
            payload = await request.json()
        except json.JSONDecodeError:
            return JSONResponse({"error": "Invalid JSON body"}, status_code=400)
        if not isinstance(payload, dict):
            return JSONResponse({"error": "Body must be an object"}, status_code=400)
        try:
            settings.update(payload)
        except ValueError as e:
            return JSONResponse({"error": str(e)}, status_code=400)
        logger.info(f"Settings updated: {', '.join(sorted(payload))}")
        return settings.get_all()

    @app.get("/api/settings/monitoring-paths")
    def get_monitoring_paths():
        return {"paths": [str(p) for p in settings.get_monitoring_paths()]}

    @app.put("/api/settings/monitoring-paths")
    async def put_monitoring_paths(request: Request):
        """
        Persist the watch paths and, when the pipeline is running, rewatch them.

        Body: {"paths": ["/home/alice/Documents", ...]}
        An empty list falls back to the environment and platform defaults.
        """
        try:
            payload = await request.json()
        except json.JSONDecodeError:
            return JSONResponse({"error": "Invalid JSON body"}, status_code=400)
        paths = payload.get("paths") if isinstance(payload, dict) else None
        if not isinstance(paths, list) or not all(isinstance(p, str) for p in paths):
            return JSONResponse({"error": "paths must be a list of strings"}, status_code=400)
        settings.set_monitoring_paths([Path(p) for p in paths])
        result: Dict[str, Any] = {"paths": [str(p) for p in settings.get_monitoring_paths()], "roots": []}
        if pipeline is not None and pipeline.is_running:
            pipeline.restart(settings.get_monitoring_paths())
            result["roots"] = [str(r) for r in pipeline.get_roots()]
        return result

    @app.get("/api/health")
    def health():
        result: Dict[str, Any] = {
            "status": "ok",
            "subscribers": len(bus),
            "pipeline_running": False,
            "roots": [],
            "failed_roots": {},
        }
        if pipeline is not None:
            result["pipeline_running"] = pipeline.is_running
            result["roots"] = [str(r) for r in pipeline.get_roots()]
            result["failed_roots"] = {str(k): v for k, v in pipeline.failed_roots.items()}
        return result

    # ------------------------------------------------------------------
    # Real-time stream
    # ------------------------------------------------------------------

    @app.get("/api/stream")
    async def stream(request: Request, topics: Optional[str] = None):
        sub = bus.subscribe(_split_topics(topics))
        return StreamingResponse(
            iter_sse(bus, sub, cfg.keepalive_s, request),
            media_type="text/event-stream",
            headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
        )

    return app


class PipelineAPIService:
    """Wrapper to run the FastAPI server via uvicorn in a background thread."""

    def __init__(self, host: str, port: int, pipeline: "RiskPipeline"):
        self.host = host
        self.port = port
        self.pipeline = pipeline
        self._thread: Optional[threading.Thread] = None
        self._server: Any = None

    def start(self) -> None:
        import uvicorn

        cfg = PipelineAPIConfig(
            db_path=self.pipeline.config.db_path,
            alert_threshold=self.pipeline.config.alert_threshold,
            store_timeout_s=self.pipeline.config.store_timeout_s,
        )
        app = create_app(cfg, self.pipeline)

        config = uvicorn.Config(
            app,
            host=self.host,
            port=self.port,
            log_level="warning",
            access_log=False,
        )
        self._server = uvicorn.Server(config)

        self._thread = threading.Thread(target=self._server.run, name="PipelineAPI", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        if self._server:
            self._server.should_exit = True
            self._server = None
