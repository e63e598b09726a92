#!/usr/bin/env python3
"""
CLI for the file risk monitoring pipeline.

Usage:
    python -m src.cli monitor --paths ~/Documents ~/Downloads --db sentry.db
    python -m src.cli score /media/usb/secret_plan.exe --kind add
    python -m src.cli anomalies --db sentry.db --user alice
    python -m src.cli alerts --unresolved
"""

import argparse
import json
import logging
import signal
import sys
import time
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from dotenv import load_dotenv

# Load .env from project root
_env_file = Path(__file__).parent.parent / ".env"
if _env_file.exists():
    load_dotenv(_env_file)
else:
    load_dotenv()

from src.watcher import WatcherConfig, NotificationKind
from src.analyzer import AnalyzerConfig, RiskPipeline, EventStore, BaselineTracker, AnomalyDetector
from src.analyzer.classifier import classify, current_user
from src.analyzer.scoring import score, score_breakdown, risk_level
from src.analyzer.alerts import should_alert, alert_severity
from src.analyzer.config import DB_PATH_ENV


logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("cli")


class GracefulShutdown:
    """Handle graceful shutdown on SIGINT/SIGTERM."""

    def __init__(self):
        self.should_exit = False
        signal.signal(signal.SIGINT, self._handler)
        signal.signal(signal.SIGTERM, self._handler)

    def _handler(self, signum, frame):
        logger.info("Received shutdown signal, stopping...")
        self.should_exit = True


def _db_path(args) -> Path:
    db_path = Path(args.db).expanduser().resolve()
    db_path.parent.mkdir(parents=True, exist_ok=True)
    return db_path


def cmd_monitor(args):
    """Watch folders and run the risk pipeline."""
    logger.info("Starting risk pipeline...")

    db_path = _db_path(args)
    config = AnalyzerConfig(
        db_path=db_path,
        alert_threshold=args.threshold,
        max_workers=args.workers,
        anomaly_interval_s=args.anomaly_interval,
        api_host=args.api_host,
        api_port=args.api_port,
        serve_api=not args.no_api,
    )
    watcher_config = WatcherConfig(stability_threshold_ms=args.stability_ms)
    paths = [Path(p).expanduser() for p in args.paths] if args.paths else None

    shutdown = GracefulShutdown()

    with RiskPipeline(config=config, watcher_config=watcher_config) as pipeline:
        pipeline.start(paths)

        logger.info(f"Watching {len(pipeline.get_roots())} root(s)")
        for root in pipeline.get_roots():
            logger.info(f"  - {root}")
        logger.info(f"Database: {db_path}")
        logger.info("Press Ctrl+C to stop")

        while not shutdown.should_exit:
            time.sleep(1)

    logger.info("Risk pipeline stopped")


def cmd_score(args):
    """Score a path offline without touching the filesystem."""
    event = classify(args.kind, Path(args.path), actor=current_user())
    value = score(event)

    print(f"\nPath: {event.path}")
    print(f"Event type: {event.event_type.value}")
    print(f"External drive: {'yes' if event.is_external_drive else 'no'}")
    if args.breakdown:
        for rule, points in score_breakdown(event).items():
            print(f"  {rule:<15} +{points}")
    print(f"Risk score: {value} ({risk_level(value)})")
    if should_alert(value, args.threshold):
        print(f"Alert: yes (severity {alert_severity(value)})")
    else:
        print("Alert: no")


def cmd_anomalies(args):
    """Run one anomaly detection pass against the event store."""
    db_path = Path(args.db).expanduser().resolve()
    if not db_path.exists():
        logger.error(f"Event database not found: {db_path}")
        sys.exit(1)

    user_id = args.user or current_user()
    with EventStore(db_path) as store:
        detector = AnomalyDetector(store, BaselineTracker(store))
        baseline = detector.tracker.get_baseline(user_id)
        findings = detector.detect(user_id)

    print(f"\nUser: {user_id}")
    print(
        f"Baseline: {baseline.avg_events_per_hour:.1f} events/h, "
        f"{baseline.avg_deletes_per_hour:.1f} deletes/h, "
        f"{baseline.avg_external_per_hour:.1f} external/h"
        + (" (fallback)" if baseline.is_fallback else "")
    )
    if not findings:
        print("No anomalies detected.")
        return

    print(f"\nFound {len(findings)} anomal{'y' if len(findings) == 1 else 'ies'}:\n")
    for anomaly in findings:
        print(f"[severity {anomaly.severity}] {anomaly.kind}: {anomaly.description}")
        print(f"  observed {anomaly.observed:g} > threshold {anomaly.threshold:g}")


def _api_base(args) -> str:
    host = getattr(args, "api_host", "localhost")
    port = getattr(args, "api_port", 5001)
    return f"http://{host}:{port}"


def cmd_alerts(args):
    """List alerts, or resolve one, through the pipeline API."""
    import httpx

    api_base = _api_base(args)
    try:
        with httpx.Client(timeout=10.0) as client:
            if args.resolve is not None:
                resp = client.patch(
                    f"{api_base}/api/alerts/{args.resolve}/resolve",
                    json={"resolved": True},
                )
            else:
                params = {"limit": args.limit}
                if args.unresolved:
                    params["resolved"] = "false"
                resp = client.get(f"{api_base}/api/alerts", params=params)
            if resp.status_code != 200:
                try:
                    error = resp.json().get("error", resp.text)
                except Exception:
                    error = resp.text
                logger.error(f"Pipeline API request failed: {error}")
                sys.exit(1)
            data = resp.json()
    except httpx.HTTPError as exc:
        logger.error(f"Failed to reach pipeline API at {api_base}: {exc}")
        sys.exit(1)

    if args.resolve is not None:
        print(f"Alert {data['id']} resolved.")
        return

    print(f"\nAlerts ({len(data)}):")
    if not data:
        print("  (none)")
    for alert in data:
        status = "resolved" if alert["resolved"] else "open"
        print(f"  #{alert['id']} [severity {alert['severity']}] {alert['description']} ({status})")


def cmd_tail(args):
    """Follow the live notification stream."""
    import httpx

    logging.getLogger("httpx").setLevel(logging.WARNING)

    api_base = _api_base(args)
    params = {"topics": args.topics} if args.topics else None
    try:
        with httpx.Client(timeout=httpx.Timeout(10.0, read=None)) as client:
            with client.stream("GET", f"{api_base}/api/stream", params=params) as resp:
                topic = None
                for line in resp.iter_lines():
                    if line.startswith("event:"):
                        topic = line[6:].strip()
                    elif line.startswith("data:"):
                        payload = json.loads(line[5:].strip())
                        print(f"{topic}: {json.dumps(payload)}")
    except httpx.ConnectError:
        logger.error(f"Failed to reach pipeline API at {api_base}")
        sys.exit(1)
    except KeyboardInterrupt:
        pass


def main():
    parser = argparse.ArgumentParser(
        description="CLI for the file risk monitoring pipeline",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=f"""
Examples:
  # Watch the default folders (or MONITORING_PATHS) and serve the API
  python -m src.cli monitor

  # Watch specific folders without the API
  python -m src.cli monitor --paths ./shared /media/usb --no-api

  # Score a hypothetical event
  python -m src.cli score /media/usb/secret_plan.exe --kind add --breakdown

  # Run anomaly detection against the event log
  python -m src.cli anomalies --db sentry.db

  # List open alerts from a running monitor
  python -m src.cli alerts --unresolved

The event database defaults to ${DB_PATH_ENV} or ./sentry.db.
        """,
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")

    subparsers = parser.add_subparsers(dest="command", required=True)
    default_db = str(AnalyzerConfig().db_path)

    # Monitor command
    monitor_parser = subparsers.add_parser("monitor", help="Watch folders and score file activity")
    monitor_parser.add_argument("--paths", nargs="+", default=[], help="Directories to watch")
    monitor_parser.add_argument("--db", default=default_db, help="Event database path")
    monitor_parser.add_argument("--threshold", type=int, default=70, help="Alert when score is above this")
    monitor_parser.add_argument("--workers", type=int, default=4, help="Pipeline worker threads")
    monitor_parser.add_argument("--stability-ms", type=int, default=2000, help="Write quiet period in ms")
    monitor_parser.add_argument("--anomaly-interval", type=float, default=None, help="Seconds between anomaly passes (0 disables, default from settings)")
    monitor_parser.add_argument("--api-host", default="127.0.0.1", help="API bind host")
    monitor_parser.add_argument("--api-port", type=int, default=5001, help="API bind port")
    monitor_parser.add_argument("--no-api", action="store_true", help="Do not start the API server")
    monitor_parser.set_defaults(func=cmd_monitor)

    # Score command
    score_parser = subparsers.add_parser("score", help="Score a path offline")
    score_parser.add_argument("path", help="File path to score")
    score_parser.add_argument(
        "--kind",
        default=NotificationKind.ADD.value,
        choices=[k.value for k in NotificationKind],
        help="Notification kind (default: add)",
    )
    score_parser.add_argument("--threshold", type=int, default=70, help="Alert threshold")
    score_parser.add_argument("--breakdown", action="store_true", help="Show per-rule points")
    score_parser.set_defaults(func=cmd_score)

    # Anomalies command
    anomalies_parser = subparsers.add_parser("anomalies", help="Run one anomaly detection pass")
    anomalies_parser.add_argument("--db", default=default_db, help="Event database path")
    anomalies_parser.add_argument("--user", help="User to check (default: current user)")
    anomalies_parser.set_defaults(func=cmd_anomalies)

    # Alerts command
    alerts_parser = subparsers.add_parser("alerts", help="List or resolve alerts via the API")
    alerts_parser.add_argument("--unresolved", action="store_true", help="Only open alerts")
    alerts_parser.add_argument("--limit", type=int, default=50, help="Maximum alerts to list")
    alerts_parser.add_argument("--resolve", type=int, metavar="ID", help="Mark an alert resolved")
    alerts_parser.add_argument("--api-host", default="localhost", help="Pipeline API host (default: localhost)")
    alerts_parser.add_argument("--api-port", type=int, default=5001, help="Pipeline API port (default: 5001)")
    alerts_parser.set_defaults(func=cmd_alerts)

    # Tail command
    tail_parser = subparsers.add_parser("tail", help="Follow live events and alerts via the API")
    tail_parser.add_argument("--topics", help="Comma-separated topics (default: all)")
    tail_parser.add_argument("--api-host", default="localhost", help="Pipeline API host (default: localhost)")
    tail_parser.add_argument("--api-port", type=int, default=5001, help="Pipeline API port (default: 5001)")
    tail_parser.set_defaults(func=cmd_tail)

    args = parser.parse_args()

    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    args.func(args)


if __name__ == "__main__":
    main()
