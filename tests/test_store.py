"""Tests for event store module."""

import pytest
import threading
from pathlib import Path

from src.analyzer.exceptions import AlertNotFoundError, DuplicateAlertError, StoreError
from src.analyzer.models import Alert, EventType, FileEvent
from src.analyzer.store import EventStore


def make_event(
    event_type=EventType.CREATE,
    path="/home/alice/report.pdf",
    risk_score=30,
    actor="alice",
    created_at=1000.0,
    is_external_drive=False,
):
    name = path.rsplit("/", 1)[-1]
    extension = name.rsplit(".", 1)[-1].lower() if "." in name else ""
    return FileEvent(
        event_type=event_type,
        path=Path(path),
        name=name,
        extension=extension,
        is_external_drive=is_external_drive,
        risk_score=risk_score,
        actor=actor,
        created_at=created_at,
    )


def make_alert(event_id, risk_score=90, severity=5):
    return Alert(
        alert_type="high_risk_activity",
        description="High risk create activity detected on file: x",
        severity=severity,
        risk_score=risk_score,
        source_event_id=event_id,
        created_at=1000.0,
    )


@pytest.fixture
def store(tmp_path):
    with EventStore(tmp_path / "events.db") as s:
        yield s


class TestEventStoreWrites:
    """Tests for insert and resolve operations."""

    def test_creates_database(self, tmp_path):
        db_path = tmp_path / "new.db"
        EventStore(db_path).close()
        assert db_path.exists()

    def test_insert_and_get_event(self, store):
        event_id = store.insert_file_event(make_event(is_external_drive=True))

        stored = store.get_event(event_id)

        assert stored.id == event_id
        assert stored.event_type == EventType.CREATE
        assert stored.path == Path("/home/alice/report.pdf")
        assert stored.extension == "pdf"
        assert stored.is_external_drive is True
        assert stored.actor == "alice"
        assert stored.created_at == 1000.0

    def test_get_missing_event(self, store):
        assert store.get_event(999) is None

    def test_insert_alert(self, store):
        event_id = store.insert_file_event(make_event(risk_score=90))
        alert_id = store.insert_alert(make_alert(event_id))

        alert = store.get_alert(alert_id)
        assert alert.source_event_id == event_id
        assert alert.resolved is False
        assert store.get_alert_for_event(event_id).id == alert_id

    def test_duplicate_alert_rejected(self, store):
        event_id = store.insert_file_event(make_event(risk_score=90))
        first = store.insert_alert(make_alert(event_id))

        with pytest.raises(DuplicateAlertError) as exc_info:
            store.insert_alert(make_alert(event_id))

        assert exc_info.value.existing_id == first
        assert len(store.list_alerts()) == 1

    def test_resolve_alert(self, store):
        event_id = store.insert_file_event(make_event(risk_score=90))
        alert_id = store.insert_alert(make_alert(event_id))

        assert store.resolve_alert(alert_id).resolved is True
        assert store.resolve_alert(alert_id, resolved=False).resolved is False

    def test_resolve_missing_alert(self, store):
        with pytest.raises(AlertNotFoundError):
            store.resolve_alert(42)

    def test_get_missing_alert(self, store):
        with pytest.raises(AlertNotFoundError):
            store.get_alert(42)

    def test_closed_store_raises(self, tmp_path):
        store = EventStore(tmp_path / "events.db")
        store.close()
        with pytest.raises(StoreError):
            store.insert_file_event(make_event())

    def test_sqlite_errors_become_store_errors(self, store):
        store._get_connection().execute("DROP TABLE risk_alerts")
        with pytest.raises(StoreError):
            store.list_alerts()

    def test_concurrent_inserts(self, store):
        errors = []

        def insert_many():
            try:
                for i in range(25):
                    store.insert_file_event(make_event(created_at=1000.0 + i))
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=insert_many) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        assert store.list_events(limit=500)[1] == 100


class TestPipelineReads:
    """Tests for query_recent_events and query_baseline."""

    def test_recent_events_window_and_order(self, store):
        for ts in (50.0, 100.0, 150.0, 200.0):
            store.insert_file_event(make_event(created_at=ts))

        events = store.query_recent_events("alice", since=100.0, until=200.0)

        assert [e.created_at for e in events] == [100.0, 150.0]

    def test_recent_events_per_user(self, store):
        store.insert_file_event(make_event(actor="alice", created_at=100.0))
        store.insert_file_event(make_event(actor="bob", created_at=100.0))

        assert len(store.query_recent_events("alice", since=0.0)) == 1
        assert len(store.query_recent_events(None, since=0.0)) == 2

    def test_query_baseline(self, store):
        store.insert_file_event(make_event(path="/h/a.pdf", created_at=10.0))
        store.insert_file_event(make_event(path="/h/b.pdf", created_at=20.0))
        store.insert_file_event(make_event(path="/media/c.docx", created_at=30.0, is_external_drive=True))
        store.insert_file_event(make_event(event_type=EventType.DELETE, path="/h/d", created_at=40.0))
        store.insert_file_event(make_event(created_at=100.0))  # outside range
        store.insert_file_event(make_event(actor="bob", created_at=10.0))

        stats = store.query_baseline("alice", since=0.0, until=100.0)

        assert stats.user_id == "alice"
        assert stats.total_events == 4
        assert stats.delete_events == 1
        assert stats.external_events == 1
        assert stats.extension_counts == (("pdf", 2), ("docx", 1))

    def test_query_baseline_empty(self, store):
        stats = store.query_baseline("nobody", since=0.0, until=100.0)
        assert stats.total_events == 0
        assert stats.delete_events == 0
        assert stats.external_events == 0
        assert stats.extension_counts == ()


class TestOperatorReads:
    """Tests for dashboard queries."""

    def test_list_events_newest_first_paged(self, store):
        for i in range(5):
            store.insert_file_event(make_event(created_at=1000.0 + i))

        events, total = store.list_events(limit=2, offset=1)

        assert total == 5
        assert [e.created_at for e in events] == [1003.0, 1002.0]

    @pytest.mark.parametrize("level,expected", [
        ("high", [70, 95]),
        ("medium", [40, 69]),
        ("low", [0, 39]),
    ])
    def test_list_events_risk_level(self, store, level, expected):
        for value in (0, 39, 40, 69, 70, 95):
            store.insert_file_event(make_event(risk_score=value))

        events, total = store.list_events(risk_level=level)

        assert total == 2
        assert sorted(e.risk_score for e in events) == expected

    def test_list_events_custom_risk_ranges(self, store):
        for value in (49, 50, 79, 80):
            store.insert_file_event(make_event(risk_score=value))

        ranges = {"high": (80, 100), "medium": (50, 79), "low": (0, 49)}
        events, total = store.list_events(risk_level="medium", risk_ranges=ranges)

        assert total == 2
        assert sorted(e.risk_score for e in events) == [50, 79]

    def test_list_events_filters(self, store):
        store.insert_file_event(make_event(path="/h/budget.xlsx", created_at=10.0))
        store.insert_file_event(make_event(event_type=EventType.DELETE, path="/h/budget.bak", created_at=20.0))
        store.insert_file_event(make_event(path="/h/photo.png", created_at=30.0))

        assert store.list_events(search="budget")[1] == 2
        assert store.list_events(event_type="delete")[1] == 1
        assert store.list_events(since=25.0)[1] == 1

    def test_high_risk_events_strictly_above(self, store):
        for value in (69, 70, 71, 100):
            store.insert_file_event(make_event(risk_score=value))

        assert sorted(e.risk_score for e in store.high_risk_events()) == [71, 100]

    def test_external_drive_events(self, store):
        store.insert_file_event(make_event(is_external_drive=True))
        store.insert_file_event(make_event())
        assert len(store.external_drive_events()) == 1

    def test_list_alerts_by_resolution(self, store):
        ids = [store.insert_file_event(make_event(risk_score=90)) for _ in range(3)]
        alert_ids = [store.insert_alert(make_alert(i)) for i in ids]
        store.resolve_alert(alert_ids[0])

        assert len(store.list_alerts()) == 3
        assert len(store.list_alerts(resolved=True)) == 1
        assert len(store.list_alerts(resolved=False)) == 2
        assert store.alert_counts() == {"total": 3, "unresolved": 2}

    def test_event_stats(self, store):
        store.insert_file_event(make_event(risk_score=80, is_external_drive=True))
        store.insert_file_event(make_event(event_type=EventType.DELETE, risk_score=40))

        stats = store.event_stats()

        assert stats["event_types"] == {"create": 1, "delete": 1}
        assert stats["total"] == 2
        assert stats["average_risk"] == 60.0
        assert stats["high_risk_count"] == 1
        assert stats["external_drive_count"] == 1

    def test_event_stats_empty(self, store):
        stats = store.event_stats()
        assert stats["total"] == 0
        assert stats["average_risk"] == 0.0

    def test_risk_distribution(self, store):
        for value in (10, 20, 21, 55, 75, 81, 100):
            store.insert_file_event(make_event(risk_score=value))

        assert store.risk_distribution() == {
            "Very Low": 2,
            "Low": 1,
            "Medium": 1,
            "High": 1,
            "Very High": 2,
        }

    def test_timeline_buckets_by_hour(self, store):
        store.insert_file_event(make_event(risk_score=10, created_at=7200.0))
        store.insert_file_event(make_event(risk_score=30, created_at=7300.0))
        store.insert_file_event(make_event(risk_score=50, created_at=10800.0))

        assert store.timeline(since=0.0) == [
            {"hour": 7200, "count": 2, "avg_risk": 20.0},
            {"hour": 10800, "count": 1, "avg_risk": 50.0},
        ]
