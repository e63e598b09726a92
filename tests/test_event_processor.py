"""Tests for event processor module."""

import pytest
from pathlib import Path

from src.watcher.config import WatcherConfig
from src.watcher.models import NotificationKind, RawFSEvent
from src.watcher.root_manager import RootManager
from src.watcher.event_processor import EventProcessor, StabilityDebouncer, stat_file


class FakeStat:
    """Stat function returning whatever snapshot a test sets per path."""

    def __init__(self):
        self.snapshots = {}

    def __call__(self, path):
        return self.snapshots.get(path, (0, 0))


@pytest.fixture
def root(tmp_path):
    return tmp_path.resolve()


@pytest.fixture
def stats():
    return FakeStat()


@pytest.fixture
def processor(root, stats):
    manager = RootManager()
    manager.add_root(root)
    return EventProcessor(manager, WatcherConfig(stability_threshold_ms=2000), stat_fn=stats)


class TestStatFile:
    """Tests for stat_file function."""

    def test_existing_file(self, tmp_path):
        path = tmp_path / "a.txt"
        path.write_text("hello")
        size, mtime_ns = stat_file(path)
        assert size == 5
        assert mtime_ns > 0

    def test_missing_file(self, tmp_path):
        assert stat_file(tmp_path / "missing.txt") is None


class TestStabilityDebouncer:
    """Tests for StabilityDebouncer class."""

    def test_emits_after_quiet_period(self, stats):
        debouncer = StabilityDebouncer(2000, stats)
        debouncer.add(NotificationKind.ADD, Path("/r/a.txt"), 100.0)

        assert debouncer.poll(101.0) == []
        ready = debouncer.poll(102.0)

        assert len(ready) == 1
        assert ready[0].kind == NotificationKind.ADD
        assert ready[0].timestamp == 100.0
        assert debouncer.pending_count() == 0

    def test_add_then_change_is_add(self, stats):
        debouncer = StabilityDebouncer(2000, stats)
        debouncer.add(NotificationKind.ADD, Path("/r/a.txt"), 100.0)
        debouncer.add(NotificationKind.CHANGE, Path("/r/a.txt"), 100.5)

        ready = debouncer.poll(103.0)
        assert [n.kind for n in ready] == [NotificationKind.ADD]

    def test_change_then_add_is_add(self, stats):
        debouncer = StabilityDebouncer(2000, stats)
        debouncer.add(NotificationKind.CHANGE, Path("/r/a.txt"), 100.0)
        debouncer.add(NotificationKind.ADD, Path("/r/a.txt"), 100.5)

        ready = debouncer.poll(103.0)
        assert [n.kind for n in ready] == [NotificationKind.ADD]

    def test_new_write_restarts_clock(self, stats):
        debouncer = StabilityDebouncer(2000, stats)
        debouncer.add(NotificationKind.CHANGE, Path("/r/a.txt"), 100.0)
        debouncer.add(NotificationKind.CHANGE, Path("/r/a.txt"), 101.5)

        assert debouncer.poll(102.5) == []
        assert len(debouncer.poll(103.5)) == 1

    def test_stat_change_restarts_clock(self, stats):
        path = Path("/r/growing.bin")
        debouncer = StabilityDebouncer(2000, stats)
        stats.snapshots[path] = (10, 1)
        debouncer.add(NotificationKind.ADD, path, 100.0)

        # Still being written without any new notifications
        stats.snapshots[path] = (20, 2)
        assert debouncer.poll(101.9) == []
        assert debouncer.poll(103.0) == []

        ready = debouncer.poll(104.0)
        assert len(ready) == 1
        assert ready[0].timestamp == 101.9

    def test_cancel(self, stats):
        debouncer = StabilityDebouncer(2000, stats)
        debouncer.add(NotificationKind.CHANGE, Path("/r/a.txt"), 100.0)

        assert debouncer.cancel(Path("/r/a.txt")) == NotificationKind.CHANGE
        assert debouncer.cancel(Path("/r/a.txt")) is None
        assert debouncer.poll(200.0) == []

    def test_clear(self, stats):
        debouncer = StabilityDebouncer(2000, stats)
        debouncer.add(NotificationKind.ADD, Path("/r/a.txt"), 100.0)
        debouncer.add(NotificationKind.ADD, Path("/r/b.txt"), 100.0)
        debouncer.clear()
        assert debouncer.pending_count() == 0

    def test_independent_paths(self, stats):
        debouncer = StabilityDebouncer(2000, stats)
        debouncer.add(NotificationKind.ADD, Path("/r/a.txt"), 100.0)
        debouncer.add(NotificationKind.ADD, Path("/r/b.txt"), 101.0)

        assert [n.path for n in debouncer.poll(102.0)] == [Path("/r/a.txt")]
        assert [n.path for n in debouncer.poll(103.0)] == [Path("/r/b.txt")]


class TestEventProcessor:
    """Tests for EventProcessor class."""

    def test_three_changes_collapse_to_one(self, processor, root):
        path = root / "report.docx"
        for ts in (100.0, 100.5, 101.0):
            processor.process(RawFSEvent("modified", path, timestamp=ts))

        assert processor.flush(101.5) == []
        assert processor.flush(102.9) == []

        ready = processor.flush(103.0)
        assert len(ready) == 1
        assert ready[0].kind == NotificationKind.CHANGE
        assert ready[0].path == path
        assert ready[0].timestamp == 101.0

    def test_create_then_modify_is_add(self, processor, root):
        path = root / "new.txt"
        processor.process(RawFSEvent("created", path, timestamp=100.0))
        processor.process(RawFSEvent("modified", path, timestamp=100.2))

        ready = processor.flush(105.0)
        assert [n.kind for n in ready] == [NotificationKind.ADD]

    def test_add_then_unlink_emits_nothing(self, processor, root):
        path = root / "temp.txt"
        processor.process(RawFSEvent("created", path, timestamp=100.0))
        processor.process(RawFSEvent("deleted", path, timestamp=100.5))

        assert processor.flush(105.0) == []
        assert processor.pending_count() == 0

    def test_change_then_unlink_is_unlink(self, processor, root):
        path = root / "old.txt"
        processor.process(RawFSEvent("modified", path, timestamp=100.0))
        processor.process(RawFSEvent("deleted", path, timestamp=100.5))

        ready = processor.flush(105.0)
        assert [(n.kind, n.path) for n in ready] == [(NotificationKind.UNLINK, path)]

    def test_unlink_released_immediately(self, processor, root):
        path = root / "gone.txt"
        processor.process(RawFSEvent("deleted", path, timestamp=100.0))

        ready = processor.flush(100.0)
        assert [n.kind for n in ready] == [NotificationKind.UNLINK]

    def test_directory_events_pass_through(self, processor, root):
        folder = root / "folder"
        processor.process(RawFSEvent("created", folder, is_directory=True, timestamp=100.0))
        processor.process(RawFSEvent("deleted", folder, is_directory=True, timestamp=100.1))

        ready = processor.flush(100.1)
        assert [n.kind for n in ready] == [NotificationKind.ADD_DIR, NotificationKind.UNLINK_DIR]
        assert all(n.is_directory for n in ready)

    def test_directory_modified_dropped(self, processor, root):
        processor.process(RawFSEvent("modified", root / "folder", is_directory=True, timestamp=100.0))
        assert processor.pending_count() == 0
        assert processor.flush(200.0) == []

    def test_move_becomes_unlink_and_add(self, processor, root):
        src = root / "draft.txt"
        dest = root / "final.txt"
        processor.process(RawFSEvent("moved", src, dest_path=dest, timestamp=100.0))

        assert [(n.kind, n.path) for n in processor.flush(100.0)] == [(NotificationKind.UNLINK, src)]
        assert [(n.kind, n.path) for n in processor.flush(102.0)] == [(NotificationKind.ADD, dest)]

    def test_directory_move(self, processor, root):
        processor.process(RawFSEvent(
            "moved", root / "a", dest_path=root / "b", is_directory=True, timestamp=100.0,
        ))
        ready = processor.flush(100.0)
        assert [n.kind for n in ready] == [NotificationKind.UNLINK_DIR, NotificationKind.ADD_DIR]

    def test_released_before_settled(self, processor, root):
        processor.process(RawFSEvent("created", root / "a.txt", timestamp=100.0))
        processor.process(RawFSEvent("deleted", root / "b.txt", timestamp=101.0))

        ready = processor.flush(102.0)
        assert [n.kind for n in ready] == [NotificationKind.UNLINK, NotificationKind.ADD]

    def test_path_outside_roots_ignored(self, processor, tmp_path):
        outside = tmp_path.resolve().parent / "elsewhere.txt"
        processor.process(RawFSEvent("created", outside, timestamp=100.0))
        processor.process(RawFSEvent("deleted", outside, timestamp=100.0))
        assert processor.pending_count() == 0

    def test_unknown_event_type_ignored(self, processor, root):
        processor.process(RawFSEvent("closed", root / "a.txt", timestamp=100.0))
        assert processor.pending_count() == 0

    def test_clear_discards_pending(self, processor, root):
        processor.process(RawFSEvent("created", root / "a.txt", timestamp=100.0))
        processor.process(RawFSEvent("deleted", root / "b.txt", timestamp=100.0))
        assert processor.pending_count() == 2

        processor.clear()

        assert processor.pending_count() == 0
        assert processor.flush(200.0) == []
