"""Tests for root manager module."""

import pytest
import threading
from pathlib import Path

from src.watcher.root_manager import (
    MONITORING_PATHS_ENV,
    RootManager,
    default_watch_paths,
    resolve_watch_paths,
    split_path_list,
)
from src.watcher.exceptions import RootNotFoundError, RootAlreadyExistsError


class TestResolveWatchPaths:
    """Tests for watch path resolution."""

    def test_defaults_are_home_folders(self, tmp_path):
        paths = default_watch_paths(home=tmp_path)
        assert paths == [tmp_path / "Documents", tmp_path / "Downloads", tmp_path / "Desktop"]

    def test_split_path_list(self):
        assert split_path_list("/a, /b ,,") == [Path("/a"), Path("/b")]
        assert split_path_list("") == []
        assert split_path_list(None) == []

    def test_explicit_wins(self, tmp_path):
        paths = resolve_watch_paths(
            explicit=[tmp_path / "x"],
            configured="/configured",
            environ={MONITORING_PATHS_ENV: "/from/env"},
            home=tmp_path,
        )
        assert paths == [(tmp_path / "x").resolve()]

    def test_configured_before_environment(self, tmp_path):
        paths = resolve_watch_paths(
            configured=f"{tmp_path}/a,{tmp_path}/b",
            environ={MONITORING_PATHS_ENV: "/from/env"},
            home=tmp_path,
        )
        assert paths == [(tmp_path / "a").resolve(), (tmp_path / "b").resolve()]

    def test_configured_as_path_list(self, tmp_path):
        paths = resolve_watch_paths(
            configured=[tmp_path / "a", tmp_path / "b"],
            environ={MONITORING_PATHS_ENV: "/from/env"},
            home=tmp_path,
        )
        assert paths == [(tmp_path / "a").resolve(), (tmp_path / "b").resolve()]

    def test_empty_configured_list_falls_through(self, tmp_path):
        paths = resolve_watch_paths(
            configured=[],
            environ={MONITORING_PATHS_ENV: f"{tmp_path}/shared"},
            home=tmp_path,
        )
        assert paths == [(tmp_path / "shared").resolve()]

    def test_environment_before_defaults(self, tmp_path):
        paths = resolve_watch_paths(
            environ={MONITORING_PATHS_ENV: f"{tmp_path}/shared"},
            home=tmp_path,
        )
        assert paths == [(tmp_path / "shared").resolve()]

    def test_falls_back_to_defaults(self, tmp_path):
        paths = resolve_watch_paths(environ={}, home=tmp_path)
        assert paths == [p.resolve() for p in default_watch_paths(tmp_path)]

    def test_duplicates_dropped_in_order(self, tmp_path):
        paths = resolve_watch_paths(
            explicit=[tmp_path / "b", tmp_path / "a", tmp_path / "b" / ".." / "b"],
            environ={},
        )
        assert paths == [(tmp_path / "b").resolve(), (tmp_path / "a").resolve()]


class TestRootManager:
    """Tests for RootManager class."""

    def test_create_empty_manager(self):
        manager = RootManager()
        assert len(manager) == 0
        assert manager.get_roots() == frozenset()
        assert manager.get_failed() == {}

    def test_add_root(self, tmp_path):
        manager = RootManager()
        assert manager.add_root(tmp_path) is True
        assert tmp_path.resolve() in manager.get_roots()

    def test_add_nonexistent_root_raises(self):
        manager = RootManager()
        with pytest.raises(RootNotFoundError):
            manager.add_root(Path("/nonexistent/path/12345"))

    def test_add_file_as_root_raises(self, tmp_path):
        file_path = tmp_path / "file.txt"
        file_path.write_text("x")
        manager = RootManager()
        with pytest.raises(RootNotFoundError):
            manager.add_root(file_path)

    def test_add_nonexistent_root_allowed(self, tmp_path):
        manager = RootManager()
        assert manager.add_root(tmp_path / "later", must_exist=False) is True

    def test_add_duplicate_root_raises(self, tmp_path):
        manager = RootManager()
        manager.add_root(tmp_path)
        with pytest.raises(RootAlreadyExistsError):
            manager.add_root(tmp_path)

    def test_add_nested_root_raises(self, tmp_path):
        child = tmp_path / "child"
        child.mkdir()
        manager = RootManager()
        manager.add_root(tmp_path)
        with pytest.raises(RootAlreadyExistsError):
            manager.add_root(child)

    def test_add_parent_root_raises(self, tmp_path):
        child = tmp_path / "child"
        child.mkdir()
        manager = RootManager()
        manager.add_root(child)
        with pytest.raises(RootAlreadyExistsError):
            manager.add_root(tmp_path)

    def test_remove_root(self, tmp_path):
        manager = RootManager()
        manager.add_root(tmp_path)
        assert manager.remove_root(tmp_path) is True
        assert manager.remove_root(tmp_path) is False
        assert len(manager) == 0

    def test_mark_failed_moves_root(self, tmp_path):
        manager = RootManager()
        manager.add_root(tmp_path)

        manager.mark_failed(tmp_path, "root path was removed")

        assert tmp_path not in manager
        assert manager.get_failed() == {tmp_path.resolve(): "root path was removed"}

    def test_re_adding_clears_failure(self, tmp_path):
        manager = RootManager()
        manager.mark_failed(tmp_path, "boom")
        manager.add_root(tmp_path)
        assert manager.get_failed() == {}

    def test_find_root_for_path(self, tmp_path):
        root1 = tmp_path / "root1"
        root2 = tmp_path / "root2"
        root1.mkdir()
        root2.mkdir()

        manager = RootManager()
        manager.add_root(root1)
        manager.add_root(root2)

        assert manager.find_root_for_path(root1 / "a" / "file.txt") == root1.resolve()
        assert manager.find_root_for_path(root2 / "file.txt") == root2.resolve()
        assert manager.find_root_for_path(tmp_path / "other.txt") is None

    def test_is_under_any_root(self, tmp_path):
        root = tmp_path / "root"
        root.mkdir()
        manager = RootManager()
        manager.add_root(root)

        assert manager.is_under_any_root(root / "deep" / "nested" / "file.txt") is True
        assert manager.is_under_any_root(tmp_path / "other" / "file.txt") is False

    def test_sibling_prefix_not_under_root(self, tmp_path):
        root = tmp_path / "docs"
        root.mkdir()
        manager = RootManager()
        manager.add_root(root)
        assert manager.is_under_any_root(tmp_path / "docs-archive" / "file.txt") is False

    def test_clear_also_forgets_failures(self, tmp_path):
        root1 = tmp_path / "root1"
        root2 = tmp_path / "root2"
        root1.mkdir()
        root2.mkdir()

        manager = RootManager()
        manager.add_root(root1)
        manager.add_root(root2)
        manager.mark_failed(root2, "gone")

        assert manager.clear() == 1
        assert len(manager) == 0
        assert manager.get_failed() == {}

    def test_thread_safety(self, tmp_path):
        manager = RootManager()
        errors = []

        def add_roots():
            try:
                for i in range(10):
                    root = tmp_path / f"root_{threading.current_thread().name}_{i}"
                    root.mkdir(exist_ok=True)
                    manager.add_root(root)
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=add_roots, name=f"t{i}") for i in range(5)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        assert len(manager) == 50
