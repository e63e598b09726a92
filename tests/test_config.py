"""Tests for config modules."""

import pytest
from pathlib import Path

from src.watcher.config import WatcherConfig, NOISE_DIRECTORIES
from src.analyzer.config import AnalyzerConfig, BaselineConfig, ALERT_THRESHOLD, DB_PATH_ENV


class TestWatcherConfig:
    """Tests for WatcherConfig class."""

    def test_default_values(self):
        config = WatcherConfig()
        assert config.paths == []
        assert config.stability_threshold_ms == 2000
        assert config.poll_interval_ms == 100
        assert config.ignore_hidden is True
        assert config.recursive is True

    def test_custom_values(self, tmp_path):
        config = WatcherConfig(
            paths=[str(tmp_path)],
            stability_threshold_ms=500,
            poll_interval_ms=50,
            recursive=False,
        )
        assert config.paths == [tmp_path]
        assert config.stability_threshold_ms == 500
        assert config.poll_interval_ms == 50
        assert config.recursive is False

    def test_default_ignore_patterns(self):
        config = WatcherConfig()
        assert "*.swp" in config.ignore_patterns
        assert "*~" in config.ignore_patterns


class TestShouldIgnore:
    """Tests for WatcherConfig.should_ignore method."""

    def test_ignore_swap_file(self):
        config = WatcherConfig()
        assert config.should_ignore(Path("/home/user/report.docx.swp")) is True

    def test_ignore_backup_file(self):
        config = WatcherConfig()
        assert config.should_ignore(Path("/home/user/notes.txt~")) is True

    def test_ignore_dotfile(self):
        config = WatcherConfig()
        assert config.should_ignore(Path("/home/user/.bashrc")) is True

    def test_ignore_hidden_directory_component(self):
        config = WatcherConfig()
        assert config.should_ignore(Path("/home/user/.cache/data.json")) is True

    @pytest.mark.parametrize("noise", sorted(NOISE_DIRECTORIES))
    def test_ignore_noise_directories(self, noise):
        config = WatcherConfig()
        assert config.should_ignore(Path(f"/work/project/{noise}/file.js")) is True

    def test_node_modules_ignored_without_hidden_rule(self):
        config = WatcherConfig(ignore_hidden=False)
        assert config.should_ignore(Path("/work/node_modules/lib/index.js")) is True

    def test_hidden_allowed_when_disabled(self):
        config = WatcherConfig(ignore_hidden=False, ignore_patterns=[])
        assert config.should_ignore(Path("/home/user/.profile")) is False

    def test_normal_file_not_ignored(self):
        config = WatcherConfig()
        assert config.should_ignore(Path("/home/user/Documents/report.pdf")) is False

    def test_custom_patterns(self):
        config = WatcherConfig(ignore_patterns=["*.log", "build/*"])
        assert config.should_ignore(Path("/var/app/error.log")) is True
        assert config.should_ignore(Path("build/output.bin")) is True
        assert config.should_ignore(Path("/var/app/main.py")) is False


class TestAnalyzerConfig:
    """Tests for AnalyzerConfig class."""

    def test_default_values(self, monkeypatch):
        monkeypatch.delenv(DB_PATH_ENV, raising=False)
        config = AnalyzerConfig()
        assert config.db_path == Path("sentry.db")
        assert config.alert_threshold == ALERT_THRESHOLD == 70
        assert config.max_workers == 4
        assert config.store_timeout_s == 5.0
        assert config.anomaly_interval_s is None
        assert config.bus_backlog == 256
        assert config.api_port == 5001

    def test_db_path_from_environment(self, monkeypatch, tmp_path):
        monkeypatch.setenv(DB_PATH_ENV, str(tmp_path / "events.db"))
        config = AnalyzerConfig()
        assert config.db_path == tmp_path / "events.db"

    def test_string_db_path_converted(self):
        config = AnalyzerConfig(db_path="data/sentry.db")
        assert isinstance(config.db_path, Path)

    def test_baseline_from_dict(self):
        config = AnalyzerConfig(baseline={"window_hours": 1.0, "min_history_events": 5})
        assert isinstance(config.baseline, BaselineConfig)
        assert config.baseline.window_hours == 1.0
        assert config.baseline.min_history_events == 5
        assert config.baseline.cache_ttl_s == 60.0

    def test_baseline_defaults(self):
        baseline = BaselineConfig()
        assert baseline.window_hours == 24.0
        assert baseline.history_hours == 24.0
        assert baseline.min_history_events == 24
