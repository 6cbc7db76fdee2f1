"""Tests for the command line interface."""

import json
import logging
import sys

import pytest

from tablemirror.__main__ import JSONFormatter, main, setup_logging
from tablemirror.sync import SyncState, TableSync


CONFIG_YAML = """
tables:
  - name: todos
    primary_keys: [id]
    page_size: 2
    conditions:
      - column: done
        op: eq
        value: false
  - name: broken
    conditions:
      - column: done
        op: between
"""


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(CONFIG_YAML)
    return path


@pytest.fixture
def seed_file(tmp_path):
    path = tmp_path / "seed.json"
    path.write_text(
        json.dumps(
            {
                "todos": [
                    {"id": 1, "title": "a", "done": False},
                    {"id": 2, "title": "b", "done": True},
                    {"id": 3, "title": "c", "done": False},
                ]
            }
        )
    )
    return path


class TestCLI:
    """Tests for tablemirror subcommands."""

    def test_no_command(self, capsys):
        """Test running without a command prints help."""
        assert main([]) == 1
        assert "usage" in capsys.readouterr().out

    def test_tables(self, config_file, capsys):
        """Test listing configured tables."""
        assert main(["-c", str(config_file), "tables"]) == 0

        out = capsys.readouterr().out
        assert "public.todos" in out
        assert "where done eq False" in out

    def test_snapshot_with_mock(self, config_file, seed_file, capsys):
        """Test a snapshot prints relevant rows as JSON lines."""
        code = main(["-c", str(config_file), "--mock", "--seed", str(seed_file), "snapshot", "todos"])

        assert code == 0
        lines = capsys.readouterr().out.strip().splitlines()
        assert [json.loads(line)["id"] for line in lines] == [1, 3]

    def test_snapshot_unknown_table(self, config_file, capsys):
        """Test an unknown table name fails."""
        assert main(["-c", str(config_file), "--mock", "snapshot", "nope"]) == 1
        assert "Unknown table: nope" in capsys.readouterr().err

    def test_snapshot_invalid_condition(self, config_file, capsys):
        """Test a bad operator in the config fails cleanly."""
        assert main(["-c", str(config_file), "--mock", "snapshot", "broken"]) == 1
        assert "Invalid table config" in capsys.readouterr().err

    def test_snapshot_closes_table(self, config_file, seed_file, monkeypatch):
        """Test the snapshot command leaves the loaded table closed."""
        tables = []

        class RecordingTableSync(TableSync):
            def __init__(self, *args, **kwargs):
                super().__init__(*args, **kwargs)
                tables.append(self)

        monkeypatch.setattr("tablemirror.__main__.TableSync", RecordingTableSync)
        code = main(["-c", str(config_file), "--mock", "--seed", str(seed_file), "snapshot", "todos"])

        assert code == 0
        assert len(tables) == 1
        assert tables[0].state == SyncState.CLOSED


class TestLogging:
    """Tests for log configuration and formatting."""

    def make_record(self, exc_info=None) -> logging.LogRecord:
        return logging.getLogger("tablemirror.sync").makeRecord(
            "tablemirror.sync", logging.ERROR, __file__, 1, "load of %s failed", ("todos",), exc_info
        )

    def test_json_formatter(self):
        """Test a record becomes one JSON object."""
        entry = json.loads(JSONFormatter().format(self.make_record()))

        assert entry["level"] == "ERROR"
        assert entry["component"] == "tablemirror.sync"
        assert entry["message"] == "load of todos failed"
        assert "timestamp" in entry
        assert "exception" not in entry

    def test_json_formatter_includes_traceback(self):
        """Test exception info is rendered into the entry."""
        try:
            raise ValueError("boom")
        except ValueError:
            record = self.make_record(sys.exc_info())

        entry = json.loads(JSONFormatter().format(record))

        assert "ValueError: boom" in entry["exception"]

    def test_quiet_levels_silence_httpx(self):
        """Test httpx request logs are only kept at debug level."""
        httpx_logger = logging.getLogger("httpx")
        try:
            setup_logging(log_level="info")
            assert httpx_logger.level == logging.WARNING

            httpx_logger.setLevel(logging.NOTSET)
            setup_logging(verbose=True)
            assert httpx_logger.level == logging.NOTSET
        finally:
            httpx_logger.setLevel(logging.NOTSET)
