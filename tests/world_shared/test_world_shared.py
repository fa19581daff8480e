"""Tests for world_shared: persistence helpers and structured logging."""

from __future__ import annotations

import json
import logging
import sys
from pathlib import Path
from unittest.mock import patch

import pytest

from src.world_shared.logging import JSONFormatter, setup_logging, world_context, world_name_var
from src.world_shared.utils import (
    atomic_write_json,
    atomic_write_lines,
    ensure_dir,
    load_json,
    read_lines,
)


# ---------------------------------------------------------------------------
# Persistence helpers
# ---------------------------------------------------------------------------


class TestAtomicWriteJson:
    def test_writes_sorted_json(self, tmp_path: Path) -> None:
        path = tmp_path / "nested" / "doc.json"
        atomic_write_json(path, {"b": 1, "a": 2})
        assert json.loads(path.read_text(encoding="utf-8")) == {"a": 2, "b": 1}
        assert not (tmp_path / "nested" / "doc.json.tmp").exists()

    def test_replaces_existing_document(self, tmp_path: Path) -> None:
        path = tmp_path / "doc.json"
        atomic_write_json(path, {"v": 1})
        atomic_write_json(path, {"v": 2})
        assert load_json(path) == {"v": 2}

    def test_failed_write_keeps_previous_document(self, tmp_path: Path) -> None:
        path = tmp_path / "doc.json"
        atomic_write_json(path, {"v": 1})
        with patch("src.world_shared.utils.os.replace", side_effect=OSError("boom")):
            with pytest.raises(OSError):
                atomic_write_json(path, {"v": 2})
        assert load_json(path) == {"v": 1}
        assert not (tmp_path / "doc.json.tmp").exists()


class TestLoadJson:
    def test_missing(self, tmp_path: Path) -> None:
        assert load_json(tmp_path / "nope.json") is None

    def test_corrupt(self, tmp_path: Path) -> None:
        path = tmp_path / "bad.json"
        path.write_text("{", encoding="utf-8")
        assert load_json(path) is None

    def test_non_object(self, tmp_path: Path) -> None:
        path = tmp_path / "list.json"
        path.write_text("[1, 2]", encoding="utf-8")
        assert load_json(path) is None


class TestLines:
    def test_round_trip_skips_blank_lines(self, tmp_path: Path) -> None:
        path = tmp_path / "cache.txt"
        atomic_write_lines(path, ["a 1", "", "b 2"])
        assert read_lines(path) == ["a 1", "b 2"]

    def test_empty_file(self, tmp_path: Path) -> None:
        path = tmp_path / "cache.txt"
        atomic_write_lines(path, [])
        assert path.read_text(encoding="utf-8") == ""
        assert read_lines(path) == []

    def test_missing_file(self, tmp_path: Path) -> None:
        assert read_lines(tmp_path / "none.txt") == []

    def test_ensure_dir(self, tmp_path: Path) -> None:
        target = ensure_dir(tmp_path / "a" / "b")
        assert target.is_dir()


# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------


def _record(message: str = "hello", exc_info: object = None) -> logging.LogRecord:
    return logging.LogRecord(
        name="src.test",
        level=logging.INFO,
        pathname=__file__,
        lineno=1,
        msg=message,
        args=(),
        exc_info=exc_info,  # type: ignore[arg-type]
    )


class TestJSONFormatter:
    def test_fields(self) -> None:
        entry = json.loads(JSONFormatter(service_name="worlds").format(_record()))
        assert entry["service_name"] == "worlds"
        assert entry["message"] == "hello"
        assert entry["logger"] == "src.test"
        assert entry["level"] == "INFO"
        assert entry["world_name"] == ""

    def test_world_name_from_context(self) -> None:
        with world_context("ck-world"):
            entry = json.loads(JSONFormatter().format(_record()))
        assert entry["world_name"] == "ck-world"
        assert world_name_var.get() == ""

    def test_exception(self) -> None:
        try:
            raise ValueError("bad value")
        except ValueError:
            record = _record(exc_info=sys.exc_info())
        entry = json.loads(JSONFormatter().format(record))
        assert entry["exception"] == "bad value"


class TestSetupLogging:
    def test_configures_single_handler(self) -> None:
        logger = setup_logging("world-test", level="debug")
        setup_logging("world-test", level="debug")
        assert logger.level == logging.DEBUG
        assert len(logger.handlers) == 1
        assert isinstance(logger.handlers[0].formatter, JSONFormatter)
        logger.handlers.clear()

    def test_unknown_level_defaults_to_info(self) -> None:
        logger = setup_logging("world-test-2", level="chatty")
        assert logger.level == logging.INFO
        logger.handlers.clear()
