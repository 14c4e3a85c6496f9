"""
tests/unit/test_logger.py

Tests for observability/logger.py: JSON file output, turn-id binding and
muting of the HTTP client loggers.
"""

from __future__ import annotations

import json
import logging

import pytest
import structlog

from kitty.observability.logger import bind_turn, clear_turn, get_logger, setup_logging


@pytest.fixture
def log_dir(tmp_path):
    yield tmp_path / "logs"
    root = logging.getLogger()
    for handler in list(root.handlers):
        handler.close()
        root.removeHandler(handler)
    structlog.reset_defaults()


def _lines(log_dir):
    for handler in logging.getLogger().handlers:
        handler.flush()
    text = (log_dir / "kitty.log").read_text(encoding="utf-8")
    return [json.loads(line) for line in text.splitlines() if line.strip()]


class TestLogger:
    def test_json_lines_written_to_file(self, log_dir):
        setup_logging(level="INFO", log_dir=log_dir, json_format=True)
        get_logger("kitty.test").info("test.event", answer=42)

        entry = _lines(log_dir)[-1]
        assert entry["event"] == "test.event"
        assert entry["answer"] == 42
        assert entry["level"] == "info"
        assert entry["logger"] == "kitty.test"
        assert "timestamp" in entry

    def test_level_filters(self, log_dir):
        setup_logging(level="WARNING", log_dir=log_dir, json_format=True)
        log = get_logger("kitty.test")
        log.info("test.quiet")
        log.warning("test.loud")

        events = [e["event"] for e in _lines(log_dir)]
        assert "test.quiet" not in events
        assert "test.loud" in events

    def test_turn_id_bound_until_cleared(self, log_dir):
        setup_logging(level="INFO", log_dir=log_dir, json_format=True)
        log = get_logger("kitty.test")

        bind_turn("abc123")
        log.info("test.inside")
        clear_turn()
        log.info("test.outside")

        inside, outside = _lines(log_dir)[-2:]
        assert inside["turn_id"] == "abc123"
        assert "turn_id" not in outside

    def test_http_loggers_muted(self, log_dir):
        setup_logging(level="DEBUG", log_dir=log_dir, json_format=True)
        assert logging.getLogger("httpx").level == logging.WARNING
        assert logging.getLogger("openai").propagate is False

    def test_console_output_goes_to_stderr(self, log_dir, capsys):
        setup_logging(level="INFO", log_dir=log_dir, json_format=True, console_output=True)
        get_logger("kitty.test").info("test.console", n=1)

        captured = capsys.readouterr()
        assert captured.out == ""
        assert json.loads(captured.err.strip().splitlines()[-1])["event"] == "test.console"
        assert _lines(log_dir)[-1]["event"] == "test.console"
