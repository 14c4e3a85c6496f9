"""
observability/logger.py — Kitty Structured Logger

Sets up structlog with:
  - JSON output to a rotating log file (stdout stays clean for the chat UI)
  - Optional console output, human-readable on a TTY or JSON when piped
  - Consistent fields on every log line: timestamp, level, event, logger, turn_id
  - The openai/httpx loggers muted so request chatter never reaches the terminal

Usage:
    from kitty.observability.logger import get_logger, setup_logging
    setup_logging(level="INFO", log_dir=".kitty/logs", console_output=False)
    log = get_logger(__name__)
    log.info("tool_executor.dispatch", tool="read_file")
"""

from __future__ import annotations

import logging
import logging.handlers
import sys
from pathlib import Path
from typing import Any, Optional

import structlog

# Loggers that log every HTTP request at INFO and would bleed into the REPL.
_MUTED_LOGGERS = [
    "openai",
    "openai._base_client",
    "httpx",
    "httpcore",
]

_SHARED_PROCESSORS: list[Any] = [
    structlog.contextvars.merge_contextvars,
    structlog.stdlib.add_log_level,
    structlog.stdlib.add_logger_name,
    structlog.processors.TimeStamper(fmt="iso", utc=True),
    structlog.processors.StackInfoRenderer(),
    structlog.processors.format_exc_info,
]


def _mute_noisy_loggers() -> None:
    null = logging.NullHandler()
    for name in _MUTED_LOGGERS:
        lgr = logging.getLogger(name)
        lgr.setLevel(logging.WARNING)
        lgr.propagate = False
        if not any(isinstance(h, logging.NullHandler) for h in lgr.handlers):
            lgr.addHandler(null)


# ─────────────────────────────────────────────────────────────────────────────
# Public API
# ─────────────────────────────────────────────────────────────────────────────


def setup_logging(
    level: str = "INFO",
    log_dir: str | Path = ".kitty/logs",
    json_format: Optional[bool] = None,
    console_output: bool = False,
    max_bytes: int = 10 * 1024 * 1024,
    backup_count: int = 3,
) -> None:
    """
    Configure structlog and stdlib logging. Call once at application startup.

    The file at <log_dir>/kitty.log is always JSON. json_format only affects
    the console handler; None means pretty on a TTY and JSON when stderr is
    redirected.
    """
    log_dir = Path(log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)
    numeric_level = getattr(logging, level.upper(), logging.INFO)
    if json_format is None:
        json_format = not sys.stderr.isatty()

    file_handler = logging.handlers.RotatingFileHandler(
        filename=log_dir / "kitty.log",
        maxBytes=max_bytes,
        backupCount=backup_count,
        encoding="utf-8",
    )
    file_handler.setFormatter(_formatter(structlog.processors.JSONRenderer()))
    handlers: list[logging.Handler] = [file_handler]

    # stdout carries the streamed answer
    if console_output:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setFormatter(_formatter(
            structlog.processors.JSONRenderer() if json_format
            else structlog.dev.ConsoleRenderer(colors=True)
        ))
        handlers.append(console_handler)

    for handler in handlers:
        handler.setLevel(numeric_level)
    logging.basicConfig(format="%(message)s", level=numeric_level, handlers=handlers, force=True)
    _mute_noisy_loggers()

    structlog.configure(
        processors=_SHARED_PROCESSORS + [structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def _formatter(renderer: Any) -> structlog.stdlib.ProcessorFormatter:
    return structlog.stdlib.ProcessorFormatter(
        processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
        foreign_pre_chain=_SHARED_PROCESSORS,
    )


def get_logger(name: str = "kitty", **initial_values: Any) -> structlog.stdlib.BoundLogger:
    """Logger for `name`, optionally pre-bound with `initial_values`."""
    logger = structlog.get_logger(name)
    if initial_values:
        logger = logger.bind(**initial_values)
    return logger


def bind_turn(turn_id: str) -> None:
    """
    Bind the current turn id to every log line emitted from this async
    context (and its children) until clear_turn() is called.
    """
    structlog.contextvars.bind_contextvars(turn_id=turn_id)


def clear_turn() -> None:
    """Clear turn context vars at the end of a turn."""
    structlog.contextvars.clear_contextvars()
