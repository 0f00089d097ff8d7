"""Logging helpers for the safe-output gate."""

from __future__ import annotations

import logging
import sys
import threading
from pathlib import Path

from safe_output_gate.config import load_settings

_logging_configured = False
_logging_lock = threading.Lock()

_logger = logging.getLogger(__name__)

_LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
_DATE_FORMAT = "%Y-%m-%dT%H:%M:%S"


def neutralize_workflow_commands(text: str) -> str:
    """Break ``::command::`` sequences so CI runners do not interpret them."""
    return text.replace("::", ":\u200b:")


class WorkflowCommandFilter(logging.Filter):
    """Rewrite log records so agent-controlled text cannot inject workflow commands."""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        if "::" in message:
            record.msg = neutralize_workflow_commands(message)
            record.args = None
        return True


def _build_handler(handler: logging.Handler) -> logging.Handler:
    handler.setFormatter(logging.Formatter(_LOG_FORMAT, datefmt=_DATE_FORMAT))
    handler.addFilter(WorkflowCommandFilter())
    return handler


def configure_logging() -> None:
    """Configure process logging from runtime settings."""
    global _logging_configured

    settings = load_settings()
    level = getattr(logging, settings.logging.level.upper(), logging.INFO)

    handlers: list[logging.Handler] = [_build_handler(logging.StreamHandler(sys.stderr))]

    if settings.logging.file:
        try:
            Path(settings.logging.file).parent.mkdir(parents=True, exist_ok=True)
            handlers.append(_build_handler(logging.FileHandler(settings.logging.file)))
        except OSError as exc:
            _logger.warning("Failed to open log file %s: %s", settings.logging.file, exc)

    logging.basicConfig(level=level, handlers=handlers, force=True)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)

    _logging_configured = True


def get_logger(name: str) -> logging.Logger:
    if not _logging_configured:
        with _logging_lock:
            if not _logging_configured:
                configure_logging()
    return logging.getLogger(name)
