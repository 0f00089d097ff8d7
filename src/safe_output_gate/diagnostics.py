"""Per-batch diagnostic sink.

Components never log through module globals while processing a batch; the
pipeline builds one sink per run and passes it down. ``LoggingSink`` forwards
to stdlib logging, ``MemorySink`` keeps events for the summary and tests.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Protocol

from safe_output_gate.logging_utils import get_logger


@dataclass(frozen=True)
class DiagnosticEvent:
    stage: str
    message: str
    level: str = "info"
    index: int | None = None
    data: dict[str, object] = field(default_factory=dict)

    def to_dict(self) -> dict[str, object]:
        payload: dict[str, object] = {
            "stage": self.stage,
            "level": self.level,
            "message": self.message,
        }
        if self.index is not None:
            payload["index"] = self.index
        if self.data:
            payload["data"] = dict(self.data)
        return payload


class DiagnosticSink(Protocol):
    def record(self, event: DiagnosticEvent) -> None: ...


class MemorySink:
    def __init__(self) -> None:
        self.events: list[DiagnosticEvent] = []

    def record(self, event: DiagnosticEvent) -> None:
        self.events.append(event)

    def warnings(self) -> list[DiagnosticEvent]:
        return [e for e in self.events if e.level in {"warning", "error"}]


class LoggingSink:
    """Forward events to a logger, optionally teeing them into another sink."""

    _LEVELS = {
        "debug": logging.DEBUG,
        "info": logging.INFO,
        "warning": logging.WARNING,
        "error": logging.ERROR,
    }

    def __init__(
        self,
        logger: logging.Logger | None = None,
        tee: DiagnosticSink | None = None,
    ) -> None:
        self._logger = logger or get_logger("safe_output_gate.batch")
        self._tee = tee

    def record(self, event: DiagnosticEvent) -> None:
        level = self._LEVELS.get(event.level, logging.INFO)
        if event.index is not None:
            self._logger.log(level, "[%s] #%d %s", event.stage, event.index, event.message)
        else:
            self._logger.log(level, "[%s] %s", event.stage, event.message)
        if self._tee is not None:
            self._tee.record(event)


class TeeSink:
    """Record every event into each of ``sinks``."""

    def __init__(self, *sinks: DiagnosticSink) -> None:
        self._sinks = sinks

    def record(self, event: DiagnosticEvent) -> None:
        for sink in self._sinks:
            sink.record(event)
