from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Protocol

from workflow_testenv.config.models import LoggingSettings

LOGGER_NAME = "workflow_testenv"

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


@dataclass(frozen=True, slots=True)
class LogMessage:
    # Structured log payload for environment lifecycle diagnostics.
    level: str
    message: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(tz=UTC))
    fields: dict[str, object] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.level or not self.message:
            raise ValueError("LogMessage requires non-empty level/message")


class LogSink(Protocol):
    def emit(self, message: LogMessage) -> None: ...


class LoggingSink:
    # Forwards structured messages to the stdlib logger so pytest's log capture sees them.
    def __init__(self, logger: logging.Logger | None = None) -> None:
        self._logger = logger or logging.getLogger(LOGGER_NAME)

    def emit(self, message: LogMessage) -> None:
        level = _LEVELS.get(message.level, logging.INFO)
        if message.fields:
            details = " ".join(f"{key}={value}" for key, value in message.fields.items())
            self._logger.log(level, "%s %s", message.message, details)
        else:
            self._logger.log(level, "%s", message.message)


class StdoutLogSink:
    # Compact JSON line per message on stdout.
    def emit(self, message: LogMessage) -> None:
        print(json.dumps(_log_to_dict(message), separators=(",", ":"), ensure_ascii=False, default=str))


class JsonlLogSink:
    # File-backed structured log sink for lifecycle diagnostics.
    def __init__(self, path: Path) -> None:
        self._path = path
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._file = self._path.open("a", encoding="utf-8")

    def emit(self, message: LogMessage) -> None:
        payload = json.dumps(_log_to_dict(message), separators=(",", ":"), ensure_ascii=False, default=str)
        self._file.write(payload + "\n")
        self._file.flush()

    def close(self) -> None:
        self._file.close()


class NullLogSink:
    def emit(self, message: LogMessage) -> None:
        _ = message


class EventLog:
    # Thin emitter used by lifecycle components: log.info("msg", role="engine").
    def __init__(self, sink: LogSink | None = None) -> None:
        self._sink: LogSink = sink if sink is not None else LoggingSink()

    @property
    def sink(self) -> LogSink:
        return self._sink

    def debug(self, message: str, **fields: object) -> None:
        self._sink.emit(LogMessage(level="debug", message=message, fields=fields))

    def info(self, message: str, **fields: object) -> None:
        self._sink.emit(LogMessage(level="info", message=message, fields=fields))

    def warning(self, message: str, **fields: object) -> None:
        self._sink.emit(LogMessage(level="warning", message=message, fields=fields))

    def error(self, message: str, **fields: object) -> None:
        self._sink.emit(LogMessage(level="error", message=message, fields=fields))


def build_log_sink(settings: LoggingSettings) -> LogSink:
    if settings.sink == "stdout":
        return StdoutLogSink()
    if settings.sink == "jsonl":
        if not settings.path:
            raise ValueError("logging.path must be a non-empty string for the jsonl sink")
        return JsonlLogSink(Path(settings.path))
    if settings.sink == "none":
        return NullLogSink()
    return LoggingSink()


def _log_to_dict(message: LogMessage) -> dict[str, object]:
    return {
        "level": message.level,
        "message": message.message,
        "timestamp": message.timestamp.isoformat().replace("+00:00", "Z"),
        "fields": message.fields,
    }
