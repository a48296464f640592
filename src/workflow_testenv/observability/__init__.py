from workflow_testenv.observability.logging import (
    EventLog,
    JsonlLogSink,
    LoggingSink,
    LogMessage,
    LogSink,
    NullLogSink,
    StdoutLogSink,
    build_log_sink,
)

__all__ = [
    "EventLog",
    "JsonlLogSink",
    "LogMessage",
    "LogSink",
    "LoggingSink",
    "NullLogSink",
    "StdoutLogSink",
    "build_log_sink",
]
