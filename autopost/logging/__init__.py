"""Structured activity logging for the autopost service."""
from autopost.logging.models import LogLevel, LogComponent, LogEntry
from autopost.logging.activity_logger import ActivityLogger, init_logger, get_logger, reset_logger
from autopost.logging.component_logger import ComponentLogger, TimedOperation

__all__ = [
    "LogLevel", "LogComponent", "LogEntry",
    "ActivityLogger", "init_logger", "get_logger", "reset_logger",
    "ComponentLogger", "TimedOperation",
]
