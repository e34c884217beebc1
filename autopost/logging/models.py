"""Activity log records.

One ``LogEntry`` is written per event: as a JSON line to the local log
files and, when a database is attached, as a row of ``activity_logs``.
"""

import json
import logging
import traceback
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional


class LogLevel(Enum):
    """Severity, numerically aligned with the stdlib ``logging`` levels."""

    DEBUG = logging.DEBUG
    INFO = logging.INFO
    WARNING = logging.WARNING
    ERROR = logging.ERROR
    CRITICAL = logging.CRITICAL

    @property
    def label(self) -> str:
        return self.name.lower()


class LogComponent(Enum):
    """Part of the service an entry comes from."""

    SCHEDULES = "schedules"
    ITEMS = "items"
    LIMIT_GUARD = "limit_guard"
    EXECUTOR = "executor"
    SWEEP = "sweep"
    GENERATION = "generation"
    MAINTENANCE = "maintenance"
    CONTENT_ENDPOINT = "content_endpoint"
    STARTUP = "startup"


@dataclass
class LogEntry:
    timestamp: datetime
    level: LogLevel
    component: LogComponent
    message: str
    site_id: Optional[str] = None
    item_id: Optional[str] = None
    data: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None  # "ExceptionType: message"
    traceback: Optional[str] = None
    duration_ms: Optional[int] = None

    def attach_error(self, exc: BaseException) -> None:
        """Record *exc* as a one-line summary plus its formatted traceback."""
        self.error = f"{type(exc).__name__}: {exc}"
        self.traceback = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))

    def to_row(self) -> Dict[str, Any]:
        """Column values for the ``activity_logs`` table."""
        return {
            "created_at": self.timestamp.isoformat(),
            "level": self.level.label,
            "component": self.component.value,
            "message": self.message,
            "site_id": self.site_id,
            "item_id": self.item_id,
            "data": self.data,
            "error": self.error,
            "duration_ms": self.duration_ms,
        }

    def to_json(self) -> str:
        """File line: the table row plus the traceback, if any."""
        record = self.to_row()
        if self.traceback:
            record["traceback"] = self.traceback
        return json.dumps(record, ensure_ascii=False, default=str)

    def __str__(self) -> str:
        text = f"{self.timestamp:%H:%M:%S} {self.level.name:<8} {self.component.value}: {self.message}"
        if self.duration_ms is not None:
            text += f" [{self.duration_ms}ms]"
        if self.error:
            text += f" ({self.error})"
        return text
