"""
Activity log for the publication service.

Every entry is appended as a JSON line to ``<log_dir>/activity.log``
(errors are also copied to ``errors.log``), kept in a bounded in-memory
buffer for ``get_recent()``, and, when a database is attached, stored in
``activity_logs`` by a background task so logging never waits on Supabase.
"""

import asyncio
import sys
from collections import deque
from pathlib import Path
from typing import Any, Callable, Deque, List, Optional, Set

import aiofiles

from autopost.logging.models import LogComponent, LogEntry, LogLevel
from autopost.utils import utc_now

EntryHandler = Callable[[LogEntry], None]


class ActivityLogger:
    """Writes structured activity entries to files and Supabase.

    Args:
        log_dir: Directory for ``activity.log`` and ``errors.log``.
        db: Object with ``async save_activity_log(row)``, usually
            :class:`~autopost.database.SupabaseDB`.
        min_level: Entries below this level are not stored in the database.
        max_recent: How many entries ``get_recent()`` can return.
    """

    def __init__(
        self,
        log_dir: str = "logs",
        db: Any = None,
        min_level: LogLevel = LogLevel.INFO,
        max_recent: int = 1000,
    ) -> None:
        self.log_dir = Path(log_dir)
        self.log_dir.mkdir(parents=True, exist_ok=True)
        self.db = db
        self.min_level = min_level
        self._recent: Deque[LogEntry] = deque(maxlen=max_recent)
        self._handlers: List[EntryHandler] = []
        self._db_writes: Set["asyncio.Task[None]"] = set()

    def add_handler(self, handler: EntryHandler) -> None:
        """Call *handler* synchronously with every new entry."""
        self._handlers.append(handler)

    async def log(
        self,
        level: LogLevel,
        component: LogComponent,
        message: str,
        *,
        site_id: Optional[str] = None,
        item_id: Optional[str] = None,
        data: Optional[dict] = None,
        error: Optional[BaseException] = None,
        duration_ms: Optional[int] = None,
    ) -> LogEntry:
        entry = LogEntry(
            timestamp=utc_now(),
            level=level,
            component=component,
            message=message,
            site_id=site_id,
            item_id=item_id,
            data=dict(data or {}),
            duration_ms=duration_ms,
        )
        if error is not None:
            entry.attach_error(error)
        await self._emit(entry)
        return entry

    async def debug(self, component: LogComponent, message: str, **kwargs: Any) -> LogEntry:
        return await self.log(LogLevel.DEBUG, component, message, **kwargs)

    async def info(self, component: LogComponent, message: str, **kwargs: Any) -> LogEntry:
        return await self.log(LogLevel.INFO, component, message, **kwargs)

    async def warning(self, component: LogComponent, message: str, **kwargs: Any) -> LogEntry:
        return await self.log(LogLevel.WARNING, component, message, **kwargs)

    async def error(self, component: LogComponent, message: str, **kwargs: Any) -> LogEntry:
        return await self.log(LogLevel.ERROR, component, message, **kwargs)

    def get_recent(
        self,
        limit: int = 20,
        *,
        min_level: Optional[LogLevel] = None,
        component: Optional[LogComponent] = None,
        site_id: Optional[str] = None,
    ) -> List[LogEntry]:
        """Newest *limit* buffered entries, oldest first, optionally filtered."""
        selected = [
            entry
            for entry in self._recent
            if (min_level is None or entry.level.value >= min_level.value)
            and (component is None or entry.component is component)
            and (site_id is None or entry.site_id == site_id)
        ]
        return selected[-limit:] if limit > 0 else []

    async def flush(self) -> None:
        """Wait for background database writes to finish."""
        pending = list(self._db_writes)
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    async def _emit(self, entry: LogEntry) -> None:
        self._recent.append(entry)

        line = entry.to_json() + "\n"
        targets = ["activity.log"]
        if entry.level.value >= LogLevel.ERROR.value:
            targets.append("errors.log")
        for name in targets:
            async with aiofiles.open(self.log_dir / name, "a", encoding="utf-8") as f:
                await f.write(line)

        if self.db is not None and entry.level.value >= self.min_level.value:
            task = asyncio.create_task(self._store(entry))
            self._db_writes.add(task)
            task.add_done_callback(self._db_writes.discard)

        for handler in self._handlers:
            try:
                handler(entry)
            except Exception as exc:
                print(f"[ACTIVITY] Handler {handler!r} raised: {exc}", file=sys.stderr)

    async def _store(self, entry: LogEntry) -> None:
        try:
            await self.db.save_activity_log(entry.to_row())
        except Exception as exc:
            print(f"[ACTIVITY] Could not store entry in Supabase: {exc}", file=sys.stderr)


# ======================================================================
# PROCESS-WIDE INSTANCE
# ======================================================================

_activity_logger: Optional[ActivityLogger] = None


def init_logger(
    log_dir: str = "logs",
    db: Any = None,
    min_level: LogLevel = LogLevel.INFO,
) -> ActivityLogger:
    """Create the process-wide ``ActivityLogger`` used by ``ComponentLogger``."""
    global _activity_logger
    _activity_logger = ActivityLogger(log_dir=log_dir, db=db, min_level=min_level)
    return _activity_logger


def get_logger() -> ActivityLogger:
    """Return the process-wide ``ActivityLogger``.

    Raises:
        RuntimeError: ``init_logger()`` has not run.
    """
    if _activity_logger is None:
        raise RuntimeError("Activity logger is not initialised; call init_logger() first")
    return _activity_logger


def reset_logger() -> None:
    global _activity_logger
    _activity_logger = None
