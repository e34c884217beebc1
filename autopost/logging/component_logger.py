"""``ComponentLogger``: an activity logger bound to one ``LogComponent``."""

import time
from typing import Any, Optional

from autopost.logging.activity_logger import ActivityLogger, get_logger
from autopost.logging.models import LogComponent


class ComponentLogger:
    """Logs activity entries for a single component.

    Without an explicit *logger*, the process-wide one from
    :func:`init_logger` is looked up on every call, so instances can be
    created before it exists.

    Usage::

        activity = ComponentLogger(LogComponent.SWEEP)
        async with activity.timed("Content sweep"):
            ...
        await activity.info("Content sweep finished", data={"published": 3})
    """

    def __init__(self, component: LogComponent, logger: Optional[ActivityLogger] = None) -> None:
        self.component = component
        self._logger = logger

    @property
    def logger(self) -> ActivityLogger:
        return self._logger if self._logger is not None else get_logger()

    async def debug(self, message: str, **kwargs: Any) -> None:
        await self.logger.debug(self.component, message, **kwargs)

    async def info(self, message: str, **kwargs: Any) -> None:
        await self.logger.info(self.component, message, **kwargs)

    async def warning(self, message: str, **kwargs: Any) -> None:
        await self.logger.warning(self.component, message, **kwargs)

    async def error(self, message: str, **kwargs: Any) -> None:
        await self.logger.error(self.component, message, **kwargs)

    def timed(self, operation: str) -> "TimedOperation":
        return TimedOperation(self, operation)


class TimedOperation:
    """Async context manager recording how long *operation* took.

    Entering logs ``Starting: <operation>`` at debug level.  Leaving logs
    ``Completed:`` or, if the block raised, ``Failed:`` with the error.
    The exception is never suppressed.
    """

    def __init__(self, activity: ComponentLogger, operation: str) -> None:
        self.activity = activity
        self.operation = operation
        self._started = 0.0

    async def __aenter__(self) -> "TimedOperation":
        self._started = time.monotonic()
        await self.activity.debug(f"Starting: {self.operation}")
        return self

    async def __aexit__(self, exc_type: Any, exc: Optional[BaseException], tb: Any) -> bool:
        elapsed_ms = int((time.monotonic() - self._started) * 1000)
        if exc is None:
            await self.activity.info(f"Completed: {self.operation}", duration_ms=elapsed_ms)
        else:
            await self.activity.error(
                f"Failed: {self.operation}", error=exc, duration_ms=elapsed_ms
            )
        return False
