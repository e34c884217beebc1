"""
Small helpers shared by the stores, the executor and the WordPress client.

Timestamps written to Supabase are always timezone-aware UTC; the helpers
here produce them and read them back.
"""

import asyncio
import logging
import uuid
from datetime import datetime, timezone
from functools import wraps
from typing import Any, Awaitable, Callable, Optional, Tuple, Type, TypeVar, Union

from autopost.exceptions import RetryExhaustedError

logger = logging.getLogger(__name__)

T = TypeVar("T")


# ===========================================================================
# TIMESTAMPS
# ===========================================================================


def utc_now() -> datetime:
    """Current time in UTC, timezone-aware."""
    return datetime.now(timezone.utc)


def generate_id() -> str:
    """New UUID4 primary key as a string."""
    return str(uuid.uuid4())


def ensure_utc(dt: datetime) -> datetime:
    """Return *dt* in UTC.  Naive values are taken to already be UTC."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def parse_timestamp(value: Union[str, datetime, None]) -> Optional[datetime]:
    """Read a TIMESTAMPTZ column value as returned by PostgREST.

    Accepts ISO strings with ``Z`` or a numeric offset, and datetimes.
    Empty values give ``None``.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return ensure_utc(value)
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    return ensure_utc(datetime.fromisoformat(text))


# ===========================================================================
# RETRY
# ===========================================================================


def with_retry(
    attempts: int = 3,
    base_delay: float = 2.0,
    retry_on: Tuple[Type[Exception], ...] = (Exception,),
    operation_name: Optional[str] = None,
) -> Callable[[Callable[..., Awaitable[T]]], Callable[..., Awaitable[T]]]:
    """Retry an async call with doubling delays (2s, 4s, ...).

    Only for idempotent calls such as remote reads.  Exceptions outside
    *retry_on* are raised at once.

    Raises:
        RetryExhaustedError: Every attempt failed; ``last_error`` holds
            the final exception.
    """

    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        name = operation_name or func.__name__

        @wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> T:
            for attempt in range(1, attempts + 1):
                try:
                    return await func(*args, **kwargs)
                except retry_on as exc:
                    if attempt == attempts:
                        logger.error("[RETRY] %s gave up after %d attempts: %s", name, attempts, exc)
                        raise RetryExhaustedError(name, attempts, exc) from exc
                    delay = base_delay * 2 ** (attempt - 1)
                    logger.warning(
                        "[RETRY] %s failed (%d/%d): %s; next try in %.1fs",
                        name,
                        attempt,
                        attempts,
                        exc,
                        delay,
                    )
                    await asyncio.sleep(delay)
            raise ValueError("attempts must be at least 1")

        return wrapper

    return decorator
