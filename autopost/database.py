"""
Supabase access for sites, schedules, items, generation requests and
activity logs.

``SupabaseDB`` is the only module that builds queries; the services in
``autopost.scheduling`` call its methods and convert the returned dicts
into dataclasses.  Datetimes and enum members in outgoing dicts are
serialised here.

Usage::

    from autopost.database import get_db

    db = await get_db()
    rows, total = await db.get_items(site_id, page=1, limit=20)
"""

import asyncio
import logging
import os
import threading
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from supabase import AsyncClient, create_async_client

from autopost.exceptions import DatabaseError, ValidationError
from autopost.utils import ensure_utc, utc_now

logger = logging.getLogger(__name__)


ITEM_STATUSES: Tuple[str, ...] = ("draft", "scheduled", "processing", "published", "failed")


# =============================================================================
# VALIDATION HELPERS
# =============================================================================


def validate_not_empty(value: Any, name: str) -> None:
    """Validate that *value* is not ``None`` or an empty string.

    Raises:
        ValidationError: If *value* is ``None`` or a blank string.
    """
    if value is None:
        raise ValidationError(f"{name} cannot be None")
    if isinstance(value, str) and not value.strip():
        raise ValidationError(f"{name} cannot be empty string")


def validate_positive(value: Union[int, float], name: str) -> None:
    """Validate that *value* is strictly positive (> 0).

    Raises:
        ValidationError: If *value* is ``None`` or not positive.
    """
    if value is None:
        raise ValidationError(f"{name} cannot be None")
    if value <= 0:
        raise ValidationError(f"{name} must be positive, got {value}")


def serialize_fields(fields: Dict[str, Any]) -> Dict[str, Any]:
    """Convert datetimes to ISO-8601 UTC strings and enums to their values."""
    out: Dict[str, Any] = {}
    for key, value in fields.items():
        if isinstance(value, datetime):
            value = ensure_utc(value).isoformat()
        elif isinstance(value, Enum):
            value = value.value
        out[key] = value
    return out


# =============================================================================
# CONFIGURATION
# =============================================================================


@dataclass
class SupabaseConfig:
    """Supabase configuration loaded from environment variables.

    Attributes:
        url: The Supabase project URL (``SUPABASE_URL``).
        key: The service-role key (``SUPABASE_SERVICE_KEY``).
    """

    url: str
    key: str

    @classmethod
    def from_env(cls) -> "SupabaseConfig":
        """Create a config instance from environment variables.

        Raises:
            ValueError: If either variable is missing or empty.
        """
        url = os.environ.get("SUPABASE_URL")
        key = os.environ.get("SUPABASE_SERVICE_KEY")

        if not url or not key:
            raise ValueError("SUPABASE_URL and SUPABASE_SERVICE_KEY must be set")

        return cls(url=url, key=key)


# =============================================================================
# SUPABASE DATABASE CLIENT
# =============================================================================


class SupabaseDB:
    """Async queries over the publication tables.

    Build instances with :meth:`create`, since the Supabase async client is
    created with ``await``.  Tests pass a mocked client to ``__init__``.
    """

    def __init__(self, client: AsyncClient) -> None:
        self.client = client

    @classmethod
    async def create(cls, config: Optional[SupabaseConfig] = None) -> "SupabaseDB":
        """Connect with *config*, or with ``SUPABASE_URL``/``SUPABASE_SERVICE_KEY``."""
        config = config or SupabaseConfig.from_env()
        client = await create_async_client(config.url, config.key)
        return cls(client)

    # -----------------------------------------------------------------
    # SITES (read-only: owned by the site-management layer)
    # -----------------------------------------------------------------

    async def get_site(self, site_id: str) -> Optional[Dict[str, Any]]:
        """Get a site by ID, or ``None``."""
        validate_not_empty(site_id, "site_id")

        result = await (
            self.client.table("sites")
            .select("*")
            .eq("id", site_id)
            .execute()
        )
        return result.data[0] if result.data else None

    async def get_publishable_sites(self) -> List[Dict[str, Any]]:
        """Get sites that are active and currently connected."""
        result = await (
            self.client.table("sites")
            .select("*")
            .eq("is_active", True)
            .eq("connection_status", "connected")
            .execute()
        )
        return result.data

    async def get_site_credentials(self, site_id: str) -> Optional[Dict[str, Any]]:
        """Get the decrypted endpoint credentials for a site.

        Returns:
            Dict with ``url``, ``username`` and ``password``, or ``None``.
        """
        validate_not_empty(site_id, "site_id")

        result = await (
            self.client.table("site_credentials")
            .select("url, username, password")
            .eq("site_id", site_id)
            .execute()
        )
        return result.data[0] if result.data else None

    # -----------------------------------------------------------------
    # SCHEDULES
    # -----------------------------------------------------------------

    async def insert_schedule(self, schedule: Dict[str, Any]) -> Dict[str, Any]:
        """Insert a schedule row.

        Raises:
            ValidationError: If ``site_id`` is missing.
            DatabaseError: When the insert returns no data.
        """
        if not schedule or not schedule.get("site_id"):
            raise ValidationError("schedule must have site_id")

        result = await (
            self.client.table("posting_schedules")
            .insert(serialize_fields(schedule))
            .execute()
        )
        if not result.data:
            raise DatabaseError("Insert succeeded but returned no data")
        return result.data[0]

    async def get_schedules(self, site_id: str) -> List[Dict[str, Any]]:
        """Get all schedules of a site, newest first."""
        validate_not_empty(site_id, "site_id")

        result = await (
            self.client.table("posting_schedules")
            .select("*")
            .eq("site_id", site_id)
            .order("created_at", desc=True)
            .execute()
        )
        return result.data

    async def get_schedule(self, schedule_id: str, site_id: str) -> Optional[Dict[str, Any]]:
        """Get a schedule by ID, scoped to its owning site."""
        validate_not_empty(schedule_id, "schedule_id")
        validate_not_empty(site_id, "site_id")

        result = await (
            self.client.table("posting_schedules")
            .select("*")
            .eq("id", schedule_id)
            .eq("site_id", site_id)
            .execute()
        )
        return result.data[0] if result.data else None

    async def get_active_schedule(
        self, site_id: str, exclude_id: Optional[str] = None
    ) -> Optional[Dict[str, Any]]:
        """Get the active schedule of a site, optionally ignoring one ID."""
        validate_not_empty(site_id, "site_id")

        query = (
            self.client.table("posting_schedules")
            .select("*")
            .eq("site_id", site_id)
            .eq("is_active", True)
        )
        if exclude_id:
            query = query.neq("id", exclude_id)
        result = await query.limit(1).execute()
        return result.data[0] if result.data else None

    async def get_active_schedules(self, site_ids: Sequence[str]) -> List[Dict[str, Any]]:
        """Get the active schedules of the given sites."""
        if not site_ids:
            return []

        result = await (
            self.client.table("posting_schedules")
            .select("*")
            .in_("site_id", list(site_ids))
            .eq("is_active", True)
            .execute()
        )
        return result.data

    async def update_schedule(
        self, schedule_id: str, site_id: str, fields: Dict[str, Any]
    ) -> Optional[Dict[str, Any]]:
        """Update a schedule in place.

        Returns:
            The updated row, or ``None`` when no row matched.
        """
        validate_not_empty(schedule_id, "schedule_id")
        validate_not_empty(site_id, "site_id")

        values = serialize_fields({**fields, "updated_at": utc_now()})
        result = await (
            self.client.table("posting_schedules")
            .update(values)
            .eq("id", schedule_id)
            .eq("site_id", site_id)
            .execute()
        )
        return result.data[0] if result.data else None

    async def delete_schedule(self, schedule_id: str, site_id: str) -> bool:
        """Delete a schedule.  Returns ``True`` if a row was removed."""
        validate_not_empty(schedule_id, "schedule_id")
        validate_not_empty(site_id, "site_id")

        result = await (
            self.client.table("posting_schedules")
            .delete()
            .eq("id", schedule_id)
            .eq("site_id", site_id)
            .execute()
        )
        return bool(result.data)

    # -----------------------------------------------------------------
    # ITEMS
    # -----------------------------------------------------------------

    async def insert_item(self, item: Dict[str, Any]) -> Dict[str, Any]:
        """Insert an item row.

        Raises:
            ValidationError: If ``site_id`` or ``title`` is missing.
            DatabaseError: When the insert returns no data.
        """
        if not item:
            raise ValidationError("item cannot be None or empty")
        validate_not_empty(item.get("site_id"), "site_id")
        validate_not_empty(item.get("title"), "title")

        result = await (
            self.client.table("items")
            .insert(serialize_fields(item))
            .execute()
        )
        if not result.data:
            raise DatabaseError("Insert succeeded but returned no data")
        return result.data[0]

    async def get_item(self, item_id: str, site_id: str) -> Optional[Dict[str, Any]]:
        """Get an item by ID, scoped to its owning site."""
        validate_not_empty(item_id, "item_id")
        validate_not_empty(site_id, "site_id")

        result = await (
            self.client.table("items")
            .select("*")
            .eq("id", item_id)
            .eq("site_id", site_id)
            .execute()
        )
        return result.data[0] if result.data else None

    async def get_items(
        self,
        site_id: str,
        status: Optional[str] = None,
        page: int = 1,
        limit: int = 20,
    ) -> Tuple[List[Dict[str, Any]], int]:
        """Get one page of a site's items, newest first.

        Returns:
            ``(rows, total)`` where *total* counts all matching rows.
        """
        validate_not_empty(site_id, "site_id")
        validate_positive(page, "page")
        validate_positive(limit, "limit")

        query = (
            self.client.table("items")
            .select("*", count="exact")
            .eq("site_id", site_id)
        )
        if status:
            query = query.eq("status", status)

        offset = (page - 1) * limit
        result = await (
            query.order("created_at", desc=True)
            .range(offset, offset + limit - 1)
            .execute()
        )
        return result.data, result.count or 0

    async def update_item(
        self, item_id: str, site_id: str, fields: Dict[str, Any]
    ) -> Optional[Dict[str, Any]]:
        """Update an item's editable fields.

        Returns:
            The updated row, or ``None`` when no row matched.
        """
        validate_not_empty(item_id, "item_id")
        validate_not_empty(site_id, "site_id")

        values = serialize_fields({**fields, "updated_at": utc_now()})
        result = await (
            self.client.table("items")
            .update(values)
            .eq("id", item_id)
            .eq("site_id", site_id)
            .execute()
        )
        return result.data[0] if result.data else None

    async def transition_item(
        self,
        item_id: str,
        site_id: str,
        from_statuses: Sequence[str],
        fields: Dict[str, Any],
    ) -> Optional[Dict[str, Any]]:
        """Conditionally update an item whose status is in *from_statuses*.

        This is the claimed-row pattern: the status check and the write
        are one statement, so two sweeps cannot both claim the same item.

        Returns:
            The updated row, or ``None`` if the item was not in one of the
            expected statuses (or does not exist).
        """
        validate_not_empty(item_id, "item_id")
        validate_not_empty(site_id, "site_id")
        if not from_statuses:
            raise ValidationError("from_statuses cannot be empty")

        values = serialize_fields({**fields, "updated_at": utc_now()})
        result = await (
            self.client.table("items")
            .update(values)
            .eq("id", item_id)
            .eq("site_id", site_id)
            .in_("status", list(from_statuses))
            .execute()
        )
        return result.data[0] if result.data else None

    async def delete_item(self, item_id: str, site_id: str) -> bool:
        """Delete an item.  Returns ``True`` if a row was removed."""
        validate_not_empty(item_id, "item_id")
        validate_not_empty(site_id, "site_id")

        result = await (
            self.client.table("items")
            .delete()
            .eq("id", item_id)
            .eq("site_id", site_id)
            .execute()
        )
        return bool(result.data)

    async def get_due_items(
        self, site_ids: Sequence[str], now: datetime, limit: int = 50
    ) -> List[Dict[str, Any]]:
        """Get scheduled items whose ``scheduled_at`` has passed.

        Returns:
            Up to *limit* rows ordered by ``scheduled_at`` ascending.
        """
        validate_positive(limit, "limit")
        if not site_ids:
            return []

        result = await (
            self.client.table("items")
            .select("*")
            .in_("site_id", list(site_ids))
            .eq("status", "scheduled")
            .lte("scheduled_at", ensure_utc(now).isoformat())
            .order("scheduled_at", desc=False)
            .limit(limit)
            .execute()
        )
        return result.data

    async def count_published_between(
        self, site_id: str, start: datetime, end: datetime
    ) -> int:
        """Count a site's items published in ``[start, end)``."""
        validate_not_empty(site_id, "site_id")

        result = await (
            self.client.table("items")
            .select("id", count="exact")
            .eq("site_id", site_id)
            .eq("status", "published")
            .gte("published_at", ensure_utc(start).isoformat())
            .lt("published_at", ensure_utc(end).isoformat())
            .execute()
        )
        return result.count or 0

    async def get_item_status_counts(self, site_id: str) -> Dict[str, int]:
        """Count a site's items per status."""
        validate_not_empty(site_id, "site_id")

        counts: Dict[str, int] = {}
        for status in ITEM_STATUSES:
            result = await (
                self.client.table("items")
                .select("id", count="exact")
                .eq("site_id", site_id)
                .eq("status", status)
                .execute()
            )
            counts[status] = result.count or 0
        return counts

    async def get_stale_processing_items(self, cutoff: datetime) -> List[Dict[str, Any]]:
        """Get items that entered ``processing`` at or before *cutoff*."""
        result = await (
            self.client.table("items")
            .select("*")
            .eq("status", "processing")
            .lte("claimed_at", ensure_utc(cutoff).isoformat())
            .execute()
        )
        return result.data

    # -----------------------------------------------------------------
    # GENERATION REQUESTS (queue owned by the generation collaborator)
    # -----------------------------------------------------------------

    async def get_pending_generation_requests(self, limit: int = 5) -> List[Dict[str, Any]]:
        """Get the oldest pending generation requests."""
        validate_positive(limit, "limit")

        result = await (
            self.client.table("generation_requests")
            .select("*")
            .eq("status", "pending")
            .order("created_at", desc=False)
            .limit(limit)
            .execute()
        )
        return result.data

    async def claim_generation_request(self, request_id: str) -> bool:
        """Atomically move a request from ``pending`` to ``processing``.

        Returns:
            ``True`` if the claim succeeded, ``False`` if another worker
            got there first.
        """
        validate_not_empty(request_id, "request_id")

        result = await (
            self.client.table("generation_requests")
            .update({"status": "processing", "updated_at": utc_now().isoformat()})
            .eq("id", request_id)
            .eq("status", "pending")
            .execute()
        )
        return bool(result.data)

    async def update_generation_request(self, request_id: str, fields: Dict[str, Any]) -> None:
        """Update a generation request."""
        validate_not_empty(request_id, "request_id")

        await (
            self.client.table("generation_requests")
            .update(serialize_fields({**fields, "updated_at": utc_now()}))
            .eq("id", request_id)
            .execute()
        )

    async def delete_generation_requests_before(
        self, cutoff: datetime, statuses: Sequence[str] = ("completed", "failed")
    ) -> int:
        """Delete finished generation requests last touched before *cutoff*.

        Returns:
            Number of rows removed.
        """
        result = await (
            self.client.table("generation_requests")
            .delete()
            .in_("status", list(statuses))
            .lt("updated_at", ensure_utc(cutoff).isoformat())
            .execute()
        )
        return len(result.data) if result.data else 0

    # -----------------------------------------------------------------
    # ACTIVITY LOGS
    # -----------------------------------------------------------------

    async def save_activity_log(self, log_entry: Dict[str, Any]) -> str:
        """Save a structured log entry to ``activity_logs``.

        Raises:
            ValidationError: If the entry has no ``component`` or ``message``.
            DatabaseError: When the insert returns no data.
        """
        if not log_entry:
            raise ValidationError("log_entry cannot be None or empty")
        for key in ("component", "message"):
            if key not in log_entry:
                raise ValidationError(f"log_entry must have {key}")

        result = await (
            self.client.table("activity_logs")
            .insert(log_entry)
            .execute()
        )
        if not result.data:
            raise DatabaseError("Insert succeeded but returned no data")
        return result.data[0]["id"]


# =============================================================================
# GLOBAL DATABASE INSTANCE (Singleton)
# =============================================================================

_db_instance: Optional[SupabaseDB] = None
_db_lock: Optional[asyncio.Lock] = None

# Guards creation of the async lock itself.
_init_lock = threading.Lock()


async def get_db() -> SupabaseDB:
    """Shared :class:`SupabaseDB`, connected on first use.

    Concurrent first calls wait on one lock and get the same instance.
    """
    global _db_instance, _db_lock

    if _db_lock is None:
        with _init_lock:
            if _db_lock is None:
                _db_lock = asyncio.Lock()

    if _db_instance is None:
        async with _db_lock:
            if _db_instance is None:
                _db_instance = await SupabaseDB.create()
                logger.info("[DATABASE] Supabase client initialised")

    return _db_instance


__all__ = [
    "SupabaseConfig",
    "SupabaseDB",
    "get_db",
    "serialize_fields",
    "validate_not_empty",
    "validate_positive",
    "ITEM_STATUSES",
]
