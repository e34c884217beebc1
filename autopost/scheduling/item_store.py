"""
Item persistence and lifecycle transitions.

``ItemStore`` owns every write to the ``items`` table.  Status changes go
through :func:`~autopost.scheduling.lifecycle.ensure_transition` and are
persisted with a conditional update on the expected current status, so a
transition that lost a race is reported instead of silently overwriting.

All database interactions go through the ``db`` parameter (a
:class:`~autopost.database.SupabaseDB` instance).
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from autopost.exceptions import InvalidTransitionError, NotFoundError, ValidationError
from autopost.scheduling.lifecycle import ensure_transition
from autopost.scheduling.models import (
    Item,
    ItemPage,
    ItemPatch,
    ItemStatus,
    NewItem,
    StatusCounts,
)
from autopost.scheduling.recurrence import coerce_enum
from autopost.utils import ensure_utc, generate_id, parse_timestamp, utc_now

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 100


class ItemStore:
    """Creates, reads, edits and transitions content items.

    Args:
        db: Database client (:class:`~autopost.database.SupabaseDB`).
        schedules: Schedule store used by :meth:`schedule_next`.
    """

    def __init__(
        self,
        db: "SupabaseDB",  # noqa: F821
        schedules: Optional["ScheduleStore"] = None,  # noqa: F821
    ) -> None:
        self.db = db
        self.schedules = schedules

    # ================================================================
    # CRUD
    # ================================================================

    async def create(
        self, site_id: str, new_item: NewItem, now: Optional[datetime] = None
    ) -> Item:
        """Create an item.

        With ``scheduled_at`` the item starts ``scheduled`` (the timestamp
        must be strictly in the future), otherwise ``draft``.

        Raises:
            NotFoundError: If the site does not exist.
            ValidationError: Blank title or a non-future ``scheduled_at``.
        """
        if await self.db.get_site(site_id) is None:
            raise NotFoundError("Site", site_id)
        if not new_item.title or not new_item.title.strip():
            raise ValidationError("title cannot be empty")

        status = ItemStatus.DRAFT
        scheduled_at = None
        if new_item.scheduled_at is not None:
            scheduled_at = _require_future(new_item.scheduled_at, now)
            status = ItemStatus.SCHEDULED

        created = utc_now()
        row = await self.db.insert_item({
            "id": generate_id(),
            "site_id": site_id,
            "title": new_item.title.strip(),
            "content": new_item.content,
            "status": status,
            "scheduled_at": scheduled_at,
            "template_id": new_item.template_id,
            "topic_id": new_item.topic_id,
            "generation_request_id": new_item.generation_request_id,
            "summary": new_item.summary,
            "tags": list(new_item.tags),
            "created_at": created,
            "updated_at": created,
        })
        item = self._row_to_item(row)
        logger.info(
            "[ITEMS] Created item %s for site %s (status=%s)",
            item.id,
            site_id,
            item.status.value,
        )
        return item

    async def get(self, item_id: str, site_id: str) -> Item:
        """Get one item.

        Raises:
            NotFoundError: If the item does not exist for this site.
        """
        row = await self.db.get_item(item_id, site_id)
        if row is None:
            raise NotFoundError("Item", item_id)
        return self._row_to_item(row)

    async def list(
        self,
        site_id: str,
        status: Optional[ItemStatus] = None,
        page: int = 1,
        limit: int = 20,
    ) -> ItemPage:
        """One page of a site's items, newest first.

        Raises:
            ValidationError: ``page < 1`` or ``limit`` outside ``1..100``.
        """
        if page < 1:
            raise ValidationError(f"page must be >= 1, got {page}")
        if not 1 <= limit <= MAX_PAGE_SIZE:
            raise ValidationError(f"limit must be between 1 and {MAX_PAGE_SIZE}, got {limit}")

        rows, total = await self.db.get_items(
            site_id,
            status=coerce_enum(ItemStatus, status, "status").value if status else None,
            page=page,
            limit=limit,
        )
        return ItemPage(
            items=[self._row_to_item(row) for row in rows],
            total=total,
            page=page,
            limit=limit,
        )

    async def update(self, item_id: str, site_id: str, patch: ItemPatch) -> Item:
        """Edit an item's title, content or metadata.

        Raises:
            NotFoundError: Unknown item for this site.
            ValidationError: Blank title, or the item is being published.
        """
        current = await self.get(item_id, site_id)
        fields = patch.to_fields()
        if not fields:
            return current
        if "title" in fields:
            if not fields["title"].strip():
                raise ValidationError("title cannot be empty")
            fields["title"] = fields["title"].strip()
        if current.status is ItemStatus.PROCESSING:
            raise ValidationError("Item is being published and cannot be edited")

        row = await self.db.update_item(item_id, site_id, fields)
        if row is None:
            raise NotFoundError("Item", item_id)
        logger.info("[ITEMS] Updated item %s (fields=%s)", item_id, sorted(fields))
        return self._row_to_item(row)

    async def delete(self, item_id: str, site_id: str) -> None:
        """Delete the local row.  Remote cleanup is the executor's job.

        Raises:
            NotFoundError: Unknown item for this site.
        """
        if not await self.db.delete_item(item_id, site_id):
            raise NotFoundError("Item", item_id)
        logger.info("[ITEMS] Deleted item %s of site %s", item_id, site_id)

    async def status_counts(self, site_id: str) -> StatusCounts:
        """Total and per-status counts for a site."""
        counts = await self.db.get_item_status_counts(site_id)
        return StatusCounts(
            total=sum(counts.values()),
            **{status.value: counts.get(status.value, 0) for status in ItemStatus},
        )

    # ================================================================
    # CALLER-INITIATED TRANSITIONS
    # ================================================================

    async def schedule(
        self,
        item_id: str,
        site_id: str,
        scheduled_at: datetime,
        now: Optional[datetime] = None,
    ) -> Item:
        """``draft -> scheduled`` at a strictly future time.

        Raises:
            ValidationError: *scheduled_at* is not after *now*.
            InvalidTransitionError: The item is not a draft.
        """
        when = _require_future(scheduled_at, now)
        item = await self._transition(
            item_id, site_id, ItemStatus.SCHEDULED, {"scheduled_at": when}
        )
        logger.info("[ITEMS] Scheduled item %s for %s", item_id, when.isoformat())
        return item

    async def schedule_next(
        self, item_id: str, site_id: str, now: Optional[datetime] = None
    ) -> Item:
        """Schedule a draft at the next occurrence of the site's active schedule.

        Raises:
            ValidationError: The site has no active schedule, or its
                expression yields no further occurrence.
            InvalidTransitionError: The item is not a draft.
        """
        if self.schedules is None:
            raise ValidationError("No schedule store configured")
        schedule = await self.schedules.get_active(site_id)
        if schedule is None:
            raise ValidationError(f"Site {site_id} has no active schedule")

        occurrences = self.schedules.next_occurrences(schedule, 1, after=now or utc_now())
        if not occurrences:
            raise ValidationError(
                f"Schedule {schedule.id} has no upcoming occurrence"
            )
        return await self.schedule(item_id, site_id, occurrences[0], now=now)

    async def retry(self, item_id: str, site_id: str) -> Item:
        """``failed -> draft``, clearing the error and any schedule.

        Raises:
            InvalidTransitionError: The item is not ``failed``.
        """
        item = await self._transition(
            item_id,
            site_id,
            ItemStatus.DRAFT,
            {"error_message": None, "scheduled_at": None, "claimed_at": None},
        )
        logger.info("[ITEMS] Item %s reset to draft for retry", item_id)
        return item

    # ================================================================
    # EXECUTOR TRANSITIONS
    # ================================================================

    async def claim(
        self, item: Item, now: Optional[datetime] = None
    ) -> Optional[Item]:
        """Move *item* to ``processing`` if it is still in its known status.

        Returns:
            The claimed item, or ``None`` when another worker moved it first.

        Raises:
            InvalidTransitionError: *item*'s status cannot be published.
        """
        ensure_transition(item.status, ItemStatus.PROCESSING)
        row = await self.db.transition_item(
            item.id,
            item.site_id,
            [item.status.value],
            {"status": ItemStatus.PROCESSING, "claimed_at": now or utc_now()},
        )
        if row is None:
            logger.debug("[ITEMS] Item %s already claimed, skipping", item.id)
            return None
        return self._row_to_item(row)

    async def mark_published(
        self, item: Item, external_id: int, published_at: Optional[datetime] = None
    ) -> Item:
        """``processing -> published`` with the remote identifier."""
        return await self._transition(
            item.id,
            item.site_id,
            ItemStatus.PUBLISHED,
            {
                "external_id": external_id,
                "published_at": published_at or utc_now(),
                "error_message": None,
                "scheduled_at": None,
            },
            expected=ItemStatus.PROCESSING,
        )

    async def mark_failed(self, item: Item, error_message: str) -> Item:
        """``processing -> failed`` with a non-empty error description."""
        return await self._transition(
            item.id,
            item.site_id,
            ItemStatus.FAILED,
            {
                "error_message": error_message or "Unknown publish error",
                "scheduled_at": None,
            },
            expected=ItemStatus.PROCESSING,
        )

    async def defer(self, item: Item, until: datetime) -> Optional[Item]:
        """Move a still-``scheduled`` item's due time to *until*."""
        row = await self.db.transition_item(
            item.id,
            item.site_id,
            [ItemStatus.SCHEDULED.value],
            {"scheduled_at": until},
        )
        return self._row_to_item(row) if row else None

    async def reap_stuck(
        self, stuck_minutes: int, now: Optional[datetime] = None
    ) -> int:
        """Fail items that have sat in ``processing`` for too long.

        Returns:
            Number of items marked ``failed``.
        """
        cutoff = (now or utc_now()) - timedelta(minutes=stuck_minutes)
        rows = await self.db.get_stale_processing_items(cutoff)

        reaped = 0
        for row in rows:
            failed = await self.db.transition_item(
                row["id"],
                row["site_id"],
                [ItemStatus.PROCESSING.value],
                {
                    "status": ItemStatus.FAILED,
                    "error_message": (
                        f"Publishing stuck for >{stuck_minutes} minutes. "
                        "Marked as failed by recovery process."
                    ),
                    "scheduled_at": None,
                },
            )
            if failed is None:
                continue
            reaped += 1
            logger.warning(
                "[ITEMS] Recovered stuck item %s (was in processing for >%d min)",
                row["id"],
                stuck_minutes,
            )

        if reaped:
            logger.info("[ITEMS] Recovery complete: %d stuck items marked as failed", reaped)
        return reaped

    # ================================================================
    # INTERNAL HELPERS
    # ================================================================

    async def _transition(
        self,
        item_id: str,
        site_id: str,
        target: ItemStatus,
        fields: Dict[str, Any],
        expected: Optional[ItemStatus] = None,
    ) -> Item:
        if expected is None:
            expected = (await self.get(item_id, site_id)).status
        ensure_transition(expected, target)

        row = await self.db.transition_item(
            item_id, site_id, [expected.value], {**fields, "status": target}
        )
        if row is None:
            latest = await self.db.get_item(item_id, site_id)
            if latest is None:
                raise NotFoundError("Item", item_id)
            raise InvalidTransitionError(latest["status"], target.value)
        return self._row_to_item(row)

    @staticmethod
    def _row_to_item(row: Dict[str, Any]) -> Item:
        """Convert a database row dict to an ``Item`` dataclass."""
        external_id = row.get("external_id")
        return Item(
            id=row["id"],
            site_id=row["site_id"],
            title=row.get("title") or "",
            content=row.get("content"),
            status=ItemStatus(row.get("status") or ItemStatus.DRAFT.value),
            scheduled_at=parse_timestamp(row.get("scheduled_at")),
            published_at=parse_timestamp(row.get("published_at")),
            external_id=int(external_id) if external_id is not None else None,
            error_message=row.get("error_message"),
            template_id=row.get("template_id"),
            topic_id=row.get("topic_id"),
            generation_request_id=row.get("generation_request_id"),
            summary=row.get("summary"),
            tags=list(row.get("tags") or []),
            created_at=parse_timestamp(row.get("created_at")) or utc_now(),
            updated_at=parse_timestamp(row.get("updated_at")) or utc_now(),
        )


def _require_future(when: datetime, now: Optional[datetime] = None) -> datetime:
    when = ensure_utc(when)
    reference = ensure_utc(now) if now else utc_now()
    if when <= reference:
        raise ValidationError(
            f"scheduled_at must be in the future (got {when.isoformat()}, "
            f"now {reference.isoformat()})"
        )
    return when


__all__ = [
    "ItemStore",
    "MAX_PAGE_SIZE",
]
