"""
Schedule store: one recurrence configuration per managed site.

``ScheduleStore`` validates caller requests, derives the recurrence
expression through :mod:`autopost.scheduling.recurrence`, and persists
schedules through the ``db`` parameter (a
:class:`~autopost.database.SupabaseDB` instance).

Rules enforced here:
    - At most one *active* schedule per site (``ConflictError``).
    - Every read and write is scoped by site; a schedule of another site
      is reported as ``NotFoundError``.
    - The expression is regenerated on update when cadence or time fields
      change and no explicit expression is supplied.
"""

import logging
from datetime import date, datetime
from typing import Any, Callable, Dict, List, Optional

from autopost.config import Settings, get_settings
from autopost.exceptions import ConflictError, NotFoundError, ValidationError
from autopost.scheduling.models import (
    Frequency,
    Schedule,
    ScheduleConfig,
    SchedulePatch,
    TimeSlot,
    UpcomingSchedule,
)
from autopost.scheduling.recurrence import (
    build_expression,
    coerce_enum,
    next_occurrences,
    parse_expression,
    parse_time_of_day,
    preview,
    resolve_timezone,
)
from autopost.utils import generate_id, parse_timestamp, utc_now

logger = logging.getLogger(__name__)

MONTHLY_POSTS_RANGE = (1, 500)

# How many occurrences a schedule view carries.
VIEW_OCCURRENCES = 5


class ScheduleStore:
    """Creates, reads, updates, toggles and deletes posting schedules.

    Args:
        db: Database client (:class:`~autopost.database.SupabaseDB`).
        settings: Application settings; defaults to :func:`get_settings`.
    """

    def __init__(self, db: "SupabaseDB", settings: Optional[Settings] = None) -> None:  # noqa: F821
        self.db = db
        self.settings = settings or get_settings()

    # ================================================================
    # CREATE
    # ================================================================

    async def create(self, site_id: str, config: ScheduleConfig) -> Schedule:
        """Create a schedule for *site_id*.

        Raises:
            NotFoundError: If the site does not exist.
            ValidationError: On an invalid cadence, time, timezone, cap, or
                recurrence expression.
            ConflictError: If the new schedule is active and the site
                already has an active schedule.
        """
        await self._require_site(site_id)

        frequency = coerce_enum(Frequency, config.frequency, "frequency")
        time_slot = coerce_enum(TimeSlot, config.time_slot, "time_slot")
        timezone = config.timezone or self.settings.default_timezone
        resolve_timezone(timezone)
        limit = (
            config.max_monthly_posts
            if config.max_monthly_posts is not None
            else self.settings.default_monthly_limit
        )
        _validate_monthly_posts(limit)
        if config.specific_time is not None:
            parse_time_of_day(config.specific_time)

        expression = self._resolve_expression(
            frequency,
            time_slot,
            config.specific_time,
            config.cron_expression,
        )

        if config.is_active and await self.db.get_active_schedule(site_id):
            raise ConflictError(f"Site {site_id} already has an active schedule")

        now = utc_now()
        row = await self.db.insert_schedule({
            "id": generate_id(),
            "site_id": site_id,
            "frequency": frequency,
            "time_slot": time_slot,
            "specific_time": config.specific_time,
            "timezone": timezone,
            "skip_holidays": config.skip_holidays,
            "max_monthly_posts": limit,
            "cron_expression": expression,
            "is_active": config.is_active,
            "created_at": now,
            "updated_at": now,
        })

        schedule = self._with_occurrences(self._row_to_schedule(row))
        logger.info(
            "[SCHEDULES] Created schedule %s for site %s (%s, active=%s)",
            schedule.id,
            site_id,
            expression,
            schedule.is_active,
        )
        return schedule

    # ================================================================
    # READ
    # ================================================================

    async def list(self, site_id: str) -> List[Schedule]:
        """List every schedule of a site, newest first."""
        await self._require_site(site_id)
        rows = await self.db.get_schedules(site_id)
        return [self._with_occurrences(self._row_to_schedule(row)) for row in rows]

    async def get(self, schedule_id: str, site_id: str) -> Schedule:
        """Get one schedule.

        Raises:
            NotFoundError: If the schedule does not exist for this site.
        """
        return self._with_occurrences(await self._require_schedule(schedule_id, site_id))

    async def get_active(self, site_id: str) -> Optional[Schedule]:
        """Return the site's active schedule, or ``None``."""
        row = await self.db.get_active_schedule(site_id)
        return self._row_to_schedule(row) if row else None

    # ================================================================
    # UPDATE
    # ================================================================

    async def update(self, schedule_id: str, site_id: str, patch: SchedulePatch) -> Schedule:
        """Apply a partial update.

        Only fields set on *patch* change.  When cadence or time fields
        change and ``patch.cron_expression`` is not given, the expression
        is rebuilt from the merged cadence.

        Raises:
            NotFoundError: Unknown schedule for this site.
            ValidationError: Invalid field values.
            ConflictError: Activating while another schedule is active.
        """
        current = await self._require_schedule(schedule_id, site_id)
        if patch.is_empty():
            return self._with_occurrences(current)

        changes: Dict[str, Any] = {}

        if patch.timezone is not None:
            resolve_timezone(patch.timezone)
            changes["timezone"] = patch.timezone
        if patch.max_monthly_posts is not None:
            _validate_monthly_posts(patch.max_monthly_posts)
            changes["max_monthly_posts"] = patch.max_monthly_posts
        if patch.skip_holidays is not None:
            changes["skip_holidays"] = patch.skip_holidays
        if patch.specific_time is not None:
            parse_time_of_day(patch.specific_time)
            changes["specific_time"] = patch.specific_time
        if patch.frequency is not None:
            changes["frequency"] = coerce_enum(Frequency, patch.frequency, "frequency")
        if patch.time_slot is not None:
            changes["time_slot"] = coerce_enum(TimeSlot, patch.time_slot, "time_slot")

        if patch.cron_expression is not None:
            parse_expression(patch.cron_expression)
            changes["cron_expression"] = patch.cron_expression.strip()
        elif patch.changes_timing:
            frequency = changes.get("frequency", current.frequency)
            changes["cron_expression"] = self._resolve_expression(
                frequency,
                changes.get("time_slot", current.time_slot),
                patch.specific_time or current.specific_time,
                current.cron_expression if frequency is Frequency.CUSTOM else None,
            )

        if patch.is_active is not None:
            if patch.is_active and not current.is_active:
                await self._ensure_no_other_active(site_id, schedule_id)
            changes["is_active"] = patch.is_active

        row = await self.db.update_schedule(schedule_id, site_id, changes)
        if row is None:
            raise NotFoundError("Schedule", schedule_id)

        schedule = self._with_occurrences(self._row_to_schedule(row))
        logger.info(
            "[SCHEDULES] Updated schedule %s (fields=%s)",
            schedule_id,
            sorted(changes),
        )
        return schedule

    async def toggle(self, schedule_id: str, site_id: str, active: bool) -> Schedule:
        """Set the active flag without touching any other field.

        Raises:
            NotFoundError: Unknown schedule for this site.
            ConflictError: Activating while another schedule is active.
        """
        current = await self._require_schedule(schedule_id, site_id)
        if active and not current.is_active:
            await self._ensure_no_other_active(site_id, schedule_id)

        row = await self.db.update_schedule(schedule_id, site_id, {"is_active": active})
        if row is None:
            raise NotFoundError("Schedule", schedule_id)

        logger.info(
            "[SCHEDULES] Schedule %s %s",
            schedule_id,
            "activated" if active else "deactivated",
        )
        return self._with_occurrences(self._row_to_schedule(row))

    # ================================================================
    # DELETE
    # ================================================================

    async def delete(self, schedule_id: str, site_id: str) -> None:
        """Delete a schedule.  Items already published are untouched.

        Raises:
            NotFoundError: Unknown schedule for this site.
        """
        deleted = await self.db.delete_schedule(schedule_id, site_id)
        if not deleted:
            raise NotFoundError("Schedule", schedule_id)
        logger.info("[SCHEDULES] Deleted schedule %s of site %s", schedule_id, site_id)

    # ================================================================
    # OCCURRENCES
    # ================================================================

    def preview(
        self, expression: str, count: int = 5, timezone: Optional[str] = None
    ) -> List[datetime]:
        """Validate an arbitrary expression and return its next occurrences.

        Raises:
            ValidationError: Bad count or timezone.
            RecurrenceSyntaxError: Malformed expression.
        """
        return preview(
            expression,
            count=count,
            timezone=timezone or self.settings.default_timezone,
            max_count=self.settings.max_preview_occurrences,
        )

    def next_occurrences(
        self, schedule: Schedule, count: int, after: Optional[datetime] = None
    ) -> List[datetime]:
        """Upcoming occurrences of *schedule*, honouring ``skip_holidays``."""
        if not schedule.cron_expression:
            return []
        return next_occurrences(
            schedule.cron_expression,
            count,
            timezone=schedule.timezone,
            after=after,
            skip_day=self._skip_day(schedule),
        )

    async def upcoming(self, limit: int = 10) -> List[UpcomingSchedule]:
        """Active schedules of publishable sites, soonest first."""
        if limit <= 0:
            raise ValidationError(f"limit must be positive, got {limit}")

        sites = await self.db.get_publishable_sites()
        names = {site["id"]: site.get("name", "") for site in sites}
        rows = await self.db.get_active_schedules(list(names))

        upcoming: List[UpcomingSchedule] = []
        for row in rows:
            schedule = self._row_to_schedule(row)
            occurrences = self.next_occurrences(schedule, 1)
            upcoming.append(UpcomingSchedule(
                schedule=schedule,
                site_name=names.get(schedule.site_id, ""),
                next_execution=occurrences[0] if occurrences else None,
            ))

        upcoming.sort(key=lambda u: (u.next_execution is None, u.next_execution or utc_now()))
        return upcoming[:limit]

    # ================================================================
    # INTERNAL HELPERS
    # ================================================================

    @staticmethod
    def _resolve_expression(
        frequency: Frequency,
        time_slot: TimeSlot,
        specific_time: Optional[str],
        cron_expression: Optional[str],
    ) -> str:
        if cron_expression:
            parse_expression(cron_expression)
            return cron_expression.strip()
        return build_expression(frequency, time_slot, specific_time)

    def _skip_day(self, schedule: Schedule) -> Optional[Callable[[date], bool]]:
        if schedule.skip_holidays and self.settings.holidays:
            return self.settings.is_holiday
        return None

    def _with_occurrences(self, schedule: Schedule) -> Schedule:
        if schedule.is_active and schedule.cron_expression:
            schedule.next_executions = self.next_occurrences(schedule, VIEW_OCCURRENCES)
        return schedule

    async def _require_site(self, site_id: str) -> Dict[str, Any]:
        site = await self.db.get_site(site_id)
        if site is None:
            raise NotFoundError("Site", site_id)
        return site

    async def _require_schedule(self, schedule_id: str, site_id: str) -> Schedule:
        row = await self.db.get_schedule(schedule_id, site_id)
        if row is None:
            raise NotFoundError("Schedule", schedule_id)
        return self._row_to_schedule(row)

    async def _ensure_no_other_active(self, site_id: str, schedule_id: str) -> None:
        if await self.db.get_active_schedule(site_id, exclude_id=schedule_id):
            raise ConflictError(f"Site {site_id} already has an active schedule")

    def _row_to_schedule(self, row: Dict[str, Any]) -> Schedule:
        """Convert a database row dict to a ``Schedule`` dataclass.

        Missing timezone and cap fall back to the settings defaults, as in
        :class:`~autopost.scheduling.limit_guard.LimitGuard`.
        """
        return Schedule(
            id=row["id"],
            site_id=row["site_id"],
            frequency=Frequency(row["frequency"]),
            time_slot=TimeSlot(row.get("time_slot") or TimeSlot.MORNING.value),
            timezone=row.get("timezone") or self.settings.default_timezone,
            cron_expression=row.get("cron_expression"),
            specific_time=row.get("specific_time"),
            skip_holidays=bool(row.get("skip_holidays", True)),
            max_monthly_posts=int(row.get("max_monthly_posts") or self.settings.default_monthly_limit),
            is_active=bool(row.get("is_active", True)),
            created_at=parse_timestamp(row.get("created_at")) or utc_now(),
            updated_at=parse_timestamp(row.get("updated_at")) or utc_now(),
        )


def _validate_monthly_posts(value: int) -> None:
    low, high = MONTHLY_POSTS_RANGE
    if not isinstance(value, int) or isinstance(value, bool) or not low <= value <= high:
        raise ValidationError(
            f"max_monthly_posts must be between {low} and {high}, got {value!r}"
        )


__all__ = [
    "ScheduleStore",
    "MONTHLY_POSTS_RANGE",
]
