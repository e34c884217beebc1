"""
Monthly publish cap for a site.

The month is the calendar month in the timezone of the site's active
schedule (the configured default when the site has none).  The check is
advisory: it is read immediately before each publish attempt and nothing
is reserved, so two concurrent publishes can both pass at ``limit - 1``.
"""

import logging
from datetime import datetime, timedelta
from typing import Optional, Tuple

from autopost.config import Settings, get_settings
from autopost.exceptions import MonthlyLimitExceededError, NotFoundError
from autopost.scheduling.models import MonthlyLimit
from autopost.scheduling.recurrence import resolve_timezone
from autopost.utils import ensure_utc, utc_now

logger = logging.getLogger(__name__)


def month_bounds(now: datetime, timezone: str) -> Tuple[datetime, datetime]:
    """Return ``(start, end)`` of the calendar month containing *now*.

    Both bounds are local midnights in *timezone*, returned as UTC.
    """
    zone = resolve_timezone(timezone)
    local = ensure_utc(now).astimezone(zone)
    start = datetime(local.year, local.month, 1, tzinfo=zone)
    # Day 28 + 4 days always lands in the next month.
    following = (start.replace(day=28) + timedelta(days=4)).replace(day=1)
    end = datetime(following.year, following.month, 1, tzinfo=zone)
    return ensure_utc(start), ensure_utc(end)


class LimitGuard:
    """Compares a site's published count this month against its cap.

    Args:
        db: Database client (:class:`~autopost.database.SupabaseDB`).
        settings: Application settings; defaults to :func:`get_settings`.
    """

    def __init__(self, db: "SupabaseDB", settings: Optional[Settings] = None) -> None:  # noqa: F821
        self.db = db
        self.settings = settings or get_settings()

    async def check_monthly_limit(
        self, site_id: str, now: Optional[datetime] = None
    ) -> MonthlyLimit:
        """Snapshot of the site's usage for the current month.

        Raises:
            NotFoundError: If the site does not exist.
        """
        if await self.db.get_site(site_id) is None:
            raise NotFoundError("Site", site_id)

        schedule = await self.db.get_active_schedule(site_id)
        timezone = self.settings.default_timezone
        limit = self.settings.default_monthly_limit
        if schedule:
            timezone = schedule.get("timezone") or timezone
            limit = schedule.get("max_monthly_posts") or limit

        start, end = month_bounds(now or utc_now(), timezone)
        count = await self.db.count_published_between(site_id, start, end)

        snapshot = MonthlyLimit(
            current_count=count,
            limit=limit,
            can_post=count < limit,
            period_start=start,
            period_end=end,
        )
        logger.debug(
            "[LIMIT] Site %s: %d/%d published this month (can_post=%s)",
            site_id,
            count,
            limit,
            snapshot.can_post,
        )
        return snapshot

    async def ensure_can_post(
        self, site_id: str, now: Optional[datetime] = None
    ) -> MonthlyLimit:
        """Like :meth:`check_monthly_limit` but raise when the cap is reached.

        Raises:
            MonthlyLimitExceededError: If ``can_post`` is false.
        """
        snapshot = await self.check_monthly_limit(site_id, now)
        if not snapshot.can_post:
            logger.warning(
                "[LIMIT] Site %s reached its monthly limit (%d/%d)",
                site_id,
                snapshot.current_count,
                snapshot.limit,
            )
            raise MonthlyLimitExceededError(
                snapshot.current_count, snapshot.limit, snapshot.period_end
            )
        return snapshot


__all__ = [
    "LimitGuard",
    "month_bounds",
]
