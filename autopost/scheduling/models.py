"""
Scheduling data models: cadence enums, Schedule, Item, and their patches.

Defines the core data structures used by the scheduling subsystem:
- ``Frequency`` / ``TimeSlot``: the cadence presets a caller picks from.
- ``ItemStatus``: Lifecycle status of a content item.
- ``Site`` / ``SiteCredentials``: the managed site as seen by this core.
- ``Schedule`` / ``ScheduleConfig`` / ``SchedulePatch``: recurrence config.
- ``Item`` / ``NewItem`` / ``ItemPatch``: the unit the pipeline publishes.
- ``MonthlyLimit``, ``PublishResult``, ``ItemPage``, ``StatusCounts``:
  results handed back to callers.
"""

from dataclasses import dataclass, field, fields
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from autopost.utils import utc_now


# =============================================================================
# ENUMS
# =============================================================================


class Frequency(Enum):
    """Named posting cadence."""

    DAILY = "daily"
    WEEKLY_3 = "weekly_3"  # Mon / Wed / Fri
    WEEKLY_2 = "weekly_2"  # Tue / Fri
    WEEKLY_1 = "weekly_1"  # Mon
    MONTHLY_2 = "monthly_2"  # 1st and 15th
    CUSTOM = "custom"


class TimeSlot(Enum):
    """Time-of-day slot for a cadence."""

    MORNING = "morning"
    AFTERNOON = "afternoon"
    EVENING = "evening"
    NIGHT = "night"
    SPECIFIC = "specific"


class ItemStatus(Enum):
    """Lifecycle status of a content item.

    Transitions:
        DRAFT -> SCHEDULED -> PROCESSING -> PUBLISHED
                                         -> FAILED -> DRAFT (retry)
        DRAFT -> PROCESSING (immediate publish)
    """

    DRAFT = "draft"
    SCHEDULED = "scheduled"
    PROCESSING = "processing"
    PUBLISHED = "published"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        """``PUBLISHED`` never moves again; ``FAILED`` only via retry."""
        return self in {ItemStatus.PUBLISHED, ItemStatus.FAILED}


class ConnectionStatus(Enum):
    CONNECTED = "connected"
    ERROR = "error"
    PENDING = "pending"
    UNKNOWN = "unknown"


class GenerationStatus(Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


# =============================================================================
# SITE
# =============================================================================


@dataclass
class Site:
    """A managed site.  Owned by the site-management layer, read here."""

    id: str
    name: str
    url: str
    is_active: bool = True
    connection_status: ConnectionStatus = ConnectionStatus.UNKNOWN
    category_id: Optional[int] = None

    @property
    def is_publishable(self) -> bool:
        return self.is_active and self.connection_status is ConnectionStatus.CONNECTED


@dataclass
class SiteCredentials:
    """Already-decrypted credentials for a site's content endpoint."""

    url: str
    username: str
    password: str


# =============================================================================
# SCHEDULE
# =============================================================================


@dataclass
class Schedule:
    """One recurrence configuration for a site.

    Attributes:
        cron_expression: Five-field recurrence expression, derived from
            ``frequency``/``time_slot`` unless ``frequency`` is CUSTOM.
        specific_time: ``HH:MM`` used when ``time_slot`` is SPECIFIC.
        max_monthly_posts: Monthly publish cap (1-500).
        next_executions: Upcoming occurrences, filled in for views only.
    """

    id: str
    site_id: str
    frequency: Frequency
    time_slot: TimeSlot
    timezone: str
    cron_expression: Optional[str]
    specific_time: Optional[str] = None
    skip_holidays: bool = True
    max_monthly_posts: int = 100
    is_active: bool = True
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)
    next_executions: List[datetime] = field(default_factory=list)


@dataclass
class ScheduleConfig:
    """Caller request to create a schedule."""

    frequency: Frequency
    time_slot: TimeSlot = TimeSlot.MORNING
    specific_time: Optional[str] = None
    timezone: Optional[str] = None
    skip_holidays: bool = True
    max_monthly_posts: Optional[int] = None
    cron_expression: Optional[str] = None
    is_active: bool = True


@dataclass
class SchedulePatch:
    """Partial update for a schedule.  ``None`` means "leave unchanged"."""

    frequency: Optional[Frequency] = None
    time_slot: Optional[TimeSlot] = None
    specific_time: Optional[str] = None
    timezone: Optional[str] = None
    skip_holidays: Optional[bool] = None
    max_monthly_posts: Optional[int] = None
    cron_expression: Optional[str] = None
    is_active: Optional[bool] = None

    @property
    def changes_timing(self) -> bool:
        """True when cadence or time-of-day fields are part of the patch."""
        return (
            self.frequency is not None
            or self.time_slot is not None
            or self.specific_time is not None
        )

    def is_empty(self) -> bool:
        return all(getattr(self, f.name) is None for f in fields(self))


# =============================================================================
# ITEM
# =============================================================================


@dataclass
class Item:
    """A content item moving through the publication lifecycle.

    Invariants:
        - ``scheduled_at`` is only set while SCHEDULED or PROCESSING.
        - PUBLISHED items carry ``external_id`` and ``published_at``.
        - FAILED items carry ``error_message``.
    """

    id: str
    site_id: str
    title: str
    content: Optional[str] = None
    status: ItemStatus = ItemStatus.DRAFT
    scheduled_at: Optional[datetime] = None
    published_at: Optional[datetime] = None
    external_id: Optional[int] = None
    error_message: Optional[str] = None

    # Origin
    template_id: Optional[str] = None
    topic_id: Optional[str] = None
    generation_request_id: Optional[str] = None

    # Metadata
    summary: Optional[str] = None
    tags: List[str] = field(default_factory=list)

    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    @property
    def has_content(self) -> bool:
        return bool(self.content and self.content.strip())


@dataclass
class NewItem:
    """Caller request to create an item.

    With ``scheduled_at`` the item starts SCHEDULED, otherwise DRAFT.
    """

    title: str
    content: Optional[str] = None
    scheduled_at: Optional[datetime] = None
    template_id: Optional[str] = None
    topic_id: Optional[str] = None
    generation_request_id: Optional[str] = None
    summary: Optional[str] = None
    tags: List[str] = field(default_factory=list)


@dataclass
class ItemPatch:
    """Partial update of an item's editable fields.

    Status and timestamps are not patchable; they only change through
    lifecycle operations.
    """

    title: Optional[str] = None
    content: Optional[str] = None
    template_id: Optional[str] = None
    topic_id: Optional[str] = None
    summary: Optional[str] = None
    tags: Optional[List[str]] = None

    def to_fields(self) -> Dict[str, Any]:
        return {
            f.name: getattr(self, f.name)
            for f in fields(self)
            if getattr(self, f.name) is not None
        }


# =============================================================================
# RESULTS
# =============================================================================


@dataclass
class MonthlyLimit:
    """Snapshot of a site's monthly publish usage."""

    current_count: int
    limit: int
    can_post: bool
    period_start: datetime
    period_end: datetime


@dataclass
class PublishResult:
    """Outcome of one publish attempt."""

    success: bool
    item: Optional[Item] = None
    error: Optional[str] = None


@dataclass
class ItemPage:
    items: List[Item]
    total: int
    page: int
    limit: int

    @property
    def total_pages(self) -> int:
        return (self.total + self.limit - 1) // self.limit if self.limit else 0


@dataclass
class StatusCounts:
    total: int = 0
    draft: int = 0
    scheduled: int = 0
    processing: int = 0
    published: int = 0
    failed: int = 0


@dataclass
class UpcomingSchedule:
    """An active schedule of a publishable site with its next run."""

    schedule: Schedule
    site_name: str
    next_execution: Optional[datetime]


# =============================================================================
# PUBLIC API
# =============================================================================

__all__ = [
    "Frequency",
    "TimeSlot",
    "ItemStatus",
    "ConnectionStatus",
    "GenerationStatus",
    "Site",
    "SiteCredentials",
    "Schedule",
    "ScheduleConfig",
    "SchedulePatch",
    "Item",
    "NewItem",
    "ItemPatch",
    "MonthlyLimit",
    "PublishResult",
    "ItemPage",
    "StatusCounts",
    "UpcomingSchedule",
]
