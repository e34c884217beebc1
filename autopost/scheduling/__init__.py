"""Scheduling subsystem: recurrence, schedules, item lifecycle, publishing, sweeps."""

from autopost.scheduling.executor import PublicationExecutor
from autopost.scheduling.item_store import ItemStore
from autopost.scheduling.limit_guard import LimitGuard
from autopost.scheduling.models import (
    Frequency,
    Item,
    ItemPatch,
    ItemStatus,
    MonthlyLimit,
    NewItem,
    PublishResult,
    Schedule,
    ScheduleConfig,
    SchedulePatch,
    TimeSlot,
)
from autopost.scheduling.schedule_store import ScheduleStore
from autopost.scheduling.sweep import AlwaysLeader, SweepTrigger

__all__ = [
    "Frequency",
    "TimeSlot",
    "ItemStatus",
    "Schedule",
    "ScheduleConfig",
    "SchedulePatch",
    "Item",
    "NewItem",
    "ItemPatch",
    "MonthlyLimit",
    "PublishResult",
    "ScheduleStore",
    "ItemStore",
    "LimitGuard",
    "PublicationExecutor",
    "SweepTrigger",
    "AlwaysLeader",
]
