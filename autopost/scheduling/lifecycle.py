"""Item lifecycle state machine.

    draft ──► scheduled ──► processing ──► published
      │                        ▲    │
      └────────────────────────┘    └──► failed ──► draft (retry)

Every path to ``published`` passes through ``processing``.  Persisted
transitions live in :mod:`autopost.scheduling.item_store`; this module is
only the table and its checks.
"""

from typing import Dict, FrozenSet

from autopost.exceptions import InvalidTransitionError
from autopost.scheduling.models import ItemStatus

TRANSITIONS: Dict[ItemStatus, FrozenSet[ItemStatus]] = {
    ItemStatus.DRAFT: frozenset({ItemStatus.SCHEDULED, ItemStatus.PROCESSING}),
    ItemStatus.SCHEDULED: frozenset({ItemStatus.PROCESSING}),
    ItemStatus.PROCESSING: frozenset({ItemStatus.PUBLISHED, ItemStatus.FAILED}),
    ItemStatus.PUBLISHED: frozenset(),
    ItemStatus.FAILED: frozenset({ItemStatus.DRAFT}),
}

_HINTS: Dict[ItemStatus, str] = {
    ItemStatus.SCHEDULED: "only draft items can be scheduled",
    ItemStatus.DRAFT: "only failed items can be retried",
    ItemStatus.PROCESSING: "only draft or scheduled items can be published",
}


def can_transition(current: ItemStatus, target: ItemStatus) -> bool:
    return target in TRANSITIONS[current]


def ensure_transition(current: ItemStatus, target: ItemStatus) -> None:
    """Raise ``InvalidTransitionError`` unless ``current -> target`` is allowed."""
    if can_transition(current, target):
        return
    message = f"Cannot move item from '{current.value}' to '{target.value}'"
    hint = _HINTS.get(target)
    if hint:
        message = f"{message}: {hint}"
    raise InvalidTransitionError(current.value, target.value, message)


__all__ = [
    "TRANSITIONS",
    "can_transition",
    "ensure_transition",
]
