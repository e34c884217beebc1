"""Tests for the scheduling data models.

Validates:
- Enum values used in database rows
- Patch helpers (changes_timing, is_empty, to_fields)
- Derived properties on Site, Item and ItemPage
"""

import pytest

from autopost.scheduling.models import (
    ConnectionStatus,
    Frequency,
    Item,
    ItemPage,
    ItemPatch,
    ItemStatus,
    SchedulePatch,
    Site,
    StatusCounts,
    TimeSlot,
)


class TestEnums:
    def test_frequency_values(self):
        assert {f.value for f in Frequency} == {
            "daily", "weekly_3", "weekly_2", "weekly_1", "monthly_2", "custom",
        }

    def test_time_slot_values(self):
        assert {s.value for s in TimeSlot} == {
            "morning", "afternoon", "evening", "night", "specific",
        }

    def test_item_status_values(self):
        assert [s.value for s in ItemStatus] == [
            "draft", "scheduled", "processing", "published", "failed",
        ]


class TestSchedulePatch:
    def test_empty(self):
        assert SchedulePatch().is_empty()
        assert not SchedulePatch(is_active=False).is_empty()

    @pytest.mark.parametrize(
        "patch, expected",
        [
            (SchedulePatch(frequency=Frequency.DAILY), True),
            (SchedulePatch(time_slot=TimeSlot.NIGHT), True),
            (SchedulePatch(specific_time="08:00"), True),
            (SchedulePatch(timezone="UTC"), False),
            (SchedulePatch(max_monthly_posts=10, is_active=True), False),
        ],
    )
    def test_changes_timing(self, patch, expected):
        assert patch.changes_timing is expected


class TestItem:
    def test_has_content(self):
        assert Item(id="1", site_id="s", title="t", content="<p>x</p>").has_content
        assert not Item(id="1", site_id="s", title="t", content="  \n").has_content
        assert not Item(id="1", site_id="s", title="t").has_content

    def test_defaults(self):
        item = Item(id="1", site_id="s", title="t")
        assert item.status is ItemStatus.DRAFT
        assert item.tags == []
        assert item.created_at.tzinfo is not None

    def test_patch_fields_skip_unset(self):
        assert ItemPatch(title="New", tags=[]).to_fields() == {"title": "New", "tags": []}


class TestResults:
    @pytest.mark.parametrize("total, limit, pages", [(0, 20, 0), (20, 20, 1), (21, 20, 2)])
    def test_total_pages(self, total, limit, pages):
        assert ItemPage(items=[], total=total, page=1, limit=limit).total_pages == pages

    def test_status_counts_default_zero(self):
        counts = StatusCounts()
        assert counts.total == 0
        assert counts.failed == 0

    def test_site_publishable(self):
        site = Site(id="s", name="n", url="u", connection_status=ConnectionStatus.CONNECTED)
        assert site.is_publishable
        site.is_active = False
        assert not site.is_publishable
