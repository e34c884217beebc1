"""Shared fixtures for the autopost test suite."""

import itertools
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Sequence, Set, Tuple
from unittest.mock import AsyncMock, MagicMock

import pytest

from autopost.config import Settings
from autopost.database import serialize_fields
from autopost.exceptions import ExternalPublishError
from autopost.scheduling.executor import PublicationExecutor
from autopost.scheduling.item_store import ItemStore
from autopost.scheduling.limit_guard import LimitGuard
from autopost.scheduling.schedule_store import ScheduleStore
from autopost.scheduling.sweep import SweepTrigger
from autopost.utils import generate_id, parse_timestamp, utc_now


# ---------------------------------------------------------------------------
# Ensure we don't hit real services during tests
# ---------------------------------------------------------------------------
@pytest.fixture(autouse=True)
def _block_env_keys(monkeypatch):
    """Clear credentials and overrides so tests never hit real services."""
    keys = [
        "SUPABASE_URL",
        "SUPABASE_SERVICE_KEY",
        "SWEEP_INTERVAL_SECONDS",
        "GENERATION_SWEEP_INTERVAL_SECONDS",
        "SWEEP_BATCH_SIZE",
        "PUBLISH_TIMEOUT_SECONDS",
        "DEFAULT_TIMEZONE",
        "LOG_LEVEL",
    ]
    for key in keys:
        monkeypatch.delenv(key, raising=False)


# ---------------------------------------------------------------------------
# Common datetime fixtures
# ---------------------------------------------------------------------------
@pytest.fixture
def sample_utc_now():
    """A fixed UTC datetime for deterministic tests (Sunday 2026-03-15)."""
    return datetime(2026, 3, 15, 3, 0, 0, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Mock Supabase client
# ---------------------------------------------------------------------------
@pytest.fixture
def mock_supabase_client():
    """A mock Supabase async client.

    ``table_mock.result`` is what ``execute()`` returns; tests replace it.
    """
    client = MagicMock()
    table_mock = MagicMock()
    for name in ("select", "insert", "update", "delete", "eq", "neq", "in_",
                 "gte", "lte", "lt", "order", "limit", "range"):
        getattr(table_mock, name).return_value = table_mock

    table_mock.result = MagicMock(data=[], count=0)

    async def mock_execute():
        return table_mock.result

    table_mock.execute = AsyncMock(side_effect=mock_execute)
    client.table.return_value = table_mock
    return client


# ---------------------------------------------------------------------------
# In-memory database
# ---------------------------------------------------------------------------
def _ts(value: Any) -> Optional[datetime]:
    return parse_timestamp(value)


class FakeDB:
    """In-memory stand-in for :class:`autopost.database.SupabaseDB`.

    Rows are stored serialised (ISO strings, enum values), exactly as the
    real client would send them.
    """

    def __init__(self) -> None:
        self.sites: Dict[str, Dict[str, Any]] = {}
        self.credentials: Dict[str, Dict[str, Any]] = {}
        self.schedules: Dict[str, Dict[str, Any]] = {}
        self.items: Dict[str, Dict[str, Any]] = {}
        self.generation_requests: Dict[str, Dict[str, Any]] = {}
        self.activity_logs: List[Dict[str, Any]] = []
        self._clock = itertools.count()

    # -- seeding helpers ----------------------------------------------------

    def add_site(
        self,
        site_id: str = "site-1",
        name: str = "Example Blog",
        is_active: bool = True,
        connection_status: str = "connected",
        category_id: Optional[int] = 7,
        with_credentials: bool = True,
    ) -> Dict[str, Any]:
        self.sites[site_id] = {
            "id": site_id,
            "name": name,
            "url": f"https://{site_id}.example.com",
            "is_active": is_active,
            "connection_status": connection_status,
            "category_id": category_id,
        }
        if with_credentials:
            self.credentials[site_id] = {
                "url": f"https://{site_id}.example.com",
                "username": "editor",
                "password": "app-password",
            }
        return self.sites[site_id]

    def add_item(self, site_id: str = "site-1", **fields: Any) -> Dict[str, Any]:
        now = utc_now()
        row = {
            "id": generate_id(),
            "site_id": site_id,
            "title": "Seeded item",
            "content": "<p>Body</p>",
            "status": "draft",
            "scheduled_at": None,
            "published_at": None,
            "external_id": None,
            "error_message": None,
            "tags": [],
            "created_at": now,
            "updated_at": now,
        }
        row.update(fields)
        row = serialize_fields(row)
        self.items[row["id"]] = row
        return dict(row)

    def add_generation_request(self, **fields: Any) -> Dict[str, Any]:
        now = utc_now()
        row = {
            "id": generate_id(),
            "site_id": "site-1",
            "status": "pending",
            "created_at": now + timedelta(microseconds=next(self._clock)),
            "updated_at": now,
        }
        row.update(fields)
        row = serialize_fields(row)
        self.generation_requests[row["id"]] = row
        return dict(row)

    # -- sites --------------------------------------------------------------

    async def get_site(self, site_id: str) -> Optional[Dict[str, Any]]:
        site = self.sites.get(site_id)
        return dict(site) if site else None

    async def get_publishable_sites(self) -> List[Dict[str, Any]]:
        return [
            dict(s) for s in self.sites.values()
            if s["is_active"] and s["connection_status"] == "connected"
        ]

    async def get_site_credentials(self, site_id: str) -> Optional[Dict[str, Any]]:
        creds = self.credentials.get(site_id)
        return dict(creds) if creds else None

    # -- schedules ----------------------------------------------------------

    async def insert_schedule(self, schedule: Dict[str, Any]) -> Dict[str, Any]:
        row = serialize_fields(schedule)
        row["_seq"] = next(self._clock)
        self.schedules[row["id"]] = row
        return dict(row)

    async def get_schedules(self, site_id: str) -> List[Dict[str, Any]]:
        rows = [dict(r) for r in self.schedules.values() if r["site_id"] == site_id]
        return sorted(rows, key=lambda r: r["_seq"], reverse=True)

    async def get_schedule(self, schedule_id: str, site_id: str) -> Optional[Dict[str, Any]]:
        row = self.schedules.get(schedule_id)
        if row is None or row["site_id"] != site_id:
            return None
        return dict(row)

    async def get_active_schedule(
        self, site_id: str, exclude_id: Optional[str] = None
    ) -> Optional[Dict[str, Any]]:
        for row in self.schedules.values():
            if row["site_id"] == site_id and row["is_active"] and row["id"] != exclude_id:
                return dict(row)
        return None

    async def get_active_schedules(self, site_ids: Sequence[str]) -> List[Dict[str, Any]]:
        return [
            dict(r) for r in self.schedules.values()
            if r["site_id"] in site_ids and r["is_active"]
        ]

    async def update_schedule(
        self, schedule_id: str, site_id: str, fields: Dict[str, Any]
    ) -> Optional[Dict[str, Any]]:
        row = self.schedules.get(schedule_id)
        if row is None or row["site_id"] != site_id:
            return None
        row.update(serialize_fields({**fields, "updated_at": utc_now()}))
        return dict(row)

    async def delete_schedule(self, schedule_id: str, site_id: str) -> bool:
        row = self.schedules.get(schedule_id)
        if row is None or row["site_id"] != site_id:
            return False
        del self.schedules[schedule_id]
        return True

    # -- items --------------------------------------------------------------

    async def insert_item(self, item: Dict[str, Any]) -> Dict[str, Any]:
        row = serialize_fields(item)
        row.setdefault("published_at", None)
        row.setdefault("external_id", None)
        row.setdefault("error_message", None)
        self.items[row["id"]] = row
        return dict(row)

    async def get_item(self, item_id: str, site_id: str) -> Optional[Dict[str, Any]]:
        row = self.items.get(item_id)
        if row is None or row["site_id"] != site_id:
            return None
        return dict(row)

    async def get_items(
        self, site_id: str, status: Optional[str] = None, page: int = 1, limit: int = 20
    ) -> Tuple[List[Dict[str, Any]], int]:
        rows = [
            dict(r) for r in self.items.values()
            if r["site_id"] == site_id and (status is None or r["status"] == status)
        ]
        rows.sort(key=lambda r: r["created_at"], reverse=True)
        offset = (page - 1) * limit
        return rows[offset:offset + limit], len(rows)

    async def update_item(
        self, item_id: str, site_id: str, fields: Dict[str, Any]
    ) -> Optional[Dict[str, Any]]:
        row = self.items.get(item_id)
        if row is None or row["site_id"] != site_id:
            return None
        row.update(serialize_fields({**fields, "updated_at": utc_now()}))
        return dict(row)

    async def transition_item(
        self,
        item_id: str,
        site_id: str,
        from_statuses: Sequence[str],
        fields: Dict[str, Any],
    ) -> Optional[Dict[str, Any]]:
        row = self.items.get(item_id)
        if row is None or row["site_id"] != site_id or row["status"] not in from_statuses:
            return None
        row.update(serialize_fields({**fields, "updated_at": utc_now()}))
        return dict(row)

    async def delete_item(self, item_id: str, site_id: str) -> bool:
        row = self.items.get(item_id)
        if row is None or row["site_id"] != site_id:
            return False
        del self.items[item_id]
        return True

    async def get_due_items(
        self, site_ids: Sequence[str], now: datetime, limit: int = 50
    ) -> List[Dict[str, Any]]:
        rows = [
            dict(r) for r in self.items.values()
            if r["site_id"] in site_ids
            and r["status"] == "scheduled"
            and r.get("scheduled_at")
            and _ts(r["scheduled_at"]) <= now
        ]
        rows.sort(key=lambda r: _ts(r["scheduled_at"]))
        return rows[:limit]

    async def count_published_between(self, site_id: str, start: datetime, end: datetime) -> int:
        return sum(
            1 for r in self.items.values()
            if r["site_id"] == site_id
            and r["status"] == "published"
            and r.get("published_at")
            and start <= _ts(r["published_at"]) < end
        )

    async def get_item_status_counts(self, site_id: str) -> Dict[str, int]:
        counts = {s: 0 for s in ("draft", "scheduled", "processing", "published", "failed")}
        for row in self.items.values():
            if row["site_id"] == site_id:
                counts[row["status"]] += 1
        return counts

    async def get_stale_processing_items(self, cutoff: datetime) -> List[Dict[str, Any]]:
        return [
            dict(r) for r in self.items.values()
            if r["status"] == "processing"
            and r.get("claimed_at")
            and _ts(r["claimed_at"]) <= cutoff
        ]

    # -- generation requests ------------------------------------------------

    async def get_pending_generation_requests(self, limit: int = 5) -> List[Dict[str, Any]]:
        rows = [dict(r) for r in self.generation_requests.values() if r["status"] == "pending"]
        rows.sort(key=lambda r: r["created_at"])
        return rows[:limit]

    async def claim_generation_request(self, request_id: str) -> bool:
        row = self.generation_requests.get(request_id)
        if row is None or row["status"] != "pending":
            return False
        row.update(serialize_fields({"status": "processing", "updated_at": utc_now()}))
        return True

    async def update_generation_request(self, request_id: str, fields: Dict[str, Any]) -> None:
        row = self.generation_requests.get(request_id)
        if row is not None:
            row.update(serialize_fields({**fields, "updated_at": utc_now()}))

    async def delete_generation_requests_before(
        self, cutoff: datetime, statuses: Sequence[str] = ("completed", "failed")
    ) -> int:
        doomed = [
            rid for rid, r in self.generation_requests.items()
            if r["status"] in statuses and _ts(r["updated_at"]) < cutoff
        ]
        for rid in doomed:
            del self.generation_requests[rid]
        return len(doomed)

    # -- activity logs ------------------------------------------------------

    async def save_activity_log(self, log_entry: Dict[str, Any]) -> str:
        entry = {"id": generate_id(), **log_entry}
        self.activity_logs.append(entry)
        return entry["id"]


# ---------------------------------------------------------------------------
# Fake WordPress endpoint
# ---------------------------------------------------------------------------
class FakeWordPressClient:
    """Records calls and answers like a WordPress site would.

    Set ``fail_with`` to make create/update raise; set ``delete_error`` to
    make ``delete_post`` raise instead of returning ``delete_result``.
    Post IDs in ``missing`` (or already deleted) read back as ``None``.
    """

    def __init__(self) -> None:
        self.created: List[Dict[str, Any]] = []
        self.updated: List[Tuple[int, Dict[str, Any]]] = []
        self.deleted: List[int] = []
        self.missing: Set[int] = set()
        self.fail_with: Optional[BaseException] = None
        self.delete_result: bool = True
        self.delete_error: Optional[BaseException] = None
        self.credentials: List[Any] = []
        self._ids = itertools.count(101)

    async def get_post(self, post_id: int) -> Optional[Dict[str, Any]]:
        if post_id in self.missing or post_id in self.deleted:
            return None
        return {"id": post_id, "status": "publish"}

    async def create_post(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        if self.fail_with is not None:
            raise self.fail_with
        self.created.append(payload)
        return {"id": next(self._ids), "status": "publish"}

    async def update_post(self, post_id: int, payload: Dict[str, Any]) -> Dict[str, Any]:
        if self.fail_with is not None:
            raise self.fail_with
        self.updated.append((post_id, payload))
        return {"id": post_id, "status": "publish"}

    async def delete_post(self, post_id: int, force: bool = True) -> bool:
        if self.delete_error is not None:
            raise self.delete_error
        self.deleted.append(post_id)
        return self.delete_result

    def factory(self, credentials, timeout):
        self.credentials.append(credentials)
        return self


# ---------------------------------------------------------------------------
# Service fixtures
# ---------------------------------------------------------------------------
@pytest.fixture
def settings():
    """Default settings, independent of any local config file."""
    return Settings()


@pytest.fixture
def fake_db():
    db = FakeDB()
    db.add_site()
    return db


@pytest.fixture
def fake_wp():
    return FakeWordPressClient()


@pytest.fixture
def schedule_store(fake_db, settings):
    return ScheduleStore(fake_db, settings)


@pytest.fixture
def item_store(fake_db, schedule_store):
    return ItemStore(fake_db, schedule_store)


@pytest.fixture
def limit_guard(fake_db, settings):
    return LimitGuard(fake_db, settings)


@pytest.fixture
def executor(fake_db, item_store, limit_guard, settings, fake_wp):
    return PublicationExecutor(
        fake_db, item_store, limit_guard, settings, client_factory=fake_wp.factory
    )


@pytest.fixture
def sweep(fake_db, item_store, limit_guard, executor, settings):
    return SweepTrigger(fake_db, item_store, limit_guard, executor, settings)


@pytest.fixture
def remote_failure():
    return ExternalPublishError("Invalid username or password", 401)
