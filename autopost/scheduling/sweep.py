"""
Background sweep trigger: three independent fixed-interval timers.

``SweepTrigger`` runs as asyncio background tasks:

1. **Content sweep** (default every 5 min): finds ``scheduled`` items
   whose ``scheduled_at`` has passed on active, connected sites, checks
   each site's monthly cap, claims the item and hands it to the
   :class:`~autopost.scheduling.executor.PublicationExecutor`.  Items are
   processed one at a time in due-time order; one failing item never
   aborts the rest of the batch.
2. **Generation sweep** (default every 2 min): claims ``pending``
   generation requests and hands each one to the injected generation
   dispatcher.
3. **Maintenance** (hourly): fails items stuck in ``processing`` and
   removes old finished generation requests.

The sweep interval is a coarse polling tick; it is not the recurrence
engine.  Each tick first asks the injected ``leadership`` object whether
this instance should run.
"""

import asyncio
import logging
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Dict, List, Optional

from autopost.config import Settings, get_settings
from autopost.scheduling.executor import PublicationExecutor, describe_error
from autopost.scheduling.item_store import ItemStore
from autopost.scheduling.limit_guard import LimitGuard
from autopost.scheduling.models import GenerationStatus
from autopost.utils import utc_now

logger = logging.getLogger(__name__)

GenerationDispatcher = Callable[[Dict[str, Any]], Awaitable[None]]


class AlwaysLeader:
    """Leadership for single-instance deployments: every tick runs."""

    async def is_leader(self) -> bool:
        return True


@dataclass
class SweepReport:
    """Counters for one content sweep."""

    found: int = 0
    published: int = 0
    failed: int = 0
    deferred: int = 0
    skipped: int = 0
    errors: int = 0


@dataclass
class MaintenanceReport:
    reaped_items: int = 0
    removed_generation_requests: int = 0


class SweepTrigger:
    """Periodically dispatches due items and queued generation requests.

    Args:
        db: Database client (:class:`~autopost.database.SupabaseDB`).
        items: Item store.
        limit_guard: Monthly cap check evaluated before each claim.
        executor: Publishes claimed items.
        settings: Intervals and batch sizes; defaults to :func:`get_settings`.
        generation_dispatcher: Async callable receiving one claimed
            generation request row.  Without it the generation sweep is
            a no-op.
        leadership: Object with ``async is_leader() -> bool``; defaults
            to :class:`AlwaysLeader`.
        activity: Optional :class:`~autopost.logging.ComponentLogger`
            that records each tick in the structured activity log.
    """

    def __init__(
        self,
        db: "SupabaseDB",  # noqa: F821
        items: ItemStore,
        limit_guard: LimitGuard,
        executor: PublicationExecutor,
        settings: Optional[Settings] = None,
        generation_dispatcher: Optional[GenerationDispatcher] = None,
        leadership: Any = None,
        activity: Optional["ComponentLogger"] = None,  # noqa: F821
    ) -> None:
        self.db = db
        self.items = items
        self.limit_guard = limit_guard
        self.executor = executor
        self.settings = settings or get_settings()
        self.generation_dispatcher = generation_dispatcher
        self.leadership = leadership or AlwaysLeader()
        self.activity = activity
        self._running: bool = False
        self._tasks: List["asyncio.Task[None]"] = []

    # ================================================================
    # LIFECYCLE
    # ================================================================

    async def start(self) -> None:
        """Start all three timers and wait until :meth:`stop` is called."""
        self._running = True
        logger.info(
            "[SWEEP] Sweep trigger started (content=%ds, generation=%ds, maintenance=%ds)",
            self.settings.content_sweep_interval_seconds,
            self.settings.generation_sweep_interval_seconds,
            self.settings.maintenance_interval_seconds,
        )
        self._tasks = [
            asyncio.create_task(self._run_timer(
                "content", self.settings.content_sweep_interval_seconds, self.run_content_sweep
            )),
            asyncio.create_task(self._run_timer(
                "generation", self.settings.generation_sweep_interval_seconds, self.run_generation_sweep
            )),
            asyncio.create_task(self._run_timer(
                "maintenance", self.settings.maintenance_interval_seconds, self.run_maintenance
            )),
        ]
        await asyncio.gather(*self._tasks, return_exceptions=True)
        logger.info("[SWEEP] Sweep trigger stopped")

    def stop(self) -> None:
        """Tear down the timers.

        Items already in ``processing`` are left as they are; the
        maintenance reaper fails them once they are stale.
        """
        self._running = False
        for task in self._tasks:
            task.cancel()
        logger.info("[SWEEP] Sweep trigger stop requested")

    @property
    def is_running(self) -> bool:
        return self._running

    async def _run_timer(
        self, name: str, interval: int, tick: Callable[[], Awaitable[Any]]
    ) -> None:
        while self._running:
            try:
                await tick()
            except asyncio.CancelledError:
                logger.info("[SWEEP] %s timer cancelled", name)
                break
            except Exception:
                logger.exception("[SWEEP] Unexpected error in %s timer", name)

            try:
                await asyncio.sleep(interval)
            except asyncio.CancelledError:
                logger.info("[SWEEP] %s timer sleep cancelled", name)
                break

    # ================================================================
    # CONTENT SWEEP
    # ================================================================

    async def run_content_sweep(self, now: Optional[datetime] = None) -> SweepReport:
        """Run one content sweep pass."""
        if not await self.leadership.is_leader():
            logger.debug("[SWEEP] Not leader, skipping content sweep")
            return SweepReport()

        if self.activity is None:
            return await self._content_sweep(now or utc_now())
        async with self.activity.timed("Content sweep"):
            report = await self._content_sweep(now or utc_now())
        await self.activity.info("Content sweep finished", data=asdict(report))
        return report

    async def _content_sweep(self, now: datetime) -> SweepReport:
        report = SweepReport()
        sites = await self.db.get_publishable_sites()
        rows = await self.db.get_due_items(
            [site["id"] for site in sites], now, self.settings.sweep_batch_size
        )
        report.found = len(rows)
        if not rows:
            return report

        logger.info("[SWEEP] Found %d items due for publishing", len(rows))

        for row in rows:
            try:
                await self._dispatch_item(row, now, report)
            except Exception as exc:
                report.errors += 1
                logger.error(
                    "[SWEEP] Error while processing item %s: %s",
                    row.get("id"),
                    describe_error(exc),
                )

        logger.info(
            "[SWEEP] Content sweep done: published=%d failed=%d deferred=%d skipped=%d errors=%d",
            report.published,
            report.failed,
            report.deferred,
            report.skipped,
            report.errors,
        )
        return report

    async def _dispatch_item(self, row: Dict[str, Any], now: datetime, report: SweepReport) -> None:
        item = ItemStore._row_to_item(row)

        snapshot = await self.limit_guard.check_monthly_limit(item.site_id, now)
        if not snapshot.can_post:
            # Still scheduled; due again once the next month begins.
            await self.items.defer(item, snapshot.period_end)
            report.deferred += 1
            logger.warning(
                "[SWEEP] Site %s at monthly limit (%d/%d), item %s deferred to %s",
                item.site_id,
                snapshot.current_count,
                snapshot.limit,
                item.id,
                snapshot.period_end.isoformat(),
            )
            return

        claimed = await self.items.claim(item)
        if claimed is None:
            report.skipped += 1
            return

        result = await self.executor.execute_claimed(claimed)
        if result.success:
            report.published += 1
        else:
            report.failed += 1

    # ================================================================
    # GENERATION SWEEP
    # ================================================================

    async def run_generation_sweep(self) -> int:
        """Claim pending generation requests and dispatch them.

        Returns:
            Number of requests handed to the dispatcher successfully.
        """
        if self.generation_dispatcher is None:
            return 0
        if not await self.leadership.is_leader():
            logger.debug("[SWEEP] Not leader, skipping generation sweep")
            return 0

        rows = await self.db.get_pending_generation_requests(self.settings.generation_batch_size)
        dispatched = 0
        for row in rows:
            request_id = row["id"]
            if not await self.db.claim_generation_request(request_id):
                continue
            try:
                await self.generation_dispatcher(row)
                dispatched += 1
            except Exception as exc:
                error = describe_error(exc)
                logger.error("[SWEEP] Generation request %s failed: %s", request_id, error)
                await self.db.update_generation_request(
                    request_id, {"status": GenerationStatus.FAILED, "error_message": error}
                )

        if rows:
            logger.info(
                "[SWEEP] Generation sweep dispatched %d of %d pending requests",
                dispatched,
                len(rows),
            )
        if self.activity is not None and rows:
            await self.activity.info(
                "Generation sweep finished",
                data={"pending": len(rows), "dispatched": dispatched},
            )
        return dispatched

    # ================================================================
    # MAINTENANCE
    # ================================================================

    async def run_maintenance(self, now: Optional[datetime] = None) -> MaintenanceReport:
        """Fail stale ``processing`` items and prune old generation requests."""
        if not await self.leadership.is_leader():
            return MaintenanceReport()

        now = now or utc_now()
        report = MaintenanceReport()
        report.reaped_items = await self.items.reap_stuck(
            self.settings.stuck_processing_minutes, now
        )
        cutoff = now - timedelta(days=self.settings.generation_retention_days)
        report.removed_generation_requests = await self.db.delete_generation_requests_before(cutoff)

        logger.info(
            "[SWEEP] Maintenance done: reaped=%d removed_requests=%d",
            report.reaped_items,
            report.removed_generation_requests,
        )
        if self.activity is not None:
            await self.activity.info("Maintenance finished", data=asdict(report))
        return report


__all__ = [
    "AlwaysLeader",
    "SweepReport",
    "MaintenanceReport",
    "SweepTrigger",
]
