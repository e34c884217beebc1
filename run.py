"""
Entry point: run the publication sweeps until interrupted.

Usage::

    python run.py
"""

import asyncio
import logging
import signal
import sys

from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger("run")


async def main() -> None:
    from autopost.config import get_settings, validate_env
    from autopost.database import get_db
    from autopost.logging import ComponentLogger, LogComponent, init_logger
    from autopost.scheduling import (
        ItemStore,
        LimitGuard,
        PublicationExecutor,
        ScheduleStore,
        SweepTrigger,
    )

    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)-8s %(name)s | %(message)s",
        datefmt="%H:%M:%S",
    )
    validate_env(strict=True)

    db = await get_db()
    activity_log = init_logger(log_dir=settings.log_dir, db=db)
    await activity_log.info(LogComponent.STARTUP, "Publication service starting")

    schedules = ScheduleStore(db, settings)
    items = ItemStore(db, schedules)
    limit_guard = LimitGuard(db, settings)
    executor = PublicationExecutor(db, items, limit_guard, settings)
    trigger = SweepTrigger(
        db,
        items,
        limit_guard,
        executor,
        settings,
        activity=ComponentLogger(LogComponent.SWEEP),
    )
    if trigger.generation_dispatcher is None:
        logger.info("No generation dispatcher configured; generation sweep is idle")

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, trigger.stop)
        except NotImplementedError:
            # Windows event loops have no signal handlers
            pass

    try:
        await trigger.start()
    finally:
        await activity_log.info(LogComponent.STARTUP, "Publication service stopped")
        await activity_log.flush()


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("Interrupted")
        sys.exit(0)
