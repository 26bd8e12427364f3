"""Background task scheduling.

Runs the watcher refresh and the scheduled message dispatch on their own
fixed intervals with APScheduler. Jobs are in memory only and rebuilt on
every start; due times live in the database, so nothing is lost on restart.
"""

from __future__ import annotations

import asyncio
from datetime import timezone

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from threadtracker.config import Config
from threadtracker.logging import get_logger
from threadtracker.scheduling import ScheduledMessageDispatcher
from threadtracker.watchers import WatcherRefresher

log = get_logger("scheduler")

REFRESH_JOB = "watcher_refresh"
DISPATCH_JOB = "scheduled_dispatch"


class BackgroundScheduler:
    """Drives the two periodic engines.

    Each job runs at most one instance at a time, and missed runs coalesce
    into one. The engines also guard against overlap themselves, so a run
    that outlasts its interval is skipped rather than doubled.

    Attributes:
        refresher: Watcher refresh engine.
        dispatcher: Scheduled message dispatcher.
        config: Application configuration.
        scheduler: APScheduler instance.
    """

    def __init__(
        self,
        refresher: WatcherRefresher,
        dispatcher: ScheduledMessageDispatcher,
        config: Config,
    ) -> None:
        self.refresher = refresher
        self.dispatcher = dispatcher
        self.config = config
        self.scheduler = AsyncIOScheduler(
            job_defaults={
                "coalesce": True,
                "max_instances": 1,
                "misfire_grace_time": 30,
            },
            timezone=timezone.utc,
        )

    def start(self) -> None:
        """Register both jobs and start the scheduler."""
        refresh_seconds = self.config.watchers.refresh_interval_seconds
        dispatch_seconds = self.config.scheduling.dispatch_interval_seconds

        self.scheduler.add_job(
            self.refresher.tick,
            trigger=IntervalTrigger(seconds=refresh_seconds),
            id=REFRESH_JOB,
            name="Watcher refresh",
            replace_existing=True,
        )
        self.scheduler.add_job(
            self.dispatcher.tick,
            trigger=IntervalTrigger(seconds=dispatch_seconds),
            id=DISPATCH_JOB,
            name="Scheduled message dispatch",
            replace_existing=True,
        )
        self.scheduler.start()
        log.info(
            "scheduler_started",
            refresh_interval_seconds=refresh_seconds,
            dispatch_interval_seconds=dispatch_seconds,
        )

    async def stop(self) -> None:
        """Stop scheduling new runs and let in-flight runs finish.

        Each engine completes the entity it is working on, then stops.
        """
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            # Shutdown is queued on the event loop; let it run first
            await asyncio.sleep(0)
        self.refresher.request_stop()
        self.dispatcher.request_stop()
        await self.refresher.wait_idle()
        await self.dispatcher.wait_idle()
        log.info("scheduler_stopped")
