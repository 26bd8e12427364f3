"""Tests for the background scheduler."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from threadtracker.config import Config, SchedulingConfig, WatcherConfig
from threadtracker.scheduler import DISPATCH_JOB, REFRESH_JOB, BackgroundScheduler


@pytest.fixture
def engines() -> tuple[MagicMock, MagicMock]:
    refresher = MagicMock()
    refresher.tick = AsyncMock()
    refresher.wait_idle = AsyncMock()
    dispatcher = MagicMock()
    dispatcher.tick = AsyncMock()
    dispatcher.wait_idle = AsyncMock()
    return refresher, dispatcher


@pytest.fixture
def background(engines) -> BackgroundScheduler:
    refresher, dispatcher = engines
    config = Config(
        watchers=WatcherConfig(refresh_interval_seconds=45),
        scheduling=SchedulingConfig(dispatch_interval_seconds=15),
    )
    return BackgroundScheduler(refresher, dispatcher, config)


class TestBackgroundScheduler:
    """Tests for job registration and shutdown."""

    @pytest.mark.asyncio
    async def test_start_registers_both_jobs(self, background: BackgroundScheduler) -> None:
        background.start()
        try:
            jobs = {job.id: job for job in background.scheduler.get_jobs()}
            assert set(jobs) == {REFRESH_JOB, DISPATCH_JOB}
            assert jobs[REFRESH_JOB].next_run_time is not None

            intervals = {job_id: job.trigger.interval.total_seconds() for job_id, job in jobs.items()}
            assert intervals == {REFRESH_JOB: 45, DISPATCH_JOB: 15}
        finally:
            await background.stop()

    @pytest.mark.asyncio
    async def test_stop_waits_for_engines(self, background: BackgroundScheduler, engines) -> None:
        """Stopping asks both engines to finish their current entity."""
        refresher, dispatcher = engines
        background.start()

        await background.stop()

        assert not background.scheduler.running
        refresher.request_stop.assert_called_once()
        dispatcher.request_stop.assert_called_once()
        refresher.wait_idle.assert_awaited_once()
        dispatcher.wait_idle.assert_awaited_once()
