"""
Tests for the in-process APScheduler timer.
"""

import pytest
from unittest.mock import AsyncMock, MagicMock, patch

from brandpulse import scheduler as timer
from brandpulse.services.scheduler_service import CycleResult

pytestmark = pytest.mark.anyio


async def test_start_scheduler_arms_daily_trigger():
    source_scheduler = MagicMock()
    source_scheduler.reconcile = AsyncMock(return_value=0)
    with patch("brandpulse.scheduler.get_source_scheduler", return_value=source_scheduler):
        sched = await timer.start_scheduler()
        try:
            job = sched.get_job(timer.DAILY_SYNC_JOB_ID)
            assert job is not None
            assert job.max_instances == 1
            fields = {f.name: str(f) for f in job.trigger.fields}
            assert fields["hour"] == str(timer.get_settings().daily_sync_hour)
            assert fields["minute"] == str(timer.get_settings().daily_sync_minute)
        finally:
            timer.stop_scheduler()

    source_scheduler.reconcile.assert_awaited_once()
    assert timer.scheduler is None


async def test_daily_sync_task_runs_one_cycle():
    source_scheduler = MagicMock()
    source_scheduler.run_cycle = AsyncMock(return_value=CycleResult(due=0))
    with patch("brandpulse.scheduler.get_source_scheduler", return_value=source_scheduler):
        await timer.daily_sync_task()
    source_scheduler.run_cycle.assert_awaited_once_with()
