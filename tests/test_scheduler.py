# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Scheduler Tests for Site Backup.

These tests verify that:
- Trigger expressions are parsed with crontab semantics
- Invalid expressions never produce a record or a live task
- An enabled schedule has exactly one live task; disabled/deleted have none
- Persisted schedules are re-registered at startup
- Fired schedules create backups through the orchestrator
"""

import asyncio
from datetime import datetime, UTC

import aiosqlite
import pytest
import pytest_asyncio
from apscheduler.schedulers.asyncio import AsyncIOScheduler

from sitebackup.backup import list_backup_jobs
from sitebackup.config import BackupKind
from sitebackup.core import wait_for_jobs
from sitebackup.exceptions import NotFoundError, ScheduleValidationError, ValidationError
from sitebackup.scheduler import (
    BackupScheduler,
    parse_trigger_expression,
    validate_trigger_expression,
)
from sitebackup.store import insert_schedule

from conftest import FailingDumpAdapter, wait_for_status

# Far in the future relative to any test run, so timers never fire on their own.
NEW_YEAR = "0 0 1 1 *"


@pytest_asyncio.fixture
async def apscheduler():
    scheduler = AsyncIOScheduler(timezone="UTC")
    yield scheduler
    if scheduler.running:
        scheduler.shutdown(wait=False)


@pytest_asyncio.fixture
async def backup_scheduler(test_config, test_state, apscheduler):
    scheduler = BackupScheduler(test_config, test_state, apscheduler)
    yield scheduler
    scheduler.shutdown()


# ============================================================================
# Trigger expressions
# ============================================================================


def _next_fire(expression: str, now: datetime) -> datetime:
    return parse_trigger_expression(expression).get_next_fire_time(None, now)


def test_daily_expression_fires_at_given_time():
    now = datetime(2026, 1, 1, 12, 1, tzinfo=UTC)

    assert _next_fire("0 2 * * *", now) == datetime(2026, 1, 2, 2, 0, tzinfo=UTC)
    assert _next_fire("*/15 * * * *", now) == datetime(2026, 1, 1, 12, 15, tzinfo=UTC)


def test_day_of_week_uses_crontab_numbering():
    """0 and 7 are Sunday; 2026-01-01 is a Thursday."""
    now = datetime(2026, 1, 1, 12, 0, tzinfo=UTC)
    sunday = datetime(2026, 1, 4, 0, 0, tzinfo=UTC)

    assert _next_fire("0 0 * * 0", now) == sunday
    assert _next_fire("0 0 * * 7", now) == sunday
    assert _next_fire("0 0 * * sun", now) == sunday
    assert _next_fire("0 9 * * 1-5", now) == datetime(2026, 1, 2, 9, 0, tzinfo=UTC)
    assert _next_fire("0 9 * * mon-fri", datetime(2026, 1, 3, tzinfo=UTC)) == datetime(
        2026, 1, 5, 9, 0, tzinfo=UTC
    )


def test_month_names_are_accepted():
    now = datetime(2026, 1, 1, 12, 0, tzinfo=UTC)
    assert _next_fire("30 4 1 jun *", now) == datetime(2026, 6, 1, 4, 30, tzinfo=UTC)


@pytest.mark.parametrize(
    "expression",
    [
        "99 * * * *",
        "* * *",
        "* * * * * *",
        "not a cron",
        "*/0 * * * *",
        "5-1 * * * *",
        "0 0 32 * *",
        "0 0 * 13 *",
        "0 0 * * 8",
        "0 0 * * funday",
        "",
    ],
)
def test_invalid_expressions_are_rejected(expression):
    with pytest.raises(ScheduleValidationError):
        parse_trigger_expression(expression)
    assert validate_trigger_expression(expression) is False


# ============================================================================
# Schedule definitions
# ============================================================================


@pytest.mark.asyncio
async def test_invalid_expression_creates_no_record_or_task(backup_scheduler, apscheduler):
    with pytest.raises(ScheduleValidationError):
        await backup_scheduler.schedule("database", "99 * * * *", True, "admin")

    assert await backup_scheduler.list_schedules() == []
    assert backup_scheduler.registered_ids == []
    assert apscheduler.get_jobs() == []


@pytest.mark.asyncio
async def test_unknown_kind_is_rejected(backup_scheduler):
    with pytest.raises(ValidationError):
        await backup_scheduler.schedule("everything", "0 2 * * *", True, "admin")

    assert await backup_scheduler.list_schedules() == []


@pytest.mark.asyncio
async def test_disabled_schedule_is_persisted_without_task(backup_scheduler, apscheduler):
    schedule_id = await backup_scheduler.schedule("files", "0 3 * * *", False, "admin")

    record = await backup_scheduler.get_schedule(schedule_id)
    assert record["enabled"] is False
    assert record["trigger_expression"] == "0 3 * * *"
    assert not backup_scheduler.is_registered(schedule_id)
    assert apscheduler.get_jobs() == []


@pytest.mark.asyncio
async def test_enable_disable_keeps_one_task_per_schedule(backup_scheduler, apscheduler):
    schedule_id = await backup_scheduler.schedule("full", NEW_YEAR, True, "admin")
    assert backup_scheduler.registered_ids == [schedule_id]
    assert len(apscheduler.get_jobs()) == 1

    await backup_scheduler.enable_schedule(schedule_id)
    assert len(apscheduler.get_jobs()) == 1

    record = await backup_scheduler.disable_schedule(schedule_id)
    assert record["enabled"] is False
    assert backup_scheduler.registered_ids == []
    assert apscheduler.get_jobs() == []

    record = await backup_scheduler.enable_schedule(schedule_id)
    assert record["enabled"] is True
    assert backup_scheduler.registered_ids == [schedule_id]
    assert len(apscheduler.get_jobs()) == 1


@pytest.mark.asyncio
async def test_delete_schedule_cancels_task(backup_scheduler, apscheduler):
    schedule_id = await backup_scheduler.schedule("database", NEW_YEAR, True, "admin")

    await backup_scheduler.delete_schedule(schedule_id)

    assert backup_scheduler.registered_ids == []
    assert apscheduler.get_jobs() == []
    with pytest.raises(NotFoundError):
        await backup_scheduler.get_schedule(schedule_id)
    with pytest.raises(NotFoundError):
        await backup_scheduler.delete_schedule(schedule_id)


@pytest.mark.asyncio
async def test_load_schedules_registers_enabled_only(test_config, test_state, apscheduler):
    async with aiosqlite.connect(test_state["store_db_path"]) as db:
        await insert_schedule(db, "01ENABLED", "database", "0 2 * * *", True, "admin")
        await insert_schedule(db, "01DISABLED", "files", "0 3 * * *", False, "admin")
        await insert_schedule(db, "01BROKEN", "full", "99 * * * *", True, "admin")

    scheduler = BackupScheduler(test_config, test_state, apscheduler)
    try:
        assert await scheduler.load_schedules() == 1
        assert scheduler.registered_ids == ["01ENABLED"]

        # Loading again does not duplicate tasks
        assert await scheduler.load_schedules() == 0
        assert len(apscheduler.get_jobs()) == 1
    finally:
        scheduler.shutdown()


@pytest.mark.asyncio
async def test_shutdown_cancels_every_task(backup_scheduler, apscheduler):
    await backup_scheduler.schedule("database", NEW_YEAR, True, "admin")
    await backup_scheduler.schedule("files", NEW_YEAR, True, "admin")
    backup_scheduler.start()

    backup_scheduler.shutdown()

    assert backup_scheduler.registered_ids == []
    assert not backup_scheduler.running


# ============================================================================
# Firing
# ============================================================================


@pytest.mark.asyncio
async def test_trigger_now_creates_backup(backup_scheduler, test_config, test_state):
    schedule_id = await backup_scheduler.schedule("database", NEW_YEAR, True, "cron-owner")
    backup_scheduler.start()

    backup_scheduler.trigger_now(schedule_id)

    for _ in range(250):
        listing = await list_backup_jobs(test_config, test_state)
        if listing["data"]:
            break
        await asyncio.sleep(0.02)

    assert len(listing["data"]) == 1
    backup = listing["data"][0]
    assert backup["kind"] == "database"
    assert backup["created_by"] == "cron-owner"

    assert await wait_for_status(test_state, "backups", backup["id"]) == "completed"
    assert backup_scheduler.is_registered(schedule_id)


@pytest.mark.asyncio
async def test_trigger_now_requires_live_task(backup_scheduler):
    schedule_id = await backup_scheduler.schedule("database", NEW_YEAR, False, "admin")

    with pytest.raises(NotFoundError):
        backup_scheduler.trigger_now(schedule_id)


@pytest.mark.asyncio
async def test_failed_scheduled_backup_keeps_schedule_active(
    backup_scheduler, test_config, test_state
):
    schedule_id = await backup_scheduler.schedule("full", NEW_YEAR, True, "admin")
    test_state["dump_adapter"] = FailingDumpAdapter()

    await backup_scheduler._fire(schedule_id, BackupKind.FULL, "admin")
    await wait_for_jobs(test_state)

    listing = await list_backup_jobs(test_config, test_state)
    assert [b["status"] for b in listing["data"]] == ["failed"]
    assert backup_scheduler.is_registered(schedule_id)
