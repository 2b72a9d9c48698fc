# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Site Backup Scheduler - Recurring backups from cron trigger expressions.

The BackupScheduler owns both the APScheduler instance and the registry
of live tasks (schedule id -> job). An enabled schedule has exactly one
registered task; a disabled or deleted schedule has none. Pass the
instance to whoever needs it; there is no module-level registry.
"""

from datetime import datetime, UTC
from typing import Dict, List, Sequence

import aiosqlite
import structlog
from apscheduler.job import Job
from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from sitebackup.backup.orchestrator import create_backup
from sitebackup.config import BackupConfig, BackupKind
from sitebackup.core import EngineState
from sitebackup.errors import explain_invalid_choice, explain_invalid_trigger_expression
from sitebackup.exceptions import NotFoundError, ScheduleValidationError, ValidationError
from sitebackup.store import (
    ScheduleRecord,
    delete_schedule_record,
    get_schedule,
    insert_schedule,
    list_schedules,
    set_schedule_enabled,
)

logger = structlog.get_logger()

_MONTH_NAMES = ["jan", "feb", "mar", "apr", "may", "jun",
                "jul", "aug", "sep", "oct", "nov", "dec"]
_DOW_NAMES = ["sun", "mon", "tue", "wed", "thu", "fri", "sat"]

# (name, minimum, maximum, names, offset of names[0])
_FIELDS = (
    ("minute", 0, 59, None, 0),
    ("hour", 0, 23, None, 0),
    ("day", 1, 31, None, 0),
    ("month", 1, 12, _MONTH_NAMES, 1),
    ("day_of_week", 0, 7, _DOW_NAMES, 0),
)


def _parse_value(
    token: str,
    field: str,
    minimum: int,
    maximum: int,
    names: Sequence[str] | None,
    offset: int,
) -> int:
    if token.isdigit():
        value = int(token)
    elif names and token.lower() in names:
        value = names.index(token.lower()) + offset
    else:
        raise ValueError(f"{field} value {token!r} is not a number")

    if not minimum <= value <= maximum:
        raise ValueError(f"{field} value {value} is outside {minimum}-{maximum}")
    return value


def _expand_field(
    text: str,
    field: str,
    minimum: int,
    maximum: int,
    names: Sequence[str] | None,
    offset: int,
) -> List[int]:
    """Expand one crontab field ('*/15', '1-5', '0,30', 'mon') to its values."""
    values = set()

    for part in text.split(","):
        base, slash, step_text = part.partition("/")
        step = 1
        if slash:
            if not step_text.isdigit() or int(step_text) < 1:
                raise ValueError(f"{field} step {step_text!r} must be a positive number")
            step = int(step_text)

        if base == "*":
            start, end = minimum, maximum
        elif "-" in base:
            low, _, high = base.partition("-")
            start = _parse_value(low, field, minimum, maximum, names, offset)
            end = _parse_value(high, field, minimum, maximum, names, offset)
            if start > end:
                raise ValueError(f"{field} range {base!r} is reversed")
        elif base:
            start = _parse_value(base, field, minimum, maximum, names, offset)
            end = maximum if slash else start
        else:
            raise ValueError(f"{field} has an empty value")

        values.update(range(start, end + 1, step))

    return sorted(values)


def parse_trigger_expression(expression: str, timezone: str = "UTC") -> CronTrigger:
    """
    Parse a 5-field crontab expression into an APScheduler trigger.

    Fields are minute, hour, day-of-month, month, day-of-week. Day-of-week
    uses crontab numbering (0 and 7 are Sunday) and is translated to
    weekday names, since APScheduler counts from Monday.

    Raises:
        ScheduleValidationError: If the expression is malformed or out of range
    """
    if not isinstance(expression, str):
        raise ScheduleValidationError(
            explain_invalid_trigger_expression(str(expression), "not a string")
        )

    fields = expression.split()
    if len(fields) != 5:
        raise ScheduleValidationError(
            explain_invalid_trigger_expression(
                expression, f"expected 5 fields, got {len(fields)}"
            ),
            details={"trigger_expression": expression},
        )

    kwargs: Dict[str, str] = {}
    try:
        for text, (name, minimum, maximum, names, offset) in zip(fields, _FIELDS):
            values = _expand_field(text, name, minimum, maximum, names, offset)
            if text == "*":
                kwargs[name] = "*"
            elif name == "day_of_week":
                weekdays = {_DOW_NAMES[v % 7] for v in values}
                kwargs[name] = ",".join(d for d in _DOW_NAMES if d in weekdays)
            else:
                kwargs[name] = ",".join(str(v) for v in values)

        return CronTrigger(timezone=timezone, **kwargs)

    except ValueError as e:
        raise ScheduleValidationError(
            explain_invalid_trigger_expression(expression, str(e)),
            details={"trigger_expression": expression},
        ) from e


def validate_trigger_expression(expression: str) -> bool:
    """True if the expression would be accepted by parse_trigger_expression()."""
    try:
        parse_trigger_expression(expression)
    except ScheduleValidationError:
        return False
    return True


def _parse_kind(kind: str) -> BackupKind:
    try:
        return BackupKind(kind)
    except ValueError as exc:
        raise ValidationError(
            explain_invalid_choice("kind", kind, [k.value for k in BackupKind])
        ) from exc


class BackupScheduler:
    """
    Registry of live recurring backup tasks.

    Args:
        config: Engine configuration
        state: Runtime state handed to the backup orchestrator on each fire
        scheduler: APScheduler instance (default: a new AsyncIOScheduler)
    """

    def __init__(
        self,
        config: BackupConfig,
        state: EngineState,
        scheduler: AsyncIOScheduler | None = None,
    ):
        self._config = config
        self._state = state
        self._scheduler = scheduler or AsyncIOScheduler(timezone=config.timezone)
        self._jobs: Dict[str, Job] = {}

    # ------------------------------------------------------------------
    # Process lifecycle
    # ------------------------------------------------------------------

    @property
    def running(self) -> bool:
        return self._scheduler.running

    def start(self) -> None:
        """Start firing registered tasks. Must be called from the event loop."""
        if not self._scheduler.running:
            self._scheduler.start()
            logger.info("scheduler_started", registered=len(self._jobs))

    def shutdown(self) -> None:
        """Cancel every registered task and stop the underlying scheduler."""
        self.stop_all()
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)
        logger.info("scheduler_shutdown_complete")

    # ------------------------------------------------------------------
    # Registry
    # ------------------------------------------------------------------

    @property
    def registered_ids(self) -> List[str]:
        return sorted(self._jobs)

    def is_registered(self, schedule_id: str) -> bool:
        return schedule_id in self._jobs

    def next_run_time(self, schedule_id: str) -> datetime | None:
        job = self._jobs.get(schedule_id)
        return getattr(job, "next_run_time", None) if job else None

    def _register(
        self,
        schedule_id: str,
        kind: BackupKind,
        trigger: CronTrigger,
        actor: str,
    ) -> None:
        if schedule_id in self._jobs:
            return

        job = self._scheduler.add_job(
            self._fire,
            trigger=trigger,
            args=[schedule_id, kind, actor],
            id=f"backup-schedule-{schedule_id}",
            replace_existing=True,
            coalesce=True,
            misfire_grace_time=60,
        )
        self._jobs[schedule_id] = job

        next_run = self.next_run_time(schedule_id)
        logger.info(
            "schedule_started",
            schedule_id=schedule_id,
            kind=kind.value,
            next_run=next_run.isoformat() if next_run else None,
        )

    def stop(self, schedule_id: str) -> bool:
        """
        Cancel the live task for a schedule.

        Returns:
            True if a task was registered
        """
        job = self._jobs.pop(schedule_id, None)
        if job is None:
            return False

        try:
            job.remove()
        except JobLookupError:
            logger.warning("schedule_job_already_gone", schedule_id=schedule_id)

        logger.info("schedule_stopped", schedule_id=schedule_id)
        return True

    def stop_all(self) -> int:
        """Cancel every live task. Returns how many were cancelled."""
        stopped = 0
        for schedule_id in list(self._jobs):
            if self.stop(schedule_id):
                stopped += 1
        return stopped

    def trigger_now(self, schedule_id: str) -> None:
        """
        Fire a registered schedule at the next scheduler wakeup.

        Raises:
            NotFoundError: If no task is registered for the schedule
        """
        job = self._jobs.get(schedule_id)
        if job is None:
            raise NotFoundError(
                "Schedule is not active",
                details={"schedule_id": schedule_id},
            )
        job.modify(next_run_time=datetime.now(UTC))

    async def _fire(self, schedule_id: str, kind: BackupKind, actor: str) -> None:
        """Timer callback. A failure here never disables the schedule."""
        logger.info("scheduled_backup_triggered", schedule_id=schedule_id, kind=kind.value)
        try:
            record = await create_backup(self._config, self._state, kind, actor)
            logger.info(
                "scheduled_backup_started",
                schedule_id=schedule_id,
                backup_id=record["id"],
            )
        except Exception as e:
            logger.error(
                "scheduled_backup_failed",
                schedule_id=schedule_id,
                kind=kind.value,
                error=str(e),
            )

    # ------------------------------------------------------------------
    # Schedule definitions
    # ------------------------------------------------------------------

    async def schedule(
        self,
        kind: str,
        trigger_expression: str,
        enabled: bool,
        actor: str,
    ) -> str:
        """
        Persist a schedule and, if enabled, register its task.

        The trigger expression is validated before anything is persisted.

        Returns:
            The new schedule id

        Raises:
            ScheduleValidationError: If the trigger expression is invalid
            ValidationError: If the kind is unknown
        """
        from ulid import ULID

        backup_kind = _parse_kind(kind)
        trigger = parse_trigger_expression(trigger_expression, self._config.timezone)
        schedule_id = str(ULID())

        async with aiosqlite.connect(self._state["store_db_path"]) as db:
            await insert_schedule(
                db, schedule_id, backup_kind.value, trigger_expression, enabled, actor
            )

        logger.info(
            "schedule_created",
            schedule_id=schedule_id,
            kind=backup_kind.value,
            trigger_expression=trigger_expression,
            enabled=enabled,
        )

        if enabled:
            self._register(schedule_id, backup_kind, trigger, actor)

        return schedule_id

    async def get_schedule(self, schedule_id: str) -> ScheduleRecord:
        """
        Get a schedule record.

        Raises:
            NotFoundError: If the schedule does not exist
        """
        async with aiosqlite.connect(self._state["store_db_path"]) as db:
            record = await get_schedule(db, schedule_id)

        if record is None:
            raise NotFoundError("Schedule not found", details={"schedule_id": schedule_id})
        return record

    async def list_schedules(self, enabled: bool | None = None) -> List[ScheduleRecord]:
        async with aiosqlite.connect(self._state["store_db_path"]) as db:
            return await list_schedules(db, enabled)

    async def enable_schedule(self, schedule_id: str) -> ScheduleRecord:
        """Persist enabled=True and register the task if it is not live yet."""
        record = await self.get_schedule(schedule_id)
        trigger = parse_trigger_expression(
            record["trigger_expression"], self._config.timezone
        )

        async with aiosqlite.connect(self._state["store_db_path"]) as db:
            await set_schedule_enabled(db, schedule_id, True)

        self._register(schedule_id, BackupKind(record["kind"]), trigger, record["created_by"])
        return await self.get_schedule(schedule_id)

    async def disable_schedule(self, schedule_id: str) -> ScheduleRecord:
        """Persist enabled=False and cancel the live task."""
        await self.get_schedule(schedule_id)

        async with aiosqlite.connect(self._state["store_db_path"]) as db:
            await set_schedule_enabled(db, schedule_id, False)

        self.stop(schedule_id)
        return await self.get_schedule(schedule_id)

    async def delete_schedule(self, schedule_id: str) -> None:
        """
        Cancel the live task and delete the definition.

        Raises:
            NotFoundError: If the schedule does not exist
        """
        await self.get_schedule(schedule_id)
        self.stop(schedule_id)

        async with aiosqlite.connect(self._state["store_db_path"]) as db:
            await delete_schedule_record(db, schedule_id)

        logger.info("schedule_deleted", schedule_id=schedule_id)

    async def load_schedules(self) -> int:
        """
        Register a task for every enabled schedule in the store.

        Called at process start so persisted schedules survive restarts.
        Definitions that no longer parse are logged and skipped.

        Returns:
            Number of tasks registered
        """
        registered = 0
        for record in await self.list_schedules(enabled=True):
            try:
                trigger = parse_trigger_expression(
                    record["trigger_expression"], self._config.timezone
                )
            except ScheduleValidationError as e:
                logger.error(
                    "schedule_load_failed",
                    schedule_id=record["id"],
                    error=e.message,
                )
                continue

            if record["id"] not in self._jobs:
                self._register(
                    record["id"], BackupKind(record["kind"]), trigger, record["created_by"]
                )
                registered += 1

        logger.info("schedules_loaded", registered=registered)
        return registered
