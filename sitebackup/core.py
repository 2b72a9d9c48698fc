# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Site Backup Core - Runtime state shared by the orchestrators.

This module owns the engine's runtime state: where the job store lives,
which dump adapter to use, and the set of detached job executions that
are currently in flight.
"""

import asyncio
from datetime import datetime, UTC
from pathlib import Path
from typing import Any, Coroutine, Set, TypedDict

import structlog

from sitebackup.adapters.dump import DumpAdapter, PgDumpAdapter
from sitebackup.config import BackupConfig
from sitebackup.exceptions import SiteBackupError

logger = structlog.get_logger()


class EngineState(TypedDict):
    """Runtime state for backup and restore operations."""

    store_db_path: Path
    backup_root: Path
    upload_path: Path
    dump_adapter: DumpAdapter
    tasks: Set[asyncio.Task]  # Detached job executions in flight
    started_at: datetime


async def initialize_engine_state(
    config: BackupConfig,
    dump_adapter: DumpAdapter | None = None,
) -> EngineState:
    """
    Initialize runtime state.

    Creates the backup root and initializes the job store.

    Args:
        config: Engine configuration
        dump_adapter: Dump producer/consumer (default: PgDumpAdapter)

    Returns:
        Initialized EngineState dictionary
    """
    from sitebackup.store import init_store_db

    backup_root = Path(config.backup_root)
    backup_root.mkdir(parents=True, exist_ok=True)

    store_db_path = config.resolved_store_path
    await init_store_db(store_db_path)

    logger.info(
        "engine_state_initialized",
        backup_root=str(backup_root),
        upload_path=str(config.upload_path),
        store_db_path=str(store_db_path),
    )

    return EngineState(
        store_db_path=store_db_path,
        backup_root=backup_root,
        upload_path=Path(config.upload_path),
        dump_adapter=dump_adapter or PgDumpAdapter(),
        tasks=set(),
        started_at=datetime.now(UTC),
    )


def spawn_job(state: EngineState, coro: Coroutine[Any, Any, None], name: str) -> asyncio.Task:
    """
    Run a job execution detached from the caller.

    The task is held in state["tasks"] until it finishes so it is not
    garbage collected mid-flight. There is no cancellation and no timeout.
    """
    task = asyncio.create_task(coro, name=name)
    state["tasks"].add(task)
    task.add_done_callback(state["tasks"].discard)
    return task


async def wait_for_jobs(state: EngineState) -> None:
    """Wait until every in-flight job execution has finished."""
    while state["tasks"]:
        await asyncio.gather(*list(state["tasks"]), return_exceptions=True)


def error_message(exc: BaseException) -> str:
    """Human-readable failure reason recorded on a failed job."""
    if isinstance(exc, SiteBackupError):
        return exc.message
    return str(exc) or exc.__class__.__name__


async def shutdown_engine_state(state: EngineState) -> None:
    """Let in-flight jobs finish, then release resources."""
    pending = len(state["tasks"])
    if pending:
        logger.info("waiting_for_jobs", pending=pending)
    await wait_for_jobs(state)

    logger.info("engine_state_shutdown_complete")
