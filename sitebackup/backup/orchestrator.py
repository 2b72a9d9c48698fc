# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Site Backup Orchestrator - Backup job lifecycle.

Creating a backup persists a pending record and returns it immediately;
the heavy work runs detached and is observed by re-reading the record.

Per job: pending -> running -> completed | failed. Nothing leaves
completed or failed.

Artifacts live directly under the backup root, one file per job:
    database-backup-<timestamp>-<id>.sql
    files-backup-<timestamp>-<id>.zip
    full-backup-<timestamp>-<id>.zip
"""

import asyncio
import json
from datetime import datetime, timedelta, UTC
from pathlib import Path
from typing import Any, Callable, Dict, Tuple

import aiofiles.os
import aiosqlite
import structlog

from sitebackup.adapters import archive
from sitebackup.adapters.dump import DumpAdapter
from sitebackup.config import BackupConfig, BackupKind, JobStatus
from sitebackup.core import EngineState, error_message, spawn_job
from sitebackup.exceptions import NotFoundError
from sitebackup.pagination import build_backup_query, calculate_pagination
from sitebackup.store import (
    BackupRecord,
    count_backups,
    delete_backup_record,
    get_backup,
    insert_backup,
    list_backups,
    list_backups_created_before,
    update_backup,
    utc_now,
)

logger = structlog.get_logger()

UPLOADS_PREFIX = "uploads"
DATABASE_ENTRY = "database.sql"
MANIFEST_ENTRY = "config.json"

_EXTENSIONS = {
    BackupKind.DATABASE: ".sql",
    BackupKind.FILES: ".zip",
    BackupKind.FULL: ".zip",
}


def _timestamp() -> str:
    """Sortable, filename-safe UTC timestamp."""
    return datetime.now(UTC).strftime("%Y-%m-%dT%H-%M-%S-%fZ")


def artifact_name(kind: BackupKind, backup_id: str) -> str:
    """File name for a backup artifact."""
    return f"{kind.value}-backup-{_timestamp()}-{backup_id}{_EXTENSIONS[kind]}"


# ============================================================================
# Creation (synchronous part)
# ============================================================================


async def create_backup(
    config: BackupConfig,
    state: EngineState,
    kind: BackupKind,
    actor: str,
) -> BackupRecord:
    """
    Persist a pending backup and start executing it detached.

    Args:
        config: Engine configuration
        state: Runtime state
        kind: What to back up
        actor: Identifier of the initiating actor

    Returns:
        The pending BackupRecord
    """
    from ulid import ULID

    kind = BackupKind(kind)
    backup_id = str(ULID())

    async with aiosqlite.connect(state["store_db_path"]) as db:
        record = await insert_backup(db, backup_id, kind.value, actor)

    logger.info("backup_created", backup_id=backup_id, kind=kind.value, created_by=actor)

    spawn_job(
        state,
        _execute_backup(config, state, backup_id, kind),
        name=f"backup-{backup_id}",
    )

    return record


async def create_database_backup(
    config: BackupConfig, state: EngineState, actor: str
) -> BackupRecord:
    """Back up the relational store as a SQL dump."""
    return await create_backup(config, state, BackupKind.DATABASE, actor)


async def create_files_backup(
    config: BackupConfig, state: EngineState, actor: str
) -> BackupRecord:
    """Back up the upload directory as an archive under uploads/."""
    return await create_backup(config, state, BackupKind.FILES, actor)


async def create_full_backup(
    config: BackupConfig, state: EngineState, actor: str
) -> BackupRecord:
    """Back up the store, the upload directory and a manifest in one archive."""
    return await create_backup(config, state, BackupKind.FULL, actor)


# ============================================================================
# Execution (detached part)
# ============================================================================


async def _execute_backup(
    config: BackupConfig,
    state: EngineState,
    backup_id: str,
    kind: BackupKind,
) -> None:
    """
    Run one backup job to completion or failure.

    Failures are recorded on the job and never propagate: the caller of
    create_backup() has already returned.
    """
    db_path = state["store_db_path"]

    try:
        async with aiosqlite.connect(db_path) as db:
            started = await update_backup(db, backup_id, status=JobStatus.RUNNING.value)
        if not started:
            logger.info("backup_skipped_deleted", backup_id=backup_id, kind=kind.value)
            return
        logger.info("backup_running", backup_id=backup_id, kind=kind.value)

        runner = _RUNNERS[kind]
        artifact_path = await asyncio.to_thread(
            runner,
            config,
            state["dump_adapter"],
            Path(state["backup_root"]),
            Path(state["upload_path"]),
            backup_id,
        )
        size = await aiofiles.os.path.getsize(artifact_path)

        async with aiosqlite.connect(db_path) as db:
            completed = await update_backup(
                db,
                backup_id,
                status=JobStatus.COMPLETED.value,
                size_bytes=size,
                artifact_location=str(artifact_path),
                completed_at=utc_now(),
            )

        if not completed:
            # Deleted while running: nothing points at the artifact any more.
            await aiofiles.os.remove(artifact_path)
            logger.info(
                "backup_orphan_removed",
                backup_id=backup_id,
                artifact_location=str(artifact_path),
            )
            return

        logger.info(
            "backup_completed",
            backup_id=backup_id,
            kind=kind.value,
            size_bytes=size,
            artifact_location=str(artifact_path),
        )

    except Exception as e:
        reason = error_message(e)
        logger.error("backup_failed", backup_id=backup_id, kind=kind.value, error=reason)
        await _record_backup_failure(db_path, backup_id, reason)


async def _record_backup_failure(db_path: Path, backup_id: str, reason: str) -> None:
    try:
        async with aiosqlite.connect(db_path) as db:
            await update_backup(db, backup_id, status=JobStatus.FAILED.value, error=reason)
    except Exception as e:
        logger.error("backup_state_update_failed", backup_id=backup_id, error=str(e))


def _perform_database_backup(
    config: BackupConfig,
    dump_adapter: DumpAdapter,
    backup_root: Path,
    upload_path: Path,
    backup_id: str,
) -> Path:
    """Dump the store straight into the artifact. A partial file is left on failure."""
    artifact_path = backup_root / artifact_name(BackupKind.DATABASE, backup_id)
    dump_adapter.dump(config.database_url, artifact_path)
    return artifact_path


def _add_uploads(handle: archive.ArchiveHandle, upload_path: Path, backup_id: str) -> None:
    if upload_path.is_dir():
        file_count = archive.add_directory(handle, upload_path, UPLOADS_PREFIX)
        logger.debug("uploads_added", backup_id=backup_id, files=file_count)
    else:
        logger.warning(
            "upload_directory_missing",
            backup_id=backup_id,
            upload_path=str(upload_path),
        )


def _perform_files_backup(
    config: BackupConfig,
    dump_adapter: DumpAdapter,
    backup_root: Path,
    upload_path: Path,
    backup_id: str,
) -> Path:
    """Archive the upload directory under uploads/."""
    artifact_path = backup_root / artifact_name(BackupKind.FILES, backup_id)

    handle = archive.create_archive()
    _add_uploads(handle, upload_path, backup_id)
    archive.write(handle, artifact_path)

    return artifact_path


def build_manifest(config: BackupConfig) -> bytes:
    """Manifest stored as config.json inside full backups. No secrets."""
    manifest = {
        "version": config.app_version,
        "timestamp": datetime.now(UTC).isoformat(),
        "kind": BackupKind.FULL.value,
        "type": "full_backup",
    }
    return json.dumps(manifest, indent=2).encode("utf-8")


def _perform_full_backup(
    config: BackupConfig,
    dump_adapter: DumpAdapter,
    backup_root: Path,
    upload_path: Path,
    backup_id: str,
) -> Path:
    """
    Composite backup: dump + uploads + manifest in one archive.

    Steps:
    1. Dump the store to a temporary file
    2. Add it to a new archive as database.sql
    3. Add the upload directory under uploads/
    4. Add the manifest as config.json
    5. Write the archive
    6. Delete the temporary dump, whatever happened above
    """
    artifact_path = backup_root / artifact_name(BackupKind.FULL, backup_id)
    temp_dump = backup_root / f".database-{_timestamp()}-{backup_id}.sql"

    try:
        dump_adapter.dump(config.database_url, temp_dump)

        handle = archive.create_archive()
        archive.add_file(handle, temp_dump, DATABASE_ENTRY)
        _add_uploads(handle, upload_path, backup_id)
        archive.add_bytes(handle, build_manifest(config), MANIFEST_ENTRY)

        archive.write(handle, artifact_path)
    finally:
        try:
            temp_dump.unlink(missing_ok=True)
        except OSError as e:
            logger.warning(
                "temp_dump_cleanup_failed",
                backup_id=backup_id,
                path=str(temp_dump),
                error=str(e),
            )

    return artifact_path


_RUNNERS: Dict[BackupKind, Callable[..., Path]] = {
    BackupKind.DATABASE: _perform_database_backup,
    BackupKind.FILES: _perform_files_backup,
    BackupKind.FULL: _perform_full_backup,
}


# ============================================================================
# Read side and deletion
# ============================================================================


async def get_backup_job(state: EngineState, backup_id: str) -> BackupRecord:
    """
    Get a backup record.

    Raises:
        NotFoundError: If the backup does not exist
    """
    async with aiosqlite.connect(state["store_db_path"]) as db:
        record = await get_backup(db, backup_id)

    if record is None:
        raise NotFoundError(
            "Backup not found",
            details={"backup_id": backup_id},
        )
    return record


async def list_backup_jobs(
    config: BackupConfig,
    state: EngineState,
    page: Any = 1,
    limit: Any = None,
    sort_by: str | None = "createdAt",
    sort_order: str | None = "desc",
    kind: str | None = None,
    status: str | None = None,
) -> dict:
    """
    List backups with pagination, filtering and sorting.

    Returns:
        {"data": [BackupRecord, ...], "pagination": PaginationMeta}

    Raises:
        ValidationError: If any listing parameter is invalid
    """
    query = build_backup_query(config, page, limit, sort_by, sort_order, kind, status)

    async with aiosqlite.connect(state["store_db_path"]) as db:
        total = await count_backups(db, query)
        records = await list_backups(db, query)

    return {
        "data": records,
        "pagination": calculate_pagination(query.page, query.limit, total),
    }


async def delete_backup(state: EngineState, backup_id: str) -> None:
    """
    Delete a backup record and its artifact.

    The record is read and deleted under one write lock, so a job finishing
    concurrently either sees its record gone or has its artifact removed here.

    Raises:
        NotFoundError: If the backup does not exist
    """
    async with aiosqlite.connect(state["store_db_path"]) as db:
        await db.execute("BEGIN IMMEDIATE")
        record = await get_backup(db, backup_id)
        if record is None:
            await db.rollback()
            raise NotFoundError(
                "Backup not found",
                details={"backup_id": backup_id},
            )

        artifact = record["artifact_location"]
        if artifact and await aiofiles.os.path.exists(artifact):
            await aiofiles.os.remove(artifact)

        await delete_backup_record(db, backup_id)

    logger.info(
        "backup_deleted",
        backup_id=backup_id,
        status=record["status"],
        artifact_location=artifact or None,
    )


async def prune_old_backups(
    state: EngineState,
    max_age_days: int,
    dry_run: bool = False,
) -> Tuple[int, int]:
    """
    Delete finished backups older than max_age_days.

    Pending and running jobs are never touched.

    Args:
        state: Runtime state
        max_age_days: Maximum age in days
        dry_run: If True, only report what would be deleted

    Returns:
        Tuple of (backups_deleted, bytes_freed)
    """
    cutoff = (datetime.now(UTC) - timedelta(days=max_age_days)).isoformat(
        timespec="microseconds"
    )

    async with aiosqlite.connect(state["store_db_path"]) as db:
        candidates = await list_backups_created_before(db, cutoff)

    backups_deleted = 0
    bytes_freed = 0

    for record in candidates:
        if not dry_run:
            await delete_backup(state, record["id"])

        backups_deleted += 1
        bytes_freed += record["size_bytes"]

        logger.debug(
            "backup_pruned" if not dry_run else "backup_would_prune",
            backup_id=record["id"],
            created_at=record["created_at"],
        )

    logger.info(
        "backup_pruning_complete",
        backups_deleted=backups_deleted,
        bytes_freed=bytes_freed,
        dry_run=dry_run,
    )

    return (backups_deleted, bytes_freed)
