# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Site Backup Restore - Restore the store and uploads from a backup.

Preconditions are checked before any restore record exists; execution
then runs detached, like backups. Restores are destructive and not
transactional: a step that fails leaves earlier steps applied, and the
failure is reported on the restore record only.
"""

import asyncio
import shutil
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, Dict, Iterator, List

import aiofiles.os
import aiosqlite
import structlog

from sitebackup.adapters import archive
from sitebackup.adapters.dump import DumpAdapter
from sitebackup.backup.orchestrator import DATABASE_ENTRY, UPLOADS_PREFIX
from sitebackup.config import BackupConfig, BackupKind, JobStatus
from sitebackup.core import EngineState, error_message, spawn_job
from sitebackup.exceptions import ArtifactMissingError, NotFoundError, PreconditionError
from sitebackup.store import (
    RestoreRecord,
    get_backup,
    get_restore,
    insert_restore,
    list_restores,
    update_restore,
    utc_now,
)

logger = structlog.get_logger()


async def restore_from_backup(
    config: BackupConfig,
    state: EngineState,
    backup_id: str,
    actor: str,
) -> RestoreRecord:
    """
    Validate a backup and start restoring from it.

    This is the main entry point for restores. No restore record is
    created unless every precondition holds.

    Args:
        config: Engine configuration
        state: Runtime state
        backup_id: Backup to restore from
        actor: Identifier of the requesting actor

    Returns:
        The pending RestoreRecord

    Raises:
        NotFoundError: If the backup does not exist
        PreconditionError: If the backup is not completed
        ArtifactMissingError: If the backup's artifact is gone
    """
    from ulid import ULID

    async with aiosqlite.connect(state["store_db_path"]) as db:
        backup = await get_backup(db, backup_id)

        if backup is None:
            raise NotFoundError("Backup not found", details={"backup_id": backup_id})

        if backup["status"] != JobStatus.COMPLETED.value:
            raise PreconditionError(
                "Backup is not completed",
                details={"backup_id": backup_id, "status": backup["status"]},
            )

        artifact = backup["artifact_location"]
        if not artifact or not await aiofiles.os.path.exists(artifact):
            raise ArtifactMissingError(
                "Backup file not found",
                details={"backup_id": backup_id, "artifact_location": artifact},
            )

        restore_id = str(ULID())
        record = await insert_restore(db, restore_id, backup_id, actor)

    logger.info(
        "restore_created",
        restore_id=restore_id,
        backup_id=backup_id,
        kind=backup["kind"],
        restored_by=actor,
    )

    spawn_job(
        state,
        _execute_restore(
            config, state, restore_id, BackupKind(backup["kind"]), Path(artifact)
        ),
        name=f"restore-{restore_id}",
    )

    return record


async def _execute_restore(
    config: BackupConfig,
    state: EngineState,
    restore_id: str,
    kind: BackupKind,
    artifact: Path,
) -> None:
    """Run one restore job to completion or failure. Nothing is rolled back."""
    db_path = state["store_db_path"]

    try:
        async with aiosqlite.connect(db_path) as db:
            await update_restore(db, restore_id, status=JobStatus.RUNNING.value)
        logger.info("restore_running", restore_id=restore_id, kind=kind.value)

        await asyncio.to_thread(
            _RESTORERS[kind],
            config,
            state["dump_adapter"],
            artifact,
            Path(state["upload_path"]),
            Path(state["backup_root"]),
            restore_id,
        )

        async with aiosqlite.connect(db_path) as db:
            await update_restore(
                db,
                restore_id,
                status=JobStatus.COMPLETED.value,
                completed_at=utc_now(),
            )

        logger.info("restore_completed", restore_id=restore_id, kind=kind.value)

    except Exception as e:
        reason = error_message(e)
        logger.error("restore_failed", restore_id=restore_id, kind=kind.value, error=reason)
        try:
            async with aiosqlite.connect(db_path) as db:
                await update_restore(
                    db, restore_id, status=JobStatus.FAILED.value, error=reason
                )
        except Exception as update_error:
            logger.error(
                "restore_state_update_failed",
                restore_id=restore_id,
                error=str(update_error),
            )


@contextmanager
def staging_directory(backup_root: Path, restore_id: str) -> Iterator[Path]:
    """
    A fresh extraction directory under the backup root.

    The directory is removed on every exit path.
    """
    staging = Path(tempfile.mkdtemp(prefix=f".restore-{restore_id}-", dir=backup_root))
    try:
        yield staging
    finally:
        try:
            shutil.rmtree(staging)
        except OSError as e:
            logger.warning(
                "staging_cleanup_failed",
                restore_id=restore_id,
                path=str(staging),
                error=str(e),
            )


def _replace_upload_directory(staged_uploads: Path | None, upload_path: Path) -> None:
    """Put the staged uploads/ tree where the upload directory lives."""
    if upload_path.exists():
        shutil.rmtree(upload_path)

    upload_path.parent.mkdir(parents=True, exist_ok=True)
    if staged_uploads is not None and staged_uploads.is_dir():
        shutil.move(str(staged_uploads), str(upload_path))
    else:
        upload_path.mkdir()


def _restore_database(
    config: BackupConfig,
    dump_adapter: DumpAdapter,
    artifact: Path,
    upload_path: Path,
    backup_root: Path,
    restore_id: str,
) -> None:
    """Replay the dump. No snapshot is taken first."""
    dump_adapter.restore(config.database_url, artifact)


def _restore_files(
    config: BackupConfig,
    dump_adapter: DumpAdapter,
    artifact: Path,
    upload_path: Path,
    backup_root: Path,
    restore_id: str,
) -> None:
    """Remove the upload directory, then extract the archived uploads/ into its place."""
    with archive.open_archive(artifact) as handle:
        if upload_path.exists():
            shutil.rmtree(upload_path)

        with staging_directory(backup_root, restore_id) as staging:
            archive.extract_all(handle, staging)
            _replace_upload_directory(staging / UPLOADS_PREFIX, upload_path)


def _restore_full_system(
    config: BackupConfig,
    dump_adapter: DumpAdapter,
    artifact: Path,
    upload_path: Path,
    backup_root: Path,
    restore_id: str,
) -> None:
    """
    Extract to staging, replay database.sql, swap in uploads/.

    Either part is skipped when its entry is absent from the archive.
    """
    with staging_directory(backup_root, restore_id) as staging:
        with archive.open_archive(artifact) as handle:
            archive.extract_all(handle, staging)

        dump_file = staging / DATABASE_ENTRY
        if dump_file.is_file():
            dump_adapter.restore(config.database_url, dump_file)
            logger.debug("full_restore_database_applied", restore_id=restore_id)

        staged_uploads = staging / UPLOADS_PREFIX
        if staged_uploads.is_dir():
            _replace_upload_directory(staged_uploads, upload_path)
            logger.debug("full_restore_uploads_applied", restore_id=restore_id)


_RESTORERS: Dict[BackupKind, Callable[..., None]] = {
    BackupKind.DATABASE: _restore_database,
    BackupKind.FILES: _restore_files,
    BackupKind.FULL: _restore_full_system,
}


async def get_restore_job(state: EngineState, restore_id: str) -> RestoreRecord:
    """
    Get a restore record.

    Raises:
        NotFoundError: If the restore does not exist
    """
    async with aiosqlite.connect(state["store_db_path"]) as db:
        record = await get_restore(db, restore_id)

    if record is None:
        raise NotFoundError("Restore not found", details={"restore_id": restore_id})
    return record


async def list_restore_jobs(
    state: EngineState,
    backup_id: str | None = None,
    limit: int = 100,
) -> List[RestoreRecord]:
    """List restores, newest first, optionally for a single backup."""
    async with aiosqlite.connect(state["store_db_path"]) as db:
        return await list_restores(db, backup_id, limit)
