# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Site Backup Job Store - SQLite persistence for jobs and schedules.

This module is the only place that reads or writes job metadata. It is a
plain CRUD layer: the orchestrators decide state transitions, the store
just records them.

Tables:
1. backups - One row per backup attempt
2. restores - One row per restore attempt
3. backup_schedules - Recurring trigger definitions
"""

from datetime import datetime, UTC
from pathlib import Path
from typing import Any, Dict, List, Tuple, TypedDict

import aiosqlite
import structlog

from sitebackup.exceptions import JobStoreError
from sitebackup.pagination import BackupQuery

logger = structlog.get_logger()


class BackupRecord(TypedDict):
    """Record of a backup attempt."""

    id: str  # ULID
    kind: str  # database, files, full
    status: str  # pending, running, completed, failed
    size_bytes: int
    artifact_location: str  # Empty until completed
    created_by: str
    created_at: str  # ISO 8601
    completed_at: str | None  # ISO 8601, set only when completed
    error: str | None  # Set only when failed


class RestoreRecord(TypedDict):
    """Record of a restore attempt."""

    id: str  # ULID
    backup_id: str
    status: str
    restored_by: str
    created_at: str
    completed_at: str | None
    error: str | None


class ScheduleRecord(TypedDict):
    """Record of a recurring backup schedule."""

    id: str  # ULID
    kind: str
    trigger_expression: str
    enabled: bool
    created_by: str
    created_at: str
    updated_at: str


_BACKUP_COLUMNS = (
    "id, kind, status, size_bytes, artifact_location, "
    "created_by, created_at, completed_at, error"
)
_RESTORE_COLUMNS = "id, backup_id, status, restored_by, created_at, completed_at, error"
_SCHEDULE_COLUMNS = (
    "id, kind, trigger_expression, enabled, created_by, created_at, updated_at"
)

_BACKUP_UPDATABLE = {"status", "size_bytes", "artifact_location", "completed_at", "error"}
_RESTORE_UPDATABLE = {"status", "completed_at", "error"}


def utc_now() -> str:
    """Current time as a sortable ISO 8601 string."""
    return datetime.now(UTC).isoformat(timespec="microseconds")


def _row_to_backup(row: Any) -> BackupRecord:
    return BackupRecord(
        id=row[0],
        kind=row[1],
        status=row[2],
        size_bytes=row[3],
        artifact_location=row[4],
        created_by=row[5],
        created_at=row[6],
        completed_at=row[7],
        error=row[8],
    )


def _row_to_restore(row: Any) -> RestoreRecord:
    return RestoreRecord(
        id=row[0],
        backup_id=row[1],
        status=row[2],
        restored_by=row[3],
        created_at=row[4],
        completed_at=row[5],
        error=row[6],
    )


def _row_to_schedule(row: Any) -> ScheduleRecord:
    return ScheduleRecord(
        id=row[0],
        kind=row[1],
        trigger_expression=row[2],
        enabled=bool(row[3]),
        created_by=row[4],
        created_at=row[5],
        updated_at=row[6],
    )


def _assignments(fields: Dict[str, Any], allowed: set) -> Tuple[str, List[Any]]:
    unknown = set(fields) - allowed
    if unknown:
        raise ValueError(f"Cannot update columns: {sorted(unknown)}")
    columns = sorted(fields)
    return ", ".join(f"{c} = ?" for c in columns), [fields[c] for c in columns]


async def init_store_db(db_path: Path) -> None:
    """
    Initialize the job store schema.

    Creates tables if they don't exist. This is idempotent.

    Args:
        db_path: Path to the SQLite database file
    """
    try:
        db_path.parent.mkdir(parents=True, exist_ok=True)

        async with aiosqlite.connect(db_path) as db:
            # WAL lets detached jobs write while requests read
            await db.execute("PRAGMA journal_mode=WAL")

            await db.execute("""
                CREATE TABLE IF NOT EXISTS backups (
                    id TEXT PRIMARY KEY,
                    kind TEXT NOT NULL,
                    status TEXT NOT NULL,
                    size_bytes INTEGER NOT NULL DEFAULT 0,
                    artifact_location TEXT NOT NULL DEFAULT '',
                    created_by TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    completed_at TEXT,
                    error TEXT
                )
            """)

            await db.execute("""
                CREATE TABLE IF NOT EXISTS restores (
                    id TEXT PRIMARY KEY,
                    backup_id TEXT NOT NULL,
                    status TEXT NOT NULL,
                    restored_by TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    completed_at TEXT,
                    error TEXT
                )
            """)

            await db.execute("""
                CREATE TABLE IF NOT EXISTS backup_schedules (
                    id TEXT PRIMARY KEY,
                    kind TEXT NOT NULL,
                    trigger_expression TEXT NOT NULL,
                    enabled INTEGER NOT NULL,
                    created_by TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)

            await db.execute("""
                CREATE INDEX IF NOT EXISTS idx_backups_created_at
                ON backups(created_at)
            """)

            await db.execute("""
                CREATE INDEX IF NOT EXISTS idx_backups_status
                ON backups(status)
            """)

            await db.execute("""
                CREATE INDEX IF NOT EXISTS idx_restores_backup_id
                ON restores(backup_id)
            """)

            await db.commit()

        logger.info("job_store_initialized", db_path=str(db_path))

    except Exception as e:
        raise JobStoreError(
            f"Failed to initialize job store: {e}",
            details={"db_path": str(db_path)},
        )


# ============================================================================
# Backups
# ============================================================================


async def insert_backup(
    db: aiosqlite.Connection,
    backup_id: str,
    kind: str,
    created_by: str,
) -> BackupRecord:
    """
    Persist a new backup in the pending state.

    Returns:
        The stored record
    """
    record = BackupRecord(
        id=backup_id,
        kind=kind,
        status="pending",
        size_bytes=0,
        artifact_location="",
        created_by=created_by,
        created_at=utc_now(),
        completed_at=None,
        error=None,
    )

    await db.execute(
        f"INSERT INTO backups ({_BACKUP_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
        (
            record["id"],
            record["kind"],
            record["status"],
            record["size_bytes"],
            record["artifact_location"],
            record["created_by"],
            record["created_at"],
            record["completed_at"],
            record["error"],
        ),
    )
    await db.commit()

    return record


async def update_backup(db: aiosqlite.Connection, backup_id: str, **fields: Any) -> bool:
    """
    Update columns of a backup record.

    Returns:
        True if a record was updated (False once it has been deleted)
    """
    assignments, params = _assignments(fields, _BACKUP_UPDATABLE)
    cursor = await db.execute(
        f"UPDATE backups SET {assignments} WHERE id = ?",
        (*params, backup_id),
    )
    await db.commit()
    return cursor.rowcount > 0


async def get_backup(db: aiosqlite.Connection, backup_id: str) -> BackupRecord | None:
    """
    Get a backup record.

    Returns:
        Backup record or None if not found
    """
    async with db.execute(
        f"SELECT {_BACKUP_COLUMNS} FROM backups WHERE id = ?",
        (backup_id,),
    ) as cursor:
        row = await cursor.fetchone()
        return _row_to_backup(row) if row else None


def _backup_filters(query: BackupQuery) -> Tuple[str, List[Any]]:
    clauses: List[str] = []
    params: List[Any] = []

    if query.kind:
        clauses.append("kind = ?")
        params.append(query.kind.value)
    if query.status:
        clauses.append("status = ?")
        params.append(query.status.value)

    where = f" WHERE {' AND '.join(clauses)}" if clauses else ""
    return where, params


async def count_backups(db: aiosqlite.Connection, query: BackupQuery) -> int:
    """Count backups matching the query's filters."""
    where, params = _backup_filters(query)
    async with db.execute(f"SELECT COUNT(*) FROM backups{where}", params) as cursor:
        row = await cursor.fetchone()
        return row[0] if row else 0


async def list_backups(db: aiosqlite.Connection, query: BackupQuery) -> List[BackupRecord]:
    """
    List backups with filtering, sorting and pagination.

    Args:
        db: SQLite database connection
        query: Validated listing parameters

    Returns:
        One page of backup records
    """
    where, params = _backup_filters(query)
    # sort_column comes from a fixed whitelist in pagination.BACKUP_SORT_FIELDS
    direction = "ASC" if query.sort_order.value == "asc" else "DESC"

    sql = (
        f"SELECT {_BACKUP_COLUMNS} FROM backups{where} "
        f"ORDER BY {query.sort_column} {direction}, id {direction} "
        "LIMIT ? OFFSET ?"
    )
    params.extend([query.limit, query.offset])

    records: List[BackupRecord] = []
    async with db.execute(sql, params) as cursor:
        async for row in cursor:
            records.append(_row_to_backup(row))

    return records


async def list_backups_created_before(
    db: aiosqlite.Connection,
    cutoff: str,
    statuses: Tuple[str, ...] = ("completed", "failed"),
) -> List[BackupRecord]:
    """Backups in the given statuses created before an ISO 8601 cutoff."""
    placeholders = ", ".join("?" for _ in statuses)
    records: List[BackupRecord] = []

    async with db.execute(
        f"""
        SELECT {_BACKUP_COLUMNS} FROM backups
        WHERE created_at < ? AND status IN ({placeholders})
        ORDER BY created_at
        """,
        (cutoff, *statuses),
    ) as cursor:
        async for row in cursor:
            records.append(_row_to_backup(row))

    return records


async def delete_backup_record(db: aiosqlite.Connection, backup_id: str) -> bool:
    """
    Delete a backup record.

    Returns:
        True if a record was deleted
    """
    cursor = await db.execute("DELETE FROM backups WHERE id = ?", (backup_id,))
    await db.commit()
    return cursor.rowcount > 0


# ============================================================================
# Restores
# ============================================================================


async def insert_restore(
    db: aiosqlite.Connection,
    restore_id: str,
    backup_id: str,
    restored_by: str,
) -> RestoreRecord:
    """Persist a new restore in the pending state."""
    record = RestoreRecord(
        id=restore_id,
        backup_id=backup_id,
        status="pending",
        restored_by=restored_by,
        created_at=utc_now(),
        completed_at=None,
        error=None,
    )

    await db.execute(
        f"INSERT INTO restores ({_RESTORE_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?)",
        (
            record["id"],
            record["backup_id"],
            record["status"],
            record["restored_by"],
            record["created_at"],
            record["completed_at"],
            record["error"],
        ),
    )
    await db.commit()

    return record


async def update_restore(db: aiosqlite.Connection, restore_id: str, **fields: Any) -> None:
    """Update columns of a restore record."""
    assignments, params = _assignments(fields, _RESTORE_UPDATABLE)
    await db.execute(
        f"UPDATE restores SET {assignments} WHERE id = ?",
        (*params, restore_id),
    )
    await db.commit()


async def get_restore(db: aiosqlite.Connection, restore_id: str) -> RestoreRecord | None:
    """Get a restore record, or None if not found."""
    async with db.execute(
        f"SELECT {_RESTORE_COLUMNS} FROM restores WHERE id = ?",
        (restore_id,),
    ) as cursor:
        row = await cursor.fetchone()
        return _row_to_restore(row) if row else None


async def list_restores(
    db: aiosqlite.Connection,
    backup_id: str | None = None,
    limit: int = 100,
) -> List[RestoreRecord]:
    """
    List restores, newest first.

    Args:
        db: SQLite database connection
        backup_id: Optional filter by source backup
        limit: Maximum results
    """
    query = f"SELECT {_RESTORE_COLUMNS} FROM restores"
    params: List[Any] = []

    if backup_id:
        query += " WHERE backup_id = ?"
        params.append(backup_id)

    query += " ORDER BY created_at DESC, id DESC LIMIT ?"
    params.append(limit)

    records: List[RestoreRecord] = []
    async with db.execute(query, params) as cursor:
        async for row in cursor:
            records.append(_row_to_restore(row))

    return records


async def count_restores(db: aiosqlite.Connection) -> int:
    async with db.execute("SELECT COUNT(*) FROM restores") as cursor:
        row = await cursor.fetchone()
        return row[0] if row else 0


# ============================================================================
# Schedules
# ============================================================================


async def insert_schedule(
    db: aiosqlite.Connection,
    schedule_id: str,
    kind: str,
    trigger_expression: str,
    enabled: bool,
    created_by: str,
) -> ScheduleRecord:
    """Persist a schedule definition."""
    now = utc_now()
    record = ScheduleRecord(
        id=schedule_id,
        kind=kind,
        trigger_expression=trigger_expression,
        enabled=enabled,
        created_by=created_by,
        created_at=now,
        updated_at=now,
    )

    await db.execute(
        f"INSERT INTO backup_schedules ({_SCHEDULE_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?)",
        (
            record["id"],
            record["kind"],
            record["trigger_expression"],
            int(record["enabled"]),
            record["created_by"],
            record["created_at"],
            record["updated_at"],
        ),
    )
    await db.commit()

    return record


async def get_schedule(db: aiosqlite.Connection, schedule_id: str) -> ScheduleRecord | None:
    """Get a schedule record, or None if not found."""
    async with db.execute(
        f"SELECT {_SCHEDULE_COLUMNS} FROM backup_schedules WHERE id = ?",
        (schedule_id,),
    ) as cursor:
        row = await cursor.fetchone()
        return _row_to_schedule(row) if row else None


async def list_schedules(
    db: aiosqlite.Connection,
    enabled: bool | None = None,
) -> List[ScheduleRecord]:
    """List schedules, oldest first, optionally filtered by enabled flag."""
    query = f"SELECT {_SCHEDULE_COLUMNS} FROM backup_schedules"
    params: List[Any] = []

    if enabled is not None:
        query += " WHERE enabled = ?"
        params.append(int(enabled))

    query += " ORDER BY created_at, id"

    records: List[ScheduleRecord] = []
    async with db.execute(query, params) as cursor:
        async for row in cursor:
            records.append(_row_to_schedule(row))

    return records


async def set_schedule_enabled(
    db: aiosqlite.Connection,
    schedule_id: str,
    enabled: bool,
) -> bool:
    """
    Flip a schedule's enabled flag.

    Returns:
        True if a record was updated
    """
    cursor = await db.execute(
        "UPDATE backup_schedules SET enabled = ?, updated_at = ? WHERE id = ?",
        (int(enabled), utc_now(), schedule_id),
    )
    await db.commit()
    return cursor.rowcount > 0


async def delete_schedule_record(db: aiosqlite.Connection, schedule_id: str) -> bool:
    """Delete a schedule record. Returns True if a record was deleted."""
    cursor = await db.execute("DELETE FROM backup_schedules WHERE id = ?", (schedule_id,))
    await db.commit()
    return cursor.rowcount > 0


# ============================================================================
# Aggregation
# ============================================================================


async def aggregate_backups(db: aiosqlite.Connection) -> dict:
    """
    Raw aggregates over the backups table.

    Returns:
        Dict with total count, total size, per-kind and per-status rows and
        the latest completion timestamp of a completed backup
    """
    result: dict = {}

    async with db.execute(
        "SELECT COUNT(*), COALESCE(SUM(size_bytes), 0) FROM backups"
    ) as cursor:
        row = await cursor.fetchone()
        result["total"] = row[0] if row else 0
        result["total_size"] = row[1] if row else 0

    async with db.execute(
        """
        SELECT kind, COUNT(*), COALESCE(SUM(size_bytes), 0)
        FROM backups GROUP BY kind ORDER BY kind
        """
    ) as cursor:
        result["by_kind"] = [(row[0], row[1], row[2]) async for row in cursor]

    async with db.execute(
        "SELECT status, COUNT(*) FROM backups GROUP BY status ORDER BY status"
    ) as cursor:
        result["by_status"] = [(row[0], row[1]) async for row in cursor]

    async with db.execute(
        "SELECT MAX(completed_at) FROM backups WHERE status = 'completed'"
    ) as cursor:
        row = await cursor.fetchone()
        result["last_completed_at"] = row[0] if row else None

    return result
