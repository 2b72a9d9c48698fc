# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Job Store - Persistence for backup, restore and schedule records.
"""

from sitebackup.store.sqlite_store import (
    init_store_db,
    utc_now,
    insert_backup,
    update_backup,
    get_backup,
    count_backups,
    list_backups,
    list_backups_created_before,
    delete_backup_record,
    insert_restore,
    update_restore,
    get_restore,
    list_restores,
    count_restores,
    insert_schedule,
    get_schedule,
    list_schedules,
    set_schedule_enabled,
    delete_schedule_record,
    aggregate_backups,
    BackupRecord,
    RestoreRecord,
    ScheduleRecord,
)

__all__ = [
    # Schema
    "init_store_db",
    "utc_now",
    # Backups
    "insert_backup",
    "update_backup",
    "get_backup",
    "count_backups",
    "list_backups",
    "list_backups_created_before",
    "delete_backup_record",
    # Restores
    "insert_restore",
    "update_restore",
    "get_restore",
    "list_restores",
    "count_restores",
    # Schedules
    "insert_schedule",
    "get_schedule",
    "list_schedules",
    "set_schedule_enabled",
    "delete_schedule_record",
    # Aggregation
    "aggregate_backups",
    # Types
    "BackupRecord",
    "RestoreRecord",
    "ScheduleRecord",
]
