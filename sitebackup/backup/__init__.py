# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Backup Engine - Backup lifecycle and restore operations.
"""

from sitebackup.backup.orchestrator import (
    create_backup,
    create_database_backup,
    create_files_backup,
    create_full_backup,
    get_backup_job,
    list_backup_jobs,
    delete_backup,
    prune_old_backups,
)

from sitebackup.backup.restore import (
    restore_from_backup,
    get_restore_job,
    list_restore_jobs,
)

__all__ = [
    # Orchestrator
    "create_backup",
    "create_database_backup",
    "create_files_backup",
    "create_full_backup",
    "get_backup_job",
    "list_backup_jobs",
    "delete_backup",
    "prune_old_backups",
    # Restore
    "restore_from_backup",
    "get_restore_job",
    "list_restore_jobs",
]
