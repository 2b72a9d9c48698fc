# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Site Backup - Backup, restore and scheduling engine for a web application.

Produces point-in-time backups of the relational store and the upload
directory, restores from them, runs recurring backups on cron triggers and
keeps a job history with statistics. Package name: sitebackup.
"""

__version__ = "0.1.0"

# Configuration creation (user-facing API)
from sitebackup.builder import create_config

# Core functions
from sitebackup.core import (
    initialize_engine_state,
    shutdown_engine_state,
)

# Environment-based configuration
from sitebackup.env import create_config_from_env

# Backup and restore operations
from sitebackup.backup import (
    create_backup,
    create_database_backup,
    create_files_backup,
    create_full_backup,
    delete_backup,
    restore_from_backup,
)
from sitebackup.scheduler import BackupScheduler
from sitebackup.stats import get_backup_stats

__all__ = [
    # Version
    "__version__",
    # Configuration creation (primary user-facing APIs)
    "create_config",
    "create_config_from_env",
    # Engine lifecycle
    "initialize_engine_state",
    "shutdown_engine_state",
    # Operations
    "create_backup",
    "create_database_backup",
    "create_files_backup",
    "create_full_backup",
    "delete_backup",
    "restore_from_backup",
    "BackupScheduler",
    "get_backup_stats",
]
