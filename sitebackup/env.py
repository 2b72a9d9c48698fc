# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Environment-based configuration.

Reads the small environment surface the engine consumes (backup root,
database URL, upload directory) and passes it through to create_config().
"""

from __future__ import annotations

import os
from pathlib import Path

from sitebackup.builder import create_config
from sitebackup.config import BackupConfig
from sitebackup.errors import explain_invalid_int_env, explain_missing_database_url_env
from sitebackup.exceptions import ConfigurationError


def _parse_positive_int(name: str, value: str | None, default: int) -> int:
    if not value:
        return default
    try:
        parsed = int(value)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(explain_invalid_int_env(name, value)) from exc
    if parsed < 1:
        raise ConfigurationError(explain_invalid_int_env(name, value))
    return parsed


def create_config_from_env() -> BackupConfig:
    """
    Create a BackupConfig from environment variables.

    Required:
        - DATABASE_URL: PostgreSQL URL used by pg_dump / psql

    Optional environment variables:
        - BACKUP_PATH: Backup root directory (default: ./backups)
        - UPLOAD_PATH: Managed upload directory (default: ./storage/uploads)
        - BACKUP_STORE_PATH: Job store file (default: <BACKUP_PATH>/jobs.db)
        - APP_VERSION: Version recorded in full-backup manifests
        - BACKUP_PAGE_SIZE: Default listing page size (default: 20)
        - BACKUP_SCHEDULE_TIMEZONE: Timezone for trigger expressions (default: UTC)
    """

    database_url = os.getenv("DATABASE_URL")
    if not database_url:
        raise ConfigurationError(explain_missing_database_url_env())

    store_path_env = os.getenv("BACKUP_STORE_PATH")

    return create_config(
        database_url=database_url,
        backup_root=Path(os.getenv("BACKUP_PATH", "./backups")),
        upload_path=Path(os.getenv("UPLOAD_PATH", "./storage/uploads")),
        store_path=Path(store_path_env) if store_path_env else None,
        app_version=os.getenv("APP_VERSION") or None,
        default_page_size=_parse_positive_int(
            "BACKUP_PAGE_SIZE", os.getenv("BACKUP_PAGE_SIZE"), 20
        ),
        timezone=os.getenv("BACKUP_SCHEDULE_TIMEZONE", "UTC"),
    )
