# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Example FastAPI Application with Site Backup Integration.

This example demonstrates how to mount the backup engine into a FastAPI
application with environment-driven configuration and persisted schedules.

Run with:
    uvicorn examples.basic_app:app --reload

Environment variables:
    DATABASE_URL: PostgreSQL connection URL (dumped with pg_dump)
    BACKUP_PATH: Backup root directory
    UPLOAD_PATH: Managed upload directory
    SITEBACKUP_ADMIN_API_KEY: API key for backup endpoints
"""

import os
from pathlib import Path

from fastapi import FastAPI

from sitebackup.builder import (
    build_config,
    create_empty_config,
    in_timezone,
    with_app_version,
    with_backup_root,
    with_database,
    with_upload_path,
)
from sitebackup.env import create_config_from_env
from sitebackup.exceptions import ConfigurationError
from sitebackup.integrations.fastapi import setup_backup_plugin

APP_VERSION = "1.0.0"

# Create FastAPI app
app = FastAPI(
    title="My App with Site Backup",
    description="Example application demonstrating backup, restore and scheduling",
    version=APP_VERSION,
)


def create_backup_config():
    """
    Create the backup configuration.

    Uses the environment when DATABASE_URL is set, otherwise composes a local
    development config with the functional builder.
    """
    if os.getenv("DATABASE_URL"):
        return create_config_from_env()

    config = create_empty_config()
    config = with_database(config, "postgresql://postgres@localhost:5432/app")
    config = with_backup_root(config, Path("./backups"))
    config = with_upload_path(config, Path("./storage/uploads"))
    config = with_app_version(config, APP_VERSION)
    config = in_timezone(config, os.getenv("TZ", "UTC"))
    return build_config(config)


try:
    backup_config = create_backup_config()
except ConfigurationError as e:
    raise SystemExit(f"Invalid backup configuration: {e}")

# Setup backup plugin
setup_backup_plugin(app, backup_config)


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "message": "Welcome to My App with Site Backup",
        "docs": "/docs",
        "backup_health": "/api/backup/health",
    }


# ============================================================================
# Backup Endpoints (auto-registered by plugin)
# ============================================================================
#
# GET    /api/backup/backups                     - List backups (page, limit, sortBy, sortOrder, kind, status)
# GET    /api/backup/backups/{id}                - Get one backup
# GET    /api/backup/backups/{id}/restores       - Restores performed from a backup
# DELETE /api/backup/backups/{id}                - Delete a backup and its artifact
# POST   /api/backup/backups/database            - Start a database backup (also /api/backup/database)
# POST   /api/backup/backups/files               - Start a files backup (also /api/backup/files)
# POST   /api/backup/backups/full                - Start a full backup (also /api/backup/full)
# POST   /api/backup/restore/{id}                - Restore from a completed backup
# GET    /api/backup/restores/{id}               - Get one restore
# POST   /api/backup/schedule                    - Create a schedule {kind, triggerExpression, enabled}
# GET    /api/backup/schedules                   - List schedules
# POST   /api/backup/schedules/{id}/enable       - Enable a schedule
# POST   /api/backup/schedules/{id}/disable      - Disable a schedule
# DELETE /api/backup/schedules/{id}              - Delete a schedule
# GET    /api/backup/stats                       - Backup statistics
# GET    /api/backup/health                      - Health check
#
# All endpoints require: Authorization: Bearer <SITEBACKUP_ADMIN_API_KEY>
# Pass X-Actor-Id to record who initiated a backup or restore.


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
