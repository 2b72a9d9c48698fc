# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Framework Integrations - FastAPI plugin for the backup engine.
"""

from sitebackup.integrations.fastapi import (
    setup_backup_plugin,
    backup_lifespan,
    register_backup_routes,
    verify_api_key,
)

__all__ = [
    "setup_backup_plugin",
    "backup_lifespan",
    "register_backup_routes",
    "verify_api_key",
]
