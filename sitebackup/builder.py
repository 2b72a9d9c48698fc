# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Site Backup Builder - Functional builder pattern for configuration.

This module provides pure functions for building BackupConfig objects.
Each function takes a config dict and returns a new dict with the
modification applied (immutable updates).
"""

from pathlib import Path
from typing import Any, Callable, Dict

from sitebackup import __version__
from sitebackup.config import BackupConfig


# Type alias for builder functions
ConfigDict = Dict[str, Any]
BuilderFunc = Callable[[ConfigDict], ConfigDict]


def create_empty_config() -> ConfigDict:
    """
    Create an initial empty configuration dictionary.

    Returns:
        Dict with default values for all configuration fields
    """
    return {
        "database_url": "",
        "backup_root": Path("./backups"),
        "upload_path": Path("./storage/uploads"),
        "store_path": None,
        "app_version": __version__,
        "default_page_size": 20,
        "max_page_size": 100,
        "timezone": "UTC",
    }


def with_database(config: ConfigDict, database_url: str) -> ConfigDict:
    """
    Set the relational store connection target.

    Args:
        config: Current configuration dictionary
        database_url: PostgreSQL URL passed to pg_dump / psql

    Returns:
        New configuration dictionary with database_url set
    """
    return {**config, "database_url": database_url}


def with_backup_root(config: ConfigDict, path: Path | str) -> ConfigDict:
    """
    Set the directory where backup artifacts are written.

    Args:
        config: Current configuration dictionary
        path: Backup root directory

    Returns:
        New configuration dictionary with backup_root set
    """
    return {**config, "backup_root": Path(path)}


def with_upload_path(config: ConfigDict, path: Path | str) -> ConfigDict:
    """
    Set the managed upload directory captured by files/full backups.

    Args:
        config: Current configuration dictionary
        path: Upload directory

    Returns:
        New configuration dictionary with upload_path set
    """
    return {**config, "upload_path": Path(path)}


def with_store_path(config: ConfigDict, path: Path | str) -> ConfigDict:
    """Keep job metadata in a specific SQLite file."""
    return {**config, "store_path": Path(path)}


def with_app_version(config: ConfigDict, version: str) -> ConfigDict:
    """Set the version recorded in full-backup manifests."""
    return {**config, "app_version": version}


def with_page_size(config: ConfigDict, default: int, maximum: int = 100) -> ConfigDict:
    """
    Set listing page sizes.

    Args:
        config: Current configuration dictionary
        default: Page size used when the caller gives none
        maximum: Largest page size a caller may request

    Returns:
        New configuration dictionary with page sizes set
    """
    return {**config, "default_page_size": default, "max_page_size": maximum}


def in_timezone(config: ConfigDict, timezone: str) -> ConfigDict:
    """Evaluate trigger expressions in the given IANA timezone."""
    return {**config, "timezone": timezone}


def build_config(config_dict: ConfigDict) -> BackupConfig:
    """
    Convert a configuration dictionary to an immutable BackupConfig.

    Validation happens in BackupConfig.__post_init__.

    Raises:
        ConfigurationError: If the configuration is invalid
    """
    return BackupConfig(**config_dict)


def pipe(*funcs: BuilderFunc) -> BuilderFunc:
    """
    Compose builder functions left to right.

    Example:
        configure = pipe(
            lambda c: with_database(c, "postgresql://localhost/app"),
            lambda c: with_backup_root(c, "/var/backups/app"),
        )
        config = build_config(configure(create_empty_config()))
    """

    def composed(config: ConfigDict) -> ConfigDict:
        for func in funcs:
            config = func(config)
        return config

    return composed


def build_from_steps(*steps: BuilderFunc) -> BackupConfig:
    """Apply builder steps to an empty config and build it."""
    return build_config(pipe(*steps)(create_empty_config()))


def create_config(
    database_url: str,
    backup_root: Path | str = Path("./backups"),
    upload_path: Path | str = Path("./storage/uploads"),
    store_path: Path | str | None = None,
    app_version: str | None = None,
    default_page_size: int = 20,
    max_page_size: int = 100,
    timezone: str = "UTC",
) -> BackupConfig:
    """
    Create a BackupConfig with keyword arguments.

    This is the primary user-facing way to configure the engine.

    Args:
        database_url: PostgreSQL URL for dump and restore
        backup_root: Directory for backup artifacts
        upload_path: Managed upload directory
        store_path: Job store file (default: <backup_root>/jobs.db)
        app_version: Version recorded in full-backup manifests
        default_page_size: Default listing page size
        max_page_size: Maximum listing page size
        timezone: Timezone for trigger expressions

    Returns:
        Validated, immutable BackupConfig
    """
    steps: list[BuilderFunc] = [
        lambda c: with_database(c, database_url),
        lambda c: with_backup_root(c, backup_root),
        lambda c: with_upload_path(c, upload_path),
        lambda c: with_page_size(c, default_page_size, max_page_size),
        lambda c: in_timezone(c, timezone),
    ]
    if store_path is not None:
        steps.append(lambda c: with_store_path(c, store_path))
    if app_version is not None:
        steps.append(lambda c: with_app_version(c, app_version))

    return build_from_steps(*steps)
