# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Site Backup Configuration - Immutable configuration data structures.

All configuration is frozen (immutable) after creation to prevent
accidental modification while backups and restores are in flight.
"""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import List
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from sitebackup import __version__


class BackupKind(str, Enum):
    """What a backup captures."""

    DATABASE = "database"  # Relational store dump only
    FILES = "files"  # Upload directory only
    FULL = "full"  # Dump + uploads + manifest in one archive


class JobStatus(str, Enum):
    """Lifecycle of a backup or restore job."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class SortOrder(str, Enum):
    """Sort direction for listings."""

    ASC = "asc"
    DESC = "desc"


def _validate_database_url(url: str) -> bool:
    """Accept postgres URLs, optionally with a SQLAlchemy driver suffix."""
    if not url:
        return False
    scheme = url.split("://", 1)[0].split("+", 1)[0].lower()
    return "://" in url and scheme in ("postgres", "postgresql")


def _validate_timezone(name: str) -> bool:
    try:
        ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        return False
    return True


def _is_nested(a: Path, b: Path) -> bool:
    """True if either resolved path lies inside the other."""
    return a.is_relative_to(b) or b.is_relative_to(a)


@dataclass(frozen=True)
class BackupConfig:
    """
    Immutable configuration for the backup engine.

    Paths are shared, unsynchronized filesystem locations: the backup root
    holds one artifact per job, the upload path is the managed directory
    captured by files/full backups and replaced by files/full restores.
    """

    # Required: connection target handed to pg_dump / psql
    database_url: str

    # Directory holding backup artifacts
    backup_root: Path = field(default_factory=lambda: Path("./backups"))

    # Managed upload directory
    upload_path: Path = field(default_factory=lambda: Path("./storage/uploads"))

    # Job store database file (default: <backup_root>/jobs.db)
    store_path: Path | None = None

    # Version written into full-backup manifests
    app_version: str = __version__

    # Listing defaults
    default_page_size: int = 20
    max_page_size: int = 100

    # Timezone trigger expressions are evaluated in
    timezone: str = "UTC"

    def __post_init__(self) -> None:
        """Validate configuration after creation."""
        errors: List[str] = []

        if not _validate_database_url(self.database_url):
            errors.append(
                f"Invalid database_url: {self.database_url!r}, expected postgresql://..."
            )

        if self.max_page_size < 1:
            errors.append(f"max_page_size must be >= 1, got {self.max_page_size}")

        if not 1 <= self.default_page_size <= max(self.max_page_size, 1):
            errors.append(
                f"default_page_size must be between 1 and {self.max_page_size}, "
                f"got {self.default_page_size}"
            )

        if not _validate_timezone(self.timezone):
            errors.append(f"Unknown timezone: {self.timezone}")

        # A files restore replaces upload_path wholesale, so neither tree may
        # contain the other and the job store must live outside the uploads.
        backup_root = Path(self.backup_root).resolve()
        upload_path = Path(self.upload_path).resolve()
        store_path = self.resolved_store_path.resolve()

        if backup_root == upload_path:
            errors.append("backup_root and upload_path must be different directories")
        elif _is_nested(backup_root, upload_path):
            errors.append(
                f"backup_root ({backup_root}) and upload_path ({upload_path}) "
                "must not be nested inside each other"
            )

        if store_path.is_relative_to(upload_path):
            errors.append(f"store_path ({store_path}) must not be inside upload_path")

        if errors:
            from sitebackup.exceptions import ConfigurationError

            raise ConfigurationError(
                "Configuration validation failed",
                details={"errors": errors},
            )

    @property
    def resolved_store_path(self) -> Path:
        """Job store location, defaulting to a file inside the backup root."""
        if self.store_path is not None:
            return Path(self.store_path)
        return Path(self.backup_root) / "jobs.db"

    def with_updates(self, **kwargs) -> "BackupConfig":
        """
        Create a new config with updated values.

        Since the config is frozen, this creates a new instance.
        """
        from dataclasses import asdict

        current = asdict(self)
        current.update(kwargs)
        return BackupConfig(**current)
