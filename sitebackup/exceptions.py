# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Site Backup Exceptions - Custom exceptions for the sitebackup package.
"""


class SiteBackupError(Exception):
    """Base exception for all sitebackup errors."""

    def __init__(self, message: str, details: dict | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


class ConfigurationError(SiteBackupError):
    """Raised when configuration is invalid."""

    pass


class ValidationError(SiteBackupError):
    """Raised when request parameters are invalid. No state is changed."""

    pass


class ScheduleValidationError(ValidationError):
    """Raised when a trigger expression cannot be parsed."""

    pass


class NotFoundError(SiteBackupError):
    """Raised when a backup, restore or schedule id is unknown."""

    pass


class PreconditionError(SiteBackupError):
    """Raised when a restore is requested against an unusable backup."""

    pass


class ArtifactMissingError(PreconditionError):
    """Raised when a completed backup's artifact is gone from disk."""

    pass


class ExternalToolError(SiteBackupError):
    """Raised when the dump tool or the archive layer fails."""

    pass


class JobStoreError(SiteBackupError):
    """Raised when the job store cannot be initialized."""

    pass
