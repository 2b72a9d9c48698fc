# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Pagination helpers for backup listings.

Listing parameters are validated here, before any query runs, so bad
input surfaces as a ValidationError rather than a database error.
"""

import math
from dataclasses import dataclass
from typing import Any, Dict, TypedDict

from sitebackup.config import BackupConfig, BackupKind, JobStatus, SortOrder
from sitebackup.errors import explain_invalid_choice
from sitebackup.exceptions import ValidationError

# API sort field -> store column
BACKUP_SORT_FIELDS: Dict[str, str] = {
    "kind": "kind",
    "status": "status",
    "sizeBytes": "size_bytes",
    "createdAt": "created_at",
    "completedAt": "completed_at",
}


class PaginationMeta(TypedDict):
    page: int
    limit: int
    total: int
    totalPages: int
    hasNext: bool
    hasPrev: bool


@dataclass(frozen=True)
class BackupQuery:
    """Validated listing parameters."""

    page: int
    limit: int
    sort_column: str
    sort_order: SortOrder
    kind: BackupKind | None = None
    status: JobStatus | None = None

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit


def _as_int(field: str, value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError(
            f"{field} must be an integer, got {value!r}",
            details={"field": field},
        ) from exc


def build_backup_query(
    config: BackupConfig,
    page: Any = 1,
    limit: Any = None,
    sort_by: str | None = "createdAt",
    sort_order: str | None = "desc",
    kind: str | None = None,
    status: str | None = None,
) -> BackupQuery:
    """
    Validate listing parameters.

    Raises:
        ValidationError: If any parameter is out of range or unknown
    """
    page_num = _as_int("page", page if page is not None else 1)
    if page_num < 1:
        raise ValidationError("page must be at least 1", details={"page": page_num})

    limit_num = _as_int("limit", limit if limit is not None else config.default_page_size)
    if not 1 <= limit_num <= config.max_page_size:
        raise ValidationError(
            f"limit must be between 1 and {config.max_page_size}",
            details={"limit": limit_num},
        )

    sort_by = sort_by or "createdAt"
    if sort_by not in BACKUP_SORT_FIELDS:
        raise ValidationError(explain_invalid_choice("sortBy", sort_by, BACKUP_SORT_FIELDS))

    try:
        order = SortOrder((sort_order or "desc").lower())
    except ValueError as exc:
        raise ValidationError(
            explain_invalid_choice("sortOrder", sort_order, [o.value for o in SortOrder])
        ) from exc

    try:
        kind_filter = BackupKind(kind) if kind else None
    except ValueError as exc:
        raise ValidationError(
            explain_invalid_choice("kind", kind, [k.value for k in BackupKind])
        ) from exc

    try:
        status_filter = JobStatus(status) if status else None
    except ValueError as exc:
        raise ValidationError(
            explain_invalid_choice("status", status, [s.value for s in JobStatus])
        ) from exc

    return BackupQuery(
        page=page_num,
        limit=limit_num,
        sort_column=BACKUP_SORT_FIELDS[sort_by],
        sort_order=order,
        kind=kind_filter,
        status=status_filter,
    )


def calculate_pagination(page: int, limit: int, total: int) -> PaginationMeta:
    """Pagination metadata for a listing response."""
    total_pages = math.ceil(total / limit) if limit else 0
    return PaginationMeta(
        page=page,
        limit=limit,
        total=total,
        totalPages=total_pages,
        hasNext=page < total_pages,
        hasPrev=page > 1,
    )
