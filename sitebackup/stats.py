# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Backup statistics - Read-side aggregation over the job store.
"""

from dataclasses import dataclass, field
from typing import List

import aiosqlite

from sitebackup.core import EngineState
from sitebackup.store import aggregate_backups


@dataclass
class KindBreakdown:
    kind: str
    count: int
    size_bytes: int


@dataclass
class StatusBreakdown:
    status: str
    count: int


@dataclass
class BackupStats:
    """Summary of every backup in the job store."""

    total_backups: int = 0
    total_size_bytes: int = 0
    by_type: List[KindBreakdown] = field(default_factory=list)
    by_status: List[StatusBreakdown] = field(default_factory=list)
    last_successful_backup_at: str | None = None

    def to_dict(self) -> dict:
        return {
            "totalBackups": self.total_backups,
            "totalSizeBytes": self.total_size_bytes,
            "byType": [
                {"kind": k.kind, "count": k.count, "sizeBytes": k.size_bytes}
                for k in self.by_type
            ],
            "byStatus": [{"status": s.status, "count": s.count} for s in self.by_status],
            "lastSuccessfulBackupAt": self.last_successful_backup_at,
        }


async def get_backup_stats(state: EngineState) -> BackupStats:
    """
    Aggregate job counts, sizes and status distribution.

    No side effects. An empty store yields zero totals, empty breakdowns
    and no last successful backup.
    """
    async with aiosqlite.connect(state["store_db_path"]) as db:
        raw = await aggregate_backups(db)

    return BackupStats(
        total_backups=raw["total"],
        total_size_bytes=raw["total_size"],
        by_type=[KindBreakdown(kind, count, size) for kind, count, size in raw["by_kind"]],
        by_status=[StatusBreakdown(status, count) for status, count in raw["by_status"]],
        last_successful_backup_at=raw["last_completed_at"],
    )
