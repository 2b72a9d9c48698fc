# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Adapters - Black-box wrappers around the archive format and the dump tool.
"""

from sitebackup.adapters import archive
from sitebackup.adapters.dump import DumpAdapter, PgDumpAdapter, to_libpq_url

__all__ = [
    "archive",
    "DumpAdapter",
    "PgDumpAdapter",
    "to_libpq_url",
]
