# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Dump Adapter - Produce and replay relational store dumps.

The orchestrators only see the DumpAdapter protocol; PgDumpAdapter is the
PostgreSQL implementation built on the pg_dump and psql client binaries.
Calls are synchronous and blocking, with no retry policy of their own.
"""

import shutil
import subprocess
from pathlib import Path
from typing import Protocol, Sequence
from urllib.parse import urlsplit, urlunsplit

import structlog

from sitebackup.exceptions import ExternalToolError

logger = structlog.get_logger()


class DumpAdapter(Protocol):
    """Protocol for dump producers/consumers."""

    def dump(self, connection_target: str, dest_file_path: Path) -> None:
        """
        Write a dump of the store at connection_target to dest_file_path.

        Raises:
            ExternalToolError: If the dump cannot be produced
        """
        ...

    def restore(self, connection_target: str, source_file_path: Path) -> None:
        """
        Replay the dump at source_file_path into connection_target.

        Raises:
            ExternalToolError: If the dump cannot be replayed
        """
        ...


def to_libpq_url(url: str) -> str:
    """
    Strip a SQLAlchemy-style driver suffix so libpq tools accept the URL.

    'postgresql+asyncpg://u:p@h/db' -> 'postgresql://u:p@h/db'
    """
    parts = urlsplit(url)
    scheme = parts.scheme.split("+", 1)[0]
    return urlunsplit((scheme, parts.netloc, parts.path, parts.query, parts.fragment))


class PgDumpAdapter:
    """
    PostgreSQL dump adapter.

    Dumps are plain SQL written with --clean --if-exists, so replaying one
    into a populated database drops and recreates the dumped objects
    instead of colliding with them. psql runs with ON_ERROR_STOP so a
    failing statement is reported as a failed restore.
    """

    def __init__(
        self,
        pg_dump_bin: str = "pg_dump",
        psql_bin: str = "psql",
        extra_dump_args: Sequence[str] = ("--no-owner", "--no-privileges"),
    ):
        self.pg_dump_bin = pg_dump_bin
        self.psql_bin = psql_bin
        self.extra_dump_args = tuple(extra_dump_args)

    def dump(self, connection_target: str, dest_file_path: Path) -> None:
        args = [
            self.pg_dump_bin,
            "--clean",
            "--if-exists",
            *self.extra_dump_args,
            "--file",
            str(dest_file_path),
            "--dbname",
            to_libpq_url(connection_target),
        ]
        self._run(args, "pg_dump")
        logger.debug("database_dumped", dest_file_path=str(dest_file_path))

    def restore(self, connection_target: str, source_file_path: Path) -> None:
        if not Path(source_file_path).is_file():
            raise ExternalToolError(
                f"Dump file not found: {source_file_path}",
                details={"source_file_path": str(source_file_path)},
            )
        args = [
            self.psql_bin,
            "--quiet",
            "--set",
            "ON_ERROR_STOP=1",
            "--file",
            str(source_file_path),
            "--dbname",
            to_libpq_url(connection_target),
        ]
        self._run(args, "psql")
        logger.debug("database_restored", source_file_path=str(source_file_path))

    def _run(self, args: list, tool: str) -> None:
        if shutil.which(args[0]) is None:
            raise ExternalToolError(
                f"{tool} executable not found: {args[0]}",
                details={"tool": tool},
            )

        try:
            completed = subprocess.run(
                args,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                check=False,
            )
        except OSError as e:
            raise ExternalToolError(f"{tool} could not be started: {e}") from e

        if completed.returncode != 0:
            stderr = completed.stderr.decode("utf-8", errors="ignore").strip()
            raise ExternalToolError(
                f"{tool} failed: {stderr or 'exit code ' + str(completed.returncode)}",
                details={"tool": tool, "returncode": completed.returncode},
            )
