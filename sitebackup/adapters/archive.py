# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Archive Adapter - ZIP containers for files and full backups.

Entries are collected on an ArchiveHandle and written in one pass, so a
container on disk is either complete or absent (write to temp, then
rename). All calls are synchronous and blocking; orchestrators run them in
a worker thread.
"""

import os
import zipfile
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from typing import List, Tuple

import structlog

from sitebackup.exceptions import ExternalToolError

logger = structlog.get_logger()


@dataclass
class ArchiveHandle:
    """An archive being assembled. Entries are (source, arcname) pairs."""

    files: List[Tuple[Path, str]] = field(default_factory=list)
    directories: List[str] = field(default_factory=list)
    blobs: List[Tuple[bytes, str]] = field(default_factory=list)

    @property
    def entry_count(self) -> int:
        return len(self.files) + len(self.directories) + len(self.blobs)


def _arcname(*parts: str) -> str:
    """Join archive path parts with forward slashes, dropping empties."""
    joined = PurePosixPath(*[p.strip("/") for p in parts if p and p.strip("/")])
    return str(joined)


def create_archive() -> ArchiveHandle:
    """Start a new, empty archive."""
    return ArchiveHandle()


def add_file(handle: ArchiveHandle, source_path: Path, dest_path: str) -> None:
    """
    Add a single file to the archive.

    Args:
        handle: Archive being assembled
        source_path: File on disk
        dest_path: Entry name inside the archive (e.g. 'database.sql')

    Raises:
        ExternalToolError: If the source file does not exist
    """
    source_path = Path(source_path)
    if not source_path.is_file():
        raise ExternalToolError(
            f"Cannot add missing file to archive: {source_path}",
            details={"source_path": str(source_path)},
        )
    handle.files.append((source_path, _arcname(dest_path)))


def add_bytes(handle: ArchiveHandle, data: bytes, dest_path: str) -> None:
    """Add an in-memory entry (used for the full-backup manifest)."""
    handle.blobs.append((data, _arcname(dest_path)))


def add_directory(handle: ArchiveHandle, source_dir: Path, dest_prefix: str) -> int:
    """
    Add a directory tree under a prefix.

    Directory entries are recorded too, so empty directories (including the
    root itself) survive a round trip.

    Args:
        handle: Archive being assembled
        source_dir: Directory on disk
        dest_prefix: Prefix inside the archive (e.g. 'uploads')

    Returns:
        Number of files added

    Raises:
        ExternalToolError: If the source directory does not exist
    """
    source_dir = Path(source_dir)
    if not source_dir.is_dir():
        raise ExternalToolError(
            f"Cannot add missing directory to archive: {source_dir}",
            details={"source_dir": str(source_dir)},
        )

    prefix = _arcname(dest_prefix)
    handle.directories.append(prefix + "/")
    file_count = 0

    for root, dirs, files in os.walk(source_dir):
        dirs.sort()
        rel_root = Path(root).relative_to(source_dir).as_posix()
        rel_root = "" if rel_root == "." else rel_root

        for name in dirs:
            handle.directories.append(_arcname(prefix, rel_root, name) + "/")
        for name in sorted(files):
            handle.files.append((Path(root) / name, _arcname(prefix, rel_root, name)))
            file_count += 1

    return file_count


def write(handle: ArchiveHandle, dest_path: Path) -> int:
    """
    Write the assembled archive to disk.

    Args:
        handle: Archive being assembled
        dest_path: Final container path

    Returns:
        Size of the written container in bytes

    Raises:
        ExternalToolError: If any entry cannot be read or the file cannot be written
    """
    dest_path = Path(dest_path)
    temp_path = dest_path.with_name(dest_path.name + ".tmp")

    try:
        dest_path.parent.mkdir(parents=True, exist_ok=True)
        with zipfile.ZipFile(temp_path, "w", compression=zipfile.ZIP_DEFLATED) as zf:
            for directory in handle.directories:
                zf.writestr(zipfile.ZipInfo(directory), b"")
            for source, arcname in handle.files:
                zf.write(source, arcname)
            for data, arcname in handle.blobs:
                zf.writestr(arcname, data)

        temp_path.replace(dest_path)

    except (OSError, zipfile.BadZipFile, ValueError) as e:
        temp_path.unlink(missing_ok=True)
        raise ExternalToolError(
            f"Failed to write archive: {e}",
            details={"dest_path": str(dest_path)},
        ) from e

    size = dest_path.stat().st_size
    logger.debug(
        "archive_written",
        dest_path=str(dest_path),
        entries=handle.entry_count,
        size=size,
    )
    return size


def open_archive(path: Path) -> zipfile.ZipFile:
    """
    Open an existing container for reading.

    The caller owns the returned ZipFile and should close it (it is a
    context manager).

    Raises:
        ExternalToolError: If the file is missing or not a valid container
    """
    try:
        return zipfile.ZipFile(Path(path), "r")
    except (OSError, zipfile.BadZipFile) as e:
        raise ExternalToolError(
            f"Failed to open archive: {e}",
            details={"path": str(path)},
        ) from e


def extract_all(handle: zipfile.ZipFile, dest_dir: Path) -> None:
    """
    Extract every entry into dest_dir.

    Raises:
        ExternalToolError: If an entry would escape dest_dir or extraction fails
    """
    dest_dir = Path(dest_dir)

    # Security: Check for path traversal
    for name in handle.namelist():
        if name.startswith("/") or ".." in PurePosixPath(name).parts:
            raise ExternalToolError(
                f"Unsafe path in archive: {name}",
                details={"dest_dir": str(dest_dir)},
            )

    try:
        dest_dir.mkdir(parents=True, exist_ok=True)
        handle.extractall(dest_dir)
    except (OSError, zipfile.BadZipFile) as e:
        raise ExternalToolError(
            f"Failed to extract archive: {e}",
            details={"dest_dir": str(dest_dir)},
        ) from e
