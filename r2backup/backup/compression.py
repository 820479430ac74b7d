"""
Archive creation for backups.

Supports two modes (see ``CompressionMode``):
- zstd: tar stream piped through a multithreaded zstd compressor (.tar.zst)
- none: plain tar (.tar)
"""

import logging
import os
import tarfile
from datetime import datetime
from typing import Iterable, List, Optional

import zstandard as zstd

from r2backup.models import Archive, CompressionMode


logger = logging.getLogger(__name__)

# Anything at or below this is treated as a failed archive, not an empty backup.
MIN_ARCHIVE_SIZE = 1024


class CompressionError(Exception):
    """Raised when archive creation fails."""
    pass


class NoValidPathsError(CompressionError):
    """Raised when none of the candidate source paths exist."""
    pass


class ArchiveTooSmallError(CompressionError):
    """Raised when the finished archive is missing or implausibly small."""
    pass


def filter_existing_paths(source_paths: Iterable[str]) -> List[str]:
    """
    Keep only the source paths that currently exist.

    Args:
        source_paths: Candidate file/directory paths

    Returns:
        Existing paths, in input order

    Raises:
        NoValidPathsError: If no path survives filtering
    """
    valid_paths = []

    for path in source_paths:
        path = path.strip()
        if not path:
            continue
        if os.path.lexists(path):
            valid_paths.append(path)
            logger.info(f"Adding to backup: {path}")
        else:
            logger.warning(f"Path does not exist, skipping: {path}")

    if not valid_paths:
        raise NoValidPathsError("No valid paths to back up")

    return valid_paths


def generate_archive_filename(prefix: str, mode: CompressionMode, now: Optional[datetime] = None) -> str:
    """
    Generate a standardized archive filename.

    Format: {prefix}_{YYYYMMDD_HHMMSS}.{tar|tar.zst}

    Args:
        prefix: Backup name (also the remote key prefix)
        mode: Compression mode
        now: Timestamp to embed (default: current local time)

    Returns:
        Filename (without path)
    """
    timestamp = (now or datetime.now()).strftime('%Y%m%d_%H%M%S')
    return f"{prefix}_{timestamp}.{mode.extension}"


def _arcname(path: str) -> str:
    # Same member names as `tar -cf - /abs/path`: absolute path, leading slash dropped
    return os.path.abspath(path).lstrip(os.sep)


def create_archive(
    source_paths: Iterable[str],
    output_dir: str,
    prefix: str,
    mode: CompressionMode,
    now: Optional[datetime] = None
) -> Archive:
    """
    Create one archive from the existing subset of source paths.

    Args:
        source_paths: Candidate file/directory paths; missing ones are skipped
        output_dir: Directory the archive is written to
        prefix: Backup name used for the archive filename
        mode: Compression mode
        now: Timestamp for the filename (default: current local time)

    Returns:
        Archive describing the created file

    Raises:
        NoValidPathsError: If none of the source paths exist (no file is created)
        ArchiveTooSmallError: If the result is not larger than MIN_ARCHIVE_SIZE
        CompressionError: If writing the archive fails
    """
    valid_paths = filter_existing_paths(source_paths)

    archive_path = os.path.join(output_dir, generate_archive_filename(prefix, mode, now))
    logger.info(f"Creating archive: {os.path.basename(archive_path)} ({mode.label})")

    try:
        if mode.enabled:
            _create_tar_zstd(valid_paths, archive_path, mode.level)
        else:
            _create_tar(valid_paths, archive_path)
    except Exception as e:
        _remove_partial(archive_path)
        raise CompressionError(f"Failed to create archive: {e}")

    if not os.path.isfile(archive_path):
        raise ArchiveTooSmallError(f"Archive file was not created: {archive_path}")

    size = get_archive_size(archive_path)
    if size <= MIN_ARCHIVE_SIZE:
        _remove_partial(archive_path)
        raise ArchiveTooSmallError(
            f"Archive file is too small ({size} bytes), indicating creation failure"
        )

    logger.info(f"Archive created successfully: {os.path.basename(archive_path)} (size: {size} bytes)")
    return Archive(path=archive_path, size=size, compressed=mode.enabled)


def _self_exclusion_filter(archive_path: str):
    """Build a tarfile filter that drops the archive being written."""
    own_name = _arcname(archive_path)

    def _filter(tarinfo: tarfile.TarInfo) -> Optional[tarfile.TarInfo]:
        if tarinfo.name == own_name:
            logger.debug(f"Excluding archive from its own contents: {archive_path}")
            return None
        return tarinfo

    return _filter


def _add_member(tar: tarfile.TarFile, path: str, exclude_self) -> bool:
    """Add one entry without recursing; unreadable or vanished entries are skipped."""
    try:
        tar.add(path, arcname=_arcname(path), recursive=False, filter=exclude_self)
        return True
    except OSError as e:
        logger.warning(f"Skipping unreadable path {path}: {e}")
        return False


def _add_paths(tar: tarfile.TarFile, source_paths: List[str], archive_path: str):
    """
    Add every source path, walking directories one entry at a time.

    A single entry that cannot be read does not fail the archive; the size
    check in ``create_archive`` catches the case where nothing was readable.
    """
    exclude_self = _self_exclusion_filter(archive_path)
    skipped = 0

    def _walk_error(e: OSError):
        nonlocal skipped
        skipped += 1
        logger.warning(f"Skipping unreadable directory {e.filename}: {e}")

    for source_path in source_paths:
        if os.path.islink(source_path) or not os.path.isdir(source_path):
            skipped += not _add_member(tar, source_path, exclude_self)
            continue

        for dirpath, dirnames, filenames in os.walk(source_path, onerror=_walk_error):
            dirnames.sort()
            skipped += not _add_member(tar, dirpath, exclude_self)

            # Symlinked directories are stored as links, not descended into
            entries = sorted(filenames) + [d for d in dirnames if os.path.islink(os.path.join(dirpath, d))]
            for name in entries:
                skipped += not _add_member(tar, os.path.join(dirpath, name), exclude_self)

    if skipped:
        logger.warning(f"{skipped} path(s) could not be read and were left out of the archive")


def _create_tar(source_paths: List[str], archive_path: str):
    """
    Write an uncompressed tar archive.

    Args:
        source_paths: Existing paths to include
        archive_path: Output archive path
    """
    with tarfile.open(archive_path, 'w') as tar:
        _add_paths(tar, source_paths, archive_path)


def _create_tar_zstd(source_paths: List[str], archive_path: str, level: int):
    """
    Stream a tar archive straight into a zstd compressor.

    The tar is never materialized uncompressed; ``threads=-1`` lets zstd use
    every available core.

    Args:
        source_paths: Existing paths to include
        archive_path: Output archive path
        level: zstd compression level (1-22)
    """
    compressor = zstd.ZstdCompressor(level=level, threads=-1)

    with open(archive_path, 'wb') as fh:
        with compressor.stream_writer(fh, closefd=False) as writer:
            with tarfile.open(fileobj=writer, mode='w|') as tar:
                _add_paths(tar, source_paths, archive_path)


def _remove_partial(archive_path: str):
    if os.path.exists(archive_path):
        try:
            os.remove(archive_path)
        except OSError as e:
            logger.warning(f"Failed to remove partial archive {archive_path}: {e}")


def get_archive_size(archive_path: str) -> int:
    """
    Get the size of an archive file in bytes.

    Args:
        archive_path: Path to the archive file

    Returns:
        File size in bytes

    Raises:
        CompressionError: If file doesn't exist or cannot be accessed
    """
    try:
        return os.path.getsize(archive_path)
    except FileNotFoundError:
        raise CompressionError(f"Archive not found: {archive_path}")
    except OSError as e:
        raise CompressionError(f"Failed to get archive size: {e}")
