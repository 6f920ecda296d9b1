"""
Zip archive creation for backup runs.

Files are streamed into the archive one at a time through a single buffer, so
memory use does not grow with the number or size of the inputs.
"""

import os
import time
import shutil
import zipfile
import logging
from datetime import datetime
from typing import List

logger = logging.getLogger(__name__)

# Copy buffer used for every file
BUFFER_SIZE = 1024 * 1024


class CompressionError(Exception):
    """Raised when archive creation fails."""
    pass


def create_archive(files: List[str], output_path: str, compression_level: int = 9) -> str:
    """
    Create a zip archive containing the given files.

    Each file becomes one entry named after its full path. Entries carry the
    time of archiving, not the source modification time.

    Args:
        files: Paths of the files to include, in order
        output_path: Path of the archive to write
        compression_level: Deflate level from 1 (fastest) to 9 (smallest)

    Returns:
        Path to the created archive file

    Raises:
        CompressionError: If a file cannot be read or the archive cannot be written
        ValueError: If compression_level is out of range
    """
    if not 1 <= compression_level <= 9:
        raise ValueError(
            f"Invalid compression level: {compression_level}. "
            f"Valid options: 1-9"
        )

    if not files:
        raise CompressionError("No files provided")

    total = len(files)
    logger.info(f"Zipping {total} files")

    # Partial output is left on disk when the build fails
    try:
        with zipfile.ZipFile(
            output_path, 'w',
            compression=zipfile.ZIP_DEFLATED,
            compresslevel=compression_level
        ) as zipf:
            for index, file_path in enumerate(files, start=1):
                logger.info(f"Zipping {file_path} ({index}/{total})")
                _write_entry(zipf, file_path)
    except (OSError, zipfile.BadZipFile, zipfile.LargeZipFile) as e:
        raise CompressionError(f"Failed to create archive: {e}") from e

    return output_path


def _write_entry(zipf: zipfile.ZipFile, file_path: str):
    """
    Stream one file into the archive.

    Args:
        zipf: Open ZipFile in write mode
        file_path: File to add
    """
    info = zipfile.ZipInfo(entry_name(file_path), date_time=time.localtime()[:6])
    info.compress_type = zipfile.ZIP_DEFLATED
    # ZipFile.open(info, 'w') takes the level from the ZipInfo, not the archive
    if hasattr(info, 'compress_level'):
        info.compress_level = zipf.compresslevel
    else:
        info._compresslevel = zipf.compresslevel
    # Known size lets zipfile switch to zip64 headers for large entries
    info.file_size = os.path.getsize(file_path)

    with open(file_path, 'rb') as source:
        with zipf.open(info, 'w') as dest:
            shutil.copyfileobj(source, dest, BUFFER_SIZE)


def entry_name(file_path: str) -> str:
    """
    Archive entry name for a file.

    The full path is kept, minus the drive and leading separators which zip
    entry names may not carry.

    Args:
        file_path: Source file path

    Returns:
        Entry name using forward slashes
    """
    path = os.path.splitdrive(file_path)[1]
    path = path.replace(os.sep, '/')
    if os.altsep:
        path = path.replace(os.altsep, '/')
    return path.lstrip('/')


def generate_archive_filename(started_at: datetime = None) -> str:
    """
    Generate the archive filename for a run.

    Format: {YYYY}-{MM}-{DD}-{HH}-{mm}.zip

    Args:
        started_at: Run start time (default: now)

    Returns:
        Filename (without path)
    """
    timestamp = (started_at or datetime.now()).strftime('%Y-%m-%d-%H-%M')
    return f"{timestamp}.zip"


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
    except FileNotFoundError as e:
        raise CompressionError(f"Archive not found: {archive_path}") from e
    except OSError as e:
        raise CompressionError(f"Failed to get archive size: {e}") from e
