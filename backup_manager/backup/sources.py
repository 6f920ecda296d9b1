"""
File selection for backup runs.

Walks the configured directories and returns every file that is not excluded
by its extension.
"""

import os
import logging
from typing import Iterable, Iterator, List

logger = logging.getLogger(__name__)


class SourceError(Exception):
    """Raised when source files cannot be enumerated."""
    pass


class NoFilesFoundError(SourceError):
    """Raised when the configured directories contain no eligible files."""
    pass


def _directory_key(path: str):
    stat = os.stat(path)
    return stat.st_dev, stat.st_ino


class LocalSource:
    """
    Handler for local filesystem sources.

    Recursively enumerates files under each directory, skipping names that end
    with one of the ignored extensions (case-insensitive).
    """

    def __init__(self, directories: List[str], ignored_extensions: Iterable[str] = None):
        """
        Initialize local source handler.

        Args:
            directories: Directories to walk, in order
            ignored_extensions: Extensions to exclude (e.g., .tmp, .log)
        """
        self.directories = list(directories or [])
        self.ignored_extensions = tuple(
            ext.lower() for ext in (ignored_extensions or []) if ext
        )

    def _should_exclude(self, filename: str) -> bool:
        """
        Check if a file name ends with an ignored extension.

        Args:
            filename: File name or path to check

        Returns:
            True if the file should be skipped
        """
        if not self.ignored_extensions:
            return False
        return filename.lower().endswith(self.ignored_extensions)

    def _walk(self, directory: str) -> Iterator[str]:
        """
        Yield files under a directory, files of a directory before its subdirectories.

        Directory symlinks are followed. A link pointing back to one of its own
        ancestors is reported instead of being walked forever.

        Raises:
            SourceError: If the directory is missing, cannot be read, or
                contains a symlink cycle
        """
        root_path = os.path.abspath(directory)

        if not os.path.isdir(root_path):
            raise SourceError(f"Directory does not exist: {directory}")

        def raise_error(error: OSError):
            raise error

        try:
            # (st_dev, st_ino) of every directory on the path from root_path
            ancestors = {root_path: {_directory_key(root_path)}}

            for root, dirnames, filenames in os.walk(root_path, onerror=raise_error, followlinks=True):
                seen = ancestors.pop(root)

                dirnames.sort()
                for name in dirnames:
                    path = os.path.join(root, name)
                    key = _directory_key(path)
                    if key in seen:
                        raise SourceError(f"Symlink cycle detected at {path}")
                    ancestors[path] = seen | {key}

                for name in sorted(filenames):
                    if not self._should_exclude(name):
                        yield os.path.join(root, name)
        except PermissionError as e:
            raise SourceError(f"Permission denied accessing {e.filename or directory}: {e}") from e
        except OSError as e:
            raise SourceError(f"Failed to read {e.filename or directory}: {e}") from e

    def select(self) -> List[str]:
        """
        Collect files from every configured directory.

        Files reachable through more than one directory are listed once per
        directory.

        Returns:
            List of absolute file paths

        Raises:
            SourceError: If a directory cannot be read
            NoFilesFoundError: If no file is left after filtering
        """
        files = []

        for directory in self.directories:
            found = list(self._walk(directory))
            logger.debug(f"Found {len(found)} files in {directory}")
            files.extend(found)

        if not files:
            raise NoFilesFoundError("There are no files to back up, check the config")

        return files


def select_files(directories: List[str], ignored_extensions: Iterable[str] = None) -> List[str]:
    """
    Select backup files from the given directories.

    Args:
        directories: Directories to walk
        ignored_extensions: Extensions to exclude

    Returns:
        List of absolute file paths
    """
    return LocalSource(directories, ignored_extensions).select()
