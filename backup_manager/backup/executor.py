"""
Backup executor - orchestrates one backup run.

Workflow:
1. Select source files and create the zip archive
2. Upload the archive to the bucket
3. Delete bucket objects older than the retention window

Each stage is guarded on its own. A failed stage is logged and, unless
stop_on_failure is set, the next stage still runs.
"""

import os
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from backup_manager.config import Settings, ConfigurationError
from .sources import LocalSource, NoFilesFoundError, SourceError
from .compression import create_archive, generate_archive_filename, get_archive_size, CompressionError
from .storage import (
    S3Storage,
    UploadProgress,
    create_storage,
    StorageError,
    BucketNotFoundError,
    ArchiveNotFoundError
)
from .retention import RetentionManager

logger = logging.getLogger(__name__)


class BackupExecutor:
    """
    Orchestrates the complete backup workflow for one run.
    """

    STAGES = ('archive', 'upload', 'retention')

    STAGE_DESCRIPTIONS = {
        'archive': 'creating zip archive',
        'upload': 'uploading archive',
        'retention': 'deleting old backups',
    }

    def __init__(
        self,
        settings: Settings,
        temp_dir: str,
        compression_level: int = 9,
        stop_on_failure: bool = False,
        started_at: Optional[datetime] = None,
        storage: Optional[S3Storage] = None
    ):
        """
        Initialize backup executor.

        Args:
            settings: Bound settings (GeneralConfig and S3Config)
            temp_dir: Directory the archive is written to
            compression_level: Zip compression level (1-9)
            stop_on_failure: Skip the remaining stages after a failure
            started_at: Run start time, used to name the archive (default: now)
            storage: Storage handler (default: built from settings.store)
        """
        self.settings = settings
        self.temp_dir = temp_dir
        self.compression_level = compression_level
        self.stop_on_failure = stop_on_failure
        self.started_at = started_at or datetime.now()
        self.archive_path = os.path.join(temp_dir, generate_archive_filename(self.started_at))

        self._storage = storage
        self.archive_created = False
        self.file_count = 0
        self.archive_size = None
        self.s3_key = None
        self.deleted_count = None
        self.failed_stages: Dict[str, str] = {}
        self.logs: List[str] = []

    def execute(self) -> Dict[str, Any]:
        """
        Execute the backup run.

        Stage errors are logged, never raised.

        Returns:
            Summary dict of the run
        """
        for stage in self.STAGES:
            if self.failed_stages and self.stop_on_failure:
                self._log(f"Skipping {stage} stage after earlier failure")
                continue

            try:
                getattr(self, f"_{stage}_stage")()
            except Exception as e:
                self.failed_stages[stage] = type(e).__name__
                self._log_failure(stage, e)

        return {
            'archive_path': self.archive_path,
            'file_count': self.file_count,
            'archive_size': self.archive_size,
            's3_key': self.s3_key,
            'deleted_count': self.deleted_count,
            'failed_stages': dict(self.failed_stages),
            'logs': self.logs
        }

    def _archive_stage(self):
        """
        Select source files and write them to the archive.

        Raises:
            NoFilesFoundError: If no file is eligible
            SourceError: If a directory cannot be read
            CompressionError: If the archive cannot be written
        """
        general = self.settings.general

        source = LocalSource(general.directories, general.ignores)
        files = source.select()
        self.file_count = len(files)

        os.makedirs(self.temp_dir, exist_ok=True)

        create_archive(files, self.archive_path, self.compression_level)
        self.archive_created = True
        self.archive_size = get_archive_size(self.archive_path)
        self._log(
            f"Archive created: {os.path.basename(self.archive_path)} "
            f"({self.archive_size / 1024 / 1024:.2f} MB)"
        )

    def _upload_stage(self):
        """
        Upload the archive to the bucket under its filename.

        Raises:
            BucketNotFoundError: If the bucket does not exist
            ArchiveNotFoundError: If no complete archive was produced
            StorageError: If upload fails
        """
        storage = self._get_storage()

        # A partial archive left by a failed build is not a backup
        if not self.archive_created:
            storage.ensure_bucket()
            raise ArchiveNotFoundError(f"Could not find a completed archive: {self.archive_path}")

        self._log(f"Uploading {os.path.basename(self.archive_path)} to bucket {storage.bucket_name}")
        self.s3_key = storage.upload(self.archive_path, on_progress=UploadProgress())
        self._log(f"Uploaded to S3: {self.s3_key}")

    def _retention_stage(self):
        """
        Delete objects older than the retention window.

        Raises:
            BucketNotFoundError: If the bucket does not exist
            ConfigurationError: If DaysAfterDelete is missing or invalid
        """
        manager = RetentionManager(self._get_storage(), self.settings.general.days_after_delete)
        self.deleted_count = manager.enforce()
        self._log(f"Deleted {self.deleted_count} old backups")

        for error in manager.errors:
            self.logs.append(error)

    def _get_storage(self) -> S3Storage:
        """
        Storage handler for the configured bucket, created on first use.

        Raises:
            ConfigurationError: If S3Config is incomplete
        """
        if self._storage is None:
            self._storage = create_storage(self.settings.store)
        return self._storage

    def _log_failure(self, stage: str, error: Exception):
        """
        Log a stage failure with a message specific to the error kind.

        Args:
            stage: Stage name
            error: Raised exception
        """
        description = self.STAGE_DESCRIPTIONS[stage]

        if isinstance(error, NoFilesFoundError):
            message = "There are no files to zip, check the config."
        elif isinstance(error, BucketNotFoundError):
            message = f"BucketNotFound while {description}: {error}"
        elif isinstance(error, ArchiveNotFoundError):
            message = f"FileNotFound while {description}: {error}"
        elif isinstance(error, (SourceError, CompressionError, StorageError, ConfigurationError)):
            message = f"Error while {description}: {error}"
        else:
            message = f"Unhandled exception while {description}. {error}"

        self._log(message, level=logging.ERROR)

    def _log(self, message: str, level: int = logging.INFO):
        """
        Record a run log message and emit it.

        Args:
            message: Log message
            level: Logging level
        """
        self.logs.append(message)
        logger.log(level, message)


def execute_backup(settings: Settings, temp_dir: str, **kwargs) -> Dict[str, Any]:
    """
    Execute one backup run.

    Args:
        settings: Bound settings
        temp_dir: Directory the archive is written to
        **kwargs: Extra BackupExecutor arguments

    Returns:
        Summary dict from BackupExecutor.execute()
    """
    executor = BackupExecutor(settings, temp_dir, **kwargs)
    return executor.execute()
