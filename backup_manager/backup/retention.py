"""
Retention policy enforcement for backups.

Deletes every object in the bucket that is at least the configured number of
days old, including archives uploaded by earlier runs.
"""

import logging
from datetime import datetime, timezone
from typing import List, Optional

from backup_manager.config import ConfigurationError
from .storage import S3Storage, StorageError

logger = logging.getLogger(__name__)


def age_in_days(now: datetime, last_modified: datetime) -> int:
    """
    Whole days elapsed between last_modified and now, rounded down.

    Naive datetimes are taken as UTC.
    """
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    if last_modified.tzinfo is None:
        last_modified = last_modified.replace(tzinfo=timezone.utc)
    return (now - last_modified).days


class RetentionManager:
    """
    Manages retention policy enforcement for a bucket.
    """

    def __init__(self, storage: S3Storage, retention_days: Optional[int]):
        """
        Initialize retention manager.

        Args:
            storage: Storage handler for the bucket
            retention_days: Objects this many days old or older are deleted

        Raises:
            ConfigurationError: If retention_days is missing or negative
        """
        if retention_days is None:
            raise ConfigurationError("GeneralConfig.DaysAfterDelete is not configured")
        if retention_days < 0:
            raise ConfigurationError(
                f"GeneralConfig.DaysAfterDelete must be >= 0, got {retention_days}"
            )

        self.storage = storage
        self.retention_days = retention_days
        self.errors: List[str] = []

    def enforce(self, now: Optional[datetime] = None) -> int:
        """
        Delete expired objects from the bucket.

        A failed deletion is logged and recorded in self.errors; the remaining
        objects are still processed.

        Args:
            now: Reference time (default: current UTC time)

        Returns:
            Number of objects deleted

        Raises:
            BucketNotFoundError: If the bucket does not exist
            StorageError: If listing fails
        """
        now = now or datetime.now(timezone.utc)
        bucket = self.storage.bucket_name

        objects = self.storage.list_objects()

        deleted_count = 0
        for obj in objects:
            if age_in_days(now, obj['LastModified']) < self.retention_days:
                continue

            logger.info(f"Deleting object {obj['Key']} in bucket {bucket}")
            try:
                self.storage.delete(obj['Key'])
                deleted_count += 1
            except StorageError as e:
                error_msg = f"Failed to delete object {obj['Key']}: {e}"
                logger.error(error_msg)
                self.errors.append(error_msg)

        logger.info(
            f"Retention enforcement complete. "
            f"Objects: {len(objects)}, "
            f"Deleted: {deleted_count}, "
            f"Errors: {len(self.errors)}"
        )

        return deleted_count


def enforce_retention_policy(
    storage: S3Storage,
    retention_days: Optional[int],
    now: Optional[datetime] = None
) -> int:
    """
    Enforce the retention policy for a bucket.

    Returns:
        Number of objects deleted
    """
    manager = RetentionManager(storage, retention_days)
    return manager.enforce(now)
