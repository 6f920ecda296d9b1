"""
Backup module for the backup manager.

This module handles the core backup functionality including:
- File selection
- Zip archive creation
- Storage (S3-compatible buckets)
- Retention policy enforcement
- Execution orchestration
"""

from .executor import BackupExecutor, execute_backup
from .sources import LocalSource, select_files
from .compression import create_archive
from .storage import S3Storage, UploadProgress
from .retention import RetentionManager

__all__ = [
    'BackupExecutor',
    'execute_backup',
    'LocalSource',
    'select_files',
    'create_archive',
    'S3Storage',
    'UploadProgress',
    'RetentionManager'
]
