"""
Unit tests for backup executor (backup_manager/backup/executor.py).

Tests BackupExecutor stage sequencing and failure handling.
"""

import os
import zipfile
from datetime import datetime
from unittest.mock import MagicMock, patch

import pytest
from moto import mock_aws

from backup_manager.config import StoreConfig
from backup_manager.backup.executor import BackupExecutor, execute_backup
from backup_manager.backup.storage import StorageError


STARTED_AT = datetime(2024, 1, 15, 2, 0)


def _mock_storage():
    storage = MagicMock()
    storage.bucket_name = 'test-bucket'
    storage.upload.return_value = '2024-01-15-02-00.zip'
    storage.list_objects.return_value = []
    return storage


class TestBackupExecutor:
    """Test BackupExecutor class."""

    def test_executor_initialization(self, settings, tmp_path):
        executor = BackupExecutor(settings, str(tmp_path / 'temp'), started_at=STARTED_AT)

        assert executor.settings is settings
        assert executor.archive_path == os.path.join(str(tmp_path / 'temp'), '2024-01-15-02-00.zip')
        assert executor.failed_stages == {}
        assert executor.logs == []

    def test_executor_successful_backup(self, settings, tmp_path):
        """Test that all three stages run against the same storage."""
        storage = _mock_storage()
        temp_dir = tmp_path / 'temp'

        executor = BackupExecutor(settings, str(temp_dir), started_at=STARTED_AT, storage=storage)
        summary = executor.execute()

        assert summary['failed_stages'] == {}
        assert summary['file_count'] == 2
        assert summary['s3_key'] == '2024-01-15-02-00.zip'
        assert summary['deleted_count'] == 0
        assert summary['archive_size'] > 0

        # Temp directory is created on demand and the archive is kept
        assert os.path.exists(summary['archive_path'])
        with zipfile.ZipFile(summary['archive_path']) as zipf:
            assert len(zipf.namelist()) == 2

        storage.upload.assert_called_once()
        assert storage.upload.call_args.args[0] == summary['archive_path']
        storage.list_objects.assert_called_once()

    def test_no_files_still_attempts_later_stages(self, settings, tmp_path):
        """Test best-effort sequencing after an archive failure."""
        settings.general.ignores = ['.txt', '.tmp']
        storage = _mock_storage()

        executor = BackupExecutor(settings, str(tmp_path / 'temp'), started_at=STARTED_AT, storage=storage)
        summary = executor.execute()

        assert summary['failed_stages'] == {
            'archive': 'NoFilesFoundError',
            'upload': 'ArchiveNotFoundError'
        }
        assert "There are no files to zip, check the config." in summary['logs']
        assert any(log.startswith('FileNotFound while uploading archive') for log in summary['logs'])

        # Upload never transfers a missing or partial archive; retention still runs
        storage.upload.assert_not_called()
        storage.ensure_bucket.assert_called_once()
        storage.list_objects.assert_called_once()

    def test_partial_archive_is_not_uploaded(self, settings, tmp_path):
        """Test that a failed build's output is never uploaded."""
        storage = _mock_storage()

        with patch('backup_manager.backup.executor.create_archive') as mock_create:
            def write_partial(files, output_path, level):
                with open(output_path, 'wb') as f:
                    f.write(b'PK partial')
                raise OSError('disk full')
            mock_create.side_effect = write_partial

            executor = BackupExecutor(settings, str(tmp_path / 'temp'), started_at=STARTED_AT, storage=storage)
            summary = executor.execute()

        assert summary['failed_stages']['archive'] == 'OSError'
        assert summary['failed_stages']['upload'] == 'ArchiveNotFoundError'
        assert os.path.exists(summary['archive_path'])
        storage.upload.assert_not_called()
        assert any(log.startswith('Unhandled exception while creating zip archive') for log in summary['logs'])

    def test_stop_on_failure_skips_remaining_stages(self, settings, tmp_path):
        settings.general.directories = [str(tmp_path / 'missing')]
        storage = _mock_storage()

        executor = BackupExecutor(
            settings, str(tmp_path / 'temp'),
            stop_on_failure=True, started_at=STARTED_AT, storage=storage
        )
        summary = executor.execute()

        assert summary['failed_stages'] == {'archive': 'SourceError'}
        assert 'Skipping upload stage after earlier failure' in summary['logs']
        assert 'Skipping retention stage after earlier failure' in summary['logs']
        storage.upload.assert_not_called()
        storage.list_objects.assert_not_called()

    def test_upload_failure_does_not_skip_retention(self, settings, tmp_path):
        storage = _mock_storage()
        storage.upload.side_effect = StorageError('S3 upload failed (InternalError)')

        summary = BackupExecutor(settings, str(tmp_path / 'temp'), storage=storage).execute()

        assert summary['failed_stages'] == {'upload': 'StorageError'}
        assert 'Error while uploading archive: S3 upload failed (InternalError)' in summary['logs']
        storage.list_objects.assert_called_once()

    def test_missing_retention_days_fails_retention_stage(self, settings, tmp_path):
        settings.general.days_after_delete = None
        storage = _mock_storage()

        summary = BackupExecutor(settings, str(tmp_path / 'temp'), storage=storage).execute()

        assert summary['failed_stages'] == {'retention': 'ConfigurationError'}
        assert summary['deleted_count'] is None
        storage.list_objects.assert_not_called()

    def test_incomplete_store_config_fails_storage_stages(self, settings, tmp_path):
        """Test that S3Config errors surface at point of use."""
        settings.store = StoreConfig()

        summary = BackupExecutor(settings, str(tmp_path / 'temp')).execute()

        assert summary['failed_stages'] == {
            'upload': 'ConfigurationError',
            'retention': 'ConfigurationError'
        }
        assert os.path.exists(summary['archive_path'])

    def test_retention_delete_errors_are_logged(self, settings, tmp_path):
        storage = _mock_storage()
        storage.list_objects.return_value = [
            {'Key': 'ancient.zip', 'LastModified': datetime(2000, 1, 1), 'Size': 1}
        ]
        storage.delete.side_effect = StorageError('S3 delete failed (AccessDenied)')

        summary = BackupExecutor(settings, str(tmp_path / 'temp'), storage=storage).execute()

        assert summary['failed_stages'] == {}
        assert summary['deleted_count'] == 0
        assert any('ancient.zip' in log for log in summary['logs'])

    def test_unexpected_error_is_contained(self, settings, tmp_path):
        storage = _mock_storage()
        storage.list_objects.side_effect = RuntimeError('boom')

        summary = BackupExecutor(settings, str(tmp_path / 'temp'), storage=storage).execute()

        assert summary['failed_stages'] == {'retention': 'RuntimeError'}
        assert 'Unhandled exception while deleting old backups. boom' in summary['logs']


class TestExecutorWithS3:
    """End-to-end runs against a mocked bucket."""

    def test_run_uploads_archive_and_prunes(self, settings, mock_s3, tmp_path):
        bucket = mock_s3.Bucket('test-bucket')
        bucket.put_object(Key='2023-12-01-02-00.zip', Body=b'old backup')

        settings.general.days_after_delete = 0

        summary = execute_backup(settings, str(tmp_path / 'temp'), started_at=STARTED_AT)

        # Retention covers the whole bucket, including this run's archive
        assert summary['failed_stages'] == {}
        assert summary['s3_key'] == '2024-01-15-02-00.zip'
        assert summary['deleted_count'] == 2

    def test_run_keeps_new_archive(self, settings, mock_s3, tmp_path):
        summary = execute_backup(settings, str(tmp_path / 'temp'), started_at=STARTED_AT)

        keys = [obj.key for obj in mock_s3.Bucket('test-bucket').objects.all()]
        assert keys == ['2024-01-15-02-00.zip']
        assert summary['deleted_count'] == 0

    @mock_aws
    def test_missing_bucket_scenario(self, settings, data_dirs, tmp_path):
        """Test that a missing bucket fails upload while the archive stays on disk."""
        dir_a, dir_b = data_dirs

        summary = execute_backup(settings, str(tmp_path / 'temp'), started_at=STARTED_AT)

        assert summary['failed_stages'] == {
            'upload': 'BucketNotFoundError',
            'retention': 'BucketNotFoundError'
        }
        assert any(log.startswith('BucketNotFound while uploading archive') for log in summary['logs'])

        assert os.path.exists(summary['archive_path'])
        with zipfile.ZipFile(summary['archive_path']) as zipf:
            names = set(zipf.namelist())
        assert names == {
            str(dir_a / 'x.txt').lstrip('/'),
            str(dir_b / 'z.txt').lstrip('/')
        }
