"""
Shared pytest fixtures for backup manager tests.

This module provides fixtures for:
- Fake AWS credentials and a mocked S3 bucket (moto)
- S3Storage bound to the mocked bucket
- Temporary source trees and settings
"""

import json

import pytest
import boto3
from moto import mock_aws

from backup_manager.config import Settings, BackupConfig, StoreConfig
from backup_manager.backup.storage import S3Storage


@pytest.fixture(autouse=True)
def aws_credentials(monkeypatch):
    """Fake credentials so boto3 never reaches a real account."""
    monkeypatch.setenv('AWS_ACCESS_KEY_ID', 'testing')
    monkeypatch.setenv('AWS_SECRET_ACCESS_KEY', 'testing')
    monkeypatch.setenv('AWS_DEFAULT_REGION', 'us-east-1')


@pytest.fixture
def mock_s3():
    """
    Mock S3 service using moto.

    Creates a test bucket 'test-bucket' in us-east-1 region.
    """
    with mock_aws():
        s3 = boto3.resource('s3', region_name='us-east-1')
        s3.create_bucket(Bucket='test-bucket')

        yield s3


@pytest.fixture
def s3_storage(mock_s3):
    """S3Storage bound to the mocked 'test-bucket'."""
    return S3Storage(
        access_key='test_access_key',
        secret_key='test_secret_key',
        bucket_name='test-bucket',
        region='us-east-1'
    )


@pytest.fixture
def temp_files(tmp_path):
    """
    Create temporary test files and directories.

    Creates:
    - source/test_file1.txt
    - source/test_file2.log
    - source/nested/test_file3.txt
    - source/scratch.TMP (excluded when ignoring .tmp)
    """
    source = tmp_path / 'source'
    source.mkdir()

    (source / 'test_file1.txt').write_text('Test content 1')
    (source / 'test_file2.log').write_text('Test log content')

    nested_dir = source / 'nested'
    nested_dir.mkdir()
    (nested_dir / 'test_file3.txt').write_text('Nested test content')

    (source / 'scratch.TMP').write_bytes(b'scratch data')

    return source


@pytest.fixture
def data_dirs(tmp_path):
    """
    Two source directories:
    - data/a: x.txt, y.tmp
    - data/b: z.txt
    """
    dir_a = tmp_path / 'data' / 'a'
    dir_b = tmp_path / 'data' / 'b'
    dir_a.mkdir(parents=True)
    dir_b.mkdir(parents=True)

    (dir_a / 'x.txt').write_text('x content')
    (dir_a / 'y.tmp').write_text('temporary')
    (dir_b / 'z.txt').write_text('z content')

    return dir_a, dir_b


@pytest.fixture
def settings(data_dirs):
    """Settings backing up data/a and data/b to 'test-bucket'."""
    dir_a, dir_b = data_dirs
    return Settings(
        general=BackupConfig(
            directories=[str(dir_a), str(dir_b)],
            ignores=['.tmp'],
            days_after_delete=7
        ),
        store=StoreConfig(
            region_endpoint='us-east-1',
            access_key_id='test_access_key',
            access_key='test_secret_key',
            bucket_name='test-bucket'
        )
    )


@pytest.fixture
def settings_file(tmp_path, data_dirs):
    """Write an appsettings.json for data/a and data/b."""
    dir_a, dir_b = data_dirs
    path = tmp_path / 'appsettings.json'
    path.write_text(json.dumps({
        'GeneralConfig': {
            'Directories': [str(dir_a), str(dir_b)],
            'Ignores': ['.tmp'],
            'DaysAfterDelete': 7
        },
        'S3Config': {
            'ServiceUrl': '',
            'RegionEndpoint': 'us-east-1',
            'AccessKeyId': 'test_access_key',
            'AccessKey': 'test_secret_key',
            'BucketName': 'test-bucket'
        }
    }))
    return path
