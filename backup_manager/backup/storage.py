"""
S3 storage handler for backup archives.

Works against AWS S3 or any S3-compatible service (custom endpoint URL and
region). Every operation confirms that the bucket exists before touching it.
"""

import os
import logging
from typing import Any, Callable, Dict, List, Optional

import boto3
from botocore.exceptions import ClientError, BotoCoreError

from backup_manager.config import StoreConfig

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int], None]

# Error codes S3-compatible services return for a missing bucket
MISSING_BUCKET_CODES = ('404', 'NoSuchBucket', 'NotFound')

# S3 limit on parts per multipart upload
MAX_PARTS = 10000


class StorageError(Exception):
    """Raised when storage operation fails."""
    pass


class BucketNotFoundError(StorageError):
    """Raised when the target bucket does not exist."""
    pass


class ArchiveNotFoundError(StorageError):
    """Raised when the local file to upload does not exist."""
    pass


class UploadProgress:
    """
    Logs upload progress for a single upload.

    Repeated notifications of the same percentage are logged once.
    """

    def __init__(self, label: str = 'backup'):
        self.label = label
        self.last_percent = -1

    def __call__(self, percent: int):
        if percent != self.last_percent:
            self.last_percent = percent
            logger.info(f"Upload status of {self.label}: {percent}%")


class S3Storage:
    """
    Handler for storing backups in an S3 bucket.

    Archives are stored at the bucket root under their own filename.
    """

    def __init__(
        self,
        access_key: str,
        secret_key: str,
        bucket_name: str,
        region: Optional[str] = None,
        endpoint_url: Optional[str] = None,
        multipart_threshold: int = 8 * 1024 * 1024,
        chunk_size: int = 8 * 1024 * 1024
    ):
        """
        Initialize S3 storage handler.

        Args:
            access_key: Access key ID
            secret_key: Secret access key
            bucket_name: Bucket name
            region: Region name (optional)
            endpoint_url: Service URL of an S3-compatible provider (optional)
            multipart_threshold: Files larger than this use multipart upload
            chunk_size: Part size for multipart uploads (S3 minimum is 5MB)
        """
        self.bucket_name = bucket_name
        self.region = region
        self.endpoint_url = endpoint_url
        self.multipart_threshold = multipart_threshold
        self.chunk_size = chunk_size

        try:
            self.s3_client = boto3.client(
                's3',
                aws_access_key_id=access_key,
                aws_secret_access_key=secret_key,
                region_name=region,
                endpoint_url=endpoint_url
            )
        except (BotoCoreError, ValueError) as e:
            raise StorageError(f"Failed to initialize S3 client: {e}") from e

    def bucket_exists(self) -> bool:
        """
        Check whether the bucket exists.

        Returns:
            True if the bucket exists, False if it does not

        Raises:
            StorageError: If the check itself fails (access denied, network error)
        """
        try:
            self.s3_client.head_bucket(Bucket=self.bucket_name)
            return True
        except ClientError as e:
            error_code = e.response.get('Error', {}).get('Code', 'Unknown')
            if error_code in MISSING_BUCKET_CODES:
                return False
            elif error_code == '403':
                raise StorageError(f"Access denied to bucket: {self.bucket_name}") from e
            else:
                raise StorageError(f"S3 bucket check failed ({error_code}): {e}") from e
        except BotoCoreError as e:
            raise StorageError(f"Failed to connect to S3: {e}") from e

    def ensure_bucket(self):
        """Raise BucketNotFoundError unless the bucket exists."""
        if not self.bucket_exists():
            raise BucketNotFoundError(f"Bucket doesn't exist. ({self.bucket_name})")

    def upload(
        self,
        local_path: str,
        key: Optional[str] = None,
        on_progress: Optional[ProgressCallback] = None
    ) -> str:
        """
        Upload a file to the bucket.

        Args:
            local_path: Path to local archive file
            key: Object key (default: the file's basename)
            on_progress: Optional callable receiving the percentage uploaded

        Returns:
            Key of the uploaded object

        Raises:
            BucketNotFoundError: If the bucket does not exist
            ArchiveNotFoundError: If local_path does not exist
            StorageError: If upload fails
        """
        self.ensure_bucket()

        if not os.path.isfile(local_path):
            raise ArchiveNotFoundError(f"Could not find file: {local_path}")

        s3_key = key or os.path.basename(local_path)

        try:
            file_size = os.path.getsize(local_path)

            if file_size > self.multipart_threshold:
                self._multipart_upload(local_path, s3_key, file_size, on_progress)
            else:
                self._simple_upload(local_path, s3_key)
                if on_progress:
                    on_progress(100)

            return s3_key

        except ClientError as e:
            error_code = e.response.get('Error', {}).get('Code', 'Unknown')
            raise StorageError(f"S3 upload failed ({error_code}): {e}") from e
        except BotoCoreError as e:
            raise StorageError(f"S3 upload failed: {e}") from e
        except OSError as e:
            raise StorageError(f"Failed to read {local_path}: {e}") from e

    def _simple_upload(self, local_path: str, s3_key: str):
        """
        Upload file using simple put_object.

        Args:
            local_path: Path to local file
            s3_key: S3 object key
        """
        with open(local_path, 'rb') as f:
            self.s3_client.put_object(
                Bucket=self.bucket_name,
                Key=s3_key,
                Body=f
            )

    def _multipart_upload(
        self,
        local_path: str,
        s3_key: str,
        file_size: int,
        on_progress: Optional[ProgressCallback] = None
    ):
        """
        Upload large file using multipart upload.

        Progress is reported after each completed part. The part size grows
        past chunk_size when needed to stay within MAX_PARTS.

        Args:
            local_path: Path to local file
            s3_key: S3 object key
            file_size: Size of file in bytes
            on_progress: Optional callable receiving the percentage uploaded
        """
        response = self.s3_client.create_multipart_upload(
            Bucket=self.bucket_name,
            Key=s3_key
        )
        upload_id = response['UploadId']

        parts = []
        uploaded = 0
        part_size = max(self.chunk_size, -(-file_size // MAX_PARTS))

        try:
            with open(local_path, 'rb') as f:
                part_number = 1

                while True:
                    data = f.read(part_size)
                    if not data:
                        break

                    response = self.s3_client.upload_part(
                        Bucket=self.bucket_name,
                        Key=s3_key,
                        PartNumber=part_number,
                        UploadId=upload_id,
                        Body=data
                    )

                    parts.append({
                        'PartNumber': part_number,
                        'ETag': response['ETag']
                    })

                    uploaded += len(data)
                    if on_progress:
                        on_progress(uploaded * 100 // file_size)

                    part_number += 1

            self.s3_client.complete_multipart_upload(
                Bucket=self.bucket_name,
                Key=s3_key,
                UploadId=upload_id,
                MultipartUpload={'Parts': parts}
            )

        except (ClientError, BotoCoreError, OSError):
            try:
                self.s3_client.abort_multipart_upload(
                    Bucket=self.bucket_name,
                    Key=s3_key,
                    UploadId=upload_id
                )
            except (ClientError, BotoCoreError) as abort_error:
                logger.warning(f"Failed to abort multipart upload {upload_id}: {abort_error}")
            raise

    def list_objects(self) -> List[Dict[str, Any]]:
        """
        List every object in the bucket.

        Returns:
            List of dicts with 'Key', 'LastModified', and 'Size' keys

        Raises:
            BucketNotFoundError: If the bucket does not exist
            StorageError: If listing fails
        """
        self.ensure_bucket()

        try:
            objects = []
            paginator = self.s3_client.get_paginator('list_objects_v2')

            for page in paginator.paginate(Bucket=self.bucket_name):
                for obj in page.get('Contents', []):
                    objects.append({
                        'Key': obj['Key'],
                        'LastModified': obj['LastModified'],
                        'Size': obj['Size']
                    })

            return objects

        except ClientError as e:
            error_code = e.response.get('Error', {}).get('Code', 'Unknown')
            raise StorageError(f"S3 list failed ({error_code}): {e}") from e
        except BotoCoreError as e:
            raise StorageError(f"Failed to list S3 objects: {e}") from e

    def delete(self, s3_key: str):
        """
        Delete an object from the bucket.

        Args:
            s3_key: S3 object key to delete

        Raises:
            BucketNotFoundError: If the bucket does not exist
            StorageError: If deletion fails
        """
        self.ensure_bucket()

        try:
            self.s3_client.delete_object(
                Bucket=self.bucket_name,
                Key=s3_key
            )
        except ClientError as e:
            error_code = e.response.get('Error', {}).get('Code', 'Unknown')
            raise StorageError(f"S3 delete failed ({error_code}): {e}") from e
        except BotoCoreError as e:
            raise StorageError(f"Failed to delete from S3: {e}") from e


def create_storage(store_config: StoreConfig, **kwargs) -> S3Storage:
    """
    Create an S3Storage from the S3Config settings section.

    Args:
        store_config: StoreConfig with credentials and bucket
        **kwargs: Extra S3Storage arguments (multipart_threshold, chunk_size)

    Returns:
        S3Storage instance

    Raises:
        ConfigurationError: If the bucket or credentials are not configured
    """
    return S3Storage(
        access_key=store_config.require('access_key_id'),
        secret_key=store_config.require('access_key'),
        bucket_name=store_config.require('bucket_name'),
        region=store_config.region_endpoint or None,
        endpoint_url=store_config.service_url or None,
        **kwargs
    )
