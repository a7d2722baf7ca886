"""
Object store handler for backup archives.

S3Storage talks to AWS S3 or any S3-compatible server (MinIO, Ceph RGW, ...)
through boto3, using path-style addressing so custom endpoints work without
wildcard DNS.
"""

import os
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, List, Callable
import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import ClientError, BotoCoreError


logger = logging.getLogger(__name__)

# Use multipart upload for files larger than this
MULTIPART_THRESHOLD = 100 * 1024 * 1024  # 100MB
MULTIPART_CHUNK_SIZE = 10 * 1024 * 1024  # 10MB


class StorageError(Exception):
    """Raised when storage operation fails."""
    pass


@dataclass(frozen=True)
class RemoteBackupObject:
    """A backup object as reported by the store listing."""

    key: str
    size: int
    last_modified: Optional[datetime] = None


def build_endpoint_url(endpoint: str, use_ssl: bool = True) -> str:
    """
    Turn a 'host[:port]' endpoint into a URL.

    Endpoints that already carry a scheme are returned unchanged.
    """
    endpoint = endpoint.strip().rstrip('/')
    if '://' in endpoint:
        return endpoint
    scheme = 'https' if use_ssl else 'http'
    return f"{scheme}://{endpoint}"


def _error_code(e: ClientError) -> str:
    return e.response.get('Error', {}).get('Code', 'Unknown')


class S3Storage:
    """
    Handler for backup archives in an S3-compatible bucket.

    Objects are stored at the bucket root under their archive file name, so
    a prefix listing returns them in name (and therefore creation) order.
    """

    def __init__(self, endpoint: str, access_key: str, secret_key: str, bucket_name: str,
                 region: str = 'us-east-1', use_ssl: bool = True):
        """
        Initialize S3 storage handler.

        Args:
            endpoint: Server endpoint, 'host[:port]' or a full URL
            access_key: Access key ID
            secret_key: Secret access key
            bucket_name: Bucket name
            region: Bucket location (default: us-east-1)
            use_ssl: Use https when the endpoint has no scheme
        """
        self.bucket_name = bucket_name
        self.region = region
        self.endpoint_url = build_endpoint_url(endpoint, use_ssl)

        try:
            self.s3_client = boto3.client(
                's3',
                endpoint_url=self.endpoint_url,
                aws_access_key_id=access_key,
                aws_secret_access_key=secret_key,
                region_name=region,
                config=BotoConfig(s3={'addressing_style': 'path'})
            )
        except Exception as e:
            raise StorageError(f"Failed to initialize S3 client: {e}")

    def ensure_bucket(self) -> bool:
        """
        Create the bucket unless we already own it.

        Returns:
            True if the bucket was created, False if it already existed

        Raises:
            StorageError: If the bucket can neither be created nor found
        """
        params = {'Bucket': self.bucket_name}
        # us-east-1 rejects an explicit location constraint
        if self.region and self.region != 'us-east-1':
            params['CreateBucketConfiguration'] = {'LocationConstraint': self.region}

        try:
            self.s3_client.create_bucket(**params)
            return True
        except (ClientError, BotoCoreError) as create_error:
            logger.debug(f"create_bucket failed for {self.bucket_name}: {create_error}")
            # Happens when the tool runs more than once against the same bucket
            if self.bucket_exists():
                return False
            if isinstance(create_error, ClientError):
                raise StorageError(f"S3 bucket creation failed ({_error_code(create_error)}): {create_error}")
            raise StorageError(f"S3 bucket creation failed: {create_error}")

    def bucket_exists(self) -> bool:
        """
        Check whether the bucket exists and is accessible with our credentials.

        head_bucket cannot tell an owned bucket from one we were merely granted
        access to, so this is the closest check to "already owned" the S3 API
        offers without listing every bucket of the account.

        Returns:
            True if head_bucket succeeds, False otherwise
        """
        try:
            self.s3_client.head_bucket(Bucket=self.bucket_name)
            return True
        except (ClientError, BotoCoreError) as e:
            logger.debug(f"head_bucket failed for {self.bucket_name}: {e}")
            return False

    def upload(self, local_path: str, key: Optional[str] = None,
               content_type: str = 'application/octet-stream') -> int:
        """
        Upload a local file to the bucket.

        Args:
            local_path: Path to local archive file
            key: Object key (default: the file name)
            content_type: Content-Type stored with the object

        Returns:
            Number of bytes uploaded

        Raises:
            StorageError: If upload fails
        """
        if not os.path.exists(local_path):
            raise StorageError(f"Local file not found: {local_path}")

        key = key or os.path.basename(local_path)

        try:
            file_size = os.path.getsize(local_path)

            if file_size > MULTIPART_THRESHOLD:
                self._multipart_upload(local_path, key, content_type)
            else:
                self._simple_upload(local_path, key, content_type)

            return file_size

        except ClientError as e:
            raise StorageError(f"S3 upload failed ({_error_code(e)}): {e}")
        except BotoCoreError as e:
            raise StorageError(f"S3 upload failed: {e}")
        except OSError as e:
            raise StorageError(f"Failed to read {local_path} for upload: {e}")

    def _simple_upload(self, local_path: str, key: str, content_type: str):
        with open(local_path, 'rb') as f:
            self.s3_client.put_object(
                Bucket=self.bucket_name,
                Key=key,
                Body=f,
                ContentType=content_type
            )

    def _multipart_upload(self, local_path: str, key: str, content_type: str):
        """
        Upload a large file in MULTIPART_CHUNK_SIZE parts.

        The multipart upload is aborted if any part fails.
        """
        response = self.s3_client.create_multipart_upload(
            Bucket=self.bucket_name,
            Key=key,
            ContentType=content_type
        )
        upload_id = response['UploadId']

        parts = []

        try:
            with open(local_path, 'rb') as f:
                part_number = 1

                while True:
                    data = f.read(MULTIPART_CHUNK_SIZE)
                    if not data:
                        break

                    response = self.s3_client.upload_part(
                        Bucket=self.bucket_name,
                        Key=key,
                        PartNumber=part_number,
                        UploadId=upload_id,
                        Body=data
                    )

                    parts.append({
                        'PartNumber': part_number,
                        'ETag': response['ETag']
                    })

                    part_number += 1

            self.s3_client.complete_multipart_upload(
                Bucket=self.bucket_name,
                Key=key,
                UploadId=upload_id,
                MultipartUpload={'Parts': parts}
            )

        except Exception:
            try:
                self.s3_client.abort_multipart_upload(
                    Bucket=self.bucket_name,
                    Key=key,
                    UploadId=upload_id
                )
            except (ClientError, BotoCoreError) as abort_error:
                logger.warning(f"Failed to abort multipart upload {upload_id}: {abort_error}")
            raise

    def delete(self, key: str):
        """
        Delete an object from the bucket.

        Args:
            key: Object key to delete

        Raises:
            StorageError: If deletion fails
        """
        try:
            self.s3_client.delete_object(
                Bucket=self.bucket_name,
                Key=key
            )
        except ClientError as e:
            raise StorageError(f"S3 delete failed ({_error_code(e)}): {e}")
        except BotoCoreError as e:
            raise StorageError(f"Failed to delete {key}: {e}")

    def list_objects(self, prefix: str,
                     on_error: Optional[Callable[[StorageError], None]] = None) -> List[RemoteBackupObject]:
        """
        List every object whose key starts with prefix.

        The listing is fully drained before returning, so callers never
        modify the bucket while a listing cursor is open.

        Args:
            prefix: Key prefix to filter by
            on_error: Called with a StorageError for each entry (or page)
                that cannot be read. Without it the first error is raised.

        Returns:
            RemoteBackupObject list in the store's listing order

        Raises:
            StorageError: If listing fails and no on_error handler is given
        """
        objects = []

        def report(error: StorageError):
            if on_error is None:
                raise error
            on_error(error)

        paginator = self.s3_client.get_paginator('list_objects_v2')

        try:
            for page in paginator.paginate(Bucket=self.bucket_name, Prefix=prefix):
                for entry in page.get('Contents', []):
                    try:
                        objects.append(RemoteBackupObject(
                            key=entry['Key'],
                            size=entry.get('Size', 0),
                            last_modified=entry.get('LastModified')
                        ))
                    except KeyError as e:
                        report(StorageError(f"Malformed listing entry, missing {e}: {entry!r}"))

        except ClientError as e:
            report(StorageError(f"S3 list failed ({_error_code(e)}): {e}"))
        except BotoCoreError as e:
            report(StorageError(f"Failed to list S3 objects: {e}"))

        return objects
