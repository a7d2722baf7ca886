"""
Unit tests for storage handler (s3backup/backup/storage.py).

Happy paths run against moto's mocked S3; failure paths use a MagicMock
client to produce specific botocore errors.
"""

from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError, EndpointConnectionError

from s3backup.backup.storage import (
    S3Storage,
    StorageError,
    RemoteBackupObject,
    build_endpoint_url
)

TEST_ENDPOINT = 's3.amazonaws.com'
TEST_BUCKET = 'backups'


def make_storage(bucket=TEST_BUCKET, region='us-east-1'):
    return S3Storage(
        endpoint=TEST_ENDPOINT,
        access_key='test_key',
        secret_key='test_secret',
        bucket_name=bucket,
        region=region
    )


def client_error(code, operation='Operation'):
    return ClientError({'Error': {'Code': code, 'Message': code}}, operation)


def bucket_keys(client):
    response = client.list_objects_v2(Bucket=TEST_BUCKET)
    return [obj['Key'] for obj in response.get('Contents', [])]


class TestBuildEndpointUrl:
    """Test endpoint to URL conversion."""

    @pytest.mark.parametrize("endpoint,use_ssl,expected", [
        ("play.min.io", True, "https://play.min.io"),
        ("minio.local:9000", False, "http://minio.local:9000"),
        ("http://minio.local:9000/", True, "http://minio.local:9000"),
        (" s3.amazonaws.com ", True, "https://s3.amazonaws.com"),
    ])
    def test_build_endpoint_url(self, endpoint, use_ssl, expected):
        assert build_endpoint_url(endpoint, use_ssl) == expected

    def test_storage_uses_endpoint(self, aws_credentials):
        storage = S3Storage('minio.local:9000', 'k', 's', 'b', use_ssl=False)

        assert storage.endpoint_url == 'http://minio.local:9000'
        assert storage.s3_client.meta.endpoint_url == 'http://minio.local:9000'


class TestS3StorageBucket:
    """Test bucket creation."""

    def test_ensure_bucket_creates_missing_bucket(self, s3):
        storage = make_storage()

        assert storage.ensure_bucket() is True
        assert TEST_BUCKET in [b['Name'] for b in s3.list_buckets()['Buckets']]

    def test_ensure_bucket_is_repeatable(self, s3):
        storage = make_storage()
        storage.ensure_bucket()

        # Second call either re-creates (us-east-1) or finds the owned bucket
        storage.ensure_bucket()

        assert storage.bucket_exists() is True

    def test_ensure_bucket_with_location(self, aws_credentials):
        storage = make_storage(region='eu-west-1')
        storage.s3_client = MagicMock()

        assert storage.ensure_bucket() is True
        storage.s3_client.create_bucket.assert_called_once_with(
            Bucket=TEST_BUCKET,
            CreateBucketConfiguration={'LocationConstraint': 'eu-west-1'}
        )

    def test_ensure_bucket_already_owned(self, aws_credentials):
        storage = make_storage()
        storage.s3_client = MagicMock()
        storage.s3_client.create_bucket.side_effect = client_error('BucketAlreadyOwnedByYou', 'CreateBucket')

        assert storage.ensure_bucket() is False
        storage.s3_client.head_bucket.assert_called_once_with(Bucket=TEST_BUCKET)

    def test_ensure_bucket_not_owned(self, aws_credentials):
        storage = make_storage()
        storage.s3_client = MagicMock()
        storage.s3_client.create_bucket.side_effect = client_error('BucketAlreadyExists', 'CreateBucket')
        storage.s3_client.head_bucket.side_effect = client_error('403', 'HeadBucket')

        with pytest.raises(StorageError, match='BucketAlreadyExists'):
            storage.ensure_bucket()

    def test_ensure_bucket_unreachable(self, aws_credentials):
        storage = make_storage()
        storage.s3_client = MagicMock()
        unreachable = EndpointConnectionError(endpoint_url='https://s3.amazonaws.com')
        storage.s3_client.create_bucket.side_effect = unreachable
        storage.s3_client.head_bucket.side_effect = unreachable

        with pytest.raises(StorageError, match='bucket creation failed'):
            storage.ensure_bucket()

    def test_us_east_1_has_no_location_constraint(self, aws_credentials):
        storage = make_storage()
        storage.s3_client = MagicMock()

        storage.ensure_bucket()

        storage.s3_client.create_bucket.assert_called_once_with(Bucket=TEST_BUCKET)


class TestS3StorageObjects:
    """Test upload, listing and deletion."""

    def test_upload(self, s3, tmp_path):
        s3.create_bucket(Bucket=TEST_BUCKET)
        archive = tmp_path / 'backup-2024-01-15.12-00-00.zip'
        archive.write_bytes(b'PK' * 100)

        size = make_storage().upload(str(archive), content_type='application/zip')

        assert size == 200
        head = s3.head_object(Bucket=TEST_BUCKET, Key='backup-2024-01-15.12-00-00.zip')
        assert head['ContentLength'] == 200
        assert head['ContentType'] == 'application/zip'

    def test_upload_with_explicit_key(self, s3, tmp_path):
        s3.create_bucket(Bucket=TEST_BUCKET)
        archive = tmp_path / 'local.zip'
        archive.write_bytes(b'data')

        make_storage().upload(str(archive), 'remote.zip')

        assert bucket_keys(s3) == ['remote.zip']

    def test_upload_missing_file(self, s3):
        s3.create_bucket(Bucket=TEST_BUCKET)

        with pytest.raises(StorageError, match='Local file not found'):
            make_storage().upload('/nonexistent/archive.zip')

    def test_upload_to_missing_bucket(self, s3, tmp_path):
        archive = tmp_path / 'a.zip'
        archive.write_bytes(b'data')

        with pytest.raises(StorageError, match='NoSuchBucket'):
            make_storage().upload(str(archive))

    def test_multipart_upload_for_large_files(self, s3, tmp_path, monkeypatch):
        s3.create_bucket(Bucket=TEST_BUCKET)
        monkeypatch.setattr('s3backup.backup.storage.MULTIPART_THRESHOLD', 10)
        archive = tmp_path / 'big.zip'
        archive.write_bytes(b'x' * 1000)

        size = make_storage().upload(str(archive), content_type='application/zip')

        assert size == 1000
        head = s3.head_object(Bucket=TEST_BUCKET, Key='big.zip')
        assert head['ContentLength'] == 1000

    def test_multipart_upload_aborted_on_failure(self, aws_credentials, tmp_path, monkeypatch):
        monkeypatch.setattr('s3backup.backup.storage.MULTIPART_THRESHOLD', 10)
        archive = tmp_path / 'big.zip'
        archive.write_bytes(b'x' * 1000)
        storage = make_storage()
        storage.s3_client = MagicMock()
        storage.s3_client.create_multipart_upload.return_value = {'UploadId': 'abc'}
        storage.s3_client.upload_part.side_effect = client_error('InternalError', 'UploadPart')

        with pytest.raises(StorageError, match='InternalError'):
            storage.upload(str(archive))

        storage.s3_client.abort_multipart_upload.assert_called_once_with(
            Bucket=TEST_BUCKET, Key='big.zip', UploadId='abc'
        )

    def test_list_objects_filters_by_prefix_in_name_order(self, s3):
        s3.create_bucket(Bucket=TEST_BUCKET)
        for key in ['backup-2020-01-02.00-00-00.zip', 'other-2020-01-01.00-00-00.zip',
                    'backup-2020-01-01.00-00-00.zip']:
            s3.put_object(Bucket=TEST_BUCKET, Key=key, Body=b'data')

        objects = make_storage().list_objects('backup-')

        assert [o.key for o in objects] == [
            'backup-2020-01-01.00-00-00.zip',
            'backup-2020-01-02.00-00-00.zip',
        ]
        assert all(isinstance(o, RemoteBackupObject) for o in objects)
        assert all(o.size == 4 and o.last_modified is not None for o in objects)

    def test_list_objects_empty(self, s3):
        s3.create_bucket(Bucket=TEST_BUCKET)

        assert make_storage().list_objects('backup-') == []

    def test_list_objects_drains_all_pages(self, aws_credentials):
        storage = make_storage()
        storage.s3_client = MagicMock()
        storage.s3_client.get_paginator.return_value.paginate.return_value = [
            {'Contents': [{'Key': 'backup-1.zip', 'Size': 1}]},
            {'Contents': [{'Key': 'backup-2.zip', 'Size': 2}]},
            {},
        ]

        objects = storage.list_objects('backup-')

        assert [o.key for o in objects] == ['backup-1.zip', 'backup-2.zip']

    def test_list_objects_skips_bad_entries(self, aws_credentials):
        storage = make_storage()
        storage.s3_client = MagicMock()
        storage.s3_client.get_paginator.return_value.paginate.return_value = [
            {'Contents': [{'Key': 'backup-1.zip', 'Size': 1}, {'Size': 2}, {'Key': 'backup-3.zip', 'Size': 3}]},
        ]
        errors = []

        objects = storage.list_objects('backup-', on_error=errors.append)

        assert [o.key for o in objects] == ['backup-1.zip', 'backup-3.zip']
        assert len(errors) == 1
        assert isinstance(errors[0], StorageError)

    def test_list_objects_page_error_reported(self, aws_credentials):
        def pages(**kwargs):
            yield {'Contents': [{'Key': 'backup-1.zip', 'Size': 1}]}
            raise client_error('SlowDown', 'ListObjectsV2')

        storage = make_storage()
        storage.s3_client = MagicMock()
        storage.s3_client.get_paginator.return_value.paginate.side_effect = pages
        errors = []

        objects = storage.list_objects('backup-', on_error=errors.append)

        assert [o.key for o in objects] == ['backup-1.zip']
        assert 'SlowDown' in str(errors[0])

    def test_list_objects_raises_without_handler(self, s3):
        with pytest.raises(StorageError, match='NoSuchBucket'):
            make_storage().list_objects('backup-')

    def test_delete(self, s3):
        s3.create_bucket(Bucket=TEST_BUCKET)
        s3.put_object(Bucket=TEST_BUCKET, Key='backup-old.zip', Body=b'data')
        s3.put_object(Bucket=TEST_BUCKET, Key='backup-new.zip', Body=b'data')

        make_storage().delete('backup-old.zip')

        assert bucket_keys(s3) == ['backup-new.zip']

    def test_delete_failure(self, aws_credentials):
        storage = make_storage()
        storage.s3_client = MagicMock()
        storage.s3_client.delete_object.side_effect = client_error('AccessDenied', 'DeleteObject')

        with pytest.raises(StorageError, match='AccessDenied'):
            storage.delete('backup-old.zip')

    def test_bucket_exists(self, s3):
        storage = make_storage()

        assert storage.bucket_exists() is False

        s3.create_bucket(Bucket=TEST_BUCKET)
        assert storage.bucket_exists() is True
