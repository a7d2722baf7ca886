"""
Shared pytest fixtures for s3backup tests.

This module provides fixtures for:
- Settings factories
- Source folders with sample content
- Mocked S3 (moto) with fake credentials
- Remote object listings
"""

from datetime import datetime
from dataclasses import replace
from unittest.mock import MagicMock

import pytest
import boto3
from moto import mock_aws

from s3backup.config import BackupSettings
from s3backup.backup.storage import RemoteBackupObject


TEST_ENDPOINT = 's3.amazonaws.com'
TEST_BUCKET = 'backups'


@pytest.fixture
def aws_credentials(monkeypatch):
    """Fake credentials so boto3 never touches a real account."""
    monkeypatch.setenv('AWS_ACCESS_KEY_ID', 'testing')
    monkeypatch.setenv('AWS_SECRET_ACCESS_KEY', 'testing')
    monkeypatch.setenv('AWS_SECURITY_TOKEN', 'testing')
    monkeypatch.setenv('AWS_SESSION_TOKEN', 'testing')
    monkeypatch.setenv('AWS_DEFAULT_REGION', 'us-east-1')


@pytest.fixture
def s3(aws_credentials):
    """
    Mock S3 service using moto.

    No bucket is created; tests decide whether the bucket exists.
    """
    with mock_aws():
        yield boto3.client('s3', region_name='us-east-1')


@pytest.fixture
def source_folder(tmp_path):
    """
    Create a folder to back up.

    Creates:
    - data/app/config.yml
    - data/app/db/records.txt
    - data/app/empty/
    """
    folder = tmp_path / 'data' / 'app'
    (folder / 'db').mkdir(parents=True)
    (folder / 'empty').mkdir()
    (folder / 'config.yml').write_text('name: app\n')
    (folder / 'db' / 'records.txt').write_text('1,2,3\n')
    return folder


@pytest.fixture
def temp_dir(tmp_path):
    """Directory the archive is built in."""
    path = tmp_path / 'tmp'
    path.mkdir()
    return path


@pytest.fixture
def settings(source_folder, temp_dir):
    """
    Complete settings against the mocked S3 endpoint.

    Mail relay is not configured.
    """
    return BackupSettings(
        endpoint=TEST_ENDPOINT,
        access_key_id='test_access_key',
        secret_access_key='test_secret_key',
        bucket_name=TEST_BUCKET,
        max_backups=2,
        backup_prefix='backup-',
        backup_folder=str(source_folder),
        temp_dir=str(temp_dir),
    )


@pytest.fixture
def mail_settings(settings):
    """Settings with the mail relay configured and both notifications on."""
    return replace(
        settings,
        smtp_hostname='smtp.example.com',
        smtp_port=25,
        smtp_from_email='backup@example.com',
        notify_email='ops@example.com',
        notify_success=True,
        notify_error=True,
    )


@pytest.fixture
def fixed_clock():
    """Clock frozen at 2024-01-15 12:00:00."""
    return lambda: datetime(2024, 1, 15, 12, 0, 0)


@pytest.fixture
def make_objects():
    """Factory for ordered RemoteBackupObject listings."""
    def _make(count, prefix='backup-'):
        return [
            RemoteBackupObject(
                key=f'{prefix}2020-01-{day:02d}.00-00-00.zip',
                size=1024 * day,
                last_modified=datetime(2020, 1, day)
            )
            for day in range(1, count + 1)
        ]
    return _make


@pytest.fixture
def mock_notifier():
    """Notifier double recording maybe_send calls."""
    notifier = MagicMock()
    notifier.maybe_send.return_value = False
    return notifier
