"""
Shared pytest fixtures for r2backup tests.

This module provides fixtures for:
- Backup configuration
- Mocked S3-compatible bucket (moto)
- Temporary source trees with incompressible content
- Archive fixtures
"""

import os
import tarfile
from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest
import boto3
from moto import mock_aws

from r2backup.config import BackupJobConfig
from r2backup.models import Archive, CompressionMode, RemoteObject
from r2backup.backup.storage import R2Storage


TEST_ENDPOINT = 'https://s3.us-east-1.amazonaws.com'
TEST_BUCKET = 'test-bucket'


@pytest.fixture(autouse=True)
def aws_credentials(monkeypatch):
    """Keep boto3 away from real credentials and config."""
    monkeypatch.setenv('AWS_ACCESS_KEY_ID', 'testing')
    monkeypatch.setenv('AWS_SECRET_ACCESS_KEY', 'testing')
    monkeypatch.setenv('AWS_DEFAULT_REGION', 'us-east-1')
    monkeypatch.delenv('AWS_PROFILE', raising=False)


@pytest.fixture
def temp_files(tmp_path):
    """
    Create a source tree with random (incompressible) content.

    Creates:
    - source/file1.bin (4 KB)
    - source/notes.txt
    - source/nested/file2.bin (8 KB)
    """
    source = tmp_path / 'source'
    source.mkdir()
    (source / 'file1.bin').write_bytes(os.urandom(4096))
    (source / 'notes.txt').write_text('Test content 1\n')

    nested = source / 'nested'
    nested.mkdir()
    (nested / 'file2.bin').write_bytes(os.urandom(8192))

    return source


@pytest.fixture
def backup_config(temp_files, tmp_path):
    """Configuration pointing at the temp source tree and the moto bucket."""
    return BackupJobConfig(
        endpoint_url=TEST_ENDPOINT,
        access_key='test_access_key',
        secret_key='test_secret_key',
        bucket_name=TEST_BUCKET,
        region='us-east-1',
        source_paths=(str(temp_files),),
        prefix='testhost',
        compression=CompressionMode.zstd(3),
        retention_days=7,
        temp_dir=str(tmp_path / 'work'),
        log_file=None
    )


@pytest.fixture
def mock_s3():
    """
    Mock S3 service using moto.

    Creates a test bucket 'test-bucket' in us-east-1 region.
    """
    with mock_aws():
        s3 = boto3.resource('s3', region_name='us-east-1')
        s3.create_bucket(Bucket=TEST_BUCKET)
        yield s3


@pytest.fixture
def storage(mock_s3):
    """R2Storage bound to the moto bucket."""
    return R2Storage(
        endpoint_url=TEST_ENDPOINT,
        access_key='test_access_key',
        secret_key='test_secret_key',
        bucket_name=TEST_BUCKET,
        region='us-east-1'
    )


@pytest.fixture
def sample_archive(tmp_path):
    """An uncompressed tar archive comfortably above the minimum size."""
    data_dir = tmp_path / 'data'
    data_dir.mkdir()
    (data_dir / 'payload.bin').write_bytes(os.urandom(16384))

    archive_path = tmp_path / 'testhost_20240115_120000.tar'
    with tarfile.open(archive_path, 'w') as tar:
        tar.add(data_dir, arcname='data')

    return Archive(path=str(archive_path), size=archive_path.stat().st_size, compressed=False)


@pytest.fixture
def mock_storage():
    """MagicMock standing in for R2Storage, for failure injection."""
    storage = MagicMock()
    storage.bucket_name = TEST_BUCKET
    storage.list_objects.return_value = []
    return storage


@pytest.fixture
def make_remote():
    """Factory for RemoteObject with a UTC timestamp default."""
    def _make(key, last_modified=None, size=0, etag=''):
        if last_modified is None:
            last_modified = datetime(2024, 1, 15, tzinfo=timezone.utc)
        return RemoteObject(key=key, last_modified=last_modified, size=size, etag=etag)
    return _make
