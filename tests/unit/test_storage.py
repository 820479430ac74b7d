"""
Unit tests for bucket storage (r2backup/backup/storage.py).
"""

import hashlib
import os
from unittest.mock import MagicMock, patch

import pytest
from botocore.exceptions import ClientError, EndpointConnectionError

from r2backup.backup.storage import (
    R2Storage,
    StorageError,
    BucketUnavailableError,
    ListingError
)


def _client_error(code='AccessDenied', operation='ListObjectsV2'):
    return ClientError({'Error': {'Code': code, 'Message': code}}, operation)


class TestR2Storage:
    """Test R2Storage against a moto bucket."""

    def test_upload_small_file_single_part(self, storage, mock_s3, tmp_path):
        """Small files go up in one PUT and keep an MD5 ETag."""
        data = os.urandom(4096)
        test_file = tmp_path / 'testhost_20240115_120000.tar.zst'
        test_file.write_bytes(data)

        storage.upload(str(test_file), test_file.name)

        obj = mock_s3.Object('test-bucket', test_file.name)
        assert obj.content_length == 4096
        assert obj.e_tag.strip('"') == hashlib.md5(data).hexdigest()

    def test_upload_large_file_multipart(self, storage, mock_s3, tmp_path):
        """Files at or above the threshold use multipart and get a composite ETag."""
        test_file = tmp_path / 'large.tar'
        test_file.write_bytes(os.urandom(6 * 1024 * 1024))

        with patch('r2backup.backup.storage.MULTIPART_THRESHOLD', 1024 * 1024), \
                patch('r2backup.backup.storage.MULTIPART_CHUNK_SIZE', 5 * 1024 * 1024):
            storage.upload(str(test_file), 'large.tar')

        remote = storage.find_object('large.tar')
        assert remote.size == 6 * 1024 * 1024
        assert '-' in remote.etag

    def test_upload_nonexistent_file(self, storage):
        with pytest.raises(StorageError):
            storage.upload('/nonexistent/file.tar.zst', 'file.tar.zst')

    def test_upload_missing_bucket(self, mock_s3, tmp_path):
        test_file = tmp_path / 'a.tar'
        test_file.write_bytes(b'data')

        storage = R2Storage('https://s3.us-east-1.amazonaws.com', 'k', 's', 'no-such-bucket', region='us-east-1')

        with pytest.raises(StorageError):
            storage.upload(str(test_file), 'a.tar')

    def test_list_objects_by_prefix(self, storage, mock_s3):
        bucket = mock_s3.Bucket('test-bucket')
        bucket.put_object(Key='testhost_20240101_000000.tar.zst', Body=b'data1')
        bucket.put_object(Key='testhost_20240102_000000.tar.zst', Body=b'data2')
        bucket.put_object(Key='otherhost_20240101_000000.tar.zst', Body=b'data3')

        objects = storage.list_objects('testhost_')

        assert sorted(o.key for o in objects) == [
            'testhost_20240101_000000.tar.zst',
            'testhost_20240102_000000.tar.zst'
        ]
        assert all(o.size == 5 for o in objects)
        assert all(o.last_modified is not None for o in objects)

    def test_list_objects_paginates(self, storage, mock_s3):
        bucket = mock_s3.Bucket('test-bucket')
        for i in range(1005):
            bucket.put_object(Key=f'testhost_{i:05d}.tar', Body=b'x')

        assert len(storage.list_objects('testhost_')) == 1005

    def test_list_objects_error(self, storage):
        storage.s3_client = MagicMock()
        storage.s3_client.get_paginator.return_value.paginate.side_effect = _client_error()

        with pytest.raises(ListingError):
            storage.list_objects('testhost_')

    def test_find_object_exact_match(self, storage, mock_s3):
        bucket = mock_s3.Bucket('test-bucket')
        bucket.put_object(Key='testhost_1.tar', Body=b'one')
        bucket.put_object(Key='testhost_1.tar.zst', Body=b'two')

        remote = storage.find_object('testhost_1.tar')

        assert remote.key == 'testhost_1.tar'
        assert remote.size == 3

    def test_find_object_missing(self, storage):
        assert storage.find_object('testhost_missing.tar') is None

    def test_delete(self, storage, mock_s3):
        mock_s3.Bucket('test-bucket').put_object(Key='testhost_old.tar', Body=b'data')

        storage.delete('testhost_old.tar')

        assert storage.find_object('testhost_old.tar') is None

    def test_delete_error(self, storage):
        storage.s3_client = MagicMock()
        storage.s3_client.delete_object.side_effect = _client_error('AccessDenied', 'DeleteObject')

        with pytest.raises(StorageError):
            storage.delete('testhost_old.tar')

    def test_probe_ok(self, storage):
        storage.probe()

    def test_probe_missing_bucket(self, mock_s3):
        storage = R2Storage('https://s3.us-east-1.amazonaws.com', 'k', 's', 'no-such-bucket', region='us-east-1')

        with pytest.raises(BucketUnavailableError):
            storage.probe()

    def test_probe_connection_error(self, storage):
        storage.s3_client = MagicMock()
        storage.s3_client.list_objects_v2.side_effect = EndpointConnectionError(endpoint_url='https://r2.invalid')

        with pytest.raises(BucketUnavailableError):
            storage.probe()

    def test_from_config(self, backup_config):
        storage = R2Storage.from_config(backup_config)

        assert storage.bucket_name == 'test-bucket'
        assert storage.region == 'us-east-1'
        assert storage.endpoint_url == backup_config.endpoint_url


class TestMultipartAbort:

    def test_multipart_aborted_on_part_failure(self, storage, tmp_path):
        test_file = tmp_path / 'large.tar'
        test_file.write_bytes(b'x' * 2048)

        client = MagicMock()
        client.create_multipart_upload.return_value = {'UploadId': 'upload-1'}
        client.upload_part.side_effect = _client_error('InternalError', 'UploadPart')
        storage.s3_client = client

        with patch('r2backup.backup.storage.MULTIPART_THRESHOLD', 1024):
            with pytest.raises(StorageError):
                storage.upload(str(test_file), 'large.tar')

        client.abort_multipart_upload.assert_called_once_with(
            Bucket='test-bucket', Key='large.tar', UploadId='upload-1'
        )
        client.complete_multipart_upload.assert_not_called()
