"""
Bucket access for backup archives.

R2Storage wraps a boto3 S3 client pointed at an S3-compatible endpoint
(Cloudflare R2). Objects live at the bucket root under their archive name.
"""

import logging
import os
from typing import List, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from r2backup.models import RemoteObject


logger = logging.getLogger(__name__)

# Below this size a single PUT is used, so the ETag stays a plain MD5
MULTIPART_THRESHOLD = 100 * 1024 * 1024
MULTIPART_CHUNK_SIZE = 10 * 1024 * 1024


class StorageError(Exception):
    """Raised when storage operation fails."""
    pass


class BucketUnavailableError(StorageError):
    """Raised when the bucket cannot be reached with the configured credentials."""
    pass


class ListingError(StorageError):
    """Raised when listing objects fails."""
    pass


def _error_code(e: ClientError) -> str:
    return e.response.get('Error', {}).get('Code', 'Unknown')


class R2Storage:
    """
    Handler for an S3-compatible bucket.
    """

    def __init__(self, endpoint_url: str, access_key: str, secret_key: str, bucket_name: str, region: str = 'auto'):
        """
        Initialize storage handler.

        Args:
            endpoint_url: S3 API endpoint (e.g. https://<account>.r2.cloudflarestorage.com)
            access_key: Access key ID
            secret_key: Secret access key
            bucket_name: Bucket name
            region: Region name (default: auto)
        """
        self.endpoint_url = endpoint_url
        self.bucket_name = bucket_name
        self.region = region

        try:
            self.s3_client = boto3.client(
                's3',
                endpoint_url=endpoint_url,
                aws_access_key_id=access_key,
                aws_secret_access_key=secret_key,
                region_name=region
            )
        except (BotoCoreError, ValueError) as e:
            raise StorageError(f"Failed to initialize S3 client: {e}")

    @classmethod
    def from_config(cls, config) -> 'R2Storage':
        return cls(
            endpoint_url=config.endpoint_url,
            access_key=config.access_key,
            secret_key=config.secret_key,
            bucket_name=config.bucket_name,
            region=config.region
        )

    def probe(self):
        """
        Check that the bucket is reachable with a one-key listing.

        Raises:
            BucketUnavailableError: If the listing call fails
        """
        try:
            self.s3_client.list_objects_v2(Bucket=self.bucket_name, MaxKeys=1)
        except ClientError as e:
            raise BucketUnavailableError(
                f"Bucket {self.bucket_name} is unavailable ({_error_code(e)}): {e}"
            )
        except BotoCoreError as e:
            raise BucketUnavailableError(f"Bucket {self.bucket_name} is unavailable: {e}")

    def upload(self, local_path: str, key: str):
        """
        Upload a file to the bucket.

        Files under MULTIPART_THRESHOLD go up in one PUT; larger files use a
        multipart upload.

        Args:
            local_path: Path to local archive file
            key: Object key

        Raises:
            StorageError: If upload fails
        """
        if not os.path.exists(local_path):
            raise StorageError(f"Local file not found: {local_path}")

        try:
            file_size = os.path.getsize(local_path)

            if file_size >= MULTIPART_THRESHOLD:
                self._multipart_upload(local_path, key)
            else:
                self._simple_upload(local_path, key)

        except ClientError as e:
            raise StorageError(f"Upload of {key} failed ({_error_code(e)}): {e}")
        except (BotoCoreError, OSError) as e:
            raise StorageError(f"Upload of {key} failed: {e}")

    def _simple_upload(self, local_path: str, key: str):
        with open(local_path, 'rb') as f:
            self.s3_client.put_object(
                Bucket=self.bucket_name,
                Key=key,
                Body=f
            )

    def _multipart_upload(self, local_path: str, key: str):
        """
        Upload a large file in MULTIPART_CHUNK_SIZE parts.

        The upload is aborted if any part fails.
        """
        response = self.s3_client.create_multipart_upload(
            Bucket=self.bucket_name,
            Key=key
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
                logger.warning(f"Failed to abort multipart upload {upload_id} for {key}: {abort_error}")
            raise

    def find_object(self, key: str) -> Optional[RemoteObject]:
        """
        Look up a single object by exact key via a listing call.

        Args:
            key: Object key

        Returns:
            RemoteObject, or None if the key is not present

        Raises:
            ListingError: If listing fails
        """
        for obj in self.list_objects(key):
            if obj.key == key:
                return obj
        return None

    def list_objects(self, prefix: str) -> List[RemoteObject]:
        """
        List objects with given prefix.

        Args:
            prefix: Key prefix to filter by

        Returns:
            List of RemoteObject

        Raises:
            ListingError: If listing fails
        """
        try:
            objects = []
            paginator = self.s3_client.get_paginator('list_objects_v2')

            for page in paginator.paginate(Bucket=self.bucket_name, Prefix=prefix):
                for obj in page.get('Contents', []):
                    objects.append(RemoteObject(
                        key=obj['Key'],
                        last_modified=obj.get('LastModified'),
                        size=obj.get('Size', 0),
                        etag=obj.get('ETag', '')
                    ))

            return objects

        except ClientError as e:
            raise ListingError(f"Listing {self.bucket_name}/{prefix} failed ({_error_code(e)}): {e}")
        except BotoCoreError as e:
            raise ListingError(f"Listing {self.bucket_name}/{prefix} failed: {e}")

    def delete(self, key: str):
        """
        Delete an object.

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
            raise StorageError(f"Delete of {key} failed ({_error_code(e)}): {e}")
        except BotoCoreError as e:
            raise StorageError(f"Delete of {key} failed: {e}")
