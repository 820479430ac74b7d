"""
Verified upload of archives with retry and exponential backoff.

Each attempt transfers the archive, confirms the key is listed, and checks
its integrity tag (or size, for multipart uploads). Transport errors,
missing objects and integrity mismatches are all retried; an unreachable
bucket is not.
"""

import logging
import time
from datetime import datetime, timezone
from typing import Callable, List, Optional

from r2backup.models import Archive, UploadAttempt, UploadResult
from .checksum import compute_md5, verify_integrity, IntegrityError
from .storage import StorageError


logger = logging.getLogger(__name__)

MAX_ATTEMPTS = 3
INITIAL_BACKOFF_SECONDS = 5.0


class UploadError(Exception):
    """Base class for upload failures."""
    pass


class UploadTransportError(UploadError):
    """The transfer itself failed."""
    pass


class UploadNotFoundError(UploadError):
    """The transfer reported success but the key is not listed."""
    pass


class UploadFailedError(UploadError):
    """All attempts failed."""

    def __init__(self, last_error: Exception, attempts: List[UploadAttempt]):
        self.last_error = last_error
        self.attempts = attempts
        super().__init__(f"Upload failed after {len(attempts)} attempts: {last_error}")


def backoff_delay(attempt: int, initial: float = INITIAL_BACKOFF_SECONDS) -> float:
    """
    Delay to wait after failed attempt number ``attempt`` (1-based).

    Doubles every attempt: 5s, 10s, 20s, ...
    """
    return initial * (2 ** (attempt - 1))


class Uploader:
    """
    Delivers an archive to the bucket and confirms it arrived intact.
    """

    def __init__(
        self,
        storage,
        max_attempts: int = MAX_ATTEMPTS,
        initial_backoff: float = INITIAL_BACKOFF_SECONDS,
        sleep: Callable[[float], None] = time.sleep
    ):
        """
        Args:
            storage: R2Storage (or compatible) handler
            max_attempts: Total attempts including the first
            initial_backoff: Delay after the first failure, in seconds
            sleep: Sleep function, replaceable in tests
        """
        if max_attempts < 1:
            raise ValueError(f"max_attempts must be at least 1, got {max_attempts}")

        self.storage = storage
        self.max_attempts = max_attempts
        self.initial_backoff = initial_backoff
        self.sleep = sleep

    def upload(self, archive: Archive, key: Optional[str] = None) -> UploadResult:
        """
        Upload and verify an archive.

        Args:
            archive: Archive to upload
            key: Object key (default: archive file name)

        Returns:
            UploadResult with all attempts made

        Raises:
            BucketUnavailableError: If the bucket probe fails (not retried)
            UploadFailedError: If every attempt failed
        """
        key = key or archive.name

        local_hash = compute_md5(archive.path)
        if local_hash:
            logger.info(f"Local MD5 for {archive.name}: {local_hash}")

        logger.info(f"Checking bucket availability: {self.storage.bucket_name}")
        self.storage.probe()
        logger.info("Bucket is available, starting upload")

        attempts = []

        for number in range(1, self.max_attempts + 1):
            attempt, verification = self._attempt(number, archive, key, local_hash)
            attempts.append(attempt)

            if attempt.succeeded:
                logger.info(
                    f"Upload completed successfully: {key} in {attempt.duration:.1f} seconds "
                    f"(attempt {number}/{self.max_attempts}, verified by {verification})"
                )
                return UploadResult(key=key, attempts=attempts, verification=verification)

            logger.warning(
                f"Upload attempt {number}/{self.max_attempts} for {key} failed: {attempt.error}"
            )

            if number < self.max_attempts:
                delay = backoff_delay(number, self.initial_backoff)
                logger.info(f"Retrying in {delay:.0f} seconds")
                self.sleep(delay)

        raise UploadFailedError(attempts[-1].error, attempts)

    def _attempt(self, number: int, archive: Archive, key: str, local_hash: Optional[str]):
        """Run one transfer + presence + integrity check. Never raises for retryable errors."""
        started_at = datetime.now(timezone.utc)
        start = time.monotonic()
        verification = None
        error = None

        try:
            logger.info(f"Uploading {archive.path} to {self.storage.bucket_name}/{key} (attempt {number})")
            try:
                self.storage.upload(archive.path, key)
            except StorageError as e:
                raise UploadTransportError(str(e))

            logger.info(f"Verifying uploaded file: {key}")
            try:
                remote = self.storage.find_object(key)
            except StorageError as e:
                raise UploadTransportError(f"Verification listing failed: {e}")

            if remote is None:
                raise UploadNotFoundError(f"File not found in bucket after upload: {key}")

            verification = verify_integrity(local_hash, archive.size, remote)

        except (UploadError, IntegrityError) as e:
            error = e

        attempt = UploadAttempt(
            number=number,
            started_at=started_at,
            duration=time.monotonic() - start,
            error=error
        )
        return attempt, verification
