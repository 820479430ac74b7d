"""
Retention policy enforcement for backups.

Deletes remote archives under the backup prefix whose last-modified time is
at or before the cutoff (now - retention days). The bucket listing is the
only record of past backups.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from r2backup.models import RemoteObject, RetentionDecision, RotationResult
from .storage import StorageError


logger = logging.getLogger(__name__)


def parse_last_modified(value) -> Optional[datetime]:
    """
    Normalize a listing timestamp to an aware UTC datetime.

    Accepts datetimes (naive ones are taken as UTC) and ISO-8601 strings.
    Returns None if the value cannot be parsed.
    """
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value.strip():
        try:
            parsed = datetime.fromisoformat(value.strip().replace('Z', '+00:00'))
        except ValueError:
            return None
    else:
        return None

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def compute_cutoff(retention_days: int, now: Optional[datetime] = None) -> datetime:
    """Cutoff instant: now - retention_days, in UTC."""
    now = parse_last_modified(now) if now is not None else datetime.now(timezone.utc)
    return now - timedelta(days=retention_days)


def decide(obj: RemoteObject, cutoff: datetime) -> RetentionDecision:
    """
    Keep/delete verdict for one object.

    Objects modified exactly at the cutoff are deleted. Objects with an
    unparseable timestamp are kept.
    """
    last_modified = parse_last_modified(obj.last_modified)
    delete = last_modified is not None and last_modified <= cutoff
    return RetentionDecision(key=obj.key, last_modified=last_modified, delete=delete)


class RetentionManager:
    """
    Enforces the retention window for one backup prefix.
    """

    def __init__(self, storage, prefix: str, retention_days: int, now: Optional[datetime] = None):
        """
        Initialize retention manager.

        Args:
            storage: R2Storage (or compatible) handler
            prefix: Key prefix to rotate (e.g. 'myhost_')
            retention_days: Days to keep
            now: Reference time (default: current UTC time at rotation)
        """
        self.storage = storage
        self.prefix = prefix
        self.retention_days = retention_days
        self.now = now

    def rotate(self) -> RotationResult:
        """
        Delete expired objects under the prefix.

        Returns:
            RotationResult with found/deleted/kept/failed counts

        Raises:
            ListingError: If the initial listing fails
        """
        cutoff = compute_cutoff(self.retention_days, self.now)

        logger.info(f"Starting backup rotation (keeping last {self.retention_days} days)")
        logger.info(f"Bucket: {self.storage.bucket_name}, prefix: {self.prefix}")
        logger.info(f"Cutoff date for deletion: {cutoff:%Y-%m-%d %H:%M:%S} UTC")

        objects = self.storage.list_objects(self.prefix)

        result = RotationResult(cutoff=cutoff, found=len(objects))
        logger.info(f"Found {result.found} backup files")

        for obj in objects:
            decision = decide(obj, cutoff)

            if decision.last_modified is None:
                logger.error(f"Error parsing date for file: {obj.key} ({obj.last_modified})")
                result.kept += 1
                result.failed += 1
                continue

            if not decision.delete:
                logger.info(f"Keeping file: {obj.key} (modified: {decision.last_modified:%Y-%m-%d %H:%M:%S})")
                result.kept += 1
                continue

            logger.info(f"Deleting old backup: {obj.key} (modified: {decision.last_modified:%Y-%m-%d %H:%M:%S})")
            try:
                self.storage.delete(obj.key)
            except StorageError as e:
                logger.error(f"Error deleting file {obj.key}: {e}")
                result.kept += 1
                result.failed += 1
                continue

            result.deleted += 1
            result.deleted_keys.append(obj.key)

        logger.info(
            f"Rotation complete: processed files: {result.found}, "
            f"deleted: {result.deleted}, kept: {result.kept}, failed: {result.failed}"
        )
        return result
