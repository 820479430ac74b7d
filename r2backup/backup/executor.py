"""
Backup executor - orchestrates the complete backup workflow.

Workflow:
1. Acquire working directory (scoped temp dir or next to the first source)
2. Create archive
3. Upload to the bucket with verification and retries
4. Rotate old backups (always runs; failures are warnings only)
5. Cleanup working directory / local archive
"""

import os
import shutil
import tempfile
import time
import logging
from datetime import datetime, timezone
from typing import Optional

from r2backup.config import BackupJobConfig, WORK_DIR_IN_PLACE
from r2backup.models import RunResult
from .compression import create_archive, CompressionError, NoValidPathsError
from .retention import RetentionManager
from .storage import R2Storage, StorageError
from .uploader import Uploader, UploadError


logger = logging.getLogger(__name__)


class BackupExecutor:
    """
    Runs archive -> upload -> rotate for one configuration.
    """

    def __init__(self, config: BackupJobConfig, storage=None, uploader: Optional[Uploader] = None):
        """
        Initialize backup executor.

        Args:
            config: Run configuration
            storage: Storage handler (default: R2Storage built from config)
            uploader: Uploader (default: Uploader over ``storage``)
        """
        self.config = config
        self._storage = storage
        self._uploader = uploader
        self.work_dir = None
        self.archive = None
        self.uploaded = False
        self.logs = []

    @property
    def storage(self):
        if self._storage is None:
            self._storage = R2Storage.from_config(self.config)
        return self._storage

    @property
    def uploader(self) -> Uploader:
        if self._uploader is None:
            self._uploader = Uploader(self.storage)
        return self._uploader

    def execute(self) -> RunResult:
        """
        Execute the backup run.

        Returns:
            RunResult; ``success`` reflects archive and upload only
        """
        result = RunResult()
        start = time.monotonic()

        self._log("=== Starting backup process ===")
        self._log(f"Configuration: {self.config.describe()}")

        try:
            self._log("=== STEP 1: Creating archive ===")
            try:
                self.work_dir = self._acquire_work_dir()
                self.archive = create_archive(
                    self.config.source_paths,
                    self.work_dir,
                    self.config.prefix,
                    self.config.compression
                )
                result.archive = self.archive
                self._log(f"Archive created: {self.archive.path} ({self.archive.size / 1024 / 1024:.2f} MB)")
            except (CompressionError, OSError) as e:
                result.error = f"Archive creation failed: {e}"
                self._log(f"Error during archive creation: {e}", logging.ERROR)

            if self.archive is not None:
                self._log("=== STEP 2: Uploading to R2 ===")
                try:
                    result.upload = self.uploader.upload(self.archive)
                    self.uploaded = True
                    self._log(f"Upload to R2 completed successfully: {result.upload.key}")
                except (UploadError, StorageError) as e:
                    result.error = f"Upload failed: {e}"
                    self._log(f"Error during upload to R2: {e}", logging.ERROR)

            self._log("=== STEP 3: Rotating backups ===")
            try:
                result.rotation = self._rotate()
            except Exception as e:
                result.rotation_warning = str(e)
                self._log(f"Warning: Error during backup rotation: {e}", logging.WARNING)

            result.success = self.uploaded

        finally:
            self._cleanup()
            result.duration = time.monotonic() - start

            if result.success:
                self._log(f"Backup completed successfully in {result.duration:.0f} seconds")
            else:
                self._log(f"Error during backup execution: {result.error or 'run interrupted'}", logging.ERROR)
            self._log("=== Backup process finished ===")
            result.logs = list(self.logs)

        return result

    def _acquire_work_dir(self) -> str:
        """
        Pick the directory the archive is written to.

        Returns:
            A new scoped temp dir, or the parent of the first existing source in in-place mode
        """
        if self.config.work_dir_mode == WORK_DIR_IN_PLACE:
            for path in self.config.source_paths:
                if os.path.lexists(path):
                    work_dir = os.path.dirname(os.path.abspath(path))
                    self._log(f"Working directory (in place): {work_dir}")
                    return work_dir
            raise NoValidPathsError("No valid paths to back up")

        base = self.config.temp_dir
        if base:
            os.makedirs(base, exist_ok=True)
        work_dir = tempfile.mkdtemp(prefix='r2backup_', dir=base)
        self._log(f"Temporary directory: {work_dir}")
        return work_dir

    def _rotate(self):
        manager = RetentionManager(
            self.storage,
            self.config.rotation_prefix,
            self.config.retention_days
        )
        return manager.rotate()

    def _cleanup(self):
        """Remove the temp dir, or the in-place archive once it is safely uploaded."""
        if self.config.work_dir_mode == WORK_DIR_IN_PLACE:
            if self.archive and self.uploaded and not self.config.keep_archive:
                try:
                    os.remove(self.archive.path)
                    self._log(f"Removed local archive: {self.archive.path}")
                except OSError as e:
                    self._log(f"Warning: Failed to remove local archive: {e}", logging.WARNING)
            return

        if self.work_dir and os.path.exists(self.work_dir):
            try:
                shutil.rmtree(self.work_dir)
                self._log(f"Cleaned up temporary directory: {self.work_dir}")
            except OSError as e:
                self._log(f"Warning: Failed to cleanup temp directory: {e}", logging.WARNING)

    def _log(self, message: str, level: int = logging.INFO):
        """
        Log a message and keep a timestamped copy for the run summary.

        Args:
            message: Log message
            level: logging level
        """
        timestamp = datetime.now(timezone.utc).strftime('%Y-%m-%d %H:%M:%S UTC')
        self.logs.append(f"[{timestamp}] {message}")
        logger.log(level, message)


def run_backup(config: BackupJobConfig, storage=None) -> RunResult:
    """
    Execute one full backup run.

    Args:
        config: Run configuration
        storage: Optional storage handler

    Returns:
        RunResult
    """
    executor = BackupExecutor(config, storage=storage)
    return executor.execute()


def run_rotation(config: BackupJobConfig, storage=None):
    """
    Run retention rotation only.

    Raises:
        ListingError: If the listing fails
    """
    storage = storage or R2Storage.from_config(config)
    manager = RetentionManager(storage, config.rotation_prefix, config.retention_days)
    return manager.rotate()
