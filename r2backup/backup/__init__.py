"""
Backup module for r2backup.

This module handles the core backup pipeline:
- Archive creation (tar / tar+zstd)
- Integrity checks (MD5 / size)
- Bucket storage (S3-compatible)
- Verified upload with retries
- Retention rotation
- Execution orchestration
"""

from .executor import BackupExecutor, run_backup, run_rotation
from .compression import create_archive
from .storage import R2Storage
from .uploader import Uploader
from .retention import RetentionManager

__all__ = [
    'BackupExecutor',
    'run_backup',
    'run_rotation',
    'create_archive',
    'R2Storage',
    'Uploader',
    'RetentionManager'
]
