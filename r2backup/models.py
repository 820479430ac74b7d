"""
Data records passed between the backup phases.

None of these are persisted: the bucket listing is the only record of what
has been backed up.
"""

import os
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional, Union


ZSTD_MIN_LEVEL = 1
ZSTD_MAX_LEVEL = 22


@dataclass(frozen=True)
class CompressionMode:
    """
    How an archive is written: plain tar, or tar streamed through zstd.

    Build instances with ``CompressionMode.none()`` or ``CompressionMode.zstd(level)``.
    """

    level: Optional[int] = None

    def __post_init__(self):
        if self.level is not None and not ZSTD_MIN_LEVEL <= self.level <= ZSTD_MAX_LEVEL:
            raise ValueError(
                f"Compression level must be between {ZSTD_MIN_LEVEL} and {ZSTD_MAX_LEVEL}, got {self.level}"
            )

    @classmethod
    def none(cls) -> 'CompressionMode':
        return cls(level=None)

    @classmethod
    def zstd(cls, level: int = 3) -> 'CompressionMode':
        return cls(level=level)

    @property
    def enabled(self) -> bool:
        return self.level is not None

    @property
    def extension(self) -> str:
        return 'tar.zst' if self.enabled else 'tar'

    @property
    def label(self) -> str:
        if self.enabled:
            return f"zstd level {self.level}"
        return "plain tar"


@dataclass(frozen=True)
class Archive:
    """A finished archive file on local storage."""

    path: str
    size: int
    compressed: bool

    @property
    def name(self) -> str:
        return os.path.basename(self.path)

    def __repr__(self):
        return f'<Archive {self.name} size={self.size} compressed={self.compressed}>'


@dataclass(frozen=True)
class RemoteObject:
    """
    A bucket entry as reported by a listing call.

    ``last_modified`` is passed through as listed; some S3-compatible stores
    report it as an ISO 8601 string rather than a datetime.
    """

    key: str
    last_modified: Optional[Union[datetime, str]]
    size: int
    etag: str = ''

    @property
    def integrity_tag(self):
        from r2backup.backup.checksum import parse_integrity_tag
        return parse_integrity_tag(self.etag)

    def __repr__(self):
        return f'<RemoteObject {self.key} size={self.size}>'


@dataclass(frozen=True)
class UploadAttempt:
    """Outcome of one try at transferring and verifying an archive."""

    number: int
    started_at: datetime
    duration: float
    error: Optional[Exception] = None

    @property
    def succeeded(self) -> bool:
        return self.error is None


@dataclass(frozen=True)
class UploadResult:
    """A verified upload."""

    key: str
    attempts: List[UploadAttempt]
    verification: str  # 'checksum' or 'size'


@dataclass(frozen=True)
class RetentionDecision:
    """Keep/delete verdict for one remote object."""

    key: str
    last_modified: Optional[datetime]
    delete: bool


@dataclass
class RotationResult:
    """
    Counters for one rotation pass.

    ``failed`` counts objects that could not be parsed or deleted; those
    objects are also included in ``kept``.
    """

    cutoff: datetime
    found: int = 0
    deleted: int = 0
    kept: int = 0
    failed: int = 0
    deleted_keys: List[str] = field(default_factory=list)


@dataclass
class RunResult:
    """Overall status of one backup run."""

    success: bool = False
    archive: Optional[Archive] = None
    upload: Optional[UploadResult] = None
    rotation: Optional[RotationResult] = None
    error: Optional[str] = None
    rotation_warning: Optional[str] = None
    duration: float = 0.0
    logs: List[str] = field(default_factory=list)

    @property
    def exit_code(self) -> int:
        return 0 if self.success else 1
