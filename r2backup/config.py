import os
import socket
import tempfile
from dataclasses import dataclass
from typing import Mapping, Optional, Tuple

from dotenv import dotenv_values

from r2backup.models import CompressionMode


WORK_DIR_TEMP = 'temp'
WORK_DIR_IN_PLACE = 'in_place'

DEFAULT_LOG_FILE = '/var/log/r2-backup.log'

REQUIRED_KEYS = ('R2_ENDPOINT', 'R2_ACCESS_KEY_ID', 'R2_SECRET_ACCESS_KEY', 'R2_BUCKET_NAME')

_FALSE_VALUES = ('false', '0', 'no', 'off')


class ConfigError(ValueError):
    """Raised when a required setting is missing or invalid."""
    pass


@dataclass(frozen=True)
class BackupJobConfig:
    """
    Settings for one backup run, resolved once at startup.

    Every component receives this object; nothing downstream reads the
    process environment.
    """

    endpoint_url: str
    access_key: str
    secret_key: str
    bucket_name: str
    source_paths: Tuple[str, ...]
    prefix: str
    region: str = 'auto'
    compression: CompressionMode = CompressionMode.zstd(3)
    retention_days: int = 7
    work_dir_mode: str = WORK_DIR_TEMP
    temp_dir: Optional[str] = None
    log_file: Optional[str] = DEFAULT_LOG_FILE
    schedule_hour: int = 4
    schedule_minute: int = 20
    keep_archive: bool = False

    def __post_init__(self):
        for name in ('endpoint_url', 'access_key', 'secret_key', 'bucket_name', 'prefix'):
            if not getattr(self, name):
                raise ConfigError(f"Setting '{name}' must not be empty")

        if not self.source_paths:
            raise ConfigError("At least one source path is required")

        if self.retention_days < 0:
            raise ConfigError(f"Retention days must be >= 0, got {self.retention_days}")

        if self.work_dir_mode not in (WORK_DIR_TEMP, WORK_DIR_IN_PLACE):
            raise ConfigError(
                f"Invalid working-directory mode: {self.work_dir_mode}. "
                f"Valid options: {[WORK_DIR_TEMP, WORK_DIR_IN_PLACE]}"
            )

        if not 0 <= self.schedule_hour <= 23 or not 0 <= self.schedule_minute <= 59:
            raise ConfigError(
                f"Invalid schedule time: {self.schedule_hour}:{self.schedule_minute:02d}"
            )

    @property
    def rotation_prefix(self) -> str:
        """Key prefix that scopes listing and rotation to this host's archives."""
        return f"{self.prefix}_"

    def describe(self) -> str:
        """One-line summary without credentials."""
        return (
            f"endpoint={self.endpoint_url} bucket={self.bucket_name} region={self.region} "
            f"prefix={self.prefix} compression={self.compression.label} "
            f"retention={self.retention_days}d work_dir={self.work_dir_mode}"
        )


def _parse_bool(value: Optional[str], default: bool) -> bool:
    if value is None or not value.strip():
        return default
    return value.strip().lower() not in _FALSE_VALUES


def _parse_int(settings: Mapping[str, str], key: str, default: int) -> int:
    raw = settings.get(key)
    if raw is None or not str(raw).strip():
        return default
    try:
        return int(str(raw).strip())
    except ValueError:
        raise ConfigError(f"{key} must be an integer, got {raw!r}")


def normalize_prefix(raw: Optional[str]) -> str:
    """
    Normalize the backup name used as archive basename and key prefix.

    Blank values fall back to the hostname; inner spaces become underscores.
    """
    name = (raw or '').strip()
    if not name:
        name = socket.gethostname()
    return name.replace(' ', '_')


def split_paths(raw: str) -> Tuple[str, ...]:
    """Split a comma-separated path list, dropping blanks."""
    return tuple(p.strip() for p in raw.split(',') if p.strip())


def load_config(env_file: Optional[str] = None, environ: Optional[Mapping[str, str]] = None) -> BackupJobConfig:
    """
    Build the run configuration from a ``.env`` file and the environment.

    Values in the file override inherited environment variables, the same
    as sourcing the file into the shell before the run.

    Args:
        env_file: Path to a dotenv file (default: ``.env`` in the working directory, if present)
        environ: Environment mapping to use instead of ``os.environ``

    Returns:
        Validated BackupJobConfig

    Raises:
        ConfigError: If a required setting is missing or a value is invalid
    """
    if env_file is None and os.path.exists('.env'):
        env_file = '.env'

    settings = dict(os.environ if environ is None else environ)
    if env_file:
        if not os.path.isfile(env_file):
            raise ConfigError(f".env file not found at {env_file}")
        settings.update({k: v for k, v in dotenv_values(env_file).items() if v is not None})

    missing = [key for key in REQUIRED_KEYS if not str(settings.get(key, '')).strip()]
    if missing:
        raise ConfigError(f"Required settings are not set: {', '.join(missing)}")

    source_paths = split_paths(settings.get('BACKUP_PATHS', ''))
    if not source_paths:
        raise ConfigError(
            "BACKUP_PATHS is not set. Example: BACKUP_PATHS='/home/user/documents,/var/www,/etc/nginx'"
        )

    if _parse_bool(settings.get('USE_ZSTD'), True):
        level = _parse_int(settings, 'ZSTD_LEVEL', 3)
        try:
            compression = CompressionMode.zstd(level)
        except ValueError as e:
            raise ConfigError(f"ZSTD_LEVEL: {e}")
    else:
        compression = CompressionMode.none()

    return BackupJobConfig(
        endpoint_url=settings['R2_ENDPOINT'].strip(),
        access_key=settings['R2_ACCESS_KEY_ID'].strip(),
        secret_key=settings['R2_SECRET_ACCESS_KEY'].strip(),
        bucket_name=settings['R2_BUCKET_NAME'].strip(),
        region=(settings.get('R2_REGION') or 'auto').strip(),
        source_paths=source_paths,
        prefix=normalize_prefix(settings.get('BACKUP_NAME')),
        compression=compression,
        retention_days=_parse_int(settings, 'BACKUP_RETENTION_DAYS', 7),
        work_dir_mode=(settings.get('WORK_DIR_MODE') or WORK_DIR_TEMP).strip().lower(),
        temp_dir=(settings.get('TEMP_DIR') or tempfile.gettempdir()).strip(),
        log_file=(settings.get('LOG_FILE') or DEFAULT_LOG_FILE).strip(),
        schedule_hour=_parse_int(settings, 'BACKUP_HOUR', 4),
        schedule_minute=_parse_int(settings, 'BACKUP_MINUTE', 20),
        keep_archive=_parse_bool(settings.get('KEEP_LOCAL_ARCHIVE'), False),
    )
