import os
import logging
from logging.handlers import RotatingFileHandler
from typing import Optional


__version__ = '1.0.0'


def configure_logging(log_file: Optional[str] = None, verbose: bool = False):
    """
    Configure logging to the console and an append-only log file.

    If the log file cannot be opened, only console logging is configured.

    Args:
        log_file: Path of the log file (None for console only)
        verbose: Log at DEBUG instead of INFO
    """
    log_level = logging.DEBUG if verbose else logging.INFO

    # Console handler
    console_handler = logging.StreamHandler()
    console_handler.setLevel(log_level)
    console_formatter = logging.Formatter(
        '[%(asctime)s] %(levelname)s in %(module)s: %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )
    console_handler.setFormatter(console_formatter)
    handlers = [console_handler]

    # File handler
    file_error = None
    if log_file:
        try:
            log_dir = os.path.dirname(os.path.abspath(log_file))
            os.makedirs(log_dir, exist_ok=True)
            file_handler = RotatingFileHandler(
                log_file,
                maxBytes=10485760,  # 10MB
                backupCount=10
            )
            file_handler.setLevel(log_level)
            file_formatter = logging.Formatter(
                '[%(asctime)s] %(levelname)s [%(name)s.%(funcName)s:%(lineno)d] %(message)s'
            )
            file_handler.setFormatter(file_formatter)
            handlers.append(file_handler)
        except OSError as e:
            file_error = e

    logging.basicConfig(level=log_level, handlers=handlers, force=True)

    # boto internals are noisy at DEBUG
    for name in ('botocore', 'boto3', 's3transfer', 'urllib3'):
        logging.getLogger(name).setLevel(logging.WARNING)

    logger = logging.getLogger(__name__)
    if file_error:
        logger.warning(f"Cannot write log file {log_file}, logging to console only: {file_error}")
    logger.debug(f"Logging configured (level: {logging.getLevelName(log_level)})")
