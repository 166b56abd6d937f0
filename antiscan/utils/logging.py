"""
antiscan Logging Configuration

Every run logs to stdout (what systemd's journal and an operator at a
terminal see) and to config.app_log_file, rotated by size with gzip-compressed
backups. When the configured file cannot be created the log goes to
/tmp/antiscan.log, and when that fails too the run logs to the console only.

Author: antiscan Project
License: GNU GPL v3
"""

import gzip
import logging
import logging.handlers
import os
import shutil
import sys
from pathlib import Path
from typing import Optional

LOG_FORMAT = '%(asctime)s - %(levelname)s - %(message)s'
FALLBACK_LOG_FILE = Path('/tmp/antiscan.log')

# Libraries whose INFO chatter is hidden unless running at DEBUG
NOISY_LOGGERS = ('urllib3', 'requests')


def _gzip_rotator(source, dest):
    """Rotate by compressing source into dest.gz."""
    with open(source, 'rb') as plain, gzip.open(f'{dest}.gz', 'wb') as packed:
        shutil.copyfileobj(plain, packed)
    os.remove(source)


def _writable_log_file(preferred: Path) -> Path:
    try:
        preferred.parent.mkdir(parents=True, exist_ok=True)
        preferred.touch(exist_ok=True)
        return preferred
    except OSError:
        return FALLBACK_LOG_FILE


def _file_handler(config) -> Optional[logging.Handler]:
    log_file = _writable_log_file(Path(config.app_log_file))
    try:
        handler = logging.handlers.RotatingFileHandler(
            str(log_file),
            maxBytes=config.log_max_bytes,
            backupCount=config.log_backup_count,
        )
    except OSError as e:
        print(f"Warning: cannot log to {log_file} ({e}), logging to console only", file=sys.stderr)
        return None
    handler.rotator = _gzip_rotator
    return handler


def setup_logging(level=logging.INFO, config=None):
    """
    Install the console and rotating file handlers on the root logger.

    Safe to call more than once; earlier handlers are replaced.

    Args:
        level: Root log level (logging.INFO, logging.DEBUG, ...)
        config: AntiscanConfig; get_config() when None
    """
    if config is None:
        from ..config import get_config
        config = get_config()

    handlers = [logging.StreamHandler(sys.stdout)]
    file_handler = _file_handler(config)
    if file_handler is not None:
        handlers.append(file_handler)

    logging.basicConfig(level=level, format=LOG_FORMAT, handlers=handlers, force=True)

    quiet_level = logging.DEBUG if level <= logging.DEBUG else logging.WARNING
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(quiet_level)
