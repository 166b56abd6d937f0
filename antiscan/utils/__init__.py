from .validators import validate_ip
from .logging import setup_logging
from .fileio import atomic_write_text, grab_and_truncate, restore_ownership

__all__ = [
    'validate_ip',
    'setup_logging',
    'atomic_write_text',
    'grab_and_truncate',
    'restore_ownership'
]
