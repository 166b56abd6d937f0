"""
antiscan File Helpers

Crash-safe file replacement and grab-and-truncate for kernel log files.

Author: antiscan Project
License: GNU GPL v3
"""

import grp
import logging
import os
import pwd
import tempfile
from pathlib import Path
from typing import Optional, Union

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


def atomic_write_text(path: PathLike, content: str, mode: Optional[int] = None):
    """
    Replace a file's content atomically.

    Writes to a temp file in the same directory, then renames it over the
    target so readers never see a partial file. The existing file's
    permission bits are kept unless mode is given.

    Raises:
        OSError: If the temp file cannot be written or renamed
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    if mode is None and path.exists():
        mode = path.stat().st_mode & 0o7777

    fd, temp_path = tempfile.mkstemp(
        dir=path.parent,
        prefix=f".{path.name}.",
        suffix='.tmp'
    )

    try:
        with os.fdopen(fd, 'w') as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())

        if mode is not None:
            os.chmod(temp_path, mode)

        os.replace(temp_path, path)
        logger.debug(f"Wrote {path}")

    except Exception:
        if os.path.exists(temp_path):
            os.unlink(temp_path)
        raise


def restore_ownership(path: PathLike, owner: str, group: str, mode: int):
    """
    chown/chmod a file; unknown user or group names are skipped with a warning.

    Raises:
        OSError: If chown/chmod itself fails
    """
    try:
        uid = pwd.getpwnam(owner).pw_uid
    except KeyError:
        logger.warning(f"User {owner} does not exist, keeping owner of {path}")
        uid = -1

    try:
        gid = grp.getgrnam(group).gr_gid
    except KeyError:
        logger.warning(f"Group {group} does not exist, keeping group of {path}")
        gid = -1

    if uid != -1 or gid != -1:
        os.chown(path, uid, gid)
    os.chmod(path, mode)


def grab_and_truncate(path: PathLike, owner: Optional[str] = None,
                      group: Optional[str] = None, mode: Optional[int] = None) -> str:
    """
    Read a log file's content and truncate it in place.

    Truncating in place (rather than replacing the file) keeps the inode the
    writer holds open. Lines appended between read and truncate are lost;
    that window is a single open/read/truncate on an open handle.

    Returns:
        The grabbed content, '' when the file does not exist
    """
    path = Path(path)
    if not path.exists():
        return ""

    with open(path, 'r+', errors='replace') as f:
        content = f.read()
        f.seek(0)
        f.truncate()

    if owner and group and mode is not None:
        try:
            restore_ownership(path, owner, group, mode)
        except OSError as e:
            logger.warning(f"Could not restore ownership of {path}: {e}")

    return content
