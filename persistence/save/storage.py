"""
File access for save envelopes.

Writes go to a temporary file next to the target, are flushed and
fsynced, then renamed into place, so a crash mid-write leaves the
previous file intact.
"""

from __future__ import annotations

import errno
import logging
import os
from pathlib import Path

from persistence.save.errors import (
    InsufficientSpaceError,
    SaveDirectoryNotFound,
    SaveIOError,
)


logger = logging.getLogger(__name__)

TEMP_SUFFIX = ".tmp"


def temp_path_for(path: Path) -> Path:
    return path.with_name(path.name + TEMP_SUFFIX)


def atomic_write(path: Path, data: bytes) -> None:
    """
    Replace a file's contents atomically.

    Raises:
        SaveDirectoryNotFound: The parent directory is missing
        InsufficientSpaceError: The disk is full
        SaveIOError: Any other OS failure
    """
    path = Path(path)
    if not path.parent.is_dir():
        raise SaveDirectoryNotFound(str(path.parent))

    temp_path = temp_path_for(path)
    try:
        with open(temp_path, 'wb') as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.replace(temp_path, path)
    except OSError as e:
        _discard(temp_path)
        if e.errno == errno.ENOSPC:
            raise InsufficientSpaceError(f"Insufficient disk space writing {path}") from e
        raise SaveIOError(f"Failed to write {path}: {e}") from e


def read_file(path: Path) -> bytes:
    """
    Read a whole file.

    Raises:
        SaveIOError: If the file cannot be read
    """
    try:
        with open(path, 'rb') as f:
            return f.read()
    except OSError as e:
        raise SaveIOError(f"Failed to read {path}: {e}") from e


def remove_file(path: Path) -> bool:
    """
    Delete a file if it exists.

    Returns:
        True if a file was removed

    Raises:
        SaveIOError: If the file exists but cannot be removed
    """
    try:
        path.unlink()
        return True
    except FileNotFoundError:
        return False
    except OSError as e:
        raise SaveIOError(f"Failed to delete {path}: {e}") from e


def _discard(path: Path) -> None:
    try:
        path.unlink()
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.warning(f"Could not remove temporary file {path}: {e}")
