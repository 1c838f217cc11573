"""
File primitives shared by the registry and the synchronizer.

Every write goes to a temporary file in the target directory which is fsynced
and renamed over the destination, so readers only ever see a complete file.
"""
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Union
import errno
import fcntl
import logging
import os
import tempfile
import time

from errors import LockTimeout, StorageError

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


def _fsync_directory(directory: Path) -> None:
    fd = os.open(directory, os.O_RDONLY)
    try:
        os.fsync(fd)
    finally:
        os.close(fd)


def atomic_write_text(path: PathLike, content: str, mode: int = 0o600) -> None:
    """
    Write a file atomically (write to temp, fsync, then rename).

    Args:
        path: Destination file
        content: Full new file contents
        mode: Permission bits of the resulting file
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    temp_fd, temp_path = tempfile.mkstemp(
        dir=path.parent,
        prefix=f".{path.name}.",
        suffix=".tmp"
    )
    try:
        with os.fdopen(temp_fd, 'w', encoding='utf-8') as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())
        os.chmod(temp_path, mode)
        os.replace(temp_path, path)
    except BaseException:
        try:
            os.unlink(temp_path)
        except FileNotFoundError:
            pass
        raise

    _fsync_directory(path.parent)
    logger.debug(f"Wrote {path}")


def remove_file(path: PathLike) -> bool:
    """
    Delete a file if it exists.

    Returns:
        True if a file was deleted, False if it was already absent
    """
    try:
        Path(path).unlink()
        return True
    except FileNotFoundError:
        return False


@contextmanager
def exclusive_lock(path: PathLike, timeout: float = 10.0, poll_interval: float = 0.1) -> Iterator[None]:
    """
    Hold an exclusive advisory lock on path for the duration of the block.

    Args:
        path: Lock file, created if missing
        timeout: Seconds to wait for another holder to release it
        poll_interval: Seconds between attempts

    Raises:
        LockTimeout: If the lock could not be taken within timeout
        StorageError: If the lock file cannot be opened or locked
    """
    path = Path(path)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(path, os.O_RDWR | os.O_CREAT, 0o600)
    except OSError as e:
        raise StorageError(path, e) from e
    try:
        deadline = time.monotonic() + timeout
        while True:
            try:
                fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
                break
            except OSError as e:
                if e.errno not in (errno.EAGAIN, errno.EACCES):
                    raise StorageError(path, e) from e
                if time.monotonic() >= deadline:
                    raise LockTimeout(
                        f"Another wg-manager operation is in progress (lock {path})"
                    ) from e
                time.sleep(poll_interval)

        logger.debug(f"Acquired lock {path}")
        try:
            yield
        finally:
            fcntl.flock(fd, fcntl.LOCK_UN)
            logger.debug(f"Released lock {path}")
    finally:
        os.close(fd)
