# Licensed under GPL 3: https://www.gnu.org/licenses/gpl-3.0.html
"""
Exclusive file locking.

Locks are advisory fcntl.flock() locks held on the open file itself, so
they are released when the file is closed.
"""

import fcntl
import os
import time
from contextlib import contextmanager
from typing import IO, Iterator

from lib.config import LockConfig, shared_logger


class LockTimeout(OSError):
    """Raised when a lock could not be obtained within the configured timeout."""


def _same_file(fp: IO, path: str) -> bool:
    try:
        current = os.stat(path)
    except FileNotFoundError:
        return False
    locked = os.fstat(fp.fileno())
    return (locked.st_dev, locked.st_ino) == (current.st_dev, current.st_ino)


@contextmanager
def locked_open(path: str, mode: str, lock: LockConfig = None, **kwargs) -> Iterator[IO]:
    """
    Open path and hold an exclusive lock on it until the block exits.

    Acquisition never fails fast: a held lock is retried with exponential
    backoff until it is free, or until lock.timeout expires (LockTimeout).
    If the path was atomically replaced while we were waiting, the stale
    file is closed and the new one is opened and locked instead.

    Errors from open() itself (missing file, permission denied) propagate.
    """
    lock = lock or LockConfig()
    deadline = None if lock.timeout is None else time.monotonic() + lock.timeout
    interval = lock.retry_interval

    while True:
        fp = open(path, mode, **kwargs)  # pylint: disable=consider-using-with
        try:
            fcntl.flock(fp.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError:
            fp.close()
            if deadline is not None and time.monotonic() >= deadline:
                raise LockTimeout(f"Timed out waiting for lock on {path}")
            shared_logger.debug("Waiting %.2fs for lock on %s", interval, path)
            time.sleep(interval)
            interval = min(interval * 2, lock.max_retry_interval)
            continue

        if not _same_file(fp, path):
            fp.close()
            continue

        break

    try:
        yield fp
    finally:
        fp.close()
