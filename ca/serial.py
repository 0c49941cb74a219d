# Licensed under GPL 3: https://www.gnu.org/licenses/gpl-3.0.html
"""Monotonic counter file used for CRL numbers."""

import re

from ca.config import ca_logger
from ca.database import open_locked, replace_file
from lib.config import LockConfig

_NUMBER = re.compile(r'\d+')


def parse_counter(line: str) -> int:
    """First decimal number on the line, or 0 when there is none."""
    match = _NUMBER.search(line or "")
    return int(match.group(0)) if match else 0


class CounterFile:
    """
    A file holding a single counter value such as ``01``.

    The file must exist. Content that holds no number counts as 0.
    """

    def __init__(self, path: str, lock: LockConfig = None):
        self.path = path
        self.lock = lock or LockConfig()

    @staticmethod
    def _read_value(fp) -> int:
        return parse_counter(fp.readline())

    def current(self) -> int:
        with open_locked(self.path, "r", self.lock) as fp:
            return self._read_value(fp)

    def increment(self) -> int:
        """Read, increment and write back the counter under one lock, returning the new value."""
        with open_locked(self.path, "r", self.lock) as old:
            value = self._read_value(old) + 1
            with replace_file(self.path) as new:
                new.write(f"0{value}\n")

        ca_logger.debug("Counter %s advanced to %d", self.path, value)
        return value
