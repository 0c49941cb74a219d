# Licensed under GPL 3: https://www.gnu.org/licenses/gpl-3.0.html
"""
CA database module for sslca.

The CA database is the flat index file maintained by ``openssl ca``: one
tab separated line per issued certificate holding its status, expiration
date, revocation date, serial, certificate file and subject. This module
provides the row model and parser plus locked read/append access and an
atomic replace of the whole file.

Rows are never edited in place. To change a row, open the database for
reading (which takes the lock) and, while still holding it, write the
complete new content through ``replace()``.
"""
import enum
import os
import re
import stat
import tempfile
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import IO, Iterator, Optional

from ca.config import ca_logger
from ca.errors import CADatabaseIOException, LockTimeoutException
from lib.config import LockConfig
from lib.lock import LockTimeout, locked_open

DB_LINE_FORMAT = re.compile(r'^(\S)\t(\d+Z)\t(.*)\t(\S+)\t(.+)\t(.+)')

DEFAULT_FILE_MODE = 0o644


class RowStatus(enum.Enum):
    """Certificate status flags used in the CA database."""
    VALID = "V"
    REVOKED = "R"
    EXPIRED = "E"


@dataclass
class DatabaseRow:
    """One line of the CA database."""

    status: str
    expiration_date: str
    revocation_date: str
    serial: str
    certificate_file: str
    subject: str

    @property
    def is_valid(self) -> bool:
        return self.status == RowStatus.VALID.value

    @property
    def is_revoked(self) -> bool:
        return self.status == RowStatus.REVOKED.value

    def serial_matches(self, serial: str) -> bool:
        """Compare serials case-insensitively."""
        return self.serial.casefold() == serial.casefold()

    def to_line(self) -> str:
        return "\t".join([
            self.status,
            self.expiration_date,
            self.revocation_date,
            self.serial,
            self.certificate_file,
            self.subject,
        ]) + "\n"


def parse_row(line: str) -> Optional[DatabaseRow]:
    """Parse a database line, returning None for lines that do not match."""
    match = DB_LINE_FORMAT.match(line.rstrip("\r\n"))
    if match is None:
        return None

    return DatabaseRow(*match.groups())


def format_timestamp(dt: datetime) -> str:
    """Format a timestamp as YYYYMMDDHHMMSSZ."""
    return dt.astimezone(timezone.utc).strftime("%Y%m%d%H%M%SZ")


def format_expiration(dt: datetime) -> str:
    """Format an expiration date the way ``openssl ca`` records it."""
    dt = dt.astimezone(timezone.utc)
    if dt.year > 2049:
        return dt.strftime("%Y%m%d%H%M%SZ")
    return dt.strftime("%y%m%d%H%M%SZ")


def parse_timestamp(value: str) -> datetime:
    """
    Parse a database timestamp.

    The format is chosen by length: 13 characters is YYMMDDHHMMSSZ and 15
    characters is YYYYMMDDHHMMSSZ. Anything else falls back to the current
    time instead of failing.
    """
    formats = {13: "%y%m%d%H%M%SZ", 15: "%Y%m%d%H%M%SZ"}
    fmt = formats.get(len(value))
    if fmt is not None:
        try:
            return datetime.strptime(value, fmt).replace(tzinfo=timezone.utc)
        except ValueError:
            pass

    ca_logger.debug("Unparseable timestamp '%s', using current time", value)
    return datetime.now(timezone.utc)


def file_mode(path: str) -> int:
    """Permission bits of path, or the default mode when they cannot be read."""
    try:
        return stat.S_IMODE(os.stat(path).st_mode) & 0o666
    except OSError:
        return DEFAULT_FILE_MODE


@contextmanager
def replace_file(path: str, mode: int = None, binary: bool = False) -> Iterator[IO]:
    """
    Atomically replace path with what the block writes.

    A temporary file is created next to path with the permission bits of
    the current file (or mode, when given) and renamed over path once the
    block exits cleanly. If the block raises, the temporary file is removed
    and path is left untouched.
    """
    if mode is None:
        mode = file_mode(path)

    directory = os.path.dirname(os.path.abspath(path))
    try:
        fd, temp_path = tempfile.mkstemp(prefix=f".{os.path.basename(path)}.", dir=directory)
    except OSError as exc:
        raise CADatabaseIOException(f"Unable to create temporary file for {path}: {exc}") from exc

    try:
        if binary:
            new = os.fdopen(fd, "wb")  # pylint: disable=consider-using-with
        else:
            new = os.fdopen(fd, "w", encoding="utf-8", errors="surrogateescape", newline="")  # pylint: disable=consider-using-with
        with new:
            os.fchmod(new.fileno(), mode)
            yield new
        os.rename(temp_path, path)
    except BaseException as exc:
        try:
            os.unlink(temp_path)
        except FileNotFoundError:
            pass
        if isinstance(exc, OSError):
            raise CADatabaseIOException(f"Unable to replace {path}: {exc}") from exc
        raise


@contextmanager
def open_locked(path: str, mode: str, lock: LockConfig = None) -> Iterator[IO]:
    """Open a text file under an exclusive lock, mapping failures to CA errors."""
    opened = False
    try:
        with locked_open(path, mode, lock, encoding="utf-8", errors="surrogateescape", newline="") as fp:
            opened = True
            yield fp
    except LockTimeout as exc:
        raise LockTimeoutException(str(exc)) from exc
    except OSError as exc:
        if opened:
            raise
        raise CADatabaseIOException(f"Unable to open {path}: {exc}") from exc


class CADatabase:
    """Locked access to an OpenSSL CA database file."""

    def __init__(self, path: str, lock: LockConfig = None):
        self.path = path
        self.lock = lock or LockConfig()

    @contextmanager
    def read(self) -> Iterator[IO[str]]:
        """Open the database for reading; it stays locked until the block exits."""
        with open_locked(self.path, "r", self.lock) as db:
            yield db

    @contextmanager
    def append(self) -> Iterator[IO[str]]:
        """
        Open the database for appending; it stays locked until the block exits.

        The stream is also readable so callers can inspect the current tail.
        """
        with open_locked(self.path, "a+", self.lock) as db:
            yield db

    @contextmanager
    def replace(self) -> Iterator[IO[str]]:
        """
        Write a new version of the database.

        The current file is not locked here: callers are expected to hold
        it open through read() for as long as the new version is written.
        """
        with replace_file(self.path) as db:
            yield db

    @staticmethod
    def parse(db: IO[str]) -> Iterator[DatabaseRow]:
        """Yield the parseable rows of an open database, skipping the rest."""
        for line in db:
            row = parse_row(line)
            if row is None:
                if line.strip():
                    ca_logger.debug("Skipping malformed CA database line: %r", line)
                continue
            yield row

    def rows(self) -> list[DatabaseRow]:
        with self.read() as db:
            return list(self.parse(db))

    def add(self, row: DatabaseRow):
        """Append one row, terminating an unterminated last line first."""
        with self.append() as db:
            size = os.fstat(db.fileno()).st_size
            if size and os.pread(db.fileno(), 1, size - 1) != b"\n":
                db.write("\n")
            db.write(row.to_line())
