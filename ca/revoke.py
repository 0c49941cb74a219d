# Licensed under GPL 3: https://www.gnu.org/licenses/gpl-3.0.html
"""Revocation and un-revocation of certificates in a CA database."""
from datetime import datetime, timezone

from ca.config import ValidRevocationReasons, ca_logger
from ca.database import CADatabase, RowStatus, format_timestamp
from lib.config import LockConfig


class RevocationUpdater:
    """
    Flip the status of a certificate in the CA database by serial.

    Every change rewrites the whole database through CADatabase.replace()
    while the current file is held open (and locked) for reading.
    Serials are compared case-insensitively.
    """

    def __init__(self, database_path: str, lock: LockConfig = None):
        self.database = CADatabase(database_path, lock)

    def exists(self, serial: str) -> bool:
        """
        True when a valid row with this serial is present.

        Note the inversion: "exists" means the certificate can still be
        revoked, i.e. it has NOT been revoked yet.
        """
        return any(row.is_valid and row.serial_matches(serial) for row in self.database.rows())

    def is_revoked(self, serial: str) -> bool:
        return any(row.is_revoked and row.serial_matches(serial) for row in self.database.rows())

    def revoke(self, serial: str, reason: ValidRevocationReasons = None) -> bool:
        """
        Mark the first valid row with this serial as revoked.

        Rows that are already revoked or expired are left alone. Returns
        whether a row was changed.
        """
        revoked = False
        with self.database.read() as old:
            with self.database.replace() as new:
                for row in self.database.parse(old):
                    if not revoked and row.is_valid and row.serial_matches(serial):
                        row.status = RowStatus.REVOKED.value
                        row.revocation_date = format_timestamp(datetime.now(timezone.utc))
                        if reason is not None:
                            row.revocation_date += f",{reason.value}"
                        revoked = True
                    new.write(row.to_line())

        if revoked:
            ca_logger.info("Revoked certificate %s in %s", serial, self.database.path)
        return revoked

    def unrevoke(self, serial: str) -> bool:
        """
        Drop every revoked row with this serial from the database.

        The row is removed rather than set back to valid. Returns whether a
        row was dropped.
        """
        dropped = False
        with self.database.read() as old:
            with self.database.replace() as new:
                for row in self.database.parse(old):
                    if row.is_revoked and row.serial_matches(serial):
                        dropped = True
                        continue
                    new.write(row.to_line())

        if dropped:
            ca_logger.info("Removed revoked certificate %s from %s", serial, self.database.path)
        return dropped
