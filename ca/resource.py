# Licensed under GPL 3: https://www.gnu.org/licenses/gpl-3.0.html
"""
Managed resources: certificate and CRL output files, and revocations.

A resource compares the desired state from its configuration with the
file system and converges it. Generated PEM content is computed at most
once per resource object, so one evaluation never signs twice.
"""
import os
import re
from typing import Optional

from ca.certificate import CertificateIssuer
from ca.config import CertificateConfig, CRLConfig, Ensure, RevocationConfig, ca_logger
from ca.crl import CRLIssuer
from ca.database import replace_file
from ca.errors import CADatabaseIOException
from ca.revoke import RevocationUpdater
from lib.config import LockConfig


class PEMFile:
    """Base class for a file holding generated PEM content."""

    marker: re.Pattern = None

    def __init__(self, config: CertificateConfig | CRLConfig, lock: LockConfig = None):
        self.config = config
        self.lock = lock or LockConfig()
        self._content: Optional[bytes] = None

    def generate(self) -> bytes:
        raise NotImplementedError()

    @property
    def content(self) -> bytes:
        if self._content is None:
            self._content = self.generate()
        return self._content

    def has_content(self) -> bool:
        """Whether the file exists and already holds the expected PEM block."""
        if not os.path.isfile(self.config.path):
            return False

        with open(self.config.path, "r", encoding="utf-8", errors="replace") as f:
            return any(self.marker.match(line.rstrip()) for line in f)

    def write(self):
        mode = int(self.config.mode, 8) if self.config.mode else None
        with replace_file(self.config.path, mode=mode, binary=True) as f:
            f.write(self.content)
        ca_logger.info("%s: Wrote %s", self.config.name, self.config.path)

    def apply(self) -> bool:
        """Converge the file to the configured state. Returns whether anything changed."""
        if self.config.ensure == Ensure.absent:
            if not os.path.lexists(self.config.path):
                return False
            try:
                os.unlink(self.config.path)
            except OSError as exc:
                raise CADatabaseIOException(f"Unable to remove {self.config.path}: {exc}") from exc
            ca_logger.info("%s: Removed %s", self.config.name, self.config.path)
            return True

        if self.has_content():
            return False

        self.write()
        return True

    def refresh(self):
        """Write the content regardless of what the file currently holds."""
        if self.config.ensure == Ensure.present:
            self.write()


class CertificateFile(PEMFile):
    marker = re.compile(r'^-+BEGIN CERTIFICATE-+$')

    def generate(self) -> bytes:
        return CertificateIssuer(self.config, self.lock).issue()


class CRLFile(PEMFile):
    marker = re.compile(r'^-+BEGIN X509 CRL-+$')

    def generate(self) -> bytes:
        return CRLIssuer(self.config, self.lock).issue()


class Revocation:
    """The revocation state of one serial in a CA database."""

    def __init__(self, config: RevocationConfig, lock: LockConfig = None):
        self.config = config
        self.updater = RevocationUpdater(config.ca_database_file, lock)

    def apply(self) -> bool:
        if self.config.ensure == Ensure.present:
            if self.updater.exists(self.config.serial):
                return self.updater.revoke(self.config.serial, self.config.reason)
            return False

        if self.updater.is_revoked(self.config.serial):
            return self.updater.unrevoke(self.config.serial)
        return False
