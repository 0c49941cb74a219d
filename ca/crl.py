# Licensed under GPL 3: https://www.gnu.org/licenses/gpl-3.0.html
"""Certificate revocation list generation from a CA database."""
from datetime import datetime, timedelta, timezone
from typing import Optional

from cryptography import x509
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization

from ca.config import CRLConfig, ValidRevocationReasons, ca_logger
from ca.database import CADatabase, DatabaseRow, parse_timestamp
from ca.errors import GenCRLException
from ca.keys import hash_algorithm, load_certificate, load_private_key
from ca.serial import CounterFile
from lib.config import LockConfig

SECONDS_PER_DAY = 86400

_revocation_reason_map = {
    ValidRevocationReasons.unspecified.value: x509.ReasonFlags.unspecified,
    ValidRevocationReasons.keyCompromise.value: x509.ReasonFlags.key_compromise,
    ValidRevocationReasons.CACompromise.value: x509.ReasonFlags.ca_compromise,
    ValidRevocationReasons.affiliationChanged.value: x509.ReasonFlags.affiliation_changed,
    ValidRevocationReasons.superseded.value: x509.ReasonFlags.superseded,
    ValidRevocationReasons.cessationOfOperation.value: x509.ReasonFlags.cessation_of_operation,
    ValidRevocationReasons.certificateHold.value: x509.ReasonFlags.certificate_hold,
    ValidRevocationReasons.removeFromCRL.value: x509.ReasonFlags.remove_from_crl,
}


def revoked_entry(row: DatabaseRow) -> Optional[x509.RevokedCertificate]:
    """
    Build the CRL entry for a revoked database row.

    The revocation field may carry a reason after a comma, as written by
    ``openssl ca -crl_reason``. Unknown reasons are left out of the entry.
    Rows whose serial cannot appear in a CRL (not hex, zero, or wider than
    159 bits) are skipped with a warning and yield None.
    """
    revocation_date, _, reason = row.revocation_date.partition(",")
    reason = reason.split(",")[0]

    try:
        builder = (
            x509.RevokedCertificateBuilder()
            .serial_number(int(row.serial, 16))
            .revocation_date(parse_timestamp(revocation_date))
        )
    except ValueError as exc:
        ca_logger.warning(
            "Skipping revoked row with invalid serial '%s' (%s): %s",
            row.serial,
            row.subject,
            exc
        )
        return None

    if reason in _revocation_reason_map:
        builder = builder.add_extension(x509.CRLReason(_revocation_reason_map[reason]), critical=False)
    elif reason:
        ca_logger.warning("Ignoring unknown revocation reason '%s' for serial %s", reason, row.serial)

    return builder.build()


class CRLIssuer:
    """Issue a CRL as described by a CRLConfig."""

    def __init__(self, config: CRLConfig, lock: LockConfig = None):
        self.config = config
        self.lock = lock or LockConfig()

    def revoked_entries(self) -> list[x509.RevokedCertificate]:
        """CRL entries for every revoked row of the CA database."""
        database = CADatabase(self.config.ca_database_file, self.lock)
        with database.read() as db:
            entries = [revoked_entry(row) for row in database.parse(db) if row.is_revoked]
        return [entry for entry in entries if entry is not None]

    def issue(self) -> bytes:
        """Build, number and sign the CRL, returning it PEM encoded."""
        self.config.validate_parameters()

        issuer_cert = load_certificate(self.config.issuer_cert, GenCRLException)
        issuer_key = load_private_key(self.config.issuer_key, self.config.issuer_key_password)

        last_update = datetime.now(timezone.utc)
        next_update = last_update + timedelta(seconds=SECONDS_PER_DAY * self.config.days)

        entries = self.revoked_entries()

        crl_number = CounterFile(self.config.crl_serial_file, self.lock).increment()
        ca_logger.info(
            "%s: Issuing CRL number %d with %d revoked certificates",
            self.config.name,
            crl_number,
            len(entries)
        )

        builder = (
            x509.CertificateRevocationListBuilder()
            .issuer_name(issuer_cert.subject)
            .last_update(last_update)
            .next_update(next_update)
            .add_extension(x509.CRLNumber(crl_number), critical=False)
        )
        for entry in entries:
            builder = builder.add_revoked_certificate(entry)

        try:
            crl = builder.sign(
                issuer_key,
                hash_algorithm(issuer_key, self.config.signature_algorithm)
            )
        except (ValueError, TypeError, UnsupportedAlgorithm) as exc:
            raise GenCRLException(f"{self.config.name}: Failed to sign CRL: {exc}") from exc

        return crl.public_bytes(serialization.Encoding.PEM)
