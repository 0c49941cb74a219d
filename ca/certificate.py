# Licensed under GPL 3: https://www.gnu.org/licenses/gpl-3.0.html
"""
Certificate issuance from a certificate signing request.

The issued certificate copies subject and public key from the request and
is signed either by the request's own key (self-signed) or by an issuer
key and certificate. Extensions are assembled in three layers, each
overriding the previous one by OID:

1. the extensions requested in the CSR,
2. filtered by copy_request_extensions / omit_request_extensions,
3. overlaid with the explicit basicConstraints, keyUsage and
   extendedKeyUsage parameters.

The subject and authority key identifiers are added last.
"""
import secrets
import struct
from datetime import datetime, timedelta, timezone

from cryptography import x509
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization
from cryptography.x509.oid import ExtensionOID

from ca.asn1 import requested_extensions
from ca.config import (
    CertificateConfig,
    EXTENDED_KEY_USAGE_OIDS,
    KEY_USAGE_NAMES,
    ca_logger,
    extension_oid,
)
from ca.database import CADatabase, DatabaseRow, RowStatus, format_expiration
from ca.errors import GenCertException, ValidationException
from ca.keys import (
    hash_algorithm,
    is_self_signed,
    load_certificate,
    load_private_key,
    load_request,
)
from lib.config import LockConfig

SECONDS_PER_DAY = 86400


def random_serial() -> int:
    """A random 128 bit serial number."""
    serial = 0
    while serial == 0:
        high, low = struct.unpack(">QQ", secrets.token_bytes(16))
        serial = (high << 64) + low
    return serial


def serial_to_hex(serial: int) -> str:
    """Upper case hex with an even number of digits, as written by ``openssl ca``."""
    digits = f"{serial:X}"
    if len(digits) % 2:
        digits = "0" + digits
    return digits


def oneline_name(name: x509.Name) -> str:
    """Render a name in the OpenSSL ``/C=../CN=..`` one-line form."""
    parts = [
        f"/{attribute.rfc4514_attribute_name}={attribute.value}"
        for rdn in name.rdns
        for attribute in rdn
    ]
    return "".join(parts) or "/"


class CertificateIssuer:
    """Issue a certificate as described by a CertificateConfig."""

    def __init__(self, config: CertificateConfig, lock: LockConfig = None):
        self.config = config
        self.lock = lock or LockConfig()

    def filter_request_extensions(self, extensions: dict) -> dict:
        """
        Apply the copy/omit lists to the request extensions.

        An empty copy list allows every extension. The omit list always
        wins over the copy list.
        """
        allowed = {extension_oid(name) for name in self.config.copy_request_extensions}
        denied = {extension_oid(name) for name in self.config.omit_request_extensions}

        return {
            oid: ext for oid, ext in extensions.items()
            if (not allowed or oid in allowed) and oid not in denied
        }

    def explicit_extensions(self) -> dict[str, tuple[x509.ExtensionType, bool]]:
        """Extensions defined by the configuration itself."""
        extensions = {}

        if self.config.basic_constraints_ca is not None:
            extensions[ExtensionOID.BASIC_CONSTRAINTS.dotted_string] = (
                x509.BasicConstraints(ca=self.config.basic_constraints_ca, path_length=None),
                bool(self.config.basic_constraints_ca_critical)
            )

        if self.config.key_usage:
            usages = {
                keyword: name in self.config.key_usage
                for name, keyword in KEY_USAGE_NAMES.items()
            }
            extensions[ExtensionOID.KEY_USAGE.dotted_string] = (
                x509.KeyUsage(**usages),
                bool(self.config.key_usage_critical)
            )

        if self.config.extended_key_usage:
            extensions[ExtensionOID.EXTENDED_KEY_USAGE.dotted_string] = (
                x509.ExtendedKeyUsage([
                    EXTENDED_KEY_USAGE_OIDS[name] for name in self.config.extended_key_usage
                ]),
                bool(self.config.extended_key_usage_critical)
            )

        return extensions

    def build_extensions(self, csr: x509.CertificateSigningRequest) -> dict[str, tuple[x509.ExtensionType, bool]]:
        """Merge request and explicit extensions, keyed by dotted OID."""
        extensions = {
            oid: (ext.to_extension_type(), ext.critical)
            for oid, ext in self.filter_request_extensions(requested_extensions(csr)).items()
        }
        extensions.update(self.explicit_extensions())

        # configured key identifiers replace the requested ones
        if self.config.subject_key_identifier is not None:
            extensions.pop(ExtensionOID.SUBJECT_KEY_IDENTIFIER.dotted_string, None)
        if self.config.authority_key_identifier:
            extensions.pop(ExtensionOID.AUTHORITY_KEY_IDENTIFIER.dotted_string, None)

        return extensions

    def subject_key_identifier(self, public_key) -> x509.SubjectKeyIdentifier | None:
        value = self.config.subject_key_identifier
        if value is None:
            return None
        if value == "hash":
            return x509.SubjectKeyIdentifier.from_public_key(public_key)

        try:
            return x509.SubjectKeyIdentifier(bytes.fromhex(value.replace(":", "")))
        except ValueError as exc:
            raise ValidationException(
                f"{self.config.name}: Invalid subject key identifier '{value}'"
            ) from exc

    def authority_key_identifier(
            self,
            subject_key_id: x509.SubjectKeyIdentifier | None,
            issuer_cert: x509.Certificate | None,
            issuer_name: x509.Name,
            serial: int
    ) -> x509.AuthorityKeyIdentifier | None:
        """
        Build the authority key identifier.

        For a self-signed certificate (issuer_cert is None) the issuer is
        the new certificate, so its own subject key identifier, name and
        serial are used.
        """
        values = self.config.authority_key_identifier
        if not values:
            return None

        keyid = next((v for v in values if v.startswith("keyid")), None)
        issuer = next((v for v in values if v.startswith("issuer")), None)

        key_identifier = None
        if keyid:
            if issuer_cert is None:
                key_identifier = subject_key_id.digest if subject_key_id else None
            else:
                try:
                    key_identifier = issuer_cert.extensions.get_extension_for_class(
                        x509.SubjectKeyIdentifier
                    ).value.digest
                except x509.ExtensionNotFound:
                    key_identifier = None

            if key_identifier is None and keyid == "keyid:always":
                raise GenCertException(f"{self.config.name}: Unable to get issuer key identifier")

        authority_cert_issuer = None
        authority_cert_serial = None
        if issuer == "issuer:always" or (issuer and key_identifier is None):
            if issuer_cert is None:
                authority_cert_issuer = [x509.DirectoryName(issuer_name)]
                authority_cert_serial = serial
            else:
                authority_cert_issuer = [x509.DirectoryName(issuer_cert.issuer)]
                authority_cert_serial = issuer_cert.serial_number

        if key_identifier is None and authority_cert_issuer is None:
            ca_logger.warning(
                "%s: No authority key identifier could be derived, extension omitted",
                self.config.name
            )
            return None

        return x509.AuthorityKeyIdentifier(key_identifier, authority_cert_issuer, authority_cert_serial)

    def validity(self, issuer_cert: x509.Certificate | None) -> tuple[datetime, datetime]:
        """Validity window, never extending beyond the issuer's own expiration."""
        not_before = datetime.now(timezone.utc)
        not_after = not_before + timedelta(seconds=SECONDS_PER_DAY * self.config.days)

        if issuer_cert is not None and issuer_cert.not_valid_after_utc < not_after:
            not_after = issuer_cert.not_valid_after_utc
            ca_logger.info(
                "%s: Expiration time of certificate is limited to %s by issuing certificate",
                self.config.name,
                not_after.isoformat()
            )

        return not_before, not_after

    def issue(self) -> bytes:
        """Sign the configured request and return the PEM encoded certificate."""
        self.config.validate_parameters()

        csr = load_request(self.config.request)
        issuer_key = load_private_key(self.config.issuer_key, self.config.issuer_key_password)

        issuer_cert = None
        if is_self_signed(csr.public_key(), issuer_key):
            issuer_name = csr.subject
            ca_logger.info(
                "%s: Issuing self-signed certificate for %s",
                self.config.name,
                issuer_name.rfc4514_string()
            )
        else:
            if self.config.issuer_cert is None:
                raise ValidationException(
                    f"{self.config.name}: Parameter 'issuer_cert' is mandatory "
                    f"unless the request is signed by the issuer key"
                )
            issuer_cert = load_certificate(self.config.issuer_cert)
            issuer_name = issuer_cert.subject
            ca_logger.info(
                "%s: Issuing certificate from %s",
                self.config.name,
                issuer_name.rfc4514_string()
            )

        serial = random_serial()
        not_before, not_after = self.validity(issuer_cert)

        builder = (
            x509.CertificateBuilder()
            .subject_name(csr.subject)
            .issuer_name(issuer_name)
            .public_key(csr.public_key())
            .serial_number(serial)
            .not_valid_before(not_before)
            .not_valid_after(not_after)
        )

        for extension, critical in self.build_extensions(csr).values():
            builder = builder.add_extension(extension, critical=critical)

        subject_key_id = self.subject_key_identifier(csr.public_key())
        if subject_key_id is not None:
            builder = builder.add_extension(
                subject_key_id,
                critical=bool(self.config.subject_key_identifier_critical)
            )

        authority_key_id = self.authority_key_identifier(subject_key_id, issuer_cert, issuer_name, serial)
        if authority_key_id is not None:
            builder = builder.add_extension(authority_key_id, critical=False)

        try:
            certificate = builder.sign(
                issuer_key,
                hash_algorithm(issuer_key, self.config.signature_algorithm)
            )
        except (ValueError, TypeError, UnsupportedAlgorithm) as exc:
            raise GenCertException(f"{self.config.name}: Failed to sign certificate: {exc}") from exc

        if self.config.ca_database_file:
            self.record(certificate)

        return certificate.public_bytes(serialization.Encoding.PEM)

    def record(self, certificate: x509.Certificate):
        """Append the issued certificate to the CA database as valid."""
        row = DatabaseRow(
            status=RowStatus.VALID.value,
            expiration_date=format_expiration(certificate.not_valid_after_utc),
            revocation_date="",
            serial=serial_to_hex(certificate.serial_number),
            certificate_file="unknown",
            subject=oneline_name(certificate.subject),
        )
        CADatabase(self.config.ca_database_file, self.lock).add(row)
        ca_logger.info(
            "%s: Recorded serial %s in %s",
            self.config.name,
            row.serial,
            self.config.ca_database_file
        )
