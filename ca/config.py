# Licensed under GPL 3: https://www.gnu.org/licenses/gpl-3.0.html
"""
Configuration module for sslca.

This module provides the configuration classes describing managed
certificates, CRLs and revocations, the tables mapping OpenSSL extension
names to OIDs, and the main CA configuration class.
"""
import enum
import logging
import os
import re
from dataclasses import field
from typing import ClassVar, Optional

from cryptography import x509
from cryptography.x509.oid import ExtendedKeyUsageOID, ExtensionOID
from pydantic import field_validator
from pydantic.dataclasses import dataclass

from ca.errors import CertConfigNotFound, ValidationException
from lib.config import SSLCAConfig

ca_logger = logging.getLogger("sslca")


class Ensure(enum.Enum):
    """Desired state of a managed resource."""
    present = "present"
    absent = "absent"


class SignatureAlgorithms(enum.Enum):
    """Digests usable for signing certificates and CRLs."""
    md5 = "md5"
    sha1 = "sha1"
    sha224 = "sha224"
    sha256 = "sha256"
    sha384 = "sha384"
    sha512 = "sha512"


class ValidRevocationReasons(enum.Enum):
    """Revocation reasons as spelled in an OpenSSL CA database."""
    unspecified = "unspecified"
    keyCompromise = "keyCompromise"
    CACompromise = "CACompromise"
    affiliationChanged = "affiliationChanged"
    superseded = "superseded"
    cessationOfOperation = "cessationOfOperation"
    certificateHold = "certificateHold"
    removeFromCRL = "removeFromCRL"


# keyUsage name -> keyword argument of x509.KeyUsage
KEY_USAGE_NAMES = {
    "digitalSignature": "digital_signature",
    "nonRepudiation": "content_commitment",
    "keyEncipherment": "key_encipherment",
    "dataEncipherment": "data_encipherment",
    "keyAgreement": "key_agreement",
    "keyCertSign": "key_cert_sign",
    "cRLSign": "crl_sign",
    "encipherOnly": "encipher_only",
    "decipherOnly": "decipher_only",
}

EXTENDED_KEY_USAGE_OIDS = {
    "serverAuth": ExtendedKeyUsageOID.SERVER_AUTH,
    "clientAuth": ExtendedKeyUsageOID.CLIENT_AUTH,
    "codeSigning": ExtendedKeyUsageOID.CODE_SIGNING,
    "emailProtection": ExtendedKeyUsageOID.EMAIL_PROTECTION,
    "timeStamping": ExtendedKeyUsageOID.TIME_STAMPING,
    "OCSPSigning": ExtendedKeyUsageOID.OCSP_SIGNING,
    "ipsecIKE": x509.ObjectIdentifier("1.3.6.1.5.5.7.3.17"),
    "msCodeInd": x509.ObjectIdentifier("1.3.6.1.4.1.311.2.1.21"),
    "msCodeCom": x509.ObjectIdentifier("1.3.6.1.4.1.311.2.1.22"),
    "msCTLSign": x509.ObjectIdentifier("1.3.6.1.4.1.311.10.3.1"),
    "msEFS": x509.ObjectIdentifier("1.3.6.1.4.1.311.10.3.4"),
}

# OpenSSL short names accepted in copy/omit extension lists
EXTENSION_NAME_OIDS = {
    "basicConstraints": ExtensionOID.BASIC_CONSTRAINTS.dotted_string,
    "keyUsage": ExtensionOID.KEY_USAGE.dotted_string,
    "extendedKeyUsage": ExtensionOID.EXTENDED_KEY_USAGE.dotted_string,
    "subjectAltName": ExtensionOID.SUBJECT_ALTERNATIVE_NAME.dotted_string,
    "issuerAltName": ExtensionOID.ISSUER_ALTERNATIVE_NAME.dotted_string,
    "subjectKeyIdentifier": ExtensionOID.SUBJECT_KEY_IDENTIFIER.dotted_string,
    "authorityKeyIdentifier": ExtensionOID.AUTHORITY_KEY_IDENTIFIER.dotted_string,
    "crlDistributionPoints": ExtensionOID.CRL_DISTRIBUTION_POINTS.dotted_string,
    "authorityInfoAccess": ExtensionOID.AUTHORITY_INFORMATION_ACCESS.dotted_string,
    "subjectInfoAccess": ExtensionOID.SUBJECT_INFORMATION_ACCESS.dotted_string,
    "certificatePolicies": ExtensionOID.CERTIFICATE_POLICIES.dotted_string,
    "policyConstraints": ExtensionOID.POLICY_CONSTRAINTS.dotted_string,
    "nameConstraints": ExtensionOID.NAME_CONSTRAINTS.dotted_string,
    "inhibitAnyPolicy": ExtensionOID.INHIBIT_ANY_POLICY.dotted_string,
    "tlsfeature": ExtensionOID.TLS_FEATURE.dotted_string,
    "nsCertType": "2.16.840.1.113730.1.1",
    "nsComment": "2.16.840.1.113730.1.13",
}

AUTHORITY_KEY_IDENTIFIER_VALUES = ["keyid", "issuer", "keyid:always", "issuer:always"]

_DOTTED_OID = re.compile(r'^\d+(\.\d+)+$')


def extension_oid(name: str) -> str:
    """Translate an OpenSSL extension short name or dotted OID to a dotted OID."""
    if name in EXTENSION_NAME_OIDS:
        return EXTENSION_NAME_OIDS[name]
    if _DOTTED_OID.match(name):
        return name
    raise ValueError(f"Unknown extension name: {name}")


def _validate_mode(v):
    if v is not None and not re.match(r'^[0-7]{3,4}$', v):
        raise ValueError(f"Mode must be an octal permission string, got '{v}'")
    return v


@dataclass
class CertificateConfig:  # pylint: disable=too-many-instance-attributes
    """Configuration for a certificate issued from a CSR."""

    name: str
    path: str

    request: Optional[str] = None
    issuer_key: Optional[str] = None
    issuer_key_password: Optional[str] = None
    issuer_cert: Optional[str] = None
    days: int = 365
    signature_algorithm: SignatureAlgorithms = SignatureAlgorithms.sha256

    key_usage: list[str] = field(default_factory=list)
    key_usage_critical: Optional[bool] = None
    extended_key_usage: list[str] = field(default_factory=list)
    extended_key_usage_critical: Optional[bool] = None
    basic_constraints_ca: Optional[bool] = None
    basic_constraints_ca_critical: Optional[bool] = None
    subject_key_identifier: Optional[str] = None
    subject_key_identifier_critical: Optional[bool] = None
    authority_key_identifier: list[str] = field(default_factory=list)

    copy_request_extensions: list[str] = field(default_factory=list)
    omit_request_extensions: list[str] = field(default_factory=list)

    ca_database_file: Optional[str] = None

    ensure: Ensure = Ensure.present
    mode: Optional[str] = None

    @field_validator("days")
    @classmethod
    def validate_days(cls, v: int):
        if v < 0:
            raise ValueError(f"Days must not be negative, got {v}")
        return v

    @field_validator("key_usage")
    @classmethod
    def validate_key_usage(cls, v: list[str]):
        for usage in v:
            if usage not in KEY_USAGE_NAMES:
                raise ValueError(f"Invalid key usage: {usage}")
        return v

    @field_validator("extended_key_usage")
    @classmethod
    def validate_extended_key_usage(cls, v: list[str]):
        for usage in v:
            if usage not in EXTENDED_KEY_USAGE_OIDS:
                raise ValueError(f"Invalid extended key usage: {usage}")
        return v

    @field_validator("authority_key_identifier")
    @classmethod
    def validate_authority_key_identifier(cls, v: list[str]):
        for value in v:
            if value not in AUTHORITY_KEY_IDENTIFIER_VALUES:
                raise ValueError(f"Invalid authority key identifier value: {value}")
        return v

    @field_validator("copy_request_extensions", "omit_request_extensions")
    @classmethod
    def validate_extension_names(cls, v: list[str]):
        for name in v:
            extension_oid(name)
        return v

    @field_validator("mode")
    @classmethod
    def validate_mode(cls, v: str):
        return _validate_mode(v)

    def validate_parameters(self):
        """Check parameter combinations that field validators cannot see."""
        if self.authority_key_identifier:
            if self.subject_key_identifier is None:
                raise ValidationException(
                    f"{self.name}: Parameter 'subject_key_identifier' must be set "
                    f"if 'authority_key_identifier' is used"
                )
            if sum(1 for x in self.authority_key_identifier if x.startswith("keyid")) > 1:
                raise ValidationException(
                    f"{self.name}: Parameter 'authority_key_identifier' has multiple keyid values"
                )
            if sum(1 for x in self.authority_key_identifier if x.startswith("issuer")) > 1:
                raise ValidationException(
                    f"{self.name}: Parameter 'authority_key_identifier' has multiple issuer values"
                )

        restricted = {"encipherOnly", "decipherOnly"} & set(self.key_usage)
        if restricted and "keyAgreement" not in self.key_usage:
            raise ValidationException(
                f"{self.name}: Key usage {', '.join(sorted(restricted))} requires keyAgreement"
            )

        if self.request is None:
            raise ValidationException(f"{self.name}: Parameter 'request' is mandatory")
        if self.issuer_key is None:
            raise ValidationException(f"{self.name}: Parameter 'issuer_key' is mandatory")


@dataclass
class CRLConfig:
    """Configuration for a certificate revocation list."""

    name: str
    path: str

    issuer_key: Optional[str] = None
    issuer_key_password: Optional[str] = None
    issuer_cert: Optional[str] = None
    days: int = 30
    signature_algorithm: SignatureAlgorithms = SignatureAlgorithms.sha256

    ca_database_file: Optional[str] = None
    crl_serial_file: Optional[str] = None

    ensure: Ensure = Ensure.present
    mode: Optional[str] = None

    @field_validator("days")
    @classmethod
    def validate_days(cls, v: int):
        if v < 0:
            raise ValueError(f"Days must not be negative, got {v}")
        return v

    @field_validator("mode")
    @classmethod
    def validate_mode(cls, v: str):
        return _validate_mode(v)

    def validate_parameters(self):
        """Check that every file needed to build the CRL is configured."""
        if self.ensure != Ensure.present:
            return

        for parameter in ("issuer_key", "issuer_cert", "ca_database_file", "crl_serial_file"):
            if getattr(self, parameter) is None:
                raise ValidationException(f"{self.name}: Parameter '{parameter}' is mandatory")


@dataclass
class RevocationConfig:
    """Configuration for the revocation of one certificate by serial."""

    serial: str
    ca_database_file: str
    ensure: Ensure = Ensure.present
    reason: Optional[ValidRevocationReasons] = None

    @field_validator("serial", mode="before")
    @classmethod
    def validate_serial(cls, v):
        # yaml reads all-digit serials as integers
        v = str(v)
        if not re.match(r'^[0-9A-Fa-f]+$', v):
            raise ValueError(f"Serial must be a hexadecimal string, got '{v}'")
        return v


@dataclass
class CAConfig(SSLCAConfig):
    """Main configuration class for sslca."""

    __path__: ClassVar[str] = "sslca"
    __config_dir__: ClassVar[str] = f"{os.getenv('CONFIG_DIR', os.getcwd()).rstrip('/')}"
    __config_file__: ClassVar[str] = f"{__config_dir__}/sslca.yaml"

    certificates: list[CertificateConfig] = field(default_factory=list)
    crls: list[CRLConfig] = field(default_factory=list)
    revocations: list[RevocationConfig] = field(default_factory=list)

    def get_cert_config_by_name(self, name: str) -> CertificateConfig | CRLConfig:
        """Get certificate or CRL configuration by name."""
        configs = [conf for conf in self.certificates + self.crls if conf.name == name]
        if not configs:
            raise CertConfigNotFound(f"Certificate or CRL with name '{name}' not found in config.")
        if len(configs) > 1:
            raise ValueError(f"Multiple certificates or CRLs found with the name: '{name}'")

        return configs[0]


LOGGING_SENSITIVE_PATTERNS = {
    'key_password': {
        'pattern': re.compile(r'((?:issuer_key_)?password["\']?\s*[:=]\s*)\S+'),
        'replace': r'\1[REDACTED]'
    },
}
