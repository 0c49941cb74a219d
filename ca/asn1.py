# Licensed under GPL 3: https://www.gnu.org/licenses/gpl-3.0.html
"""ASN.1 helpers for reading certificate signing requests."""
from dataclasses import dataclass

from cryptography import x509
from cryptography.hazmat.primitives import serialization
from pyasn1.codec.der.decoder import decode as der_decoder
from pyasn1.type import univ
from pyasn1_modules import rfc2986, rfc5280

EXTENSION_REQUEST_OID = univ.ObjectIdentifier("1.2.840.113549.1.9.14")


@dataclass
class RequestedExtension:
    """An extension copied from a CSR, kept as its DER encoded value."""

    oid: str
    critical: bool
    value: bytes

    def to_extension_type(self) -> x509.UnrecognizedExtension:
        return x509.UnrecognizedExtension(x509.ObjectIdentifier(self.oid), self.value)


def requested_extensions(csr: x509.CertificateSigningRequest) -> dict[str, RequestedExtension]:
    """
    Collect the extensions from the extensionRequest attribute of a CSR.

    The attribute value is a SET of Extensions sequences. When an OID
    appears more than once the last occurrence wins.
    """
    request = der_decoder(
        csr.public_bytes(serialization.Encoding.DER),
        asn1Spec=rfc2986.CertificationRequest()
    )[0]
    attributes = request["certificationRequestInfo"]["attributes"]

    extensions: dict[str, RequestedExtension] = {}
    for attribute in attributes:
        if attribute["type"] != EXTENSION_REQUEST_OID:
            continue

        for value in attribute["values"]:
            sequence = der_decoder(value.asOctets(), asn1Spec=rfc5280.Extensions())[0]
            for ext in sequence:
                oid = str(ext["extnID"])
                extensions[oid] = RequestedExtension(
                    oid=oid,
                    critical=bool(ext["critical"]),
                    value=ext["extnValue"].asOctets(),
                )

    return extensions
