# Licensed under GPL 3: https://www.gnu.org/licenses/gpl-3.0.html
"""Loading of keys, requests and certificates used to issue certificates and CRLs."""
from dataclasses import dataclass

from cryptography import x509
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec, ed448, ed25519, rsa

from ca.config import SignatureAlgorithms
from ca.errors import GenCertException, KeyLoadException, ValidationException

_HASH_ALGORITHMS = {
    SignatureAlgorithms.md5: hashes.MD5,
    SignatureAlgorithms.sha1: hashes.SHA1,
    SignatureAlgorithms.sha224: hashes.SHA224,
    SignatureAlgorithms.sha256: hashes.SHA256,
    SignatureAlgorithms.sha384: hashes.SHA384,
    SignatureAlgorithms.sha512: hashes.SHA512,
}


@dataclass(frozen=True)
class RSAKeyMaterial:
    public_bytes: bytes


@dataclass(frozen=True)
class ECKeyMaterial:
    point: int


@dataclass(frozen=True)
class OtherKeyMaterial:
    pass


KeyMaterial = RSAKeyMaterial | ECKeyMaterial | OtherKeyMaterial


def key_material(public_key) -> KeyMaterial:
    """Reduce a public key to the value compared for self-signed detection."""
    if isinstance(public_key, rsa.RSAPublicKey):
        return RSAKeyMaterial(public_key.public_bytes(
            serialization.Encoding.DER,
            serialization.PublicFormat.SubjectPublicKeyInfo
        ))
    if isinstance(public_key, ec.EllipticCurvePublicKey):
        point = public_key.public_bytes(
            serialization.Encoding.X962,
            serialization.PublicFormat.UncompressedPoint
        )
        return ECKeyMaterial(int.from_bytes(point, "big"))
    return OtherKeyMaterial()


def is_self_signed(request_key, issuer_key) -> bool:
    """
    Whether a request is signed with the issuer's own key.

    Only RSA and EC keys of the same kind are compared; everything else is
    treated as not self-signed.
    """
    request_material = key_material(request_key)
    issuer_material = key_material(issuer_key.public_key())

    if isinstance(request_material, OtherKeyMaterial):
        return False
    return request_material == issuer_material


def _read(path: str, what: str, exception) -> bytes:
    try:
        with open(path, "rb") as f:
            return f.read()
    except OSError as exc:
        raise exception(f"Unable to read {what} {path}: {exc.strerror}") from exc


def load_private_key(path: str, password: str = None):
    """Load a PEM private key, decrypting it when a password is given."""
    pem = _read(path, "key", KeyLoadException)
    password_bytes = password.encode("utf-8") if password else None

    try:
        return serialization.load_pem_private_key(pem, password=password_bytes)
    except (ValueError, TypeError, UnsupportedAlgorithm) as exc:
        raise KeyLoadException(f"Unable to load key {path} (missing or wrong password?)") from exc


def load_request(path: str) -> x509.CertificateSigningRequest:
    """Load a PEM CSR and verify its self-signature."""
    pem = _read(path, "request", ValidationException)

    try:
        csr = x509.load_pem_x509_csr(pem)
    except ValueError as exc:
        raise ValidationException(f"Unable to load request {path}: {exc}") from exc

    if not csr.is_signature_valid:
        raise ValidationException(f"Request signature is invalid: {path}")

    return csr


def load_certificate(path: str, exception=GenCertException) -> x509.Certificate:
    pem = _read(path, "issuer certificate", exception)

    try:
        return x509.load_pem_x509_certificate(pem)
    except ValueError as exc:
        raise exception(f"Unable to load issuer certificate {path}: {exc}") from exc


def hash_algorithm(private_key, algorithm: SignatureAlgorithms):
    """Digest to sign with; keys with a built-in digest (Ed25519/Ed448) take None."""
    if isinstance(private_key, (ed25519.Ed25519PrivateKey, ed448.Ed448PrivateKey)):
        return None
    return _HASH_ALGORITHMS[algorithm]()
