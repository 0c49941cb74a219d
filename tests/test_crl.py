import os
import tempfile
import unittest
from datetime import datetime, timedelta, timezone

from cryptography import x509

from ca.config import CRLConfig
from ca.crl import CRLIssuer, revoked_entry
from ca.database import parse_row
from ca.errors import GenCRLException, KeyLoadException, ValidationException
from tests import pki

DATABASE = (
    "V\t301231235959Z\t\t0A\tunknown\t/CN=valid\n"
    "R\t301231235959Z\t240101120000Z\t0B\tunknown\t/CN=revoked\n"
    "R\t301231235959Z\t20240202080000Z,keyCompromise\t0c\tunknown\t/CN=compromised\n"
    "E\t200101000000Z\t\t0D\tunknown\t/CN=expired\n"
)


class TestRevokedEntry(unittest.TestCase):

    def test_short_date(self):
        entry = revoked_entry(parse_row("R\t301231235959Z\t240101120000Z\t0B\tunknown\t/CN=x\n"))
        self.assertEqual(entry.serial_number, 0x0B)
        self.assertEqual(entry.revocation_date_utc, datetime(2024, 1, 1, 12, tzinfo=timezone.utc))
        self.assertEqual(len(entry.extensions), 0)

    def test_long_date_with_reason(self):
        entry = revoked_entry(parse_row(
            "R\t301231235959Z\t20240202080000Z,superseded\t0c\tunknown\t/CN=x\n"
        ))
        self.assertEqual(entry.serial_number, 0x0C)
        self.assertEqual(entry.revocation_date_utc, datetime(2024, 2, 2, 8, tzinfo=timezone.utc))
        reason = entry.extensions.get_extension_for_class(x509.CRLReason)
        self.assertEqual(reason.value.reason, x509.ReasonFlags.superseded)

    def test_invalid_date_is_now(self):
        entry = revoked_entry(parse_row("R\t301231235959Z\tyesterday\t0E\tunknown\t/CN=x\n"))
        self.assertLess(
            abs(datetime.now(timezone.utc) - entry.revocation_date_utc),
            timedelta(seconds=5)
        )

    def test_unknown_reason(self):
        with self.assertLogs("sslca", level="WARNING"):
            entry = revoked_entry(parse_row(
                "R\t301231235959Z\t240101120000Z,bored\t0F\tunknown\t/CN=x\n"
            ))
        self.assertEqual(len(entry.extensions), 0)

    def test_unusable_serial_is_skipped(self):
        for serial in ("XYZ", "00", "8" + "0" * 39):
            with self.subTest(serial=serial):
                with self.assertLogs("sslca", level="WARNING") as logs:
                    entry = revoked_entry(parse_row(f"R\t301231235959Z\t240101120000Z\t{serial}\tunknown\t/CN=x\n"))
                self.assertIsNone(entry)
                self.assertIn(serial, logs.output[0])

    def test_widest_serial(self):
        entry = revoked_entry(parse_row("R\t301231235959Z\t240101120000Z\t" + "7" + "F" * 39 + "\tunknown\t/CN=x\n"))
        self.assertEqual(entry.serial_number, 2 ** 159 - 1)


class TestCRLIssuer(unittest.TestCase):

    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.dir = self.tmp.name

        self.ca_key = pki.ec_key()
        self.ca_cert = pki.make_ca_cert(self.ca_key)
        self.database = pki.write_text(self.dir, "index.txt", DATABASE)
        self.counter = pki.write_text(self.dir, "crlnumber", "01\n")

    def tearDown(self):
        self.tmp.cleanup()

    def config(self, **kwargs) -> CRLConfig:
        params = {
            "name": "crl",
            "path": os.path.join(self.dir, "ca.crl"),
            "issuer_key": pki.write_key(self.dir, "ca.key", self.ca_key),
            "issuer_cert": pki.write_cert(self.dir, "ca.crt", self.ca_cert),
            "ca_database_file": self.database,
            "crl_serial_file": self.counter,
        }
        params.update(kwargs)
        return CRLConfig(**params)

    @staticmethod
    def issue(config: CRLConfig) -> x509.CertificateRevocationList:
        return x509.load_pem_x509_crl(CRLIssuer(config).issue())

    def test_issue(self):
        crl = self.issue(self.config(days=7))

        self.assertTrue(crl.is_signature_valid(self.ca_key.public_key()))
        self.assertEqual(crl.issuer, self.ca_cert.subject)
        self.assertEqual(crl.next_update_utc - crl.last_update_utc, timedelta(days=7))
        self.assertEqual(sorted(entry.serial_number for entry in crl), [0x0B, 0x0C])

        compromised = crl.get_revoked_certificate_by_serial_number(0x0C)
        self.assertEqual(
            compromised.extensions.get_extension_for_class(x509.CRLReason).value.reason,
            x509.ReasonFlags.key_compromise
        )

    def test_crl_number_advances(self):
        first = self.issue(self.config())
        second = self.issue(self.config())

        self.assertEqual(first.extensions.get_extension_for_class(x509.CRLNumber).value.crl_number, 2)
        self.assertEqual(second.extensions.get_extension_for_class(x509.CRLNumber).value.crl_number, 3)
        self.assertEqual(pki.read_text(self.counter), "03\n")

    def test_empty_database(self):
        crl = self.issue(self.config(ca_database_file=pki.write_text(self.dir, "empty.txt", "")))
        self.assertEqual(len(crl), 0)

    def test_unusable_serial_does_not_block_issue(self):
        pki.write_text(
            self.dir, "index.txt",
            "R\t301231235959Z\t240101120000Z\tXYZ\tunknown\t/CN=bad\n"
            "R\t301231235959Z\t240101120000Z\t00\tunknown\t/CN=zero\n"
            "R\t301231235959Z\t240101120000Z\t0B\tunknown\t/CN=revoked\n"
        )
        with self.assertLogs("sslca", level="WARNING"):
            crl = self.issue(self.config())

        self.assertEqual([entry.serial_number for entry in crl], [0x0B])
        self.assertEqual(pki.read_text(self.counter), "02\n")

    def test_missing_issuer_cert_file(self):
        with self.assertRaises(GenCRLException):
            CRLIssuer(self.config(issuer_cert=os.path.join(self.dir, "missing.crt"))).issue()
        self.assertEqual(pki.read_text(self.counter), "01\n")

    def test_wrong_password(self):
        key_path = pki.write_key(self.dir, "enc.key", self.ca_key, password="secret")
        with self.assertRaises(KeyLoadException):
            CRLIssuer(self.config(issuer_key=key_path, issuer_key_password="nope")).issue()

    def test_mandatory_parameters(self):
        for parameter in ("issuer_key", "issuer_cert", "ca_database_file", "crl_serial_file"):
            with self.assertRaises(ValidationException):
                CRLIssuer(self.config(**{parameter: None})).issue()


if __name__ == '__main__':
    unittest.main()
