import logging
import unittest
from unittest import mock

from ca.config import LOGGING_SENSITIVE_PATTERNS
from ca.errors import CADatabaseIOException, LockTimeoutException
from lib.errors import SSLCABreakingException, SSLCAException
from lib.logs import LoggingConfig, SensitiveDataFilter, build_logging_config


class TestLoggingConfig(unittest.TestCase):

    def test_default_handlers(self):
        config = build_logging_config(LoggingConfig(log_dir="/var/log/sslca"))

        self.assertEqual(set(config['handlers']), {'stdout', 'stderr', 'file', 'error_file'})
        self.assertEqual(config['handlers']['file']['filename'], "/var/log/sslca/sslca.log")
        self.assertEqual(config['loggers']['sslca']['handlers'], config['loggers']['sslca_shared']['handlers'])
        self.assertFalse(config['loggers']['sslca']['propagate'])

    def test_console_only(self):
        config = build_logging_config(LoggingConfig(log_file=None, error_file=None, log_root="ca"))

        self.assertEqual(set(config['handlers']), {'stdout', 'stderr'})
        self.assertIn('ca', config['loggers'])

    def test_every_handler_masks(self):
        config = build_logging_config(LoggingConfig())
        for handler in config['handlers'].values():
            self.assertIn('sensitive_data', handler['filters'])


class TestSensitiveDataFilter(unittest.TestCase):

    def setUp(self):
        patcher = mock.patch.dict(SensitiveDataFilter.SENSITIVE_PATTERNS, LOGGING_SENSITIVE_PATTERNS)
        patcher.start()
        self.addCleanup(patcher.stop)

    def test_message_and_args(self):
        record = logging.LogRecord(
            "sslca", logging.INFO, __file__, 1,
            "loading key with %s, attempt %d", ("password=hunter2", 3), None
        )
        SensitiveDataFilter().filter(record)

        self.assertNotIn("hunter2", record.getMessage())
        self.assertEqual(record.args, ("password=[REDACTED]", 3))

    def test_unrelated_text(self):
        self.assertEqual(SensitiveDataFilter.redact("serial 0A revoked"), "serial 0A revoked")


class TestExceptions(unittest.TestCase):

    def test_logged_on_construction(self):
        with self.assertLogs("sslca_shared", level="ERROR") as logs:
            exc = LockTimeoutException("Timed out waiting for lock on index.txt")

        self.assertEqual(logs.output, [
            "ERROR:sslca_shared:LockTimeoutException: Timed out waiting for lock on index.txt"
        ])
        self.assertIsInstance(exc, CADatabaseIOException)
        self.assertIsInstance(exc, RuntimeError)

    def test_breaking_exception_exits(self):
        with self.assertLogs("sslca_shared", level="CRITICAL"):
            exc = SSLCABreakingException("cannot start")

        self.assertIsInstance(exc, SystemExit)
        self.assertNotIsInstance(exc, Exception)
        self.assertNotIsInstance(exc, SSLCAException)
        self.assertEqual(exc.code, "cannot start")


if __name__ == '__main__':
    unittest.main()
