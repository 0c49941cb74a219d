# Licensed under GPL 3: https://www.gnu.org/licenses/gpl-3.0.html
"""Set of sslca CA specific exceptions"""

from lib.errors import SSLCAException


class ValidationException(SSLCAException):
    """Raised when a request or the resource parameters are invalid."""

class KeyLoadException(SSLCAException):
    """Raised when a private key cannot be read or decrypted."""

class CADatabaseIOException(SSLCAException):
    """Raised when a CA database, counter or output file cannot be accessed."""

class LockTimeoutException(CADatabaseIOException):
    """Raised when a file lock is not obtained within the configured timeout."""

class GenCertException(SSLCAException):
    """Raised when a certificate cannot be generated."""

class GenCRLException(SSLCAException):
    """Raised when a CRL cannot be generated."""

class CertConfigNotFound(SSLCAException):
    """Raised when a certificate or CRL config cannot be found."""
