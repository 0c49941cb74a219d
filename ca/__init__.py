# pylint: disable=missing-module-docstring

from .certificate import CertificateIssuer
from .crl import CRLIssuer
from .database import CADatabase, DatabaseRow, RowStatus
from .revoke import RevocationUpdater
from .serial import CounterFile

__all__ = [
    'CADatabase',
    'CertificateIssuer',
    'CounterFile',
    'CRLIssuer',
    'DatabaseRow',
    'RevocationUpdater',
    'RowStatus',
]
