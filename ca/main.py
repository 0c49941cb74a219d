# Licensed under GPL 3: https://www.gnu.org/licenses/gpl-3.0.html
"""Main sslca controller and command line entrypoint."""

import argparse
import os
import sys

import yaml

from ca.config import CAConfig, CertificateConfig, ValidRevocationReasons, ca_logger, LOGGING_SENSITIVE_PATTERNS
from ca.resource import CertificateFile, CRLFile, Revocation
from ca.revoke import RevocationUpdater
from lib.controller import Controller
from lib.errors import SSLCABreakingException, SSLCAException
from lib.logs import LoggingConfig


class CAController(Controller):
    """
    Applies the certificates, CRLs and revocations described in the
    configuration.

    Revocations are applied first so that CRLs generated in the same run
    include them. Certificates are issued in the order they are listed, so
    a CA certificate should come before the certificates it issues.

    :ivar configClass: The configuration class for the CA.
    :type configClass: Type[CAConfig]
    """

    configClass = CAConfig
    sensitive_patterns = LOGGING_SENSITIVE_PATTERNS
    config: CAConfig

    def _pem_file(self, config) -> CertificateFile | CRLFile:
        if isinstance(config, CertificateConfig):
            return CertificateFile(config, self.config.lock)
        return CRLFile(config, self.config.lock)

    def apply(self) -> int:
        """Converge every configured resource. Returns the number of changes."""
        ca_logger.info("Applying configuration")
        changes = 0

        for revocation_config in self.config.revocations:
            if Revocation(revocation_config, self.config.lock).apply():
                changes += 1

        for cert_config in self.config.certificates:
            if self._pem_file(cert_config).apply():
                changes += 1

        for crl_config in self.config.crls:
            if self._pem_file(crl_config).apply():
                changes += 1

        ca_logger.info("Applied configuration with %d changes", changes)
        return changes

    def refresh(self, name: str):
        """Regenerate a single certificate or CRL by name."""
        ca_logger.info("Refreshing %s", name)
        self._pem_file(self.config.get_cert_config_by_name(name)).refresh()

    def revoke(self, database: str, serial: str, reason: ValidRevocationReasons = None) -> bool:
        return RevocationUpdater(database, self.config.lock).revoke(serial, reason)

    def unrevoke(self, database: str, serial: str) -> bool:
        return RevocationUpdater(database, self.config.lock).unrevoke(serial)


def _parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="sslca", description="Manage an OpenSSL CA database, certificates and CRLs.")
    parser.add_argument("-c", "--config", help="path to the sslca.yaml configuration file")
    commands = parser.add_subparsers(dest="command")

    commands.add_parser("apply", help="converge all configured resources")

    refresh = commands.add_parser("refresh", help="regenerate one configured certificate or CRL")
    refresh.add_argument("name")

    revoke = commands.add_parser("revoke", help="revoke a certificate in a CA database")
    revoke.add_argument("serial")
    revoke.add_argument("--database", required=True)
    revoke.add_argument("--reason", choices=[reason.value for reason in ValidRevocationReasons])

    unrevoke = commands.add_parser("unrevoke", help="remove a revoked certificate from a CA database")
    unrevoke.add_argument("serial")
    unrevoke.add_argument("--database", required=True)

    return parser


def _controller(args: argparse.Namespace) -> CAController:
    """
    Build the controller for the parsed command line.

    revoke and unrevoke name their database explicitly, so they run with
    default settings and console logging when no configuration file exists.
    """
    config_file = args.config or CAConfig.__config_file__
    if args.command in ("revoke", "unrevoke") and not os.path.exists(config_file):
        return CAController(config=CAConfig(logging=LoggingConfig(log_file=None, error_file=None)))
    return CAController(config_file)


def main(argv: list[str] = None) -> int:
    """Entrypoint for the sslca command."""
    args = _parser().parse_args(argv)

    try:
        ca = _controller(args)
    except (OSError, ValueError, yaml.YAMLError) as exc:
        raise SSLCABreakingException(f"Unable to load configuration: {exc}") from exc

    try:
        if args.command == "refresh":
            ca.refresh(args.name)
        elif args.command == "revoke":
            reason = ValidRevocationReasons(args.reason) if args.reason else None
            ca.revoke(args.database, args.serial, reason)
        elif args.command == "unrevoke":
            ca.unrevoke(args.database, args.serial)
        else:
            ca.apply()
    except SSLCAException:
        return 1

    return 0


if __name__ == '__main__':
    sys.exit(main())
