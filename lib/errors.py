# Licensed under GPL 3: https://www.gnu.org/licenses/gpl-3.0.html
"""
Shared exception classes for sslca components.

Exceptions log themselves when they are created, so callers only need to
catch them to decide on an exit status.
"""

import logging

shared_logger = logging.getLogger("sslca_shared")


class LoggedException(BaseException):
    """Mixin logging ``ClassName: message`` on construction."""

    log_level = logging.ERROR
    include_traceback = False

    def __init__(self, message: str, *args):
        super().__init__(message, *args)
        shared_logger.log(
            self.log_level,
            "%s: %s",
            self.__class__.__name__,
            message,
            exc_info=self.include_traceback,
        )


class SSLCABreakingException(LoggedException, SystemExit):
    """Critical exception that causes system exit."""

    log_level = logging.CRITICAL
    include_traceback = True


class SSLCAException(LoggedException, RuntimeError):
    """Base exception class for sslca errors."""
