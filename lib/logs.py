# Licensed under GPL 3: https://www.gnu.org/licenses/gpl-3.0.html
"""Logging configuration and utilities for sslca components."""

import os
import logging
import re
import sys
import logging.config
from dataclasses import dataclass
from typing import ClassVar, Optional

SHARED_LOGGER = "sslca_shared"


@dataclass
class LoggingConfig:
    """
    Configuration for the logging system.

    Setting log_file or error_file to None drops the corresponding file
    handler, which leaves console output only.
    """

    __path__: ClassVar[str] = "logging"

    log_root: str = "sslca"
    log_dir: str = "logs"
    verbose: bool = False
    log_file: Optional[str] = "sslca.log"
    error_file: Optional[str] = "error.log"
    log_level: str = "INFO"


class SensitiveDataFilter(logging.Filter): # pylint: disable=too-few-public-methods
    """Filter to mask sensitive data in log messages."""

    SENSITIVE_PATTERNS = {}

    @classmethod
    def redact(cls, text: str) -> str:
        for pattern in cls.SENSITIVE_PATTERNS.values():
            text = re.sub(pattern['pattern'], pattern['replace'], text)
        return text

    def filter(self, record):
        """Filter and mask sensitive data in log record."""
        if isinstance(record.msg, str):
            record.msg = self.redact(record.msg)
        if record.args:
            record.args = tuple(
                self.redact(arg) if isinstance(arg, str) else arg
                for arg in record.args
            )
        return True


class ErrorFilter(logging.Filter):
    """Let through records below ERROR, which go to the error handlers instead."""

    def filter(self, record):
        return record.levelno <= logging.WARNING


class ColoredFormatter(logging.Formatter):  # pylint: disable=too-few-public-methods
    """Formatter that adds color codes to log messages."""

    RED = '\033[91m'
    RESET = '\033[0m'

    def format(self, record):
        formatted = super().format(record)
        if record.levelno >= logging.ERROR:
            formatted = f"{self.RED}{formatted}{self.RESET}"

        return formatted


def _file_handler(config: LoggingConfig, filename: str, level: str, filters: list[str], formatter: str) -> dict:
    return {
        'level': level,
        'class': 'logging.FileHandler',
        'formatter': formatter,
        'filename': os.path.join(config.log_dir, filename),
        'encoding': 'utf8',
        'filters': filters,
    }


def build_logging_config(config: LoggingConfig) -> dict:
    """
    Build the dictConfig for the sslca loggers.

    Records up to WARNING go to stdout and the log file, ERROR and above to
    stderr and the error file. Every handler masks sensitive data.
    """
    formatter = 'verbose' if config.verbose else 'simple'

    handlers = {
        "stdout": {
            "level": config.log_level,
            "class": "logging.StreamHandler",
            "formatter": formatter,
            "stream": sys.stdout,
            'filters': ['sensitive_data', 'info_debug_only']
        },
        "stderr": {
            "level": "ERROR",
            "class": "logging.StreamHandler",
            "formatter": formatter,
            "stream": sys.stderr,
            'filters': ['sensitive_data']
        },
    }
    if config.log_file:
        handlers['file'] = _file_handler(
            config, config.log_file, config.log_level, ['sensitive_data', 'info_debug_only'], formatter
        )
    if config.error_file:
        handlers['error_file'] = _file_handler(
            config, config.error_file, "ERROR", ['sensitive_data'], formatter
        )

    logger = {
        'level': config.log_level,
        'handlers': list(handlers),
        'propagate': False,
    }

    return {
        'version': 1,
        'disable_existing_loggers': False,
        'filters': {
            'sensitive_data': {
                '()': SensitiveDataFilter,
            },
            'info_debug_only': {
                '()': ErrorFilter,
            }
        },
        'formatters': {
            'verbose': {
                '()': ColoredFormatter,
                'format': '%(asctime)s [%(name)-20s] [%(levelname)-8s] %(message)s',
                'datefmt': '%Y-%m-%d %H:%M:%S',
            },
            'simple': {
                '()': ColoredFormatter,
                'format': '%(asctime)s [%(levelname)-8s] %(message)s',
                'datefmt': '%Y-%m-%d %H:%M:%S',
            },
        },
        'handlers': handlers,
        'loggers': {
            config.log_root: dict(logger),
            SHARED_LOGGER: dict(logger),
        }
    }


def setup_logger(config: LoggingConfig):
    """
    Set up logging configuration with handlers and formatters.

    Args:
        config: Logging configuration
    """
    if (config.log_file or config.error_file) and not os.path.exists(config.log_dir):
        os.makedirs(config.log_dir)

    logging.config.dictConfig(build_logging_config(config))
    logging.getLogger(SHARED_LOGGER).debug("Logging is set up and ready")
