# Licensed under GPL 3: https://www.gnu.org/licenses/gpl-3.0.html
"""Base controller class for sslca components."""

from lib.config import Config, shared_logger
from lib.logs import setup_logger, SensitiveDataFilter


class Controller:
    """Base controller class for managing configuration and logging."""

    configClass = Config
    sensitive_patterns: dict = {}

    def __init__(self, config_file: str = None, config: Config = None):
        self.config = config if config is not None else self.configClass.load(config_file)
        self.setup_logging()

    def setup_logging(self):
        """Set up logging configuration."""
        SensitiveDataFilter.SENSITIVE_PATTERNS.update(self.sensitive_patterns)
        setup_logger(self.config.logging)
        shared_logger.info("Logging set up")
