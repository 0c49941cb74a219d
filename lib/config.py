# Licensed under GPL 3: https://www.gnu.org/licenses/gpl-3.0.html
"""Shared configuration classes for sslca components."""

import logging
from abc import ABCMeta
from dataclasses import field
from typing import ClassVar, Any, Optional, Self

import yaml
from cachetools import TTLCache
from pydantic import field_validator
from pydantic.dataclasses import dataclass

from lib.logs import LoggingConfig

shared_logger = logging.getLogger("sslca_shared")


@dataclass
class LockConfig:
    """
    Locking behaviour for the CA database and counter files.

    A timeout of None blocks until the lock is obtained. Between attempts
    the sleep starts at retry_interval and doubles up to max_retry_interval.
    """

    __path__: ClassVar[str] = "lock"

    timeout: Optional[float] = None
    retry_interval: float = 0.05
    max_retry_interval: float = 1.0

    @field_validator("timeout")
    @classmethod
    def timeout_must_be_positive(cls, v):
        if v is not None and v <= 0:
            raise ValueError("Lock timeout must be positive")
        return v

    @field_validator("retry_interval", "max_retry_interval")
    @classmethod
    def interval_must_be_positive(cls, v):
        if v <= 0:
            raise ValueError("Lock retry intervals must be positive")
        return v


@dataclass
class Config(metaclass=ABCMeta):
    """Abstract sslca configuration."""

    __path__: ClassVar[str] = ""
    __config_dir__: ClassVar[str] = ""
    __config_file__: ClassVar[str] = ""
    __ttl_cache__: ClassVar[TTLCache] = TTLCache(maxsize=5, ttl=10)

    @classmethod
    def load(cls, config_file: str = None) -> 'Self':
        return cls(**cls.read_config(config_file).get(cls.__path__, {}))

    @classmethod
    def read_config(cls, config_file: str = None) -> dict[str, Any]:
        config_file = config_file or cls.__config_file__
        if not cls.__ttl_cache__.get(config_file):
            shared_logger.debug("Reading configuration from %s", config_file)
            with open(config_file, 'r', encoding='utf-8') as f:
                cls.__ttl_cache__[config_file] = yaml.safe_load(f) or {}

        return cls.__ttl_cache__[config_file]


@dataclass
class SSLCAConfig(Config):
    """Base configuration class for sslca components."""

    logging: LoggingConfig = field(default_factory=LoggingConfig)
    lock: LockConfig = field(default_factory=LockConfig)
