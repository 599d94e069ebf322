"""Logging Module for the LAN streaming control plane.

Configures console and rotating structured-JSON file logging for every
service in the process.

Main Components:
    - setup_logging: Configure the root logger
    - JsonFormatter: Structured JSON formatter for file output
    - LoggingConfig: Configuration management

Example:
    >>> from logging_module import LoggingConfig, setup_logging
    >>> setup_logging(LoggingConfig.from_env())
"""

from logging_module.config import LoggingConfig
from logging_module.logger import JsonFormatter, setup_logging

__version__ = "1.0.0"
__all__ = ["setup_logging", "LoggingConfig", "JsonFormatter"]
