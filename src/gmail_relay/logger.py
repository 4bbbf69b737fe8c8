"""Logging utilities for the Gmail relay service.

This module provides a centralized logging helper. The actual logging setup
(level, handlers, format) is configured via ``logging.basicConfig()`` in the
entry point to avoid duplicate handlers.

Example:
    Typical usage in a module::

        from gmail_relay.logger import get_logger

        logger = get_logger("MailRelay")
        logger.info("Message delivered")
"""

import logging

LOG_FORMAT = "[%(asctime)s] [%(levelname)s] %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def get_logger(name: str = "GmailRelay") -> logging.Logger:
    """Retrieve a logger instance.

    This function does not configure handlers or formatters; that
    responsibility lies with the application entry point.

    Args:
        name: The logger name. Defaults to "GmailRelay".

    Returns:
        A ``logging.Logger`` instance bound to the given name.
    """
    return logging.getLogger(name)


def configure_logging(level: str = "INFO") -> None:
    """Configure the root logger for the server and CLI entry points."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
        datefmt=LOG_DATE_FORMAT,
        force=True,  # Force reconfiguration to avoid duplicate handlers
    )
