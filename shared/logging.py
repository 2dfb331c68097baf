"""
Logger factory for the identity service.

Provides:
- get_logger(): Get a configured structlog logger instance
- log_with_context(): Bind common context (request_id, account_id, ...)
"""

from __future__ import annotations

import structlog
from structlog.stdlib import BoundLogger

from shared.logging_config import configure_structlog, mask_email, setup_logging


def get_logger(name: str) -> BoundLogger:
    """
    Get a configured logger instance.

    Args:
        name: Logger name (typically __name__ of the calling module)

    Returns:
        Configured structlog BoundLogger instance

    Example:
        >>> from shared.logging import get_logger
        >>> log = get_logger(__name__)
        >>> log.info("otp_issued", email="a@x.com", purpose="email_verification")
    """
    return structlog.get_logger(name)


def log_with_context(logger: BoundLogger, **context) -> BoundLogger:
    """
    Bind context to a logger for all subsequent log calls.

    Args:
        logger: The logger to bind context to
        **context: Key-value pairs to bind

    Returns:
        Logger with bound context
    """
    return logger.bind(**context)


__all__ = [
    "get_logger",
    "log_with_context",
    "mask_email",
    "configure_structlog",
    "setup_logging",
]
