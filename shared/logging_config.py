"""
Centralized logging configuration for the QuickPing identity service.

This module sets up structured logging with:
- Environment-based configuration (dev vs production)
- JSON formatting for production, pretty console for development
- Redaction of credentials, tokens and one-time codes
- Email masking in production
"""

from __future__ import annotations

import hashlib
import logging
import os
import sys
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Optional

import structlog
from structlog.types import EventDict, Processor

if TYPE_CHECKING:
    from config import LoggingSettings


# Environment configuration
ENV = os.getenv("ENV", "development")
IS_PRODUCTION = ENV == "production"

# Log level configuration
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO" if IS_PRODUCTION else "DEBUG")
LOG_FORMAT = os.getenv("LOG_FORMAT", "json" if IS_PRODUCTION else "console")

# Sensitive fields to redact from logs
REDACTED_FIELDS = {
    "password",
    "password_hash",
    "new_password",
    "token",
    "access_token",
    "code",
    "otp",
    "otp_code",
    "code_hash",
    "Authorization",
    "secret",
    "key",
}

# Substrings that mark a field as sensitive regardless of its exact name
_SENSITIVE_MARKERS = ("password", "token", "secret", "otp")

# Keys structlog itself produces; never redacted
_STRUCTURAL_KEYS = {"level", "event", "timestamp", "logger"}


def mask_email(email: str) -> str:
    """
    Mask an email address for production logs.

    In production, keeps the domain and a short hash of the local part so
    events for the same mailbox can still be correlated.
    In development, returns the original address for easier debugging.

    Args:
        email: The email address to mask

    Returns:
        Masked email (production) or original email (development)
    """
    if not IS_PRODUCTION or not email or "@" not in email:
        return email
    local, _, domain = email.partition("@")
    digest = hashlib.sha256(local.encode()).hexdigest()[:8]
    return f"{digest}@{domain}"


def add_timestamp(
    logger: logging.Logger, method_name: str, event_dict: EventDict
) -> EventDict:
    """Add ISO format timestamp to event dict."""
    event_dict["timestamp"] = datetime.now(timezone.utc).isoformat()
    return event_dict


def redact_sensitive_fields(
    logger: logging.Logger, method_name: str, event_dict: EventDict
) -> EventDict:
    """Redact sensitive fields from logs."""
    for key in list(event_dict.keys()):
        if key in _STRUCTURAL_KEYS:
            continue
        lowered = key.lower()
        if lowered in REDACTED_FIELDS or any(
            marker in lowered for marker in _SENSITIVE_MARKERS
        ):
            event_dict[key] = "***REDACTED***"
    return event_dict


def mask_emails(
    logger: logging.Logger, method_name: str, event_dict: EventDict
) -> EventDict:
    """Mask any ``email`` field in production."""
    email = event_dict.get("email")
    if isinstance(email, str):
        event_dict["email"] = mask_email(email)
    return event_dict


def configure_structlog(log_format: str = LOG_FORMAT) -> None:
    """
    Configure structlog with appropriate processors for the environment.

    Production: JSON formatting for easy parsing
    Development: Pretty console formatting with colors
    """
    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        add_timestamp,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
        redact_sensitive_fields,
        mask_emails,
        structlog.processors.format_exc_info,
    ]

    if log_format == "json":
        renderer: Processor = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(
            colors=True,
            pad_event=15,
            sort_keys=False,
        )

    structlog.configure(
        processors=shared_processors + [renderer],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def configure_stdlib_logging(log_level: str = LOG_LEVEL) -> None:
    """
    Configure standard library logging to work with structlog.

    Sets up:
    - Log level from environment
    - Console handler for stdout
    - Format compatible with structlog
    """
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper(), logging.INFO),
        force=True,
    )

    # Reduce noise from third-party libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("pymongo").setLevel(logging.WARNING)
    logging.getLogger("authlib").setLevel(logging.WARNING)


def setup_logging(settings: Optional["LoggingSettings"] = None) -> None:
    """
    Initialize logging system for the application.

    Called once on import with environment defaults, and again from
    ``create_app()`` with the resolved LoggingSettings.
    """
    log_level = settings.log_level if settings is not None else LOG_LEVEL
    log_format = settings.log_format if settings is not None else LOG_FORMAT

    configure_stdlib_logging(log_level)
    configure_structlog(log_format)

    structlog.get_logger(__name__).debug(
        "logging_initialized",
        env=ENV,
        log_level=log_level,
        log_format=log_format,
    )


# Initialize logging when module is imported
setup_logging()
