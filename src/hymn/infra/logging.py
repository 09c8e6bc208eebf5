"""
Logging configuration for Hymn.

This module configures structlog for JSON logging across the application.
Runtime modules log through ``logging.getLogger(__name__)``; the CLI and the
HTTP adapters log structured events through :func:`get_logger`.
"""

import logging
import re
from typing import Any

import structlog

from .settings import settings


def redact_secrets(_, __, event_dict: dict[str, Any]) -> dict[str, Any]:
    """Redact sensitive information from log events."""
    secret_keys = [
        "OPENAI_API_KEY",
        "openai_api_key",
        "api_key",
        "authorization",
        "token",
        "secret",
        "database_url",
    ]

    # Patterns to redact in string values
    secret_patterns = [
        r"://[^:]+:[^@]+@",  # URLs with credentials
        r"Bearer [^\s]+",  # Authorization headers
        r"api_key=[^&\s]+",  # Key parameters
    ]

    def redact_value(value: Any) -> Any:
        if isinstance(value, str):
            for pattern in secret_patterns:
                value = re.sub(pattern, "***", value)
            return value
        elif isinstance(value, dict):
            return {k: redact_value(v) for k, v in value.items()}
        elif isinstance(value, list):
            return [redact_value(item) for item in value]
        return value

    for key in list(event_dict.keys()):
        if any(secret in key.lower() for secret in secret_keys):
            event_dict[key] = "***REDACTED***"
        else:
            event_dict[key] = redact_value(event_dict[key])

    return event_dict


def configure_logging(level: str | None = None) -> None:
    """Configure structlog for JSON logging."""
    logging.basicConfig(
        level=(level or settings.log_level).upper(),
        format="%(message)s",
        force=True,
    )
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            redact_secrets,  # Redact secrets before rendering
            structlog.processors.JSONRenderer(),
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.BoundLogger:
    """Get a configured logger with service context."""
    return structlog.get_logger(name, service="hymn", env=settings.env)
