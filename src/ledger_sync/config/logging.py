"""Structured logging for the webhook service.

Every event is a structlog event dict. Library loggers (uvicorn, httpx) go
through the standard library root handler set up here, so they share the
output stream with the service's own events.
"""

import logging
import sys
from collections.abc import MutableMapping
from typing import Any, Literal

import structlog

from ledger_sync.config.settings import get_settings

# Keys whose values are OAuth credentials and must never reach the log stream
SECRET_KEYS = frozenset(
    {"access_token", "refresh_token", "client_secret", "authorization"}
)

REDACTED = "***"

# httpx logs every request URL at INFO; the token exchange URL carries the
# refresh token and client secret as query parameters
QUIET_LOGGERS = ("httpx", "httpcore", "uvicorn.access")


def redact_secrets(
    logger: Any, method_name: str, event_dict: MutableMapping[str, Any]
) -> MutableMapping[str, Any]:
    """Mask credential values, including inside a nested ``details`` dict."""
    for key, value in event_dict.items():
        if key.lower() in SECRET_KEYS:
            event_dict[key] = REDACTED
        elif isinstance(value, dict):
            event_dict[key] = {
                k: REDACTED if str(k).lower() in SECRET_KEYS else v for k, v in value.items()
            }
    return event_dict


def configure_logging(
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] | None = None,
    format: Literal["json", "console"] | None = None,
) -> None:
    """Route structlog and library logs to stdout.

    Args:
        level: Log level. Defaults to ``LOG_LEVEL``.
        format: ``json`` for log shippers, ``console`` for a terminal.
            Defaults to ``LOG_FORMAT``.
    """
    settings = get_settings()
    log_level = getattr(logging, level or settings.log_level)

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=log_level,
        force=True,
    )
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(log_level, logging.WARNING))

    if (format or settings.log_format) == "json":
        renderer: structlog.types.Processor = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(
            colors=sys.stdout.isatty(),
            exception_formatter=structlog.dev.plain_traceback,
        )

    structlog.configure(
        processors=[
            # transaction_id is bound for the length of a webhook call
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            redact_secrets,
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
