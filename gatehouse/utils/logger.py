"""Structured logging for Gatehouse (structlog).

Every log line carries the request_id bound by RequestIdMiddleware, so a gate
decision (delay, lockout, CSRF rejection) can be traced back to its request.

Secrets never reach the log: redact_secrets masks token, password and HMAC
secret values wherever a caller passes them as keyword arguments.
"""

import logging
import sys
from typing import Any, TextIO

import structlog
from structlog.types import EventDict, Processor

REDACTED = "[REDACTED]"

SENSITIVE_KEYS: frozenset[str] = frozenset(
    {
        "csrf_token",
        "csrfToken",
        "token",
        "password",
        "secret",
        "hmac_secret",
    }
)


def redact_secrets(logger: logging.Logger, method_name: str, event_dict: EventDict) -> EventDict:
    """Mask the value of any sensitive key before rendering."""
    for key in SENSITIVE_KEYS.intersection(event_dict):
        if event_dict[key] is not None:
            event_dict[key] = REDACTED
    return event_dict


def configure_logging(
    log_level: str = "INFO",
    json_output: bool = True,
    stream: TextIO = sys.stdout,
) -> None:
    """Configure structlog for the process.

    Args:
        log_level: DEBUG, INFO, WARNING, ERROR or CRITICAL
        json_output: JSON lines when True, coloured console output otherwise.
        stream: Where rendered lines are written.
    """
    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        redact_secrets,
        structlog.processors.TimeStamper(fmt="iso", utc=True, key="timestamp"),
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if json_output:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=stream.isatty()))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, log_level.upper())
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=stream),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str = "gatehouse") -> Any:
    """Module logger; call as get_logger(__name__)."""
    return structlog.get_logger(name)


def bind_request_id(request_id: str) -> None:
    """Attach request_id to every log line emitted in the current context."""
    structlog.contextvars.bind_contextvars(request_id=request_id)


def clear_request_id() -> None:
    structlog.contextvars.unbind_contextvars("request_id")


# Defaults until main.py reconfigures from the environment
configure_logging()
