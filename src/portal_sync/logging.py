"""Structured logging for portal sync runs, using structlog.

Every log line emitted while a sync invocation runs carries that
invocation's ``sync_id`` (bound through structlog contextvars), so the
narratives of concurrent syncs can be told apart. Passwords are masked
before rendering. Output goes to stderr; the CLI keeps stdout for results.
"""

import logging
import sys
import uuid

import structlog
from structlog.typing import EventDict, WrappedLogger

SYNC_ID_KEY = "sync_id"

# Event-dict keys whose values must never reach a log sink
SECRET_KEYS: frozenset[str] = frozenset({"password", "portal_pass", "credentials"})


def redact_secrets(
    logger: WrappedLogger, method_name: str, event_dict: EventDict
) -> EventDict:
    """Mask credential values that slipped into a log call."""
    for key in SECRET_KEYS.intersection(event_dict):
        event_dict[key] = "***"
    return event_dict


def setup_logging(json_output: bool = False, log_level: str = "INFO") -> None:
    """Configure structlog for sync runs.

    Context bound with bind_sync_id() is merged into every event, so one
    invocation's lines share a ``sync_id`` key.

    Args:
        json_output: If True, output JSON (production). If False, console format (dev).
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
    """
    numeric_level = getattr(logging, log_level.upper(), logging.INFO)

    processors = [
        structlog.contextvars.merge_contextvars,
        redact_secrets,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
    ]

    if json_output:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )

    # Playwright and asyncio log through stdlib logging
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stderr,
        level=numeric_level,
    )
    logging.getLogger().handlers = []
    logging.getLogger().addHandler(logging.StreamHandler(sys.stderr))


def bind_sync_id(sync_id: str | None = None) -> str:
    """Tag all log lines in the current context with a sync invocation id.

    Each asyncio task runs in its own context copy, so concurrent syncs
    started as separate tasks keep separate ids.

    Returns:
        The bound id (generated when not supplied).
    """
    sync_id = sync_id or uuid.uuid4().hex[:12]
    structlog.contextvars.bind_contextvars(**{SYNC_ID_KEY: sync_id})
    return sync_id


def clear_sync_id() -> None:
    structlog.contextvars.unbind_contextvars(SYNC_ID_KEY)


def get_logger(name: str) -> structlog.BoundLogger:
    """Get a logger instance bound with the module name.

    Args:
        name: Logger name (typically __name__ from calling module).

    Returns:
        Configured structlog logger with module name context.
    """
    return structlog.get_logger(name)
