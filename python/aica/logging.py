"""Structured logging configuration using structlog.

Provides JSON-formatted logs with consistent context including:
- request_id: Correlation ID for request tracing
- org_slug: Authenticated organization (when available)
- path: Raw request path (never includes query string)
- method: HTTP method
- sync_id: Correlation ID for one client sync run
- timestamp: ISO8601 formatted timestamp

Usage:
    from aica.logging import get_logger, configure_logging

    # Configure once at startup
    configure_logging()

    # Get a logger for a module
    logger = get_logger(__name__)
    logger.info("something_happened", extra_field="value")

Never log passwords, derived keys, bearer tokens, or decrypted content.
"""

import logging
import sys
from contextvars import ContextVar

import structlog

# Context variables for request-scoped logging
request_id_var: ContextVar[str | None] = ContextVar("request_id", default=None)
org_slug_var: ContextVar[str | None] = ContextVar("org_slug", default=None)
path_var: ContextVar[str | None] = ContextVar("path", default=None)
method_var: ContextVar[str | None] = ContextVar("method", default=None)

# Client-side sync correlation
sync_id_var: ContextVar[str | None] = ContextVar("sync_id", default=None)


def add_request_context(logger: logging.Logger, method_name: str, event_dict: dict) -> dict:
    """Add request context to all log entries.

    Injects all non-None ContextVar values into the log event dict.
    """
    request_id = request_id_var.get()
    org_slug = org_slug_var.get()
    path = path_var.get()
    method = method_var.get()
    sync_id = sync_id_var.get()

    if request_id:
        event_dict["request_id"] = request_id
    if org_slug:
        event_dict["org_slug"] = org_slug
    if path:
        event_dict["path"] = path
    if method:
        event_dict["method"] = method
    if sync_id:
        event_dict["sync_id"] = sync_id

    return event_dict


def configure_logging(json_format: bool = True, level: int = logging.INFO) -> None:
    """Configure structlog for the application.

    Args:
        json_format: If True, output JSON logs. If False, output console-friendly logs.
        level: Root log level.
    """
    shared_processors = [
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        add_request_context,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    if json_format:
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=shared_processors
        + [
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    # Route stdlib logging through structlog formatting
    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )

    root_logger = logging.getLogger()
    root_logger.handlers.clear()

    # Console mode is used by the CLI, whose stdout carries command output
    handler = logging.StreamHandler(sys.stdout if json_format else sys.stderr)
    handler.setFormatter(formatter)
    root_logger.addHandler(handler)
    root_logger.setLevel(level)

    # Silence noisy loggers
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Get a structlog logger for the given name.

    Args:
        name: Logger name (typically __name__).

    Returns:
        A bound structlog logger.
    """
    return structlog.get_logger(name)


def set_request_context(
    request_id: str | None,
    path: str | None = None,
    method: str | None = None,
) -> None:
    """Set request context for the current async context.

    Args:
        request_id: The request correlation ID.
        path: Raw request path (optional, no query string).
        method: HTTP method (optional).
    """
    request_id_var.set(request_id)
    if path is not None:
        path_var.set(path)
    if method is not None:
        method_var.set(method)


def set_org_context(org_slug: str | None) -> None:
    """Attach the authenticated organization slug to subsequent log entries."""
    org_slug_var.set(org_slug)


def clear_request_context() -> None:
    """Clear all request-scoped context at the end of a request."""
    request_id_var.set(None)
    org_slug_var.set(None)
    path_var.set(None)
    method_var.set(None)


def get_request_id() -> str | None:
    """Get the current request ID from context."""
    return request_id_var.get()


def set_sync_context(sync_id: str | None, org_slug: str | None = None) -> None:
    """Set correlation context for a client sync run.

    Args:
        sync_id: Identifier of the sync run.
        org_slug: Organization being synced (optional).
    """
    sync_id_var.set(sync_id)
    if org_slug is not None:
        org_slug_var.set(org_slug)


def clear_sync_context() -> None:
    """Clear sync context after a run completes or fails."""
    sync_id_var.set(None)
    org_slug_var.set(None)
