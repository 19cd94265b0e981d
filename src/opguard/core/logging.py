"""
Structured logging for opguard.

Wrappers log through structlog loggers bound to stdlib loggers under the
``opguard`` namespace. Until the application calls ``configure_logging()``
(or configures stdlib logging itself) the ``opguard`` logger only carries a
``NullHandler``, so importing and using the wrappers prints nothing.

Configuration is read from ``OpguardSettings`` when not passed explicitly:
- OPGUARD_LOG_LEVEL: DEBUG | INFO | WARNING | ERROR (default: INFO)
- OPGUARD_LOG_FORMAT: json | console (default: console)

Usage:
    from opguard.core.logging import configure_logging, get_logger

    configure_logging(level="DEBUG")
    log = get_logger(__name__)
    log.debug("cache_miss", operation="Client.fetch")

    with LogContext(request_id="abc-123"):
        client.fetch()  # wrapper events include request_id
"""

from __future__ import annotations

import logging
import sys
from typing import Any, Literal

import structlog
from structlog.types import Processor

from opguard.core.settings import get_settings

_ROOT_LOGGER = "opguard"

logging.getLogger(_ROOT_LOGGER).addHandler(logging.NullHandler())

# Track if logging has been configured
_configured = False


def configure_logging(
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] | None = None,
    format: Literal["json", "console"] | None = None,
    force: bool = False,
) -> None:
    """
    Configure structured logging for the application.

    Subsequent calls are no-ops unless force=True.

    Args:
        level: Log level (overrides OPGUARD_LOG_LEVEL)
        format: Output format (overrides OPGUARD_LOG_FORMAT)
        force: Reconfigure even if already configured
    """
    global _configured

    if _configured and not force:
        return

    settings = get_settings()
    log_level = (level or settings.log_level).upper()
    log_format = (format or settings.log_format).lower()

    processors: list[Processor] = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.contextvars.merge_contextvars,
        structlog.processors.format_exc_info,
        structlog.processors.StackInfoRenderer(),
    ]

    if log_format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(
            structlog.dev.ConsoleRenderer(
                colors=sys.stderr.isatty(),
                exception_formatter=structlog.dev.plain_traceback,
            )
        )

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stderr,
        level=getattr(logging, log_level),
        force=True,
    )
    logging.getLogger(_ROOT_LOGGER).setLevel(getattr(logging, log_level))

    _configured = True


def is_configured() -> bool:
    """True once configure_logging() has run."""
    return _configured


def get_logger(name: str | None = None) -> Any:
    """
    Get a structured logger.

    The returned logger always proxies to a stdlib logger, so stdlib levels
    and handlers decide whether an event is emitted.

    Args:
        name: Logger name (typically __name__)
    """
    return structlog.wrap_logger(
        logging.getLogger(name or _ROOT_LOGGER),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=False,
    )


def bind_context(**kwargs: Any) -> None:
    """Bind context to include in all subsequent logs of this task/thread."""
    structlog.contextvars.bind_contextvars(**kwargs)


def unbind_context(*keys: str) -> None:
    """Remove specific keys from logging context."""
    structlog.contextvars.unbind_contextvars(*keys)


def clear_context() -> None:
    """Clear all bound context."""
    structlog.contextvars.clear_contextvars()


class LogContext:
    """Context manager for scoped logging context.

    Example:
        with LogContext(request_id="abc123"):
            client.fetch()
        # Context cleared here
    """

    def __init__(self, **kwargs: Any):
        self._context = kwargs

    def __enter__(self) -> "LogContext":
        bind_context(**self._context)
        return self

    def __exit__(self, *args) -> None:
        unbind_context(*self._context.keys())

    async def __aenter__(self) -> "LogContext":
        bind_context(**self._context)
        return self

    async def __aexit__(self, *args) -> None:
        unbind_context(*self._context.keys())


__all__ = [
    "configure_logging",
    "is_configured",
    "get_logger",
    "bind_context",
    "unbind_context",
    "clear_context",
    "LogContext",
]
