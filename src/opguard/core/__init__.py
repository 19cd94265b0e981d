"""Opguard core - errors, settings and structured logging shared by every wrapper."""

from opguard.core.errors import (
    CircuitOpenFailure,
    ErrorCategory,
    GuardFailure,
    OpguardError,
    RateLimitFailure,
    TimeoutFailure,
    get_retry_after,
    is_retryable,
)
from opguard.core.logging import (
    LogContext,
    bind_context,
    clear_context,
    configure_logging,
    get_logger,
    unbind_context,
)
from opguard.core.settings import OpguardSettings, get_settings

__all__ = [
    # Errors
    "ErrorCategory",
    "OpguardError",
    "TimeoutFailure",
    "CircuitOpenFailure",
    "RateLimitFailure",
    "GuardFailure",
    "is_retryable",
    "get_retry_after",
    # Logging
    "configure_logging",
    "get_logger",
    "bind_context",
    "unbind_context",
    "clear_context",
    "LogContext",
    # Settings
    "OpguardSettings",
    "get_settings",
]
