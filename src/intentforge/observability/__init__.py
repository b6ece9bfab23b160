"""Observability helpers: structured logging configuration and correlation."""

from intentforge.observability.logging import (
    LoggingConfig,
    LoggingHandle,
    configure_logging,
    correlation_scope,
    get_active_logging_handle,
    redact_event,
    setup_structured_logging,
    shutdown_logging,
)

__all__ = [
    "LoggingConfig",
    "LoggingHandle",
    "configure_logging",
    "correlation_scope",
    "get_active_logging_handle",
    "redact_event",
    "setup_structured_logging",
    "shutdown_logging",
]
