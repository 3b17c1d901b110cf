"""Catalog-sync core: errors, structured logging and settings."""

from catalogsync.core.errors import (
    ChannelClosedError,
    ConfigParsingError,
    DeliveryError,
    DestinationSetupError,
    ErrorCategory,
    ErrorContext,
    SourceError,
    SourceSetupError,
    SyncError,
    TemplateExecutionError,
    UnsupportedSourceError,
)
from catalogsync.core.logging import (
    LogContext,
    bind_context,
    clear_context,
    configure_logging,
    get_logger,
)

__all__ = [
    # Errors
    "ErrorCategory",
    "ErrorContext",
    "SyncError",
    "ConfigParsingError",
    "TemplateExecutionError",
    "SourceSetupError",
    "DestinationSetupError",
    "UnsupportedSourceError",
    "SourceError",
    "DeliveryError",
    "ChannelClosedError",
    # Logging
    "configure_logging",
    "get_logger",
    "bind_context",
    "clear_context",
    "LogContext",
]
