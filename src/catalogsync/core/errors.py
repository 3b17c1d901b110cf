"""
Structured error types for catalog-sync.

Every failure the engine can report is a :class:`SyncError` subclass carrying
a category, structured context and an optional chained cause. Callers decide
what is fatal by error type, never by parsing messages.

Manifesto:
    - **Typed Error Hierarchy:** configuration, template, source and delivery
      failures are distinct types
    - **Rich Context:** errors carry the data type, identifier, template or
      URL they relate to, ready for structured logging
    - **Error Chaining:** the original exception is kept as ``cause``
    - **Cancellation is not an error:** ``asyncio.CancelledError`` is never
      wrapped by anything in this module

Architecture:
    ::

        ┌─────────────────────────────────────────────────────────────────┐
        │                         SyncError                                │
        │            (category, context, cause, to_dict)                   │
        ├─────────────────────────────────────────────────────────────────┤
        │                                                                  │
        │  ConfigParsingError     TemplateExecutionError   DeliveryError   │
        │  (CONFIG, .errors)      (TEMPLATE)               (DELIVERY)      │
        │                                                                  │
        │  SetupError             SourceError              ChannelClosed-  │
        │  (CONFIG)               (SOURCE)                 Error           │
        │     │                      │                     (INTERNAL)      │
        │  SourceSetupError       UnsupportedSourceError                   │
        │  DestinationSetupError                                           │
        └─────────────────────────────────────────────────────────────────┘

Propagation:
    - ConfigParsingError / SetupError abort startup with full detail
    - TemplateExecutionError / DeliveryError are per record: the pipeline
      logs them and moves on to the next record
    - SourceError and UnsupportedSourceError propagate to whoever started
      the source

Examples:
    >>> err = DeliveryError("unexpected error").with_context(identifier="svc-a")
    >>> err.context.identifier
    'svc-a'
    >>> err.to_dict()["category"]
    'DELIVERY'

Tags:
    error-handling, exception-hierarchy, error-context, catalog-sync
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Standard error categories used for classification and log routing."""

    CONFIG = "CONFIG"          # Mapping files, templates, settings
    TEMPLATE = "TEMPLATE"      # Template evaluation against a record
    SOURCE = "SOURCE"          # Upstream provider failures
    DELIVERY = "DELIVERY"      # Destination rejected or unreachable
    AUTH = "AUTH"              # Authentication against a remote system
    INTERNAL = "INTERNAL"      # Bugs, misuse of internal primitives


@dataclass
class ErrorContext:
    """
    Structured metadata attached to an error.

    Only fields that are set end up in :meth:`to_dict`, so the context can be
    splatted straight into a structured log call.

    Attributes:
        source_name: Name of the source the error relates to
        data_type: ``Data.type`` of the record being processed
        identifier: Identifier of the mapped record
        template: Name of the template that failed (``identifier``,
            ``spec.<field>``, ``extras[0].sourceRef.name``, ...)
        path: Configuration file the error was found in
        url: Remote URL that was being called
        http_status: HTTP status code returned by the remote
        metadata: Additional key-value pairs
    """

    source_name: str | None = None
    data_type: str | None = None
    identifier: str | None = None
    template: str | None = None
    path: str | None = None
    url: str | None = None
    http_status: int | None = None

    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        result = {}
        for key in ["source_name", "data_type", "identifier", "template",
                    "path", "url", "http_status"]:
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        if self.metadata:
            result.update(self.metadata)
        return result


class SyncError(Exception):
    """
    Base exception for all catalog-sync errors.

    Subclasses set ``default_category``; everything else is per instance.

    Examples:
        >>> error = SyncError("Something went wrong")
        >>> error.category
        <ErrorCategory.INTERNAL: 'INTERNAL'>

        >>> try:
        ...     raise ConnectionError("DNS lookup failed")
        ... except ConnectionError as e:
        ...     error = SyncError("Network error", cause=e)
        >>> error.cause
        ConnectionError('DNS lookup failed')
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        context: ErrorContext | None = None,
        cause: BaseException | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.context = context or ErrorContext()
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> SyncError:
        """
        Add context to this error (fluent API).

        Usage:
            raise DeliveryError("rejected").with_context(
                identifier="svc-a",
                url="https://catalog.example.com/items",
            )
        """
        for key, value in kwargs.items():
            if hasattr(self.context, key) and key != "metadata":
                setattr(self.context, key, value)
            else:
                self.context.metadata[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        result: dict[str, Any] = {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "category": self.category.value,
        }
        context_dict = self.context.to_dict()
        if context_dict:
            result["context"] = context_dict
        if self.cause is not None:
            result["cause"] = str(self.cause)
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, category={self.category.value})"


# =============================================================================
# CONFIGURATION ERRORS
# =============================================================================


class ConfigParsingError(SyncError):
    """
    Malformed mapping configuration or template syntax.

    Collects every defect found in one pass instead of failing on the first,
    so a broken configuration is fixed in one round trip. ``errors`` holds
    one human-readable line per defect; the message joins them.
    """

    default_category = ErrorCategory.CONFIG

    def __init__(
        self,
        errors: Iterable[str] | str,
        *,
        message: str = "mapping configuration parsing error",
        **kwargs: Any,
    ):
        if isinstance(errors, str):
            errors = [errors]
        self.errors: list[str] = list(errors)
        full_message = "\n".join([message, *self.errors]) if self.errors else message
        super().__init__(full_message, **kwargs)

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        result["errors"] = list(self.errors)
        return result


class SetupError(SyncError):
    """Missing or invalid configuration of a source or destination."""

    default_category = ErrorCategory.CONFIG


class SourceSetupError(SetupError):
    """A source could not be created or started because of its configuration."""


class DestinationSetupError(SetupError):
    """A destination could not be created because of its configuration."""


# =============================================================================
# RUNTIME ERRORS
# =============================================================================


class TemplateExecutionError(SyncError):
    """
    A template failed to evaluate against one input record.

    Raised per record: missing fields, type errors inside a function,
    an identifier that is not a valid name. Distinct from
    :class:`ConfigParsingError`, which is raised before any record exists.
    """

    default_category = ErrorCategory.TEMPLATE

    def __init__(self, message: str, *, template: str | None = None, **kwargs: Any):
        super().__init__(message, **kwargs)
        if template is not None:
            self.context.template = template

    @property
    def template(self) -> str | None:
        return self.context.template


class SourceError(SyncError):
    """Error raised by a source while talking to its provider."""

    default_category = ErrorCategory.SOURCE


class UnsupportedSourceError(SourceError):
    """The source does not implement the capability that was requested."""

    def __init__(self, capability: str, message: str | None = None, **kwargs: Any):
        self.capability = capability
        super().__init__(message or f"source does not support {capability}", **kwargs)


class DeliveryError(SyncError):
    """
    The destination rejected a record or could not be reached.

    Raised per record, so the pipeline logs it and carries on.
    """

    default_category = ErrorCategory.DELIVERY

    def __init__(self, message: str, *, status_code: int | None = None, **kwargs: Any):
        super().__init__(message, **kwargs)
        if status_code is not None:
            self.context.http_status = status_code

    @property
    def status_code(self) -> int | None:
        return self.context.http_status


class ChannelClosedError(SyncError):
    """Data was sent on a channel that has already been closed."""

    default_category = ErrorCategory.INTERNAL

    def __init__(self, message: str = "send on closed data channel", **kwargs: Any):
        super().__init__(message, **kwargs)


# =============================================================================
# UTILITY FUNCTIONS
# =============================================================================


def categorize_error(error: BaseException) -> ErrorCategory:
    """Get the category of an error, mapping foreign exceptions to INTERNAL."""
    if isinstance(error, SyncError):
        return error.category
    return ErrorCategory.INTERNAL


__all__ = [
    "ErrorCategory",
    "ErrorContext",
    "SyncError",
    "ConfigParsingError",
    "SetupError",
    "SourceSetupError",
    "DestinationSetupError",
    "TemplateExecutionError",
    "SourceError",
    "UnsupportedSourceError",
    "DeliveryError",
    "ChannelClosedError",
    "categorize_error",
]
