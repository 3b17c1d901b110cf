"""
Source capability contract package.

Provides the protocols adapters implement and the primitives that keep
their lifecycle safe.
"""

from catalogsync.framework.sources.channel import DataChannel
from catalogsync.framework.sources.lifecycle import CancelHandle, CancelSlot, SingleFlight
from catalogsync.framework.sources.protocol import (
    # Base class
    BaseSource,
    # Protocols
    ClosableSource,
    # Types
    Data,
    DataOperation,
    FullScanSource,
    # Registry
    SourceRegistry,
    StreamingSource,
    Webhook,
    WebhookSource,
    type_in_filter,
)

__all__ = [
    # Types
    "Data",
    "DataOperation",
    "Webhook",
    "DataChannel",
    "type_in_filter",
    # Protocols
    "FullScanSource",
    "StreamingSource",
    "WebhookSource",
    "ClosableSource",
    # Base class
    "BaseSource",
    # Lifecycle
    "SingleFlight",
    "CancelHandle",
    "CancelSlot",
    # Registry
    "SourceRegistry",
]
