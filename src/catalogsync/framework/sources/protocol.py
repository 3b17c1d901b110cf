"""
Source capability contract.

A source adapter talks to one external system and pushes :class:`Data`
records into a :class:`DataChannel`. Adapters implement any subset of the
capabilities below; callers detect them with ``isinstance``:

- :class:`FullScanSource`: one-shot enumeration of current entities
- :class:`StreamingSource`: continuous change events
- :class:`WebhookSource`: an inbound HTTP endpoint that yields records
- :class:`ClosableSource`: cancellation of the running operation

Design Principles:
- Protocol over Inheritance: capabilities are runtime-checkable protocols
- At most one long-running operation per source instance (single-flight)
- Cancellation requested through ``close`` is not an error

Usage:
    class ConsoleSource(BaseSource):
        async def run_full_scan(self, type_filter, out):
            return await self._guarded("full_scan", self._scan(type_filter, out))

    registry = SourceRegistry()
    registry.register("console", ConsoleSource)
    source = registry.create("console")
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Coroutine, Iterable, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Protocol, TypeVar, runtime_checkable

from catalogsync.core.errors import SourceError, SourceSetupError
from catalogsync.core.logging import get_logger
from catalogsync.framework.sources.channel import DataChannel
from catalogsync.framework.sources.lifecycle import (
    CancelHandle,
    CancelSlot,
    SingleFlight,
    await_tracked,
)

log = get_logger(__name__)

T = TypeVar("T")


class DataOperation(str, Enum):
    """What happened to the entity a record describes."""

    UPSERT = "upsert"
    DELETE = "delete"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Data:
    """
    One entity change produced by a source.

    For ``DELETE`` the values only need to carry enough fields to resolve
    the output identifier.
    """

    type: str
    operation: DataOperation
    values: dict[str, Any]
    time: datetime = field(default_factory=_utcnow)

    @classmethod
    def upsert(cls, type: str, values: dict[str, Any], time: datetime | None = None) -> Data:
        return cls(type, DataOperation.UPSERT, values, time or _utcnow())

    @classmethod
    def delete(cls, type: str, values: dict[str, Any], time: datetime | None = None) -> Data:
        return cls(type, DataOperation.DELETE, values, time or _utcnow())


WebhookHandler = Callable[[Mapping[str, str], bytes], Awaitable[None]]


@dataclass(frozen=True)
class Webhook:
    """Inbound HTTP endpoint exposed by a webhook-capable source."""

    method: str
    path: str
    handler: WebhookHandler


def type_in_filter(data_type: str, type_filter: Iterable[str]) -> bool:
    """Case-insensitive membership test used by adapters to drop unrequested types."""
    wanted = data_type.casefold()
    return any(candidate.casefold() == wanted for candidate in type_filter)


# =============================================================================
# CAPABILITY PROTOCOLS
# =============================================================================


@runtime_checkable
class FullScanSource(Protocol):
    """Source able to enumerate every current entity of the requested types."""

    async def run_full_scan(self, type_filter: set[str], out: DataChannel) -> None:
        """
        Push one UPSERT per current entity into ``out`` and return.

        Returns ``None`` immediately when another operation of the same
        source is active, and when the scan is stopped through ``close``.
        """
        ...


@runtime_checkable
class StreamingSource(Protocol):
    """Source that pushes change events until it is cancelled."""

    async def run_event_stream(self, type_filter: set[str], out: DataChannel) -> None:
        ...


@runtime_checkable
class WebhookSource(Protocol):
    """Source fed by an inbound HTTP endpoint."""

    async def get_webhook(self, type_filter: set[str], out: DataChannel) -> Webhook:
        ...


@runtime_checkable
class ClosableSource(Protocol):
    """Source whose running operation can be stopped."""

    async def close(self, timeout: float | None = None) -> None:
        ...


# =============================================================================
# BASE SOURCE
# =============================================================================


class BaseSource:
    """
    Base class for source adapters.

    Provides the single-flight guard and cancel slot shared by the full
    scan and the event stream, plus :meth:`close`. Subclasses wrap their
    long-running bodies with :meth:`_guarded`.
    """

    def __init__(self, name: str, *, config: dict[str, Any] | None = None):
        self._name = name
        self._config = config or {}
        self._flight = SingleFlight()
        self._cancel_slot = CancelSlot()

    @property
    def name(self) -> str:
        return self._name

    @property
    def running(self) -> bool:
        return self._flight.held

    async def _guarded(self, operation: str, coro: Coroutine[Any, Any, T]) -> T | None:
        """
        Run ``coro`` as the tracked operation of this source.

        Returns ``None`` without running ``coro`` when another operation holds
        the guard, and when the operation is cancelled through :meth:`close`.
        Cancellation of the calling task propagates.
        """
        if not self._flight.try_acquire():
            coro.close()
            log.debug("source.already_running", source=self._name, operation=operation)
            return None

        handle: CancelHandle | None = None
        try:
            task = asyncio.create_task(coro, name=f"{self._name}:{operation}")
            handle = CancelHandle(task, operation)
            self._cancel_slot.store(handle)
            log.debug("source.operation_started", source=self._name, operation=operation)
            result = await await_tracked(task)
            if task.cancelled():
                log.debug("source.operation_closed", source=self._name, operation=operation)
            return result
        finally:
            if handle is not None:
                self._cancel_slot.clear_if(handle)
            self._flight.release()

    async def close(self, timeout: float | None = None) -> None:
        """
        Stop the running operation, if any. Idempotent.

        With ``timeout``, waits up to that many seconds for it to finish.
        """
        handle = self._cancel_slot.swap()
        if handle is None:
            return None
        log.debug("source.closing", source=self._name, operation=handle.operation)
        handle.cancel()
        if timeout is not None and not await handle.wait(timeout):
            log.warning("source.close_timeout", source=self._name, operation=handle.operation, timeout=timeout)
        return None

    def _wrap_error(self, error: Exception, message: str | None = None) -> SourceError:
        """Wrap a provider exception in SourceError with context."""
        if isinstance(error, SourceError):
            return error
        wrapped = SourceError(message or str(error), cause=error)
        wrapped.with_context(source_name=self._name)
        return wrapped


# =============================================================================
# SOURCE REGISTRY
# =============================================================================


SourceFactory = Callable[[], object]


class SourceRegistry:
    """
    Name to factory map used to create sources on demand.

    Instances are injected where sources are needed; there is no global
    registry.

    Usage:
        registry = SourceRegistry()
        registry.register("fake", lambda: FakeSource("fake"))
        source = registry.create("fake")
    """

    def __init__(self) -> None:
        self._factories: dict[str, SourceFactory] = {}

    def register(self, name: str, factory: SourceFactory) -> None:
        """Register a factory. Re-registering a name replaces it."""
        self._factories[name] = factory

    def create(self, name: str) -> object:
        """
        Create a new source.

        Raises:
            SourceSetupError: unknown name, or the factory rejected its configuration
        """
        factory = self._factories.get(name)
        if factory is None:
            raise SourceSetupError(f"unknown source: {name}").with_context(source_name=name)
        try:
            return factory()
        except SourceSetupError:
            raise
        except Exception as exc:
            raise SourceSetupError(
                f"cannot create source {name}: {exc}", cause=exc
            ).with_context(source_name=name) from exc

    def factory_for(self, name: str) -> SourceFactory:
        """Bind ``create(name)`` into a zero-argument factory."""
        if name not in self._factories:
            raise SourceSetupError(f"unknown source: {name}").with_context(source_name=name)
        return lambda: self.create(name)

    def list_sources(self) -> list[str]:
        return sorted(self._factories)

    def __contains__(self, name: object) -> bool:
        return name in self._factories


__all__ = [
    "DataOperation",
    "Data",
    "Webhook",
    "WebhookHandler",
    "type_in_filter",
    "FullScanSource",
    "StreamingSource",
    "WebhookSource",
    "ClosableSource",
    "BaseSource",
    "SourceFactory",
    "SourceRegistry",
]
