"""Closable async channel carrying :class:`Data` from a source to the pipeline."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, AsyncIterator

from catalogsync.core.errors import ChannelClosedError

if TYPE_CHECKING:
    from catalogsync.framework.sources.protocol import Data

DEFAULT_CAPACITY = 16

_CLOSED = object()


class DataChannel:
    """
    Bounded FIFO of :class:`Data` with an explicit close.

    Producers ``await send(data)``, which waits while ``capacity`` items are
    pending, so a source never runs far ahead of the pipeline. The consumer
    iterates with ``async for`` or calls :meth:`receive`, which returns
    ``None`` once the channel is closed and every pending item has been
    received. ``capacity=0`` makes the channel unbounded.

    Sending after :meth:`close` raises :class:`ChannelClosedError`.
    """

    def __init__(self, capacity: int = DEFAULT_CAPACITY) -> None:
        self._queue: asyncio.Queue[object] = asyncio.Queue(maxsize=capacity)
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def capacity(self) -> int:
        return self._queue.maxsize

    def qsize(self) -> int:
        return self._queue.qsize()

    async def send(self, data: Data) -> None:
        if self._closed:
            raise ChannelClosedError()
        await self._queue.put(data)

    def send_nowait(self, data: Data) -> None:
        """Send without waiting; raises ``asyncio.QueueFull`` when no slot is free."""
        if self._closed:
            raise ChannelClosedError()
        self._queue.put_nowait(data)

    def close(self) -> None:
        """Close the channel. Idempotent, also when the channel is full."""
        if self._closed:
            return
        self._closed = True
        # a full queue has no waiting receiver; it sees the flag once drained
        if not self._queue.full():
            self._queue.put_nowait(_CLOSED)

    async def receive(self) -> Data | None:
        if self._closed and self._queue.empty():
            return None
        item = await self._queue.get()
        if item is _CLOSED:
            # leave the marker for any other receiver
            self._queue.put_nowait(_CLOSED)
            return None
        return item  # type: ignore[return-value]

    def __aiter__(self) -> AsyncIterator[Data]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[Data]:
        while True:
            item = await self.receive()
            if item is None:
                return
            yield item


__all__ = ["DEFAULT_CAPACITY", "DataChannel"]
