"""
Routing and delivery pipeline.

Manifesto:
    One bad record must never stop a sync. The pipeline consumes records
    from a channel in arrival order, maps each through the mapper
    registered for its type and hands the result to the destination,
    logging and skipping whatever fails along the way.

    - **Routing by type:** ``Data.type`` selects the mapper; unknown types are dropped
    - **Failure isolation:** mapping and delivery errors are per record
    - **Ordering:** primary record first, then its extras in declared order
    - **Exit conditions:** channel closed and drained, cancellation, or deadline

Architecture:
    ::

        DataChannel ──► Pipeline.run()
                           │  for each Data
                           ▼
                        consume_data(data)
                           ├─ mappers[data.type]          (absent → drop)
                           ├─ apply_templates / apply_delete
                           └─ destination.send_data / delete_data
                                (primary, then extras)

Tags:
    pipeline, routing, delivery, asyncio, catalog-sync
"""

from __future__ import annotations

import asyncio
from collections.abc import Mapping
from dataclasses import dataclass

from catalogsync.core.errors import TemplateExecutionError
from catalogsync.core.logging import get_logger
from catalogsync.destinations.protocol import Destination, DestinationData
from catalogsync.framework.mapping.mapper import ExtraMappedData, MappedData, Mapper
from catalogsync.framework.sources.channel import DataChannel
from catalogsync.framework.sources.protocol import Data, DataOperation

log = get_logger(__name__)


@dataclass(frozen=True)
class TypedMapper:
    """Routing-table entry: the mapper of one record type and the catalog type it produces."""

    api_version: str
    kind: str
    mapper: Mapper


@dataclass
class PipelineStats:
    received: int = 0
    skipped: int = 0
    mapping_failures: int = 0
    written: int = 0
    write_failures: int = 0


class Pipeline:
    """
    Consume a :class:`DataChannel` and deliver mapped records.

    Args:
        channel: Records pushed by a source
        mappers: ``Data.type`` to :class:`TypedMapper`
        destination: Where mapped records go
    """

    def __init__(
        self,
        channel: DataChannel,
        mappers: Mapping[str, TypedMapper],
        destination: Destination,
    ):
        self._channel = channel
        self._mappers = dict(mappers)
        self._destination = destination
        self.stats = PipelineStats()

    @property
    def types(self) -> set[str]:
        return set(self._mappers)

    async def run(self, timeout: float | None = None) -> None:
        """
        Process records until the channel is closed and drained.

        Cancellation propagates; an elapsed ``timeout`` ends the run normally.
        """
        log.debug("pipeline.started", types=sorted(self._mappers))
        try:
            async with asyncio.timeout(timeout):
                async for data in self._channel:
                    await self.consume_data(data)
        except asyncio.CancelledError:
            log.debug("pipeline.cancelled")
            raise
        except TimeoutError:
            log.warning("pipeline.deadline_exceeded", timeout=timeout)
            return
        log.debug("pipeline.finished", **vars(self.stats))

    async def consume_data(self, data: Data) -> None:
        """Map one record and write the result; failures are logged, not raised."""
        self.stats.received += 1
        typed = self._mappers.get(data.type)
        if typed is None:
            self.stats.skipped += 1
            log.debug("pipeline.type_not_mapped", type=data.type)
            return

        try:
            if data.operation is DataOperation.DELETE:
                primary, extras = typed.mapper.apply_delete(data.values)
            else:
                primary, extras = typed.mapper.apply_templates(data.values)
        except Exception as exc:
            self.stats.mapping_failures += 1
            log.error(
                "pipeline.mapping_failed",
                type=data.type,
                operation=data.operation.value,
                template=exc.template if isinstance(exc, TemplateExecutionError) else None,
                error=str(exc),
            )
            return

        await self._write(data, typed.api_version, typed.kind, primary)
        for extra in extras:
            await self._write(data, extra.api_version, extra.kind, extra)

    async def _write(
        self, data: Data, api_version: str, kind: str, mapped: MappedData | ExtraMappedData
    ) -> None:
        delete = data.operation is DataOperation.DELETE
        payload = DestinationData(
            api_version=api_version,
            kind=kind,
            name=mapped.identifier,
            data=None if delete else mapped.spec,
            operation_time=data.time,
        )
        try:
            if delete:
                await self._destination.delete_data(payload)
            else:
                await self._destination.send_data(payload)
        except Exception as exc:
            self.stats.write_failures += 1
            log.error(
                "pipeline.write_failed",
                type=data.type,
                kind=kind,
                name=mapped.identifier,
                operation=payload.operation,
                error=str(exc),
            )
            return
        self.stats.written += 1
        log.debug("pipeline.written", kind=kind, name=mapped.identifier, operation=payload.operation)


__all__ = ["TypedMapper", "PipelineStats", "Pipeline"]
