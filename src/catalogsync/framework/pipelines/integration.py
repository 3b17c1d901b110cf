"""
Integration: one source, its mappers and a destination, wired together.

An integration owns the source instance (created on first use through an
injected factory or :class:`SourceRegistry`) and runs the pipeline for:

- ``sync()``: one full scan, returning when every record was delivered
- ``start()``: the event stream, until ``stop()`` or cancellation
- ``webhooks()``: the webhook endpoints of the source, each feeding a
  background pipeline until ``stop()``

Like sources, an integration runs at most one long-running operation at a
time; a redundant ``sync()`` or ``start()`` returns ``None`` immediately.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Coroutine, Mapping
from typing import Any

from catalogsync.core.errors import UnsupportedSourceError
from catalogsync.core.logging import LogContext, get_logger
from catalogsync.destinations.protocol import Destination
from catalogsync.framework.pipelines.engine import Pipeline, PipelineStats, TypedMapper
from catalogsync.framework.sources.channel import DataChannel
from catalogsync.framework.sources.lifecycle import (
    CancelHandle,
    CancelSlot,
    SingleFlight,
    await_tracked,
)
from catalogsync.framework.sources.protocol import (
    ClosableSource,
    FullScanSource,
    SourceRegistry,
    StreamingSource,
    Webhook,
    WebhookSource,
)

log = get_logger(__name__)

Producer = Callable[[DataChannel], Coroutine[Any, Any, None]]


class Integration:
    """
    Orchestrate one source with its mappers and a destination.

    Args:
        name: Integration name; with a registry, also the source name to create
        source: :class:`SourceRegistry` or zero-argument source factory
        mappers: ``Data.type`` to :class:`TypedMapper`; their keys are the type filter
        destination: Where mapped records go
    """

    def __init__(
        self,
        name: str,
        source: SourceRegistry | Callable[[], object],
        mappers: Mapping[str, TypedMapper],
        destination: Destination,
    ):
        self._name = name
        if isinstance(source, SourceRegistry):
            registry = source
            self._factory: Callable[[], object] = lambda: registry.create(name)
        else:
            self._factory = source
        self._mappers = dict(mappers)
        self._destination = destination

        self._source: object | None = None
        self._flight = SingleFlight()
        self._cancel_slot = CancelSlot()
        self._webhooks: list[Webhook] = []
        self._webhook_runs: list[tuple[DataChannel, asyncio.Task[None]]] = []

    @property
    def name(self) -> str:
        return self._name

    @property
    def types(self) -> set[str]:
        return set(self._mappers)

    @property
    def source(self) -> object:
        """The source instance, created on first access."""
        if self._source is None:
            self._source = self._factory()
            log.debug("integration.source_created", integration=self._name)
        return self._source

    # ── Operations ──────────────────────────────────────────────

    async def sync(self) -> PipelineStats | None:
        """
        Run one full scan through the pipeline.

        Raises:
            UnsupportedSourceError: the source cannot run full scans
            SourceSetupError: the source could not be created
            SourceError: the scan failed
        """
        source = self.source
        if not isinstance(source, FullScanSource):
            raise UnsupportedSourceError("full scan").with_context(source_name=self._name)
        types = self.types
        return await self._run("sync", lambda out: source.run_full_scan(types, out))

    async def start(self) -> PipelineStats | None:
        """
        Run the event stream through the pipeline until stopped.

        Raises:
            UnsupportedSourceError: the source cannot stream events
        """
        source = self.source
        if not isinstance(source, StreamingSource):
            raise UnsupportedSourceError("event streaming").with_context(source_name=self._name)
        types = self.types
        return await self._run("stream", lambda out: source.run_event_stream(types, out))

    async def webhooks(self) -> list[Webhook]:
        """
        Webhooks exposed by the source, each backed by a running pipeline.

        Repeated calls return the same webhooks until :meth:`stop`.

        Raises:
            UnsupportedSourceError: the source has no webhook
        """
        source = self.source
        if not isinstance(source, WebhookSource):
            raise UnsupportedSourceError("webhooks").with_context(source_name=self._name)
        if self._webhooks:
            return list(self._webhooks)

        channel = DataChannel()
        webhook = await source.get_webhook(self.types, channel)
        pipeline = Pipeline(channel, self._mappers, self._destination)
        task = asyncio.create_task(pipeline.run(), name=f"{self._name}:webhook")
        task.add_done_callback(self._webhook_pipeline_done)
        self._webhook_runs.append((channel, task))
        self._webhooks.append(webhook)
        log.info("integration.webhook_registered", integration=self._name, method=webhook.method, path=webhook.path)
        return list(self._webhooks)

    async def stop(self, timeout: float | None = None) -> None:
        """
        Stop the running operation and webhook pipelines. Idempotent.

        Closable sources are asked to close; otherwise the running operation
        is cancelled.
        """
        source = self._source
        if isinstance(source, ClosableSource):
            log.debug("integration.closing_source", integration=self._name)
            await source.close(timeout)
        else:
            handle = self._cancel_slot.swap()
            if handle is not None:
                handle.cancel()
                if timeout is not None:
                    await handle.wait(timeout)

        runs, self._webhook_runs = self._webhook_runs, []
        self._webhooks = []
        for channel, _ in runs:
            channel.close()
        if runs:
            await asyncio.wait([task for _, task in runs], timeout=timeout)

    # ── Internals ───────────────────────────────────────────────

    def _webhook_pipeline_done(self, task: asyncio.Task[None]) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            log.error(
                "integration.webhook_pipeline_failed",
                integration=self._name,
                error=str(exc),
                exc_info=exc,
            )

    async def _run(self, operation: str, producer: Producer) -> PipelineStats | None:
        if not self._flight.try_acquire():
            log.debug("integration.already_running", integration=self._name, operation=operation)
            return None

        try:
            with LogContext(integration=self._name, operation=operation):
                log.info("integration.started")
                channel = DataChannel()
                pipeline = Pipeline(channel, self._mappers, self._destination)
                pipeline_task = asyncio.create_task(pipeline.run(), name=f"{self._name}:pipeline")

                producer_task = asyncio.create_task(producer(channel), name=f"{self._name}:{operation}")
                # a dead pipeline would leave the producer blocked on a full channel
                pipeline_task.add_done_callback(lambda _: producer_task.cancel())
                handle = CancelHandle(producer_task, operation)
                self._cancel_slot.store(handle)
                try:
                    await await_tracked(producer_task)
                finally:
                    self._cancel_slot.clear_if(handle)
                    channel.close()
                    await pipeline_task

                log.info("integration.finished", **vars(pipeline.stats))
                return pipeline.stats
        finally:
            self._flight.release()


__all__ = ["Integration"]
