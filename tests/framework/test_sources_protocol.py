"""Tests for catalogsync.framework.sources.protocol.

Covers capability detection, the single-flight guard, close semantics and
the source registry.
"""

from __future__ import annotations

import asyncio
from datetime import timezone
from unittest.mock import MagicMock

import pytest

from catalogsync.core.errors import SourceError, SourceSetupError
from catalogsync.framework.sources.channel import DataChannel
from catalogsync.framework.sources.protocol import (
    ClosableSource,
    Data,
    DataOperation,
    FullScanSource,
    SourceRegistry,
    StreamingSource,
    WebhookSource,
    type_in_filter,
)
from tests._support.fakes import FakeSource, ScanOnlySource


class TestData:
    def test_defaults_time_to_utc_now(self):
        data = Data("service", DataOperation.UPSERT, {"name": "a"})
        assert data.time.tzinfo == timezone.utc

    def test_constructors(self):
        assert Data.upsert("service", {}).operation is DataOperation.UPSERT
        assert Data.delete("service", {}).operation is DataOperation.DELETE


class TestTypeInFilter:
    def test_case_insensitive(self):
        assert type_in_filter("ResourceGroup", {"resourcegroup"})
        assert type_in_filter("service", ["SERVICE"])

    def test_not_requested(self):
        assert not type_in_filter("service", {"team"})
        assert not type_in_filter("service", set())


class TestCapabilities:
    def test_fake_source_has_every_capability(self):
        source = FakeSource()
        assert isinstance(source, FullScanSource)
        assert isinstance(source, StreamingSource)
        assert isinstance(source, WebhookSource)
        assert isinstance(source, ClosableSource)

    def test_scan_only_source(self):
        source = ScanOnlySource()
        assert isinstance(source, FullScanSource)
        assert not isinstance(source, StreamingSource)
        assert not isinstance(source, ClosableSource)


class TestBaseSourceLifecycle:
    @pytest.mark.asyncio
    async def test_full_scan_filters_types(self):
        source = FakeSource(records=[Data.upsert("Service", {"name": "a"}), Data.upsert("team", {"name": "b"})])
        channel = DataChannel()

        assert await source.run_full_scan({"service"}, channel) is None
        channel.close()
        assert [data.type async for data in channel] == ["Service"]

    @pytest.mark.asyncio
    async def test_second_run_while_active_returns_without_io(self):
        source = FakeSource(block=True)
        channel = DataChannel()
        first = asyncio.create_task(source.run_full_scan({"service"}, channel))
        await source.started.wait()

        assert await source.run_full_scan({"service"}, channel) is None
        assert await source.run_event_stream({"service"}, channel) is None
        assert source.io_calls == 1

        await source.close()
        assert await first is None

    @pytest.mark.asyncio
    async def test_close_without_running_operation(self):
        source = FakeSource()
        assert await source.close() is None
        assert await source.close(timeout=0.1) is None

    @pytest.mark.asyncio
    async def test_close_cancels_stream_and_frees_guard(self):
        source = FakeSource(block=True)
        channel = DataChannel()
        stream = asyncio.create_task(source.run_event_stream({"service"}, channel))
        await source.started.wait()

        await source.close(timeout=1.0)
        assert await stream is None
        assert not source.running

        # a new run is possible after the previous one was closed
        source.block = False
        assert await source.run_full_scan({"service"}, channel) is None
        assert source.io_calls == 2

    @pytest.mark.asyncio
    async def test_caller_cancellation_propagates(self):
        source = FakeSource(block=True)
        task = asyncio.create_task(source.run_event_stream({"service"}, DataChannel()))
        await source.started.wait()

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        assert not source.running

    @pytest.mark.asyncio
    async def test_provider_error_is_wrapped(self):
        source = FakeSource(name="graph")
        source.error = ConnectionError("throttled")
        with pytest.raises(SourceError, match="throttled") as exc_info:
            await source.run_full_scan({"service"}, DataChannel())
        assert exc_info.value.context.source_name == "graph"
        assert not source.running


class TestSourceRegistry:
    def test_create_uses_factory(self):
        registry = SourceRegistry()
        factory = MagicMock(return_value="source")
        registry.register("fake", factory)

        assert registry.create("fake") == "source"
        assert registry.create("fake") == "source"
        assert factory.call_count == 2
        assert "fake" in registry
        assert registry.list_sources() == ["fake"]

    def test_unknown_source(self):
        with pytest.raises(SourceSetupError, match="unknown source: azure"):
            SourceRegistry().create("azure")

    def test_setup_error_propagates(self):
        registry = SourceRegistry()
        registry.register("azure", MagicMock(side_effect=SourceSetupError("AZURE_SUBSCRIPTION_ID missing")))
        with pytest.raises(SourceSetupError, match="AZURE_SUBSCRIPTION_ID"):
            registry.create("azure")

    def test_other_factory_errors_become_setup_errors(self):
        registry = SourceRegistry()
        registry.register("azure", MagicMock(side_effect=KeyError("region")))
        with pytest.raises(SourceSetupError, match="cannot create source azure") as exc_info:
            registry.create("azure")
        assert isinstance(exc_info.value.cause, KeyError)

    def test_factory_for(self):
        registry = SourceRegistry()
        registry.register("fake", FakeSource)
        factory = registry.factory_for("fake")
        assert isinstance(factory(), FakeSource)
        with pytest.raises(SourceSetupError):
            registry.factory_for("missing")
