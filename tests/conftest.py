"""
Shared pytest fixtures and configuration for catalog-sync tests.

This module provides:
- Log context cleanup for test isolation
- Auto-marking of tests by location
- Common mapper and destination fixtures
"""

from __future__ import annotations

from pathlib import Path
from typing import Generator

import pytest

from catalogsync.core.logging import clear_context
from catalogsync.framework.mapping.mapper import Mapper, ParentResourceInfo
from catalogsync.framework.pipelines.engine import TypedMapper
from tests._support.fakes import RecordingDestination


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Auto-mark tests based on their location."""
    for item in items:
        test_path = Path(item.path).relative_to(Path(__file__).parent)
        if "integration" in str(test_path):
            item.add_marker(pytest.mark.integration)
        markers = {mark.name for mark in item.iter_markers()}
        if not markers.intersection({"unit", "integration"}):
            item.add_marker(pytest.mark.unit)


@pytest.fixture(autouse=True)
def clean_log_context() -> Generator[None, None, None]:
    """Clear structlog contextvars before and after each test."""
    clear_context()
    yield
    clear_context()


@pytest.fixture
def parent() -> ParentResourceInfo:
    return ParentResourceInfo(api_version="catalog.example.com/v1", kind="services")


@pytest.fixture
def service_mappers(parent: ParentResourceInfo) -> dict[str, TypedMapper]:
    """Routing table for type ``service`` with one cascading relationship."""
    mapper = Mapper(
        "{{ name }}",
        {"owner": "{{ owner }}", "replicas": "{{ replicas }}"},
        [
            {
                "apiVersion": "catalog.example.com/v1",
                "kind": "relationships",
                "identifier": "{{ name }}--{{ team }}",
                "deletePolicy": "cascade",
                "sourceRef": {
                    "apiVersion": "catalog.example.com/v1",
                    "kind": "teams",
                    "name": "{{ team }}",
                },
                "type": "ownership",
            }
        ],
        parent=parent,
    )
    return {"service": TypedMapper(api_version=parent.api_version, kind=parent.kind, mapper=mapper)}


@pytest.fixture
def destination() -> RecordingDestination:
    return RecordingDestination()
