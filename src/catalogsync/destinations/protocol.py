"""
Destination contract.

A destination receives mapped records and stores them somewhere: a remote
catalog, a terminal, a test recorder.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Protocol, runtime_checkable


@dataclass(frozen=True)
class DestinationData:
    """
    One record to upsert or delete.

    ``data`` is ``None`` for deletes.
    """

    api_version: str
    kind: str
    name: str
    data: dict[str, Any] | None = None
    operation_time: datetime | None = None

    @property
    def operation(self) -> str:
        return "delete" if self.data is None else "upsert"

    def to_wire(self) -> dict[str, Any]:
        """JSON body understood by the catalog API."""
        body: dict[str, Any] = {
            "apiVersion": self.api_version,
            "resourceType": self.kind,
            "name": self.name,
        }
        if self.data is not None:
            body["data"] = self.data
        body["operation"] = self.operation
        return body


@runtime_checkable
class Destination(Protocol):
    """Sink for mapped records."""

    async def send_data(self, data: DestinationData) -> None:
        """Create or update a record."""
        ...

    async def delete_data(self, data: DestinationData) -> None:
        """Delete a record."""
        ...


__all__ = ["DestinationData", "Destination"]
