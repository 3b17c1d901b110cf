"""Debug destination printing every operation as a readable block."""

from __future__ import annotations

import json
import sys
import threading
from typing import TextIO

from catalogsync.destinations.protocol import DestinationData


class WriterDestination:
    """
    Write each upsert and delete to a text stream.

    Usage:
        destination = WriterDestination(sys.stdout)
    """

    def __init__(self, stream: TextIO | None = None):
        self._stream = stream if stream is not None else sys.stdout
        self._lock = threading.Lock()

    @staticmethod
    def _header(title: str, data: DestinationData) -> list[str]:
        timestamp = data.operation_time.isoformat() if data.operation_time else ""
        return [
            f"{title}:\n",
            f"\tAPIVersion: {data.api_version}\n",
            f"\tKind: {data.kind}\n",
            f"\tItem Name: {data.name}\n",
            f"\tTimestamp: {timestamp}\n",
        ]

    def _write(self, parts: list[str]) -> None:
        text = "".join(parts)
        with self._lock:
            self._stream.write(text)
            self._stream.flush()

    async def send_data(self, data: DestinationData) -> None:
        spec = json.dumps(data.data, indent="\t", sort_keys=True, ensure_ascii=False, default=str)
        parts = self._header("Send data", data)
        parts.append("\tSpec: " + spec.replace("\n", "\n\t") + "\n\n")
        self._write(parts)

    async def delete_data(self, data: DestinationData) -> None:
        parts = self._header("Delete data", data)
        parts.append("\n")
        self._write(parts)


__all__ = ["WriterDestination"]
