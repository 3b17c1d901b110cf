"""
Destinations package.

Sinks that receive mapped records: the remote catalog and a debug writer.
"""

from catalogsync.destinations.catalog import CatalogDestination, ClientCredentialsAuth
from catalogsync.destinations.protocol import Destination, DestinationData
from catalogsync.destinations.writer import WriterDestination

__all__ = [
    "Destination",
    "DestinationData",
    "WriterDestination",
    "CatalogDestination",
    "ClientCredentialsAuth",
]
