"""
catalog-sync - Entity-change sync engine.

Moves entity changes out of external systems, maps them through
user-authored templates and delivers them to a catalog:

- catalogsync.core: errors, logging, settings
- catalogsync.framework: sources, mapping, pipelines
- catalogsync.destinations: catalog HTTP client, debug writer
- catalogsync.api: webhook routes
"""

__version__ = "0.1.0"
