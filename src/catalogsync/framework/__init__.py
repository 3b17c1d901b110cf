"""
Catalog-sync framework.

This module provides:
- Source capability contract and lifecycle primitives
- Template mapping
- Routing/delivery pipeline and integrations

Use: from catalogsync.framework.sources import BaseSource, DataChannel
Use: from catalogsync.framework.pipelines import Integration
"""
