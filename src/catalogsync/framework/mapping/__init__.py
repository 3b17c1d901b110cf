"""
Template mapping package.

Compiles user-authored templates and applies them to source records.
"""

from catalogsync.framework.mapping.mapper import (
    ExtraDefinition,
    ExtraMappedData,
    MappedData,
    Mapper,
    ParentResourceInfo,
)

__all__ = [
    "Mapper",
    "MappedData",
    "ExtraMappedData",
    "ExtraDefinition",
    "ParentResourceInfo",
]
