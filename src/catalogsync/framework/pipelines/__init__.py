"""
Pipelines package.

The routing/delivery engine and the integration that drives it.
"""

from catalogsync.framework.pipelines.engine import Pipeline, PipelineStats, TypedMapper
from catalogsync.framework.pipelines.integration import Integration

__all__ = [
    "Pipeline",
    "PipelineStats",
    "TypedMapper",
    "Integration",
]
