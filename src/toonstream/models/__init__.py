"""
Data Models
===========

Typed records shared by the processing core.

Models:
    Filters:
        - FilterParameters: Immutable filter parameter snapshot
        - FILTER_PRESETS: Named parameter presets

    Quality:
        - QualityTier: HIGH / MEDIUM / LOW processing levels
        - DeviceClass: CONSTRAINED / UNCONSTRAINED runtime context

    Cycle:
        - CycleStats: Latency history owned by the QualityController
        - PipelineConfig: Per-tick configuration snapshot
"""

from toonstream.models.filters import FILTER_PRESETS, FilterParameters
from toonstream.models.quality import DeviceClass, QualityTier
from toonstream.models.stats import CycleStats, PipelineConfig

__all__ = [
    # Filters
    "FilterParameters",
    "FILTER_PRESETS",
    # Quality
    "QualityTier",
    "DeviceClass",
    # Cycle
    "CycleStats",
    "PipelineConfig",
]
