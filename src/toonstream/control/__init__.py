"""
Control Module
==============

Adaptive quality control for the frame loop.

Components:
    - QualityController: Tier, frame skip and latency statistics
    - scale_parameters: Tier-dependent kernel-size scaling
"""

from toonstream.control.quality import QualityController, scale_parameters

__all__ = [
    "QualityController",
    "scale_parameters",
]
