"""
Toonstream
==========

Real-time cartoon stylization of live video with adaptive quality control.

This package runs a fixed filter composition over every processed frame of a
live stream and keeps the stream interactive by measuring its own cost and
trading processing resolution and frame coverage for throughput.

Components:
    - processing: CartoonizeStage and the OpenCV primitive adapter
    - control: QualityController (tier, frame skip, cycle statistics)
    - loop: FrameLoop scheduling driver and renderers
    - stream: Frame model and frame sources
    - models: Filter parameters, quality tiers, pipeline snapshots

Example:
    from toonstream.config import settings
    from toonstream.models import FilterParameters

    params = FilterParameters.preset("soft")

    # The service is started via the FastAPI application
    # See main.py for entry point
"""

__version__ = "0.1.0"
__author__ = "Toonstream Project"

__all__ = [
    "__version__",
]
