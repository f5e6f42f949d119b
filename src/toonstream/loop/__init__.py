"""
Loop Module
===========

Scheduling driver and output sinks.

Components:
    - FrameLoop: One unit of work per scheduling opportunity
    - LoopState: IDLE / POLLING / SKIPPING / PROCESSING / RENDERING / STOPPED
    - LoopMetrics: Operational counters
    - Renderer: Output sink protocol
    - FrameStore: Keeps the latest output for the service layer
    - WindowRenderer: OpenCV window sink for local runs
"""

from toonstream.loop.frame_loop import FrameLoop, LoopMetrics, LoopState
from toonstream.loop.renderer import FrameStore, Renderer, WindowRenderer

__all__ = [
    "FrameLoop",
    "LoopMetrics",
    "LoopState",
    "Renderer",
    "FrameStore",
    "WindowRenderer",
]
