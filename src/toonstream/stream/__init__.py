"""
Stream Module
=============

Frame ingestion components.

This module provides the ingestion layer for the FrameLoop:
    - Frame: Typed frame data model (internal representation)
    - FrameSource: Protocol polled once per tick
    - CaptureFrameSource: OpenCV capture (camera, file, URL) on a reader thread
    - LatestFrameBuffer: Thread-safe drop-oldest frame holder
    - SequenceFrameSource: In-memory replay of images

Example:
    from toonstream.stream import CaptureFrameSource

    source = CaptureFrameSource(uri="0")
    result = source.poll()
    if result.ready:
        process(result.frame)
"""

from toonstream.stream.buffer import LatestFrameBuffer
from toonstream.stream.frame import Frame
from toonstream.stream.source import (
    CaptureFrameSource,
    FrameSource,
    PollResult,
    SequenceFrameSource,
)


__all__ = [
    "Frame",
    "LatestFrameBuffer",
    "FrameSource",
    "PollResult",
    "CaptureFrameSource",
    "SequenceFrameSource",
]
