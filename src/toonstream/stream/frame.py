"""
Frame Data Model
================

Internal frame representation for the processing loop.

Design Rules:
    - Owned exclusively by the tick that polled it
    - Never retained past that tick
    - The image buffer is never mutated by downstream stages
"""

from dataclasses import dataclass

import numpy as np


@dataclass(frozen=True, slots=True, eq=False)
class Frame:
    """
    Captured video frame.

    Attributes:
        frame_id: Monotonically increasing frame counter from the source
        timestamp: Capture time from time.monotonic() (seconds, never decreases)
        image: Pixel buffer, (H, W) or (H, W, C)
    """

    frame_id: int
    timestamp: float
    image: np.ndarray

    @property
    def width(self) -> int:
        return int(self.image.shape[1]) if self.image.ndim >= 2 else 0

    @property
    def height(self) -> int:
        return int(self.image.shape[0]) if self.image.ndim >= 2 else 0

    @property
    def channels(self) -> int:
        return 1 if self.image.ndim == 2 else int(self.image.shape[2])

    @property
    def dtype(self) -> np.dtype:
        return self.image.dtype

    def __repr__(self) -> str:
        """Compact repr that doesn't dump the pixel buffer."""
        return (
            f"Frame(frame_id={self.frame_id}, "
            f"timestamp={self.timestamp:.3f}, "
            f"size={self.width}x{self.height}x{self.channels})"
        )
