"""
Latest Frame Buffer
===================

Thread-safe bounded holder between a capture thread and the FrameLoop.

Design Rules:
    - Fixed maximum size (drops oldest on overflow)
    - put() and get_nowait() never block beyond a short lock
    - Exposes minimal metrics for observability
    - Does NOT process or modify frames
"""

import logging
import threading
from collections import deque
from typing import Deque, Optional

from toonstream.stream.frame import Frame


logger = logging.getLogger(__name__)


class LatestFrameBuffer:
    """
    Bounded drop-oldest frame holder shared across threads.

    With the default size of one, a consumer always sees the newest
    captured frame and stale frames are discarded instead of queued.

    Example:
        buffer = LatestFrameBuffer()

        # Capture thread
        buffer.put(frame)

        # Loop tick
        frame = buffer.get_nowait()
    """

    def __init__(self, maxsize: int = 1) -> None:
        if maxsize < 1:
            raise ValueError("maxsize must be >= 1")

        self._maxsize = maxsize
        self._frames: Deque[Frame] = deque()
        self._lock = threading.Lock()
        self._dropped_count: int = 0
        self._total_put: int = 0

    @property
    def maxsize(self) -> int:
        return self._maxsize

    @property
    def size(self) -> int:
        with self._lock:
            return len(self._frames)

    @property
    def dropped_count(self) -> int:
        """Frames replaced before a consumer took them."""
        return self._dropped_count

    @property
    def total_put(self) -> int:
        return self._total_put

    def put(self, frame: Frame) -> bool:
        """
        Store a frame, dropping the oldest if full.

        Returns:
            True if nothing was dropped to make room.
        """
        with self._lock:
            self._total_put += 1
            dropped = len(self._frames) >= self._maxsize
            if dropped:
                self._frames.popleft()
                self._dropped_count += 1
            self._frames.append(frame)

        if dropped and self._dropped_count % 100 == 0:
            logger.debug(f"Consumer behind capture, dropped {self._dropped_count} frames")
        return not dropped

    def get_nowait(self) -> Optional[Frame]:
        """Take the oldest held frame, or None if empty."""
        with self._lock:
            if not self._frames:
                return None
            return self._frames.popleft()

    def clear(self) -> int:
        """
        Drop all held frames.

        Returns:
            Number of frames cleared.
        """
        with self._lock:
            cleared = len(self._frames)
            self._frames.clear()
        return cleared

    def metrics(self) -> dict:
        return {
            "size": self.size,
            "maxsize": self._maxsize,
            "dropped_count": self._dropped_count,
            "total_put": self._total_put,
        }
