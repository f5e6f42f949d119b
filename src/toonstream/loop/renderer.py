"""
Renderers
=========

Sinks for the FrameLoop's output buffers.

This module provides:
    - Renderer: Protocol with a fire-and-forget present()
    - FrameStore: Keeps the latest output for the HTTP surface
    - WindowRenderer: Shows output in an OpenCV window

Design Rules:
    - present() is synchronous and never raises into the loop
    - Renderers do NOT modify the buffer they receive
"""

import logging
import time
from typing import Optional, Protocol

import cv2
import numpy as np


logger = logging.getLogger(__name__)


class Renderer(Protocol):
    """Protocol for output sinks."""

    def present(self, buffer: np.ndarray) -> None:
        """Display or store one output buffer."""
        ...


class FrameStore:
    """
    Renderer that retains the most recent output buffer.

    Used by the service layer to serve snapshots of the stylized
    stream. Only a reference to the last buffer is kept.
    """

    def __init__(self) -> None:
        self._latest: Optional[np.ndarray] = None
        self._presented: int = 0
        self._last_presented_at: float = 0.0

    @property
    def presented(self) -> int:
        """Number of buffers presented."""
        return self._presented

    @property
    def last_presented_at(self) -> float:
        return self._last_presented_at

    def present(self, buffer: np.ndarray) -> None:
        self._latest = buffer
        self._presented += 1
        self._last_presented_at = time.time()

    def latest(self) -> Optional[np.ndarray]:
        """Most recent output buffer, or None before the first frame."""
        return self._latest

    def encode_jpeg(self, quality: int = 85) -> Optional[bytes]:
        """
        Encode the latest buffer as JPEG.

        Returns:
            JPEG bytes, or None if nothing has been presented or
            encoding failed.
        """
        if self._latest is None:
            return None

        ok, encoded = cv2.imencode(
            ".jpg",
            self._latest,
            [int(cv2.IMWRITE_JPEG_QUALITY), quality],
        )
        if not ok:
            logger.error("JPEG encoding of latest frame failed")
            return None
        return encoded.tobytes()


class WindowRenderer:
    """
    Renderer that shows frames in an OpenCV HighGUI window.

    Polls the keyboard after each frame; pressing q or ESC sets
    quit_requested.
    """

    def __init__(self, window_name: str = "toonstream") -> None:
        self.window_name = window_name
        self.last_key: int = -1
        self.quit_requested: bool = False
        cv2.namedWindow(self.window_name, cv2.WINDOW_NORMAL)

    def present(self, buffer: np.ndarray) -> None:
        cv2.imshow(self.window_name, buffer)
        key = cv2.waitKey(1) & 0xFF
        if key != 0xFF:
            self.last_key = key
            if key in (ord("q"), 27):
                self.quit_requested = True

    def close(self) -> None:
        cv2.destroyWindow(self.window_name)
