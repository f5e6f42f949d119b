"""
Frame Sources
=============

Producers of decodable video frames for the FrameLoop.

This module provides:
    - FrameSource: Protocol polled once per tick
    - PollResult: Outcome of a poll ("not ready" is a valid result)
    - CaptureFrameSource: OpenCV VideoCapture (camera index, file, URL)
      read on a background thread
    - SequenceFrameSource: Replays in-memory images (tests, still images)

Design Rules:
    - poll() never blocks and never raises for transient unavailability
    - Native width/height are reported with every ready frame
    - Frame timestamps come from time.monotonic()
    - Sources do NOT resize or filter frames
"""

import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Iterable, List, Optional, Protocol, Union

import cv2
import numpy as np

from toonstream.errors import SourceError
from toonstream.stream.buffer import LatestFrameBuffer
from toonstream.stream.frame import Frame


logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class PollResult:
    """
    Result of polling a FrameSource.

    Attributes:
        ready: Whether a frame is available
        frame: The frame, or None when not ready
        width: Native frame width (0 when unknown)
        height: Native frame height (0 when unknown)
    """

    ready: bool
    frame: Optional[Frame]
    width: int
    height: int

    @classmethod
    def not_ready(cls) -> "PollResult":
        return cls(ready=False, frame=None, width=0, height=0)

    @classmethod
    def of(cls, frame: Frame) -> "PollResult":
        return cls(ready=True, frame=frame, width=frame.width, height=frame.height)


class FrameSource(Protocol):
    """
    Protocol for frame producers.

    Implementations must return promptly from `poll` and report
    unavailability as a not-ready result rather than raising.
    """

    def poll(self) -> PollResult:
        """Return the next frame if one is ready."""
        ...

    def close(self) -> None:
        """Release any underlying device or file handle."""
        ...


class CaptureFrameSource:
    """
    Frame source backed by cv2.VideoCapture.

    Accepts a camera index ("0", "1", ...), a video file path, or a
    stream URL. Opening and reading happen on a daemon reader thread
    that keeps only the newest frame in a LatestFrameBuffer, so poll()
    returns immediately with that frame or not-ready.

    The thread starts on the first poll. When the device cannot be
    opened, or a read fails, the capture is released and reopened after
    `reopen_interval` seconds.
    """

    def __init__(
        self,
        uri: str = "0",
        requested_width: Optional[int] = None,
        requested_height: Optional[int] = None,
        reopen_interval: float = 2.0,
        capture_factory: Callable[[Union[int, str]], Any] = cv2.VideoCapture,
    ) -> None:
        """
        Initialize capture source.

        Args:
            uri: Camera index, file path or stream URL
            requested_width: Width hint passed to the capture backend
            requested_height: Height hint passed to the capture backend
            reopen_interval: Seconds between reopen attempts
            capture_factory: Builds the capture object (cv2.VideoCapture)
        """
        self.uri = uri
        self.requested_width = requested_width
        self.requested_height = requested_height
        self.reopen_interval = reopen_interval
        self._capture_factory = capture_factory

        # Touched only by the reader thread once it is running
        self._capture: Optional[Any] = None
        self._frame_id: int = 0

        self._buffer = LatestFrameBuffer(maxsize=1)
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._closed: bool = False
        self.failed_reads: int = 0

        logger.info(f"CaptureFrameSource created: uri={uri}")

    @property
    def is_open(self) -> bool:
        capture = self._capture
        return capture is not None and capture.isOpened()

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    @property
    def dropped_frames(self) -> int:
        """Captured frames replaced before a tick consumed them."""
        return self._buffer.dropped_count

    def start(self) -> None:
        """Start the reader thread (idempotent)."""
        if self._closed or self.is_running:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._reader,
            name=f"capture-{self.uri}",
            daemon=True,
        )
        self._thread.start()

    def open(self) -> None:
        """
        Open the capture device.

        Raises:
            SourceError: If the device cannot be opened
        """
        target: Union[int, str] = int(self.uri) if self.uri.isdigit() else self.uri
        capture = self._capture_factory(target)
        if not capture.isOpened():
            capture.release()
            raise SourceError(f"Failed to open video source: {self.uri}")

        if self.requested_width:
            capture.set(cv2.CAP_PROP_FRAME_WIDTH, self.requested_width)
        if self.requested_height:
            capture.set(cv2.CAP_PROP_FRAME_HEIGHT, self.requested_height)

        self._capture = capture
        logger.info(f"Opened video source: {self.uri}")

    def poll(self) -> PollResult:
        """Return the newest captured frame, or not-ready."""
        if self._closed:
            return PollResult.not_ready()
        if self._thread is None:
            self.start()

        frame = self._buffer.get_nowait()
        if frame is None:
            return PollResult.not_ready()
        return PollResult.of(frame)

    def close(self, timeout: float = 2.0) -> None:
        """Stop the reader thread; the thread releases the device."""
        self._closed = True
        self._stop_event.set()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)
            if thread.is_alive():
                logger.warning(f"Capture thread for {self.uri} did not stop within {timeout:.1f}s")
        self._buffer.clear()

    def _reader(self) -> None:
        logger.info(f"Capture thread started: {self.uri}")
        try:
            while not self._stop_event.is_set():
                if not self.is_open:
                    try:
                        self.open()
                    except SourceError as e:
                        logger.warning(f"{e}, retrying in {self.reopen_interval:.1f}s")
                        self._stop_event.wait(self.reopen_interval)
                        continue

                ok, image = self._capture.read()
                if not ok or image is None:
                    self.failed_reads += 1
                    logger.warning(
                        f"Read from {self.uri} failed, reopening in {self.reopen_interval:.1f}s"
                    )
                    self._release()
                    self._stop_event.wait(self.reopen_interval)
                    continue

                self._frame_id += 1
                self._buffer.put(
                    Frame(frame_id=self._frame_id, timestamp=time.monotonic(), image=image)
                )
        finally:
            self._release()
            logger.info(f"Capture thread stopped: {self.uri}")

    def _release(self) -> None:
        if self._capture is not None:
            self._capture.release()
            self._capture = None
            logger.info(f"Closed video source: {self.uri}")


class SequenceFrameSource:
    """
    Frame source that replays in-memory images.

    A None entry in the sequence is reported as a not-ready poll.
    When the sequence is exhausted the source either repeats from the
    start (`repeat=True`) or reports not-ready forever.

    Example:
        source = SequenceFrameSource([img_a, None, img_b])
        source.poll()  # ready, img_a
        source.poll()  # not ready
        source.poll()  # ready, img_b
    """

    def __init__(
        self,
        images: Iterable[Optional[np.ndarray]],
        repeat: bool = False,
    ) -> None:
        self._images: List[Optional[np.ndarray]] = list(images)
        self.repeat = repeat
        self._index: int = 0
        self._frame_id: int = 0
        self.polls: int = 0

    @classmethod
    def from_image(cls, path: str, repeat: bool = True) -> "SequenceFrameSource":
        """
        Build a source that repeats a single still image.

        Raises:
            SourceError: If the image cannot be read
        """
        image = cv2.imread(path, cv2.IMREAD_UNCHANGED)
        if image is None:
            raise SourceError(f"Failed to read image: {path}")
        return cls([image], repeat=repeat)

    def poll(self) -> PollResult:
        self.polls += 1

        if self._index >= len(self._images):
            if not self.repeat or not self._images:
                return PollResult.not_ready()
            self._index = 0

        image = self._images[self._index]
        self._index += 1

        if image is None:
            return PollResult.not_ready()

        self._frame_id += 1
        return PollResult.of(
            Frame(frame_id=self._frame_id, timestamp=time.monotonic(), image=image)
        )

    def close(self) -> None:
        self._index = len(self._images)
        self.repeat = False
