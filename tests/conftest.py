"""
Test Configuration
==================

Pytest fixtures and test doubles for Toonstream.
"""

from collections import Counter
from typing import Iterable, List, Optional

import numpy as np
import pytest

from toonstream.errors import PrimitiveError
from toonstream.processing.primitives import OpenCVPrimitives


class RecordingPrimitives:
    """
    ImagePrimitives double that counts calls and can inject failures.

    Delegates to OpenCVPrimitives. Setting `fail_on` to a primitive name
    makes that call raise `error` instead.
    """

    def __init__(
        self,
        fail_on: Optional[str] = None,
        error: Optional[BaseException] = None,
    ) -> None:
        self.delegate = OpenCVPrimitives()
        self.calls: Counter = Counter()
        self.fail_on = fail_on
        self.error = error

    def __getattr__(self, name):
        target = getattr(self.delegate, name)

        def wrapper(*args, **kwargs):
            self.calls[name] += 1
            if name == self.fail_on:
                raise self.error or PrimitiveError(f"simulated {name} failure")
            return target(*args, **kwargs)

        return wrapper


class ScriptedClock:
    """
    Clock for deterministic latency samples.

    Calls come in (start, end) pairs; each end is separated from its
    start by the next scripted latency. The last latency repeats.
    """

    def __init__(self, latencies_ms: Iterable[float]) -> None:
        self._latencies: List[float] = list(latencies_ms)
        self._now: float = 0.0
        self._calls: int = 0

    def __call__(self) -> float:
        if self._calls % 2 == 1:
            index = min(self._calls // 2, len(self._latencies) - 1)
            self._now += self._latencies[index] / 1000.0
        self._calls += 1
        return self._now


class ListRenderer:
    """Renderer that keeps every presented buffer."""

    def __init__(self) -> None:
        self.frames: List[np.ndarray] = []

    def present(self, buffer: np.ndarray) -> None:
        self.frames.append(buffer)


def make_edge_image(width: int = 64, height: int = 48) -> np.ndarray:
    """BGR image with a hard vertical edge and a horizontal gradient."""
    image = np.zeros((height, width, 3), dtype=np.uint8)
    image[:, width // 2:] = 220
    image[:, :, 1] = np.linspace(0, 255, width, dtype=np.uint8)[None, :]
    return image


def make_uniform_image(width: int = 100, height: int = 100, value: int = 128) -> np.ndarray:
    """Uniform gray BGR image."""
    return np.full((height, width, 3), value, dtype=np.uint8)


@pytest.fixture
def recording_primitives():
    """Provide a call-counting primitive backend."""
    return RecordingPrimitives()


@pytest.fixture
def edge_image():
    """Provide a BGR image containing a strong edge."""
    return make_edge_image()


@pytest.fixture
def uniform_image():
    """Provide a 100x100 uniform gray frame."""
    return make_uniform_image()


@pytest.fixture
def list_renderer():
    """Provide a renderer that records presented buffers."""
    return ListRenderer()
