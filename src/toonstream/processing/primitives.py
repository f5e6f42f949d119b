"""
Image Primitives
================

Stateless pixel-buffer operations consumed by the CartoonizeStage.

This module provides the ImagePrimitives protocol and its OpenCV
implementation. The stage depends only on the protocol, so tests can
substitute an instrumented double.

Design Rules:
    - Every operation returns a NEW buffer and never mutates its inputs
    - Failures are reported as PrimitiveError, never as a partial result
    - Empty results are failures
"""

from typing import Callable, Optional, Protocol

import cv2
import numpy as np

from toonstream.errors import PrimitiveError


class ImagePrimitives(Protocol):
    """
    Protocol for image primitive backends.

    Implementations must raise PrimitiveError on failure.
    """

    def to_color3(self, image: np.ndarray) -> np.ndarray:
        """Normalize any supported channel layout to 3-channel color."""
        ...

    def edge_preserve_smooth(
        self,
        image: np.ndarray,
        d: int,
        sigma_color: float,
        sigma_space: float,
    ) -> np.ndarray:
        """Edge-preserving smoothing (bilateral filter)."""
        ...

    def to_gray(self, image: np.ndarray) -> np.ndarray:
        """3-channel color to single-channel luminance."""
        ...

    def denoise(self, image: np.ndarray, kernel: int) -> np.ndarray:
        """Median-style denoise with an odd kernel size."""
        ...

    def adaptive_binarize(self, image: np.ndarray, block_size: int, c: float) -> np.ndarray:
        """Locally-normalized binary threshold."""
        ...

    def gray_to_color3(self, image: np.ndarray) -> np.ndarray:
        """Expand a single-channel buffer to 3 channels."""
        ...

    def bitwise_and(self, a: np.ndarray, b: np.ndarray) -> np.ndarray:
        """Per-pixel logical AND of two same-shaped buffers."""
        ...

    def resize(
        self,
        image: np.ndarray,
        width: int,
        height: int,
        linear: bool = True,
    ) -> np.ndarray:
        """Resize to (width, height)."""
        ...

    def weighted_blend(
        self,
        a: np.ndarray,
        w1: float,
        b: np.ndarray,
        w2: float,
    ) -> np.ndarray:
        """Per-pixel a * w1 + b * w2."""
        ...


class OpenCVPrimitives:
    """
    ImagePrimitives backed by OpenCV.

    Color buffers are BGR, matching cv2.VideoCapture output.
    Adaptive binarization uses ADAPTIVE_THRESH_MEAN_C with THRESH_BINARY
    and a max value of 255.
    """

    def to_color3(self, image: np.ndarray) -> np.ndarray:
        self._require_image(image, "to_color3")

        channels = 1 if image.ndim == 2 else image.shape[2]
        if channels == 1:
            return self._call("to_color3", cv2.cvtColor, image, cv2.COLOR_GRAY2BGR)
        if channels == 3:
            return image.copy()
        if channels == 4:
            return self._call("to_color3", cv2.cvtColor, image, cv2.COLOR_BGRA2BGR)

        raise PrimitiveError(f"to_color3: unsupported channel count {channels}")

    def edge_preserve_smooth(
        self,
        image: np.ndarray,
        d: int,
        sigma_color: float,
        sigma_space: float,
    ) -> np.ndarray:
        self._require_image(image, "edge_preserve_smooth")
        return self._call(
            "edge_preserve_smooth",
            cv2.bilateralFilter,
            image,
            d,
            sigma_color,
            sigma_space,
        )

    def to_gray(self, image: np.ndarray) -> np.ndarray:
        self._require_image(image, "to_gray")
        return self._call("to_gray", cv2.cvtColor, image, cv2.COLOR_BGR2GRAY)

    def denoise(self, image: np.ndarray, kernel: int) -> np.ndarray:
        self._require_image(image, "denoise")
        return self._call("denoise", cv2.medianBlur, image, kernel)

    def adaptive_binarize(self, image: np.ndarray, block_size: int, c: float) -> np.ndarray:
        self._require_image(image, "adaptive_binarize")
        return self._call(
            "adaptive_binarize",
            cv2.adaptiveThreshold,
            image,
            255,
            cv2.ADAPTIVE_THRESH_MEAN_C,
            cv2.THRESH_BINARY,
            block_size,
            c,
        )

    def gray_to_color3(self, image: np.ndarray) -> np.ndarray:
        self._require_image(image, "gray_to_color3")
        return self._call("gray_to_color3", cv2.cvtColor, image, cv2.COLOR_GRAY2BGR)

    def bitwise_and(self, a: np.ndarray, b: np.ndarray) -> np.ndarray:
        self._require_image(a, "bitwise_and")
        self._require_image(b, "bitwise_and")
        return self._call("bitwise_and", cv2.bitwise_and, a, b)

    def resize(
        self,
        image: np.ndarray,
        width: int,
        height: int,
        linear: bool = True,
    ) -> np.ndarray:
        self._require_image(image, "resize")
        if width <= 0 or height <= 0:
            raise PrimitiveError(f"resize: invalid target size {width}x{height}")
        interpolation = cv2.INTER_LINEAR if linear else cv2.INTER_NEAREST
        return self._call(
            "resize",
            cv2.resize,
            image,
            (width, height),
            interpolation=interpolation,
        )

    def weighted_blend(
        self,
        a: np.ndarray,
        w1: float,
        b: np.ndarray,
        w2: float,
    ) -> np.ndarray:
        self._require_image(a, "weighted_blend")
        self._require_image(b, "weighted_blend")
        return self._call("weighted_blend", cv2.addWeighted, a, w1, b, w2, 0)

    @staticmethod
    def _require_image(image: Optional[np.ndarray], op: str) -> None:
        if image is None or image.size == 0:
            raise PrimitiveError(f"{op}: empty input buffer")

    @staticmethod
    def _call(op: str, fn: Callable[..., np.ndarray], *args, **kwargs) -> np.ndarray:
        try:
            result = fn(*args, **kwargs)
        except cv2.error as e:
            raise PrimitiveError(f"{op}: {e}") from e

        if result is None or result.size == 0:
            raise PrimitiveError(f"{op}: empty result")

        return result
