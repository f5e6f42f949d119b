"""
Cartoonize Stage Tests
======================

Tests for the five-stage cartoon composition, the intensity
short-circuit, passthrough fallback and scratch release.
"""

import cv2
import numpy as np
import pytest

from conftest import RecordingPrimitives, make_edge_image
from toonstream.errors import ScratchAllocationError
from toonstream.models.filters import FilterParameters
from toonstream.processing.cartoonize import CartoonizeStage
from toonstream.processing.primitives import OpenCVPrimitives
from toonstream.processing.scratch import ScratchArena


class TestFullIntensity:
    """Tests for intensity == 1.0."""

    def test_output_dimensions_match_input(self, edge_image):
        """Verify the stylized buffer keeps width and height."""
        stage = CartoonizeStage(OpenCVPrimitives())
        result = stage.process(edge_image, FilterParameters())

        assert not result.fallback
        assert result.image.shape == edge_image.shape

    def test_output_differs_from_passthrough_on_edges(self, edge_image):
        """Verify edges produce a visible difference from the input."""
        stage = CartoonizeStage(OpenCVPrimitives())
        result = stage.process(edge_image, FilterParameters())

        assert not np.array_equal(result.image, edge_image)

    def test_edge_pixels_are_darkened(self):
        """Verify the edge mask blacks out pixels along the hard edge."""
        image = np.full((40, 40, 3), 200, dtype=np.uint8)
        image[:, :20] = 40
        stage = CartoonizeStage(OpenCVPrimitives())

        result = stage.process(image, FilterParameters(intensity=1.0))

        edge_band = result.image[:, 17:20]
        assert (edge_band == 0).any()

    def test_uniform_gray_tracks_smoothed_color(self, uniform_image):
        """Verify a gradient-free frame yields an all-pass mask."""
        primitives = OpenCVPrimitives()
        stage = CartoonizeStage(primitives)
        params = FilterParameters()

        result = stage.process(uniform_image, params)

        smoothed = cv2.bilateralFilter(
            uniform_image, params.bilateral_d, params.sigma_color, params.sigma_space
        )
        assert result.image.shape == (100, 100, 3)
        assert np.allclose(result.image, smoothed, atol=1)

    def test_input_is_not_mutated(self, edge_image):
        """Verify the stage never writes into its input."""
        original = edge_image.copy()
        stage = CartoonizeStage(OpenCVPrimitives())

        stage.process(edge_image, FilterParameters())

        assert np.array_equal(edge_image, original)

    def test_deterministic(self, edge_image):
        """Verify identical inputs give identical outputs."""
        stage = CartoonizeStage(OpenCVPrimitives())
        first = stage.process(edge_image, FilterParameters.preset("strong"))
        second = stage.process(edge_image, FilterParameters.preset("strong"))

        assert np.array_equal(first.image, second.image)


class TestIntensity:
    """Tests for the intensity short-circuit and blend."""

    def test_zero_intensity_is_passthrough(self, edge_image):
        """Verify intensity 0 returns the normalized input unchanged."""
        primitives = RecordingPrimitives()
        stage = CartoonizeStage(primitives)

        result = stage.process(edge_image, FilterParameters(intensity=0.0))

        assert np.array_equal(result.image, edge_image)
        assert result.image is not edge_image

    def test_zero_intensity_skips_filter_stages(self, edge_image):
        """Verify intensity 0 never invokes smoothing or edge stages."""
        primitives = RecordingPrimitives()
        stage = CartoonizeStage(primitives)

        stage.process(edge_image, FilterParameters(intensity=0.0))

        assert primitives.calls["to_color3"] == 1
        for name in (
            "edge_preserve_smooth",
            "to_gray",
            "denoise",
            "adaptive_binarize",
            "gray_to_color3",
            "bitwise_and",
            "weighted_blend",
        ):
            assert primitives.calls[name] == 0, name

    def test_zero_intensity_normalizes_bgra(self, edge_image):
        """Verify 4-channel input is reduced to 3 channels on passthrough."""
        bgra = cv2.cvtColor(edge_image, cv2.COLOR_BGR2BGRA)
        stage = CartoonizeStage(OpenCVPrimitives())

        result = stage.process(bgra, FilterParameters(intensity=0.0))

        assert result.image.shape == edge_image.shape
        assert np.array_equal(result.image, edge_image)

    def test_full_intensity_does_not_blend(self, edge_image):
        """Verify the raw cartoon is returned at intensity 1."""
        primitives = RecordingPrimitives()
        stage = CartoonizeStage(primitives)

        stage.process(edge_image, FilterParameters(intensity=1.0))

        assert primitives.calls["bitwise_and"] == 1
        assert primitives.calls["weighted_blend"] == 0

    def test_blend_mixes_normalized_original_with_cartoon(self, edge_image):
        """Verify partial intensity blends the original, not the smoothed buffer."""
        stage = CartoonizeStage(OpenCVPrimitives())
        cartoon = stage.process(edge_image, FilterParameters(intensity=1.0)).image

        result = stage.process(edge_image, FilterParameters(intensity=0.4))

        expected = cv2.addWeighted(edge_image, 1.0 - 0.4, cartoon, 0.4, 0)
        assert np.array_equal(result.image, expected)


class TestChannelNormalization:
    """Tests for channel layouts."""

    def test_grayscale_input_produces_color_output(self):
        """Verify single-channel input is expanded to 3 channels."""
        gray = cv2.cvtColor(make_edge_image(), cv2.COLOR_BGR2GRAY)
        stage = CartoonizeStage(OpenCVPrimitives())

        result = stage.process(gray, FilterParameters())

        assert not result.fallback
        assert result.image.shape == (gray.shape[0], gray.shape[1], 3)

    def test_unsupported_channel_count_falls_back(self):
        """Verify a 2-channel buffer triggers the passthrough fallback."""
        image = np.zeros((16, 16, 2), dtype=np.uint8)
        stage = CartoonizeStage(OpenCVPrimitives())

        result = stage.process(image, FilterParameters())

        assert result.fallback
        assert np.array_equal(result.image, image)
        assert "channel" in result.error


class TestFallback:
    """Tests for primitive failure handling."""

    def test_denoise_failure_returns_input_copy(self, edge_image):
        """Verify a failing denoise returns the original input."""
        primitives = RecordingPrimitives(fail_on="denoise")
        stage = CartoonizeStage(primitives)

        result = stage.process(edge_image, FilterParameters())

        assert result.fallback
        assert np.array_equal(result.image, edge_image)
        assert result.image is not edge_image
        assert "denoise" in result.error
        assert stage.fallbacks == 1

    def test_arbitrary_exception_falls_back(self, edge_image):
        """Verify non-PrimitiveError failures are also recovered."""
        primitives = RecordingPrimitives(fail_on="bitwise_and", error=ValueError("boom"))
        stage = CartoonizeStage(primitives)

        result = stage.process(edge_image, FilterParameters())

        assert result.fallback
        assert np.array_equal(result.image, edge_image)

    def test_processing_resumes_after_failure(self, edge_image):
        """Verify the stage works normally on the next call."""
        primitives = RecordingPrimitives(fail_on="denoise")
        stage = CartoonizeStage(primitives)
        stage.process(edge_image, FilterParameters())

        primitives.fail_on = None
        result = stage.process(edge_image, FilterParameters())

        assert not result.fallback
        assert stage.invocations == 2
        assert stage.fallbacks == 1

    def test_memory_error_is_resource_exhaustion(self, edge_image):
        """Verify MemoryError surfaces as ScratchAllocationError."""
        primitives = RecordingPrimitives(fail_on="edge_preserve_smooth", error=MemoryError())
        stage = CartoonizeStage(primitives)

        with pytest.raises(ScratchAllocationError):
            stage.process(edge_image, FilterParameters())


class TestScratchRelease:
    """Tests for intermediate buffer release."""

    def test_intermediates_released_on_success(self, edge_image):
        """Verify every tracked intermediate is released before return."""
        stage = CartoonizeStage(OpenCVPrimitives())

        stage.process(edge_image, FilterParameters(intensity=1.0))

        # color, flattened, gray, denoised, edges, edge mask
        assert stage.get_metrics()["released_buffers"] == 6

    def test_intermediates_released_on_fallback(self, edge_image):
        """Verify buffers created before a failure are released."""
        stage = CartoonizeStage(RecordingPrimitives(fail_on="denoise"))

        stage.process(edge_image, FilterParameters())

        # color, flattened, gray
        assert stage.get_metrics()["released_buffers"] == 3

    def test_scratch_budget_exceeded(self, edge_image):
        """Verify a too-small budget is reported as resource exhaustion."""
        stage = CartoonizeStage(OpenCVPrimitives(), scratch_budget=16)

        with pytest.raises(ScratchAllocationError):
            stage.process(edge_image, FilterParameters())

    def test_stage_draws_on_caller_arena(self, edge_image):
        """Verify intermediates and the blended output count against the caller's arena."""
        stage = CartoonizeStage(OpenCVPrimitives())
        arena = ScratchArena(max_bytes=10 * 1024 * 1024)

        result = stage.process(edge_image, FilterParameters(intensity=0.5), arena)

        # Four 3-channel and three 1-channel intermediates plus the blend
        assert arena.peak_bytes >= 64 * 48 * 3 * 5 + 64 * 48 * 3
        assert arena.live_count == 0
        assert result.image.shape == edge_image.shape

    def test_caller_holdings_reduce_stage_budget(self, edge_image):
        """Verify buffers already held by the caller leave less room for the stage."""
        stage = CartoonizeStage(OpenCVPrimitives())
        arena = ScratchArena(max_bytes=50_000)
        arena.track(np.zeros(20_000, dtype=np.uint8))

        with pytest.raises(ScratchAllocationError):
            stage.process(edge_image, FilterParameters(), arena)

        # The same stage fits once the caller's buffer is gone
        arena.release()
        assert not stage.process(edge_image, FilterParameters(), arena).fallback


class TestScratchArena:
    """Tests for scoped scratch ownership."""

    def test_release_on_exit(self):
        """Verify leaving the block drops every tracked buffer."""
        with ScratchArena() as arena:
            arena.track(np.zeros(10, dtype=np.uint8))
            arena.track(np.zeros(20, dtype=np.uint8))

        assert arena.live_count == 0
        assert arena.live_bytes == 0
        assert arena.released_total == 2
        assert arena.peak_bytes == 30

    def test_detached_buffer_not_counted(self):
        """Verify detach removes a buffer from the live total."""
        arena = ScratchArena()
        kept = arena.track(np.zeros(16, dtype=np.uint8))

        assert arena.detach(kept) is kept
        assert arena.live_bytes == 0
        assert arena.release() == 0

    def test_child_shares_parent_budget(self):
        """Verify a child scope cannot exceed what the parent has left."""
        parent = ScratchArena(max_bytes=100)
        parent.track(np.zeros(60, dtype=np.uint8))

        with parent.scope() as child:
            child.track(np.zeros(30, dtype=np.uint8))
            with pytest.raises(ScratchAllocationError):
                child.track(np.zeros(20, dtype=np.uint8))

        assert parent.peak_bytes == 90
        assert parent.live_bytes == 60

    def test_nested_scopes_report_to_root(self):
        """Verify usage in a grandchild scope reaches the root's peak."""
        root = ScratchArena(max_bytes=1000)

        with root.scope() as child:
            child.track(np.zeros(100, dtype=np.uint8))
            with child.scope() as grandchild:
                grandchild.track(np.zeros(200, dtype=np.uint8))

        assert root.peak_bytes == 300
        assert child.peak_bytes == 300

    def test_invalid_budget(self):
        """Verify a non-positive budget is rejected."""
        with pytest.raises(ValueError):
            ScratchArena(max_bytes=0)
