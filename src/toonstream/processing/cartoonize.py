"""
Cartoonize Stage
================

One full stylization pass over one frame buffer.

Pipeline (fixed composition):
    1. Normalize channels to 3-channel color
    2. Edge-preserving smoothing (bilateral)    -> flattened color
    3. Luminance + median denoise
    4. Adaptive threshold -> edge mask, expanded to 3 channels
    5. Flattened color AND edge mask            -> cartoon
    6. Blend normalized color (1 - intensity) with cartoon (intensity)

Key Design Decisions:
    - intensity == 0 short-circuits after step 1; no filtering runs
    - The blend mixes the NORMALIZED ORIGINAL with the cartoon, not the
      smoothed buffer, so low intensities keep the source detail
    - Any primitive failure returns an unmodified copy of the input
      (passthrough fallback); partial buffers never escape
    - Intermediates live in a ScratchArena released before return; when
      the caller passes its own arena, a child scope shares that budget
"""

import logging
from dataclasses import dataclass
from typing import Optional

import numpy as np

from toonstream.errors import ScratchAllocationError
from toonstream.models.filters import FilterParameters
from toonstream.processing.primitives import ImagePrimitives
from toonstream.processing.scratch import ScratchArena


logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True, eq=False)
class StageResult:
    """
    Output of one CartoonizeStage invocation.

    Attributes:
        image: Stylized buffer (or passthrough copy on fallback)
        fallback: True if a primitive failed and the input was returned
        error: Failure description when fallback is True
    """

    image: np.ndarray
    fallback: bool = False
    error: Optional[str] = None


class CartoonizeStage:
    """
    Cartoon stylization stage.

    Stateless with respect to the images it processes; only counters
    are kept for observability.

    Attributes:
        primitives: Image primitive backend
        scratch_budget: Byte budget for intermediates when no arena is passed

    Example:
        stage = CartoonizeStage(OpenCVPrimitives())
        result = stage.process(image, FilterParameters.preset("normal"))
        if result.fallback:
            print(result.error)
    """

    def __init__(
        self,
        primitives: ImagePrimitives,
        scratch_budget: Optional[int] = None,
    ) -> None:
        self.primitives = primitives
        self.scratch_budget = scratch_budget

        self._invocations: int = 0
        self._fallbacks: int = 0
        self._last_error: Optional[str] = None
        self._released_buffers: int = 0

    def process(
        self,
        image: np.ndarray,
        params: FilterParameters,
        arena: Optional[ScratchArena] = None,
    ) -> StageResult:
        """
        Stylize one buffer.

        Args:
            image: Input buffer at processing resolution (not mutated)
            params: Filter parameters for this cycle (already tier-scaled)
            arena: Caller's arena; intermediates are held in a child
                scope counted against its budget

        Returns:
            StageResult with a buffer of the same width and height

        Raises:
            ScratchAllocationError: If scratch memory is exhausted
        """
        self._invocations += 1
        p = self.primitives

        scope = arena.scope() if arena is not None else ScratchArena(self.scratch_budget)

        with scope as arena:
            try:
                color = arena.track(p.to_color3(image))

                if params.intensity == 0:
                    return StageResult(image=arena.detach(color))

                flattened = arena.track(
                    p.edge_preserve_smooth(
                        color,
                        params.bilateral_d,
                        params.sigma_color,
                        params.sigma_space,
                    )
                )

                gray = arena.track(p.to_gray(color))
                denoised = arena.track(p.denoise(gray, params.median_ksize))

                edges = arena.track(
                    p.adaptive_binarize(
                        denoised,
                        params.adaptive_block_size,
                        params.adaptive_c,
                    )
                )
                edge_mask = arena.track(p.gray_to_color3(edges))

                cartoon = arena.track(p.bitwise_and(flattened, edge_mask))

                if params.intensity < 1.0:
                    blended = p.weighted_blend(
                        color,
                        1.0 - params.intensity,
                        cartoon,
                        params.intensity,
                    )
                    return StageResult(image=arena.detach(arena.track(blended)))

                return StageResult(image=arena.detach(cartoon))

            except MemoryError as e:
                raise ScratchAllocationError(f"Out of memory during cartoonize: {e}") from e
            except ScratchAllocationError:
                raise
            except Exception as e:
                self._fallbacks += 1
                self._last_error = f"{type(e).__name__}: {e}"
                logger.warning(
                    f"Cartoonize failed, using passthrough "
                    f"(fallbacks={self._fallbacks}): {self._last_error}"
                )
                passthrough = arena.detach(arena.track(image.copy()))
                return StageResult(image=passthrough, fallback=True, error=self._last_error)
            finally:
                self._released_buffers += arena.live_count

    @property
    def invocations(self) -> int:
        """Number of process() calls."""
        return self._invocations

    @property
    def fallbacks(self) -> int:
        """Number of passthrough fallbacks."""
        return self._fallbacks

    @property
    def last_error(self) -> Optional[str]:
        return self._last_error

    def get_metrics(self) -> dict:
        """Get stage metrics for observability."""
        return {
            "invocations": self._invocations,
            "fallbacks": self._fallbacks,
            "last_error": self._last_error,
            "released_buffers": self._released_buffers,
        }
