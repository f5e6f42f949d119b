"""
Quality Controller
==================

Closed-loop frame-skip control driven by measured processing latency.

This controller:
    - Holds the current QualityTier and FrameSkip
    - Records one latency sample per processed (non-skipped) cycle
    - Raises FrameSkip on constrained devices when a cycle is slow
    - Lowers FrameSkip when a cycle is fast
    - Applies explicit tier requests only at the start of a cycle
    - Scales kernel parameters down for MEDIUM / LOW tiers

Control Rule (per recorded cycle):
    constrained AND elapsed > high_latency_ms  -> skip = min(skip + 1, max)
    elif elapsed < low_latency_ms AND skip > 1 -> skip = skip - 1
    else                                       -> unchanged

Tier is NOT adjusted automatically by latency. It changes only on
explicit request or by one-time seeding from the device class.
"""

import logging
import math
from typing import Optional

from toonstream.models.filters import MIN_KERNEL_SIZE, FilterParameters
from toonstream.models.quality import DeviceClass, QualityTier
from toonstream.models.stats import CycleStats, PipelineConfig


logger = logging.getLogger(__name__)


MIN_FRAME_SKIP = 1


def _odd_kernel(value: float) -> int:
    """Round down to an odd integer, floored at the minimum kernel size."""
    k = int(math.floor(value))
    if k % 2 == 0:
        k -= 1
    return max(MIN_KERNEL_SIZE, k)


def scale_parameters(params: FilterParameters, tier: QualityTier) -> FilterParameters:
    """
    Derive tier-scaled filter parameters.

    HIGH:   unchanged
    MEDIUM: bilateral_d and median_ksize x 0.75
    LOW:    bilateral_d, median_ksize and adaptive_block_size halved

    Every scaled kernel stays odd and >= 3 (e.g. LOW 7 -> 3, MEDIUM 9 -> 5).

    Args:
        params: Configured parameters
        tier: Tier in effect for the cycle

    Returns:
        New FilterParameters (the input is never modified)
    """
    if tier is QualityTier.HIGH:
        return params

    if tier is QualityTier.MEDIUM:
        return params.model_copy(update={
            "bilateral_d": _odd_kernel(params.bilateral_d * 0.75),
            "median_ksize": _odd_kernel(params.median_ksize * 0.75),
        })

    return params.model_copy(update={
        "bilateral_d": _odd_kernel(params.bilateral_d / 2),
        "median_ksize": _odd_kernel(params.median_ksize / 2),
        "adaptive_block_size": _odd_kernel(params.adaptive_block_size / 2),
    })


class QualityController:
    """
    Adaptive quality / frame-skip controller.

    Owned and mutated by the FrameLoop only. External callers may
    request tier changes; those are held as pending and applied by
    begin_cycle() so nothing changes while a cycle is in flight.

    Attributes:
        device_class: Runtime context (only CONSTRAINED raises skip)
        high_latency_ms: Latency above which skip is raised
        low_latency_ms: Latency below which skip is lowered
        max_frame_skip: Upper bound for frame skip

    Example:
        controller = QualityController(DeviceClass.CONSTRAINED)

        config = controller.begin_cycle(params)
        ...run the cycle...
        controller.record_cycle(elapsed_ms=120.0)
    """

    def __init__(
        self,
        device_class: DeviceClass,
        high_latency_ms: float = 100.0,
        low_latency_ms: float = 50.0,
        max_frame_skip: int = 4,
        history_size: int = 30,
        initial_tier: Optional[QualityTier] = None,
        initial_frame_skip: Optional[int] = None,
    ) -> None:
        """
        Initialize controller and seed tier/skip from the device class.

        Args:
            device_class: Constrained or unconstrained runtime
            high_latency_ms: Threshold for raising frame skip
            low_latency_ms: Threshold for lowering frame skip
            max_frame_skip: Frame skip cap (>= 1)
            history_size: Rolling latency history length
            initial_tier: Overrides device-class tier seeding
            initial_frame_skip: Overrides device-class skip seeding

        Raises:
            ValueError: If thresholds or bounds are invalid
        """
        if max_frame_skip < MIN_FRAME_SKIP:
            raise ValueError(f"max_frame_skip must be >= {MIN_FRAME_SKIP}")
        if low_latency_ms > high_latency_ms:
            raise ValueError("low_latency_ms must be <= high_latency_ms")

        self.device_class = device_class
        self.high_latency_ms = high_latency_ms
        self.low_latency_ms = low_latency_ms
        self.max_frame_skip = max_frame_skip

        # Seeding happens once, here
        if device_class is DeviceClass.CONSTRAINED:
            seeded_tier, seeded_skip = QualityTier.LOW, 2
        else:
            seeded_tier, seeded_skip = QualityTier.HIGH, 1

        self._tier: QualityTier = initial_tier or seeded_tier
        self._frame_skip: int = self._clamp_skip(
            initial_frame_skip if initial_frame_skip is not None else seeded_skip
        )
        self._pending_tier: Optional[QualityTier] = None
        self._stats = CycleStats(history_size=history_size)

        logger.info(
            f"QualityController initialized: device={device_class.value}, "
            f"tier={self._tier.value}, frame_skip={self._frame_skip}, "
            f"thresholds={low_latency_ms:.0f}/{high_latency_ms:.0f}ms"
        )

    @property
    def tier(self) -> QualityTier:
        return self._tier

    @property
    def frame_skip(self) -> int:
        return self._frame_skip

    @property
    def pending_tier(self) -> Optional[QualityTier]:
        return self._pending_tier

    @property
    def is_constrained(self) -> bool:
        return self.device_class is DeviceClass.CONSTRAINED

    @property
    def last_latency_ms(self) -> Optional[float]:
        return self._stats.last_ms

    def request_tier(self, tier: QualityTier) -> None:
        """Request a tier; applied at the start of the next cycle."""
        self._pending_tier = tier
        logger.info(f"Tier change requested: {self._effective_tier().value} -> {tier.value}")

    def cycle_tier(self) -> QualityTier:
        """
        Request the next tier in the HIGH -> MEDIUM -> LOW cycle.

        Returns:
            The tier that will be in effect from the next cycle.
        """
        target = self._effective_tier().next()
        self.request_tier(target)
        return target

    def begin_cycle(
        self,
        params: FilterParameters,
        show_original: bool = False,
    ) -> PipelineConfig:
        """
        Apply pending requests and snapshot the cycle configuration.

        Args:
            params: Configured (unscaled) filter parameters
            show_original: Bypass stylization for this cycle

        Returns:
            PipelineConfig with tier-scaled parameters
        """
        if self._pending_tier is not None:
            if self._pending_tier is not self._tier:
                logger.info(f"Quality tier: {self._tier.value} -> {self._pending_tier.value}")
            self._tier = self._pending_tier
            self._pending_tier = None

        return PipelineConfig(
            params=scale_parameters(params, self._tier),
            tier=self._tier,
            frame_skip=self._frame_skip,
            show_original=show_original,
        )

    def record_cycle(self, elapsed_ms: float) -> int:
        """
        Record a processed cycle's latency and adjust frame skip.

        Args:
            elapsed_ms: Wall-clock processing time of the cycle

        Returns:
            Frame skip in effect for following cycles
        """
        self._stats.record(elapsed_ms)
        previous = self._frame_skip

        if self.is_constrained and elapsed_ms > self.high_latency_ms:
            self._frame_skip = min(self.max_frame_skip, self._frame_skip + 1)
        elif elapsed_ms < self.low_latency_ms and self._frame_skip > MIN_FRAME_SKIP:
            self._frame_skip = max(MIN_FRAME_SKIP, self._frame_skip - 1)

        if self._frame_skip != previous:
            logger.info(
                f"Processing time {elapsed_ms:.1f}ms - "
                f"frame skip {previous} -> {self._frame_skip}"
            )

        return self._frame_skip

    def get_metrics(self) -> dict:
        """Get controller metrics for observability."""
        return {
            "device_class": self.device_class.value,
            "tier": self._tier.value,
            "pending_tier": self._pending_tier.value if self._pending_tier else None,
            "frame_skip": self._frame_skip,
            **self._stats.to_dict(),
        }

    def _effective_tier(self) -> QualityTier:
        return self._pending_tier or self._tier

    def _clamp_skip(self, value: int) -> int:
        return max(MIN_FRAME_SKIP, min(self.max_frame_skip, value))
