"""
Cycle Models
============

Per-cycle state records.

    - CycleStats: latency history owned by the QualityController
    - PipelineConfig: immutable snapshot read once at tick start
"""

from collections import deque
from dataclasses import dataclass
from typing import Deque, Optional

from toonstream.models.filters import FilterParameters
from toonstream.models.quality import QualityTier


class CycleStats:
    """
    Processing latency statistics.

    Holds the last measured latency and a short rolling history.
    Mutated once per completed cycle by the QualityController only.
    """

    __slots__ = ("_history", "last_ms", "cycles")

    def __init__(self, history_size: int = 30) -> None:
        if history_size < 1:
            raise ValueError("history_size must be >= 1")
        self._history: Deque[float] = deque(maxlen=history_size)
        self.last_ms: Optional[float] = None
        self.cycles: int = 0

    def record(self, elapsed_ms: float) -> None:
        """Add a latency sample."""
        self.last_ms = elapsed_ms
        self._history.append(elapsed_ms)
        self.cycles += 1

    @property
    def history(self) -> tuple:
        """Rolling history, oldest first."""
        return tuple(self._history)

    @property
    def mean_ms(self) -> Optional[float]:
        """Mean latency over the rolling history."""
        if not self._history:
            return None
        return sum(self._history) / len(self._history)

    @property
    def max_ms(self) -> Optional[float]:
        """Worst latency over the rolling history."""
        if not self._history:
            return None
        return max(self._history)

    def to_dict(self) -> dict:
        """Export as dictionary for logging/serialization."""
        return {
            "last_ms": round(self.last_ms, 2) if self.last_ms is not None else None,
            "mean_ms": round(self.mean_ms, 2) if self.mean_ms is not None else None,
            "max_ms": round(self.max_ms, 2) if self.max_ms is not None else None,
            "cycles": self.cycles,
        }


@dataclass(frozen=True, slots=True)
class PipelineConfig:
    """
    Configuration snapshot for one tick.

    Taken at the start of a processing cycle and never modified
    while the cycle runs.

    Attributes:
        params: Tier-scaled filter parameters for this cycle
        tier: Quality tier in effect
        frame_skip: Frame skip in effect
        show_original: Present the unfiltered frame instead
    """

    params: FilterParameters
    tier: QualityTier
    frame_skip: int
    show_original: bool = False

    def __repr__(self) -> str:
        return (
            f"PipelineConfig(tier={self.tier.value}, "
            f"frame_skip={self.frame_skip}, "
            f"intensity={self.params.intensity:.2f}, "
            f"show_original={self.show_original})"
        )
