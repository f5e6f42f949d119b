"""
Quality Models
==============

Quality tiers and device classes.

Tiers:
    HIGH   -> process at native resolution (scale 1.0)
    MEDIUM -> process at 3/4 resolution (scale 0.75)
    LOW    -> process at 1/2 resolution (scale 0.5)

Explicit tier requests cycle HIGH -> MEDIUM -> LOW -> HIGH.
"""

import logging
import os
from enum import Enum


logger = logging.getLogger(__name__)


class QualityTier(str, Enum):
    """
    Named processing quality level.

    Controls the processing resolution and the derived
    filter-parameter scaling applied before each cycle.
    """

    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def scale(self) -> float:
        """Processing-resolution scale factor."""
        return _TIER_SCALES[self]

    def next(self) -> "QualityTier":
        """Next tier in the HIGH -> MEDIUM -> LOW -> HIGH cycle."""
        order = list(QualityTier)
        return order[(order.index(self) + 1) % len(order)]


_TIER_SCALES = {
    QualityTier.HIGH: 1.0,
    QualityTier.MEDIUM: 0.75,
    QualityTier.LOW: 0.5,
}


class DeviceClass(str, Enum):
    """
    Runtime context class.

    Only CONSTRAINED devices raise frame skip on high latency.
    """

    CONSTRAINED = "constrained"
    UNCONSTRAINED = "unconstrained"

    @classmethod
    def detect(cls, cpu_threshold: int = 4) -> "DeviceClass":
        """
        Classify the host by its CPU count.

        Args:
            cpu_threshold: Hosts with this many CPUs or fewer are constrained

        Returns:
            Detected device class
        """
        cpus = os.cpu_count() or 1
        device_class = cls.CONSTRAINED if cpus <= cpu_threshold else cls.UNCONSTRAINED
        logger.info(f"Detected device class: {device_class.value} ({cpus} CPUs)")
        return device_class
