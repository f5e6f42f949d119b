"""
Filter Parameters
=================

Immutable parameter snapshot consumed once per processing cycle.

Parameters:
    bilateral_d          -> smoothing radius (bilateral neighbourhood)
    sigma_color          -> bilateral color-space sigma
    sigma_space          -> bilateral coordinate-space sigma
    median_ksize         -> denoise (median) kernel size
    adaptive_block_size  -> adaptive threshold block size
    adaptive_c           -> adaptive threshold constant
    intensity            -> blend weight of the cartoon result [0, 1]

All kernel sizes must be odd and >= 3. This holds for the configured
values and, via the quality controller, for every tier-scaled copy.
"""

from typing import Dict

from pydantic import BaseModel, ConfigDict, Field, field_validator


MIN_KERNEL_SIZE = 3


class FilterParameters(BaseModel):
    """
    Cartoon filter parameters.

    Frozen so a snapshot taken at tick start cannot change mid-cycle.
    Defaults match the "normal" preset.
    """

    model_config = ConfigDict(frozen=True)

    bilateral_d: int = Field(
        default=7,
        ge=MIN_KERNEL_SIZE,
        description="Bilateral filter neighbourhood diameter (odd)",
    )
    sigma_color: float = Field(
        default=75.0,
        gt=0,
        description="Bilateral filter sigma in color space",
    )
    sigma_space: float = Field(
        default=75.0,
        gt=0,
        description="Bilateral filter sigma in coordinate space",
    )
    median_ksize: int = Field(
        default=5,
        ge=MIN_KERNEL_SIZE,
        description="Median blur kernel size (odd)",
    )
    adaptive_block_size: int = Field(
        default=9,
        ge=MIN_KERNEL_SIZE,
        description="Adaptive threshold block size (odd)",
    )
    adaptive_c: float = Field(
        default=2.0,
        ge=0,
        description="Constant subtracted from the local mean",
    )
    intensity: float = Field(
        default=1.0,
        ge=0.0,
        le=1.0,
        description="Cartoon strength (0 = passthrough, 1 = full effect)",
    )

    @field_validator("bilateral_d", "median_ksize", "adaptive_block_size")
    @classmethod
    def _kernel_must_be_odd(cls, value: int) -> int:
        if value % 2 == 0:
            raise ValueError(f"kernel size must be odd, got {value}")
        return value

    @classmethod
    def preset(cls, name: str) -> "FilterParameters":
        """
        Look up a named preset.

        Args:
            name: One of "soft", "normal", "strong", "sketch"

        Returns:
            FilterParameters for the preset

        Raises:
            ValueError: If the preset name is unknown
        """
        try:
            return FILTER_PRESETS[name.lower()]
        except KeyError:
            raise ValueError(
                f"Unknown filter preset: {name!r} "
                f"(available: {', '.join(sorted(FILTER_PRESETS))})"
            ) from None


FILTER_PRESETS: Dict[str, FilterParameters] = {
    "soft": FilterParameters(
        bilateral_d=15,
        sigma_color=120,
        sigma_space=120,
        median_ksize=7,
        adaptive_block_size=11,
        adaptive_c=3,
        intensity=0.6,
    ),
    "normal": FilterParameters(),
    "strong": FilterParameters(
        bilateral_d=5,
        sigma_color=50,
        sigma_space=50,
        median_ksize=3,
        adaptive_block_size=7,
        adaptive_c=1,
        intensity=1.0,
    ),
    "sketch": FilterParameters(
        bilateral_d=3,
        sigma_color=30,
        sigma_space=30,
        median_ksize=3,
        adaptive_block_size=5,
        adaptive_c=0,
        intensity=1.0,
    ),
}
