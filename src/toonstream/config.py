"""
Toonstream Configuration
========================

This module handles configuration loading for the cartoon stream service.

Configuration Sources (in order of precedence):
    1. Environment variables (highest priority)
    2. config.yaml file
    3. Default values (lowest priority)

Environment Variable Mapping:
    TOON_SOURCE_URI        -> source.uri
    TOON_PRESET            -> filters.preset
    TOON_DEVICE_CLASS      -> quality.device_class
    TOON_INITIAL_TIER      -> quality.initial_tier
    TOON_REFRESH_HZ        -> loop.refresh_hz
    TOON_PORT              -> server.port
    TOON_LOG_LEVEL         -> logging.level
    PORT                   -> server.port (Cloud Run)

Example:
    from toonstream.config import settings

    print(settings.source.uri)
    print(settings.quality.high_latency_ms)
    print(settings.filters.to_parameters())
"""

import os
import logging
from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator

from toonstream.models.filters import FilterParameters
from toonstream.models.quality import DeviceClass, QualityTier


logger = logging.getLogger(__name__)


# =============================================================================
# Configuration Models
# =============================================================================

class ServiceConfig(BaseModel):
    """Service identification configuration."""

    name: str = Field(default="toonstream", description="Service name")
    version: str = Field(default="v0.1.0", description="Service version")


class SourceConfig(BaseModel):
    """Video source configuration."""

    uri: str = Field(
        default="0",
        description="Camera index, video file path or stream URL",
    )
    requested_width: Optional[int] = Field(
        default=None,
        ge=1,
        description="Capture width hint (None = device default)",
    )
    requested_height: Optional[int] = Field(
        default=None,
        ge=1,
        description="Capture height hint (None = device default)",
    )
    reopen_interval_seconds: float = Field(
        default=2.0,
        gt=0,
        description="Delay between attempts to open the source",
    )


class FilterConfig(FilterParameters):
    """
    Cartoon filter configuration.

    Carries every FilterParameters field. When `preset` is set in the
    YAML (stored as `preset_name`), the named preset replaces the
    individual fields.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    preset_name: Optional[str] = Field(
        default=None,
        alias="preset",
        description="Preset name: soft, normal, strong or sketch",
    )

    @field_validator("preset_name")
    @classmethod
    def _preset_must_exist(cls, value: Optional[str]) -> Optional[str]:
        if value is not None:
            FilterParameters.preset(value)
        return value

    def to_parameters(self) -> FilterParameters:
        """Resolve to the FilterParameters snapshot used by the loop."""
        if self.preset_name is not None:
            return FilterParameters.preset(self.preset_name)
        return FilterParameters.model_validate(self.model_dump(exclude={"preset_name"}))


class QualityConfig(BaseModel):
    """Adaptive quality control configuration."""

    device_class: str = Field(
        default="auto",
        description="Device class: 'auto', 'constrained' or 'unconstrained'",
    )
    constrained_cpu_threshold: int = Field(
        default=4,
        ge=1,
        description="Hosts with this many CPUs or fewer are constrained (auto)",
    )
    initial_tier: Optional[QualityTier] = Field(
        default=None,
        description="Initial tier (None = seed from device class)",
    )
    high_latency_ms: float = Field(
        default=100.0,
        gt=0,
        description="Processing time above which frame skip is raised",
    )
    low_latency_ms: float = Field(
        default=50.0,
        gt=0,
        description="Processing time below which frame skip is lowered",
    )
    max_frame_skip: int = Field(
        default=4,
        ge=1,
        le=4,
        description="Upper bound for frame skip",
    )
    history_size: int = Field(
        default=30,
        ge=1,
        description="Rolling latency history length",
    )

    @field_validator("device_class")
    @classmethod
    def _valid_device_class(cls, value: str) -> str:
        value = value.lower()
        if value != "auto" and value not in {d.value for d in DeviceClass}:
            raise ValueError(f"Unknown device class: {value}")
        return value

    def resolve_device_class(self) -> DeviceClass:
        """Return the configured device class, detecting it when 'auto'."""
        if self.device_class == "auto":
            return DeviceClass.detect(self.constrained_cpu_threshold)
        return DeviceClass(self.device_class)


class LoopConfig(BaseModel):
    """Frame loop scheduling configuration."""

    refresh_hz: float = Field(
        default=60.0,
        gt=0,
        le=240,
        description="Scheduling opportunities per second",
    )
    log_every_n_frames: int = Field(
        default=30,
        ge=1,
        description="Status logging interval in processed frames",
    )
    scratch_budget_mb: Optional[float] = Field(
        default=None,
        gt=0,
        description="Per-tick scratch memory budget in MiB (None = unbounded)",
    )

    @property
    def scratch_budget_bytes(self) -> Optional[int]:
        if self.scratch_budget_mb is None:
            return None
        return int(self.scratch_budget_mb * 1024 * 1024)


class ServerConfig(BaseModel):
    """Server configuration."""

    host: str = Field(default="0.0.0.0", description="Bind host")
    port: int = Field(default=8001, ge=1, le=65535, description="Bind port")
    jpeg_quality: int = Field(default=85, ge=1, le=100, description="Snapshot JPEG quality")


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = Field(default="INFO", description="Log level")
    format: str = Field(default="json", description="Log format: json or text")


class Settings(BaseModel):
    """
    Main settings class for Toonstream.

    Loads configuration from YAML file and environment variables.
    Environment variables take precedence over file values.
    """

    service: ServiceConfig = Field(default_factory=ServiceConfig)
    source: SourceConfig = Field(default_factory=SourceConfig)
    filters: FilterConfig = Field(default_factory=FilterConfig)
    quality: QualityConfig = Field(default_factory=QualityConfig)
    loop: LoopConfig = Field(default_factory=LoopConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


# =============================================================================
# Configuration Loading
# =============================================================================

def load_config(config_path: Optional[str] = None) -> Settings:
    """
    Load configuration from YAML file and environment variables.

    Priority (highest to lowest):
        1. Environment variables
        2. YAML config file
        3. Default values

    Args:
        config_path: Path to config.yaml. If None, searches common locations.

    Returns:
        Settings: Loaded configuration
    """
    # Find config file
    if config_path is None:
        search_paths = [
            Path("config.yaml"),
            Path("config.yml"),
            Path(__file__).parent.parent.parent / "config.yaml",
        ]
        for path in search_paths:
            if path.exists():
                config_path = str(path)
                break

    # Load from YAML if exists
    config_data = {}
    if config_path and Path(config_path).exists():
        logger.info(f"Loading config from: {config_path}")
        with open(config_path, "r") as f:
            config_data = yaml.safe_load(f) or {}
    else:
        logger.warning("No config file found, using defaults and environment variables")

    # Apply environment variable overrides
    _apply_env_overrides(config_data)

    # Build settings object
    settings = Settings.model_validate(config_data)

    return settings


def _apply_env_overrides(config_data: dict) -> None:
    """Apply environment variable overrides to config data."""

    # Source settings
    if env_uri := os.environ.get("TOON_SOURCE_URI"):
        config_data.setdefault("source", {})["uri"] = env_uri

    # Filter settings
    if env_preset := os.environ.get("TOON_PRESET"):
        config_data.setdefault("filters", {})["preset"] = env_preset

    # Quality settings
    if env_device := os.environ.get("TOON_DEVICE_CLASS"):
        config_data.setdefault("quality", {})["device_class"] = env_device
    if env_tier := os.environ.get("TOON_INITIAL_TIER"):
        config_data.setdefault("quality", {})["initial_tier"] = env_tier.lower()

    # Loop settings
    if env_hz := os.environ.get("TOON_REFRESH_HZ"):
        config_data.setdefault("loop", {})["refresh_hz"] = float(env_hz)

    # Server settings (Cloud Run uses PORT env var)
    if env_port := os.environ.get("PORT"):
        config_data.setdefault("server", {})["port"] = int(env_port)
    elif env_port := os.environ.get("TOON_PORT"):
        config_data.setdefault("server", {})["port"] = int(env_port)

    # Logging settings
    if env_log := os.environ.get("TOON_LOG_LEVEL"):
        config_data.setdefault("logging", {})["level"] = env_log


def setup_logging(settings: Settings) -> None:
    """Configure logging based on settings."""
    log_level = getattr(logging, settings.logging.level.upper(), logging.INFO)

    if settings.logging.format == "json":
        log_format = '{"time": "%(asctime)s", "level": "%(levelname)s", "module": "%(name)s", "message": "%(message)s"}'
    else:
        log_format = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    logging.basicConfig(
        level=log_level,
        format=log_format,
        datefmt="%Y-%m-%dT%H:%M:%S",
    )


# =============================================================================
# Global Settings Instance
# =============================================================================

# Global settings instance - loaded on import
settings = load_config()
setup_logging(settings)
