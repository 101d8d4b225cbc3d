"""Runtime configuration with FLASHER_* environment overrides."""

import logging
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from flasher.models.status import FlashStage


class FlasherConfig(BaseSettings):
    """Service configuration.

    Every field can be overridden by an environment variable named
    ``FLASHER_<FIELD_NAME>`` (e.g. ``FLASHER_PORT=8080``,
    ``FLASHER_TIMEOUT_WRITE=300``). Constructor arguments win over the
    environment.
    """

    model_config = SettingsConfigDict(
        env_prefix="FLASHER_",
        case_sensitive=False,
        extra="ignore",
    )

    host: str = Field("0.0.0.0", description="HTTP bind address")
    port: int = Field(12316, gt=0, lt=65536, description="HTTP port")
    log_file: str = Field("./logs/flasher.log", description="Rotating log file")
    log_level: str = Field("INFO", description="DEBUG/INFO/WARNING/ERROR")
    firmware_dir: str = Field("./firmware", description="Directory holding preset images")
    report_url: Optional[str] = Field(
        None, pattern=r"^https?://.+", description="Event sink base URL (disabled if unset)"
    )
    hotplug_poll_interval: float = Field(1.0, gt=0, description="Seconds between USB scans")
    connect_step_interval: float = Field(
        0.2, ge=0, description="Seconds between 10% connection progress steps"
    )
    simulation_time_scale: float = Field(
        1.0, ge=0, description="Multiplier for simulated stage durations"
    )

    # Per-stage ceilings in seconds
    timeout_erase: float = Field(30.0, gt=0)
    timeout_write: float = Field(120.0, gt=0)
    timeout_verify: float = Field(60.0, gt=0)
    timeout_reset: float = Field(10.0, gt=0)

    @property
    def stage_timeouts(self) -> dict[FlashStage, float]:
        return {stage: getattr(self, f"timeout_{stage.value}") for stage in FlashStage}

    @property
    def log_level_value(self) -> int:
        level = logging.getLevelName(self.log_level.upper())
        return level if isinstance(level, int) else logging.INFO


def load_config() -> FlasherConfig:
    """Build configuration from defaults plus FLASHER_* variables."""
    return FlasherConfig()
