"""Status snapshot served by GET /status."""

from typing import Optional
from pydantic import BaseModel, Field

from flasher.models.device import DeviceDescriptor
from flasher.models.events import FlashOutcome
from flasher.models.firmware import FlashOptions
from flasher.models.status import ConnectionState, FlashStage


class StatusData(BaseModel):
    """Snapshot of connection and flash state."""

    connection_state: ConnectionState = Field(..., description="Connection manager state")
    connection_progress: int = Field(..., ge=0, le=100)
    device: Optional[DeviceDescriptor] = Field(None, description="Connected device")
    degraded: bool = Field(False, description="Interface claim failed on connect")
    firmware: Optional[str] = Field(None, description="Selected firmware name")
    options: FlashOptions = Field(default_factory=FlashOptions)
    session_id: Optional[str] = Field(None, description="Most recent flash session")
    flash_stage: Optional[FlashStage] = Field(None, description="Stage in progress or last run")
    flash_progress: int = Field(0, ge=0, le=100)
    outcome: Optional[FlashOutcome] = Field(None, description="Outcome of the last session")
    log: list[str] = Field(default_factory=list, description="Recent log lines")
