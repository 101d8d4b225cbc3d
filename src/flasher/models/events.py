"""Events delivered to presentation adapters."""

from typing import Literal, Optional, Union
from pydantic import BaseModel, Field

from flasher.models.device import DeviceDescriptor
from flasher.models.status import ConnectionState, FlashStage, OutcomeKind


class FlashOutcome(BaseModel):
    """Terminal outcome of a flash session.

    For failures, ``kind`` is the error code, ``stage`` the stage that was
    running and ``cause`` a short diagnostic.
    """

    result: OutcomeKind
    kind: Optional[str] = None
    stage: Optional[FlashStage] = None
    cause: Optional[str] = None


class ConnectionStateChanged(BaseModel):
    type: Literal["connection_state_changed"] = "connection_state_changed"
    state: ConnectionState


class ConnectionProgress(BaseModel):
    type: Literal["connection_progress"] = "connection_progress"
    percent: int = Field(..., ge=0, le=100)


class FlashStageStarted(BaseModel):
    type: Literal["flash_stage_started"] = "flash_stage_started"
    session_id: str
    stage: FlashStage


class FlashProgress(BaseModel):
    type: Literal["flash_progress"] = "flash_progress"
    session_id: str
    percent: int = Field(..., ge=0, le=100)


class FlashCompleted(BaseModel):
    type: Literal["flash_completed"] = "flash_completed"
    session_id: str
    outcome: FlashOutcome


class LogLine(BaseModel):
    type: Literal["log_line"] = "log_line"
    text: str


class DeviceAttached(BaseModel):
    type: Literal["device_attached"] = "device_attached"
    device: DeviceDescriptor


class DeviceDetached(BaseModel):
    type: Literal["device_detached"] = "device_detached"
    device: DeviceDescriptor


FlasherEvent = Union[
    ConnectionStateChanged,
    ConnectionProgress,
    FlashStageStarted,
    FlashProgress,
    FlashCompleted,
    LogLine,
    DeviceAttached,
    DeviceDetached,
]
