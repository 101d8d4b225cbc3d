"""Pydantic models for HTTP API requests and responses."""

from typing import Optional
from pydantic import BaseModel, Base64Bytes, Field

from flasher.models.snapshot import StatusData


class ConnectRequest(BaseModel):
    """POST /api/v1.0/connect payload.

    Both fields are optional; without them the first matching device is used.

    Example:
        {
            "serial_number": "3276385A3036",
            "product_id": 57105
        }
    """

    serial_number: Optional[str] = Field(
        None, description="Pick the device with this serial number"
    )
    product_id: Optional[int] = Field(
        None, ge=0, le=0xFFFF, description="Pick a device in this USB mode",
        examples=[0xDF11, 0x5740],
    )


class FirmwareRequest(BaseModel):
    """POST /api/v1.0/firmware payload.

    Either a preset name, or a filename plus base64-encoded image.

    Example:
        {"preset": "v1.0.0"}
        {"filename": "custom.bin", "data": "AAECAw=="}
    """

    preset: Optional[str] = Field(None, examples=["v1.0.0"])
    filename: Optional[str] = Field(None, examples=["custom.bin"])
    data: Optional[Base64Bytes] = Field(None, description="Base64-encoded image")


class StatusResponse(BaseModel):
    """GET /api/v1.0/status response."""

    code: int = Field(..., description="Application-level status code")
    msg: str = Field(..., description="Status message")
    data: StatusData


class SuccessResponse(BaseModel):
    """Success envelope for command endpoints."""

    code: int = Field(default=200, description="Application-level status code (200)")
    msg: str = Field(default="success", description="Success message")
    data: Optional[dict] = Field(None, description="Optional response data")


class ErrorResponse(BaseModel):
    """Error envelope for all endpoints.

    HTTP status code is always 200, real status in 'code' field.
    """

    code: int = Field(
        ..., description="Application-level error code (400/404/409/410/500)"
    )
    msg: str = Field(..., description="Error message with error code prefix")
    kind: Optional[str] = Field(None, description="Error kind (e.g. SESSION_BUSY)")
    data: Optional[dict] = Field(None, description="Structured error: kind, stage, cause")
