"""API route handlers for flasher commands and status."""

import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from flasher.api.models import (
    ConnectRequest,
    FirmwareRequest,
    StatusResponse,
    SuccessResponse,
    ErrorResponse,
)
from flasher.models.errors import FlasherError
from flasher.models.firmware import FirmwareSource, FlashOptions
from flasher.models.status import OutcomeKind
from flasher.services.controller import FlasherController

router = APIRouter(prefix="/api/v1.0")
logger = logging.getLogger("flasher.api")


def get_controller(request: Request) -> FlasherController:
    return request.app.state.controller


def _success(data=None) -> JSONResponse:
    return JSONResponse(
        status_code=200,
        content={"code": 200, "msg": "success", "data": data},
    )


def _error(e: FlasherError) -> JSONResponse:
    body = ErrorResponse(code=e.code, msg=e.message, kind=e.kind, data=e.to_dict())
    return JSONResponse(status_code=200, content=body.model_dump(mode="json"))


@router.get("/status", response_model=StatusResponse)
async def get_status(controller: FlasherController = Depends(get_controller)):
    """GET /api/v1.0/status - Query connection and flash status.

    Response format (flash failed):
        {
            "code": 500,
            "msg": "Flash failed: STAGE_FAILED",
            "data": {
                "connection_state": "connected",
                "flash_stage": "write",
                "flash_progress": 40,
                "outcome": {"result": "failed", "kind": "STAGE_FAILED",
                            "stage": "write", "cause": "TransportError: ..."},
                ...
            }
        }
    """
    status = controller.status()
    if status.outcome is not None and status.outcome.result == OutcomeKind.FAILED:
        return StatusResponse(code=500, msg=f"Flash failed: {status.outcome.kind}", data=status)
    return StatusResponse(code=200, msg="success", data=status)


@router.get("/devices", response_model=SuccessResponse)
async def get_devices(controller: FlasherController = Depends(get_controller)):
    """GET /api/v1.0/devices - List attached devices matching the filter table.

    An empty list also covers hosts without USB access.
    """
    devices = await controller.list_devices()
    return _success({"devices": [d.model_dump(mode="json") for d in devices]})


@router.get("/firmware/presets", response_model=SuccessResponse)
async def get_presets(controller: FlasherController = Depends(get_controller)):
    """GET /api/v1.0/firmware/presets - Preset table with availability."""
    store = controller.firmware_store
    presets = [
        {**p.model_dump(), "available": store.is_available(p.name)}
        for p in store.presets()
    ]
    return _success({"presets": presets})


@router.post("/connect", response_model=SuccessResponse)
async def post_connect(
    request: ConnectRequest, controller: FlasherController = Depends(get_controller)
):
    """POST /api/v1.0/connect - Open a matching device.

    Returns:
        Device descriptor and degraded flag on success; CONNECTION_FAILED or
        DEVICE_ALREADY_OPEN otherwise
    """
    try:
        handle = await controller.connect(
            serial_number=request.serial_number, product_id=request.product_id
        )
    except FlasherError as e:
        return _error(e)

    return _success(
        {
            "device": handle.descriptor.model_dump(mode="json"),
            "degraded": handle.degraded,
            "warning": handle.warning.to_dict() if handle.warning else None,
        }
    )


@router.post("/firmware", response_model=SuccessResponse)
async def post_firmware(
    request: FirmwareRequest, controller: FlasherController = Depends(get_controller)
):
    """POST /api/v1.0/firmware - Select a preset or upload a custom image."""
    try:
        source = FirmwareSource(
            preset=request.preset, blob=request.data, filename=request.filename
        )
    except ValidationError as e:
        logger.warning(f"Rejected firmware selection: {e.errors()[0]['msg']}")
        return JSONResponse(
            status_code=200,
            content={"code": 400, "msg": f"Invalid firmware selection: {e.errors()[0]['msg']}"},
        )

    controller.select_firmware(source)
    return _success({"firmware": source.display_name, "preset": source.is_preset})


@router.put("/options", response_model=SuccessResponse)
async def put_options(
    options: FlashOptions, controller: FlasherController = Depends(get_controller)
):
    """PUT /api/v1.0/options - Set flash options for the next run.

    Example:
        {"eraseBeforeWrite": true, "verifyAfterWrite": true, "resetAfterFlash": false}
    """
    controller.set_options(options)
    return _success(options.model_dump(by_alias=True))


@router.post("/flash", response_model=SuccessResponse)
async def post_flash(controller: FlasherController = Depends(get_controller)):
    """POST /api/v1.0/flash - Start flashing in the background.

    Progress is available from GET /status and the event stream.
    """
    try:
        session = await controller.start_flash()
    except FlasherError as e:
        return _error(e)

    return _success(
        {"session_id": session.id, "stages": [s.value for s in session.stages]}
    )


@router.post("/cancel", response_model=SuccessResponse)
async def post_cancel(controller: FlasherController = Depends(get_controller)):
    """POST /api/v1.0/cancel - Cancel the running session at the next stage boundary."""
    if not controller.cancel():
        return JSONResponse(
            status_code=200,
            content={"code": 409, "msg": "No flash session running"},
        )
    return _success()


@router.post("/disconnect", response_model=SuccessResponse)
async def post_disconnect(controller: FlasherController = Depends(get_controller)):
    """POST /api/v1.0/disconnect - Close the connection (idempotent)."""
    await controller.disconnect()
    return _success({"state": controller.connection.state.value})
