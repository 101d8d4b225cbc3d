"""Integration tests for API routes (routes.py + main.py)."""

import time

import pytest
from unittest.mock import MagicMock, patch
from fastapi.testclient import TestClient

from flasher.config import FlasherConfig
from flasher.models.errors import TransportError
from flasher.services.controller import FlasherController
from flasher.services.programmer import SimulatedProgrammer


class FailingWriteProgrammer(SimulatedProgrammer):
    async def write(self, handle, payload, report):
        raise TransportError("Pipe error")


# -----------------------------------------------------------------------
# Fixtures
# -----------------------------------------------------------------------

@pytest.fixture
def config(firmware_dir, tmp_path):
    return FlasherConfig(
        firmware_dir=str(firmware_dir),
        log_file=str(tmp_path / "flasher.log"),
        hotplug_poll_interval=0.05,
        connect_step_interval=0,
        simulation_time_scale=0,
    )


@pytest.fixture
def client(config, fake_backend):
    """TestClient running the real lifespan against the fake USB backend."""
    from flasher.main import app

    controller = FlasherController(config, backend=fake_backend)

    with patch("flasher.main.setup_logger") as mock_log:
        mock_log.return_value = MagicMock()
        with patch("flasher.main.load_config", return_value=config):
            with patch("flasher.main.FlasherController", return_value=controller):
                with TestClient(app, raise_server_exceptions=True) as c:
                    yield c


def wait_for_outcome(client, timeout=5.0):
    """Poll GET /status until the flash session has an outcome."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        body = client.get("/api/v1.0/status").json()
        if body["data"]["outcome"] is not None:
            return body
        time.sleep(0.01)
    raise AssertionError("flash session did not finish")


def connect_and_select(client, preset="v1.0.0"):
    assert client.post("/api/v1.0/connect", json={}).json()["code"] == 200
    assert client.post("/api/v1.0/firmware", json={"preset": preset}).json()["code"] == 200


# -----------------------------------------------------------------------
# GET endpoints
# -----------------------------------------------------------------------

@pytest.mark.unit
class TestQueries:
    """GET /, /status, /devices, /firmware/presets"""

    def test_health(self, client):
        resp = client.get("/")

        assert resp.status_code == 200
        assert resp.json() == {"status": "ok", "service": "usb-flasher", "version": "1.0.0"}

    def test_initial_status(self, client):
        body = client.get("/api/v1.0/status").json()

        assert body["code"] == 200
        assert body["msg"] == "success"
        assert body["data"]["connection_state"] == "idle"
        assert body["data"]["device"] is None
        assert body["data"]["outcome"] is None

    def test_devices(self, client):
        body = client.get("/api/v1.0/devices").json()

        assert body["code"] == 200
        devices = body["data"]["devices"]
        assert len(devices) == 1
        assert devices[0]["vendor_id"] == 0x0483
        assert devices[0]["product_id"] == 0xDF11
        assert devices[0]["protocol_mode"] == "Bootloader"
        assert devices[0]["serial_number"] == "3276385A3036"

    def test_devices_without_usb_access(self, client, fake_backend):
        fake_backend.unavailable = True

        body = client.get("/api/v1.0/devices").json()

        assert body["code"] == 200
        assert body["data"]["devices"] == []

    def test_presets(self, client):
        body = client.get("/api/v1.0/firmware/presets").json()

        presets = {p["name"]: p for p in body["data"]["presets"]}
        assert presets["v1.0.0"]["available"] is True
        assert presets["v1.1.0-beta"]["available"] is False


# -----------------------------------------------------------------------
# Connection commands
# -----------------------------------------------------------------------

@pytest.mark.unit
class TestConnectCommands:
    """POST /connect, /disconnect"""

    def test_connect(self, client):
        body = client.post("/api/v1.0/connect", json={}).json()

        assert body["code"] == 200
        assert body["data"]["device"]["serial_number"] == "3276385A3036"
        assert body["data"]["degraded"] is False
        assert body["data"]["warning"] is None

        status = client.get("/api/v1.0/status").json()["data"]
        assert status["connection_state"] == "connected"
        assert status["connection_progress"] == 100

    def test_connect_degraded(self, client, fake_backend):
        fake_backend.fail_claim = TransportError("Resource busy")

        body = client.post("/api/v1.0/connect", json={}).json()

        assert body["code"] == 200
        assert body["data"]["degraded"] is True
        assert body["data"]["warning"]["kind"] == "INTERFACE_CLAIM_DEGRADED"

    def test_connect_twice(self, client):
        client.post("/api/v1.0/connect", json={})

        body = client.post("/api/v1.0/connect", json={}).json()

        assert body["code"] == 409
        assert body["kind"] == "DEVICE_ALREADY_OPEN"

    def test_connect_no_matching_device(self, client, fake_backend):
        fake_backend.devices.clear()

        body = client.post("/api/v1.0/connect", json={}).json()

        assert body["code"] == 500
        assert body["kind"] == "CONNECTION_FAILED"
        assert body["data"]["cause_kind"] == "NO_MATCHING_DEVICE"
        status = client.get("/api/v1.0/status").json()["data"]
        assert status["connection_state"] == "idle"

    def test_connect_unknown_serial(self, client):
        body = client.post("/api/v1.0/connect", json={"serial_number": "NOPE"}).json()

        assert body["kind"] == "CONNECTION_FAILED"
        assert body["data"]["cause_kind"] == "NO_DEVICE_SELECTED"

    def test_connect_invalid_product_id(self, client):
        resp = client.post("/api/v1.0/connect", json={"product_id": 0x10000})
        assert resp.status_code == 422

    def test_disconnect_is_idempotent(self, client):
        client.post("/api/v1.0/connect", json={})

        first = client.post("/api/v1.0/disconnect").json()
        second = client.post("/api/v1.0/disconnect").json()

        assert first["code"] == 200
        assert first["data"]["state"] == "disconnected"
        assert second["code"] == 200
        assert second["data"]["state"] == "disconnected"


# -----------------------------------------------------------------------
# Firmware and options
# -----------------------------------------------------------------------

@pytest.mark.unit
class TestFirmwareAndOptions:
    """POST /firmware, PUT /options"""

    def test_select_preset(self, client):
        body = client.post("/api/v1.0/firmware", json={"preset": "v1.0.0"}).json()

        assert body["code"] == 200
        assert body["data"] == {"firmware": "v1.0.0", "preset": True}

    def test_select_custom_blob(self, client):
        body = client.post(
            "/api/v1.0/firmware", json={"filename": "custom.bin", "data": "3q2+7w=="}
        ).json()

        assert body["code"] == 200
        assert body["data"] == {"firmware": "custom.bin", "preset": False}
        assert client.app.state.controller.firmware.blob == b"\xde\xad\xbe\xef"

    def test_unknown_preset_rejected(self, client):
        body = client.post("/api/v1.0/firmware", json={"preset": "v9.9.9"}).json()

        assert body["code"] == 400
        assert "Invalid firmware selection" in body["msg"]

    def test_preset_and_blob_rejected(self, client):
        body = client.post(
            "/api/v1.0/firmware",
            json={"preset": "v1.0.0", "filename": "custom.bin", "data": "AAECAw=="},
        ).json()

        assert body["code"] == 400

    def test_set_options(self, client):
        body = client.put(
            "/api/v1.0/options",
            json={"eraseBeforeWrite": False, "verifyAfterWrite": True, "resetAfterFlash": False},
        ).json()

        assert body["code"] == 200
        assert body["data"] == {
            "eraseBeforeWrite": False,
            "verifyAfterWrite": True,
            "resetAfterFlash": False,
        }


# -----------------------------------------------------------------------
# Flashing
# -----------------------------------------------------------------------

@pytest.mark.unit
class TestFlashCommands:
    """POST /flash, /cancel and GET /status while flashing"""

    def test_flash_success(self, client):
        connect_and_select(client)

        body = client.post("/api/v1.0/flash").json()

        assert body["code"] == 200
        assert body["data"]["stages"] == ["erase", "write", "verify", "reset"]

        status = wait_for_outcome(client)
        assert status["code"] == 200
        assert status["data"]["session_id"] == body["data"]["session_id"]
        assert status["data"]["flash_progress"] == 100
        assert status["data"]["outcome"]["result"] == "success"

    def test_flash_with_options(self, client):
        connect_and_select(client)
        client.put("/api/v1.0/options", json={"eraseBeforeWrite": False, "resetAfterFlash": False})

        body = client.post("/api/v1.0/flash").json()

        assert body["data"]["stages"] == ["write", "verify"]
        assert wait_for_outcome(client)["data"]["outcome"]["result"] == "success"

    def test_flash_without_connection(self, client):
        client.post("/api/v1.0/firmware", json={"preset": "v1.0.0"})

        body = client.post("/api/v1.0/flash").json()

        assert body["code"] == 409
        assert body["kind"] == "NOT_READY"
        assert "Device not connected" in body["msg"]

    def test_flash_without_firmware(self, client):
        client.post("/api/v1.0/connect", json={})

        body = client.post("/api/v1.0/flash").json()

        assert body["kind"] == "NOT_READY"
        assert "Firmware not selected" in body["msg"]

    def test_flash_missing_preset_image(self, client):
        connect_and_select(client, preset="v1.1.0-beta")

        body = client.post("/api/v1.0/flash").json()

        assert body["code"] == 409
        assert "Firmware unavailable" in body["msg"]

    def test_failed_flash_reported_in_status(self, client):
        controller = client.app.state.controller
        controller.orchestrator.programmer = FailingWriteProgrammer(time_scale=0, steps=4)
        connect_and_select(client)

        client.post("/api/v1.0/flash")
        status = wait_for_outcome(client)

        assert status["code"] == 500
        assert status["msg"] == "Flash failed: STAGE_FAILED"
        outcome = status["data"]["outcome"]
        assert outcome["result"] == "failed"
        assert outcome["stage"] == "write"
        assert outcome["cause"] == "Pipe error"
        assert status["data"]["connection_state"] == "connected"

    def test_cancel_without_session(self, client):
        body = client.post("/api/v1.0/cancel").json()

        assert body["code"] == 409
        assert body["msg"] == "No flash session running"
