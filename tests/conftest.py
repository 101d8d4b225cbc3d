"""Global pytest fixtures and configuration."""

import sys
import threading
from pathlib import Path
from typing import Optional

import pytest

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from flasher.models.device import DeviceDescriptor, matches_any  # noqa: E402
from flasher.models.errors import BackendUnavailable  # noqa: E402
from flasher.services.connection import ConnectionManager  # noqa: E402
from flasher.services.discovery import DeviceDiscovery  # noqa: E402
from flasher.services.event_bus import EventBus  # noqa: E402
from flasher.services.firmware_store import FirmwareStore  # noqa: E402
from flasher.services.orchestrator import FlashOrchestrator  # noqa: E402
from flasher.services.programmer import SimulatedProgrammer  # noqa: E402
from flasher.services.transport import UsbBackend  # noqa: E402


FIRMWARE_V1 = bytes(range(256)) * 64  # 16KB image


class FakeUsbDevice:
    """Transport reference handed out by FakeUsbBackend."""

    def __init__(self, descriptor: DeviceDescriptor):
        self.descriptor = descriptor
        self.configuration: Optional[int] = None
        self.claimed: set[int] = set()
        self.closed = False


class FakeUsbBackend(UsbBackend):
    """In-memory backend with per-call failure injection.

    Set ``fail_<call>`` to an exception instance to make that call raise.
    """

    def __init__(self, devices=None):
        self.devices: list[DeviceDescriptor] = list(devices or [])
        self.unavailable = False
        self.fail_open: Optional[Exception] = None
        self.fail_configure: Optional[Exception] = None
        self.fail_claim: Optional[Exception] = None
        self.fail_release: Optional[Exception] = None
        self.fail_close: Optional[Exception] = None

        self.opened: list[FakeUsbDevice] = []
        self.released: list[FakeUsbDevice] = []
        self.closed: list[FakeUsbDevice] = []
        self.close_threads: list[int] = []

    def enumerate(self, filters):
        if self.unavailable:
            raise BackendUnavailable("libusb not found")
        return [d for d in self.devices if matches_any(filters, d.vendor_id, d.product_id)]

    def open(self, descriptor):
        if self.fail_open:
            raise self.fail_open
        device = FakeUsbDevice(descriptor)
        self.opened.append(device)
        return device

    def set_configuration(self, device, configuration):
        if self.fail_configure:
            raise self.fail_configure
        device.configuration = configuration

    def claim_interface(self, device, interface):
        if self.fail_claim:
            raise self.fail_claim
        device.claimed.add(interface)

    def release_interface(self, device, interface):
        if self.fail_release:
            raise self.fail_release
        device.claimed.discard(interface)
        self.released.append(device)

    def close(self, device):
        if self.fail_close:
            raise self.fail_close
        device.closed = True
        self.close_threads.append(threading.get_ident())
        self.closed.append(device)


class EventRecorder:
    """Event bus subscriber keeping every event in order."""

    def __init__(self):
        self.events = []

    def __call__(self, event):
        self.events.append(event)

    def of_type(self, event_type: str) -> list:
        return [e for e in self.events if e.type == event_type]


@pytest.fixture
def stm32_device():
    """STM32 in system bootloader mode."""
    return DeviceDescriptor(
        vendor_id=0x0483,
        product_id=0xDF11,
        manufacturer="STMicroelectronics",
        product="STM32  BOOTLOADER",
        serial_number="3276385A3036",
        location="bus=1,addr=7",
        usb_version="2.0.0",
    )


@pytest.fixture
def other_device():
    """Unrelated USB device (not in the filter table)."""
    return DeviceDescriptor(
        vendor_id=0x046D,
        product_id=0xC52B,
        product="USB Receiver",
        location="bus=1,addr=3",
    )


@pytest.fixture
def fake_backend(stm32_device):
    return FakeUsbBackend([stm32_device])


@pytest.fixture
def event_bus():
    return EventBus()


@pytest.fixture
def recorder(event_bus):
    recorder = EventRecorder()
    event_bus.subscribe(recorder)
    return recorder


@pytest.fixture
def discovery(fake_backend, event_bus):
    return DeviceDiscovery(fake_backend, event_bus=event_bus)


@pytest.fixture
def connection_manager(discovery, event_bus):
    return ConnectionManager(discovery, event_bus=event_bus, step_interval=0)


@pytest.fixture
def firmware_dir(tmp_path):
    """Firmware directory holding the v1.0.0 preset image only."""
    directory = tmp_path / "firmware"
    directory.mkdir()
    (directory / "hid_can_v1.0.0.bin").write_bytes(FIRMWARE_V1)
    return directory


@pytest.fixture
def firmware_store(firmware_dir):
    return FirmwareStore(str(firmware_dir))


@pytest.fixture
def programmer():
    return SimulatedProgrammer(time_scale=0, steps=4)


@pytest.fixture
def orchestrator(programmer, firmware_store, event_bus):
    return FlashOrchestrator(programmer, firmware_store, event_bus=event_bus)


@pytest.fixture
def firmware_v1():
    return FIRMWARE_V1
