"""Connection manager owning the single active device handle."""

import asyncio
import logging
import uuid
from typing import Any, Optional

from flasher.models.device import DeviceDescriptor
from flasher.models.errors import (
    ConnectionFailed,
    DeviceAlreadyOpen,
    DeviceLost,
    InterfaceClaimDegraded,
    TransportError,
)
from flasher.models.events import ConnectionProgress, ConnectionStateChanged, LogLine
from flasher.models.status import ConnectionState
from flasher.services.discovery import Chooser, DeviceDiscovery
from flasher.services.event_bus import EventBus


class ConnectionHandle:
    """Open session to exactly one device.

    The transport reference belongs to the ConnectionManager; other
    components only read the handle's flags.
    """

    def __init__(
        self,
        descriptor: DeviceDescriptor,
        device: Any,
        configuration: int,
        interface_claimed: bool,
        warning: Optional[InterfaceClaimDegraded] = None,
    ):
        self.id = uuid.uuid4().hex[:8]
        self.descriptor = descriptor
        self.device = device
        self.configuration = configuration
        self.interface_claimed = interface_claimed
        self.warning = warning
        self.active_session = None

        self._ready = False
        self._open = True
        self._lost = False
        self._closed_event = asyncio.Event()

    @property
    def is_open(self) -> bool:
        return self._open

    @property
    def is_lost(self) -> bool:
        return self._lost

    @property
    def is_connected(self) -> bool:
        """True once the connect handshake finished and until the handle closes."""
        return self._ready and self._open and not self._lost

    @property
    def degraded(self) -> bool:
        return self.warning is not None

    async def wait_closed(self) -> None:
        """Block until the handle is closed, by disconnect or device removal."""
        await self._closed_event.wait()

    def _mark_ready(self) -> None:
        self._ready = True

    def _invalidate(self, lost: bool) -> None:
        self._open = False
        if lost:
            self._lost = True
        self._closed_event.set()

    def __repr__(self) -> str:
        return (
            f"ConnectionHandle(id={self.id}, device={self.descriptor.usb_id}, "
            f"open={self._open}, lost={self._lost})"
        )


class ConnectionManager:
    """Drives open → configure → claim and tracks connection state.

    State transitions:
    idle → connecting → connected → disconnected
              ↓                          ↓
             idle                    connecting
    """

    CONFIGURATION = 1
    INTERFACE = 0
    PROGRESS_STEP = 10

    def __init__(
        self,
        discovery: DeviceDiscovery,
        event_bus: Optional[EventBus] = None,
        step_interval: float = 0.2,
    ):
        """Initialize connection manager.

        Args:
            discovery: Discovery service; its backend performs the USB calls
            event_bus: Event sink for state/progress notifications
            step_interval: Seconds between 10% connection progress steps
        """
        self.logger = logging.getLogger("flasher.connection")
        self.discovery = discovery
        self.backend = discovery.backend
        self.event_bus = event_bus
        self.step_interval = step_interval

        self._state = ConnectionState.IDLE
        self._handle: Optional[ConnectionHandle] = None
        # Device being opened, and whether it detached meanwhile
        self._pending_key: Optional[str] = None
        self._pending_lost = False
        self._close_tasks: set[asyncio.Task] = set()

        discovery.on_detached(self._on_detached)

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def handle(self) -> Optional[ConnectionHandle]:
        return self._handle

    @property
    def device(self) -> Optional[DeviceDescriptor]:
        return self._handle.descriptor if self._handle else None

    async def connect(
        self,
        descriptor: Optional[DeviceDescriptor] = None,
        chooser: Optional[Chooser] = None,
    ) -> ConnectionHandle:
        """Open a device and bring the manager to ``connected``.

        Args:
            descriptor: Device to open; requested through discovery if None
            chooser: Selection callback used when descriptor is None

        Returns:
            Live ConnectionHandle

        Raises:
            DeviceAlreadyOpen: If a connection is live or in progress
            ConnectionFailed: On any failure other than interface claim
        """
        if self._state == ConnectionState.CONNECTING or (
            self._handle is not None and self._handle.is_open
        ):
            raise DeviceAlreadyOpen("A device is already open or connecting")

        self._set_state(ConnectionState.CONNECTING)
        self._log("Searching for STM32 devices in bootloader mode...")

        try:
            if descriptor is None:
                descriptor = await self.discovery.request_device(chooser=chooser)
            self._pending_key, self._pending_lost = descriptor.key, False
            self._handle = await self._open(descriptor)
            if self._pending_lost:
                raise DeviceLost(f"Device {descriptor.usb_id} went away while opening")
            await self._report_progress(self._handle)
        except Exception as e:
            await self._abort_connect()
            self.logger.error(f"Connection failed: {e}")
            self._log(f"Error: {e}")
            raise ConnectionFailed(e) from e

        self._pending_key = None
        self._handle._mark_ready()
        self._set_state(ConnectionState.CONNECTED)
        self._log("Device connected successfully")
        self.logger.info(
            f"Connected to {descriptor.usb_id} "
            f"(manufacturer={descriptor.manufacturer or 'Unknown'}, "
            f"product={descriptor.product or 'Unknown'}, "
            f"serial={descriptor.serial_number or 'Unknown'}, "
            f"degraded={self._handle.degraded})"
        )
        return self._handle

    async def disconnect(self, handle: Optional[ConnectionHandle] = None) -> None:
        """Release the interface and close the transport.

        Calling this on a closed handle, or with nothing connected, is a no-op.
        """
        handle = handle or self._handle
        if handle is None or not handle.is_open:
            self.logger.debug("Disconnect ignored: no open handle")
            return

        handle._invalidate(lost=False)
        if handle.interface_claimed:
            try:
                await asyncio.to_thread(self.backend.release_interface, handle.device, self.INTERFACE)
            except TransportError as e:
                self.logger.warning(f"Interface release failed: {e}")
        await self._close_device(handle.device)

        if handle is self._handle:
            self._handle = None
            if self._state == ConnectionState.CONNECTED:
                self._set_state(ConnectionState.DISCONNECTED)
        self.logger.info(f"Disconnected from {handle.descriptor.usb_id}")
        self._log("Device disconnected")

    async def shutdown(self) -> None:
        """Release the active handle on process teardown."""
        await self.disconnect()
        if self._close_tasks:
            await asyncio.gather(*list(self._close_tasks), return_exceptions=True)

    async def _open(self, descriptor: DeviceDescriptor) -> ConnectionHandle:
        device = await asyncio.to_thread(self.backend.open, descriptor)
        try:
            await asyncio.to_thread(self.backend.set_configuration, device, self.CONFIGURATION)
        except Exception:
            await self._close_device(device)
            raise

        warning = None
        try:
            await asyncio.to_thread(self.backend.claim_interface, device, self.INTERFACE)
            self._log("Claimed interface successfully")
        except TransportError as e:
            # Control-only transfers can still work without the claim
            warning = InterfaceClaimDegraded(str(e), cause=e)
            self.logger.warning(f"Interface claim failed, continuing degraded: {e}")
            self._log("Could not claim interface, continuing with connection")

        return ConnectionHandle(
            descriptor=descriptor,
            device=device,
            configuration=self.CONFIGURATION,
            interface_claimed=warning is None,
            warning=warning,
        )

    async def _report_progress(self, handle: ConnectionHandle) -> None:
        for percent in range(self.PROGRESS_STEP, 101, self.PROGRESS_STEP):
            await asyncio.sleep(self.step_interval)
            if not handle.is_open:
                raise DeviceLost(f"Device {handle.descriptor.usb_id} went away while connecting")
            self._publish(ConnectionProgress(percent=percent))

    async def _abort_connect(self) -> None:
        handle, self._handle = self._handle, None
        self._pending_key = None
        if handle is not None and handle.is_open:
            handle._invalidate(lost=False)
            await self._close_device(handle.device)
        self._set_state(ConnectionState.IDLE)

    def _on_detached(self, descriptor: DeviceDescriptor) -> None:
        if descriptor.key == self._pending_key:
            self._pending_lost = True

        handle = self._handle
        if handle is None or handle.descriptor.key != descriptor.key:
            return

        self.logger.warning(f"Active device {descriptor.usb_id} detached")
        handle._invalidate(lost=True)
        self._close_in_background(handle.device)
        self._log("Device disconnected")

        # A connect in progress aborts on its own and returns to idle
        if self._state == ConnectionState.CONNECTED:
            self._handle = None
            self._set_state(ConnectionState.DISCONNECTED)

    async def _close_device(self, device: Any) -> None:
        try:
            await asyncio.to_thread(self.backend.close, device)
        except TransportError as e:
            self.logger.warning(f"Transport close failed: {e}")

    def _close_in_background(self, device: Any) -> None:
        task = asyncio.ensure_future(self._close_device(device))
        self._close_tasks.add(task)
        task.add_done_callback(self._close_tasks.discard)

    def _set_state(self, state: ConnectionState) -> None:
        if state == self._state:
            return
        self.logger.debug(f"Connection state: {self._state.value} -> {state.value}")
        self._state = state
        self._publish(ConnectionStateChanged(state=state))

    def _log(self, text: str) -> None:
        self._publish(LogLine(text=text))

    def _publish(self, event) -> None:
        if self.event_bus:
            self.event_bus.publish(event)
