"""Device discovery and hot-plug monitoring."""

import asyncio
import logging
from collections.abc import Callable, Iterable
from typing import Optional

from flasher.models.device import STM32_FILTERS, DeviceDescriptor, DeviceFilter
from flasher.models.errors import BackendUnavailable, NoDeviceSelected, NoMatchingDevice
from flasher.models.events import DeviceAttached, DeviceDetached
from flasher.services.event_bus import EventBus
from flasher.services.transport import UsbBackend


Chooser = Callable[[list[DeviceDescriptor]], Optional[DeviceDescriptor]]
DeviceCallback = Callable[[DeviceDescriptor], None]


def first_device(candidates: list[DeviceDescriptor]) -> Optional[DeviceDescriptor]:
    """Default chooser: take the first candidate."""
    return candidates[0] if candidates else None


def chooser_for(
    serial_number: Optional[str] = None, product_id: Optional[int] = None
) -> Chooser:
    """Build a chooser that picks the first candidate matching the given fields.

    With no criteria it behaves like ``first_device``.
    """

    def choose(candidates: list[DeviceDescriptor]) -> Optional[DeviceDescriptor]:
        for candidate in candidates:
            if serial_number is not None and candidate.serial_number != serial_number:
                continue
            if product_id is not None and candidate.product_id != product_id:
                continue
            return candidate
        return None

    return choose


class DeviceDiscovery:
    """Enumerates matching devices and dispatches attach/detach events.

    Hot-plug is detected by polling the backend in an asyncio task and
    diffing device keys between scans. Backends with native events, and
    tests, can inject events through ``notify_attached`` and
    ``notify_detached``.
    """

    def __init__(
        self,
        backend: UsbBackend,
        filters: Iterable[DeviceFilter] = STM32_FILTERS,
        event_bus: Optional[EventBus] = None,
    ):
        self.logger = logging.getLogger("flasher.discovery")
        self.backend = backend
        self.filters = tuple(filters)
        self.event_bus = event_bus

        self._attached_callbacks: list[DeviceCallback] = []
        self._detached_callbacks: list[DeviceCallback] = []
        self._known: dict[str, DeviceDescriptor] = {}
        self._monitor_task: Optional[asyncio.Task] = None
        self._unavailable_logged = False

    async def list_known_devices(self) -> list[DeviceDescriptor]:
        """List attached devices matching the filter table.

        Returns an empty list when the USB backend is unavailable.
        """
        try:
            devices = await asyncio.to_thread(self.backend.enumerate, self.filters)
        except BackendUnavailable as e:
            if not self._unavailable_logged:
                self.logger.warning(f"USB access unavailable, discovery disabled: {e}")
                self._unavailable_logged = True
            return []
        self.logger.debug(f"Found {len(devices)} known device(s)")
        return devices

    async def request_device(
        self,
        filters: Optional[Iterable[DeviceFilter]] = None,
        chooser: Optional[Chooser] = None,
    ) -> DeviceDescriptor:
        """Select one device among those matching any filter entry.

        Args:
            filters: Filter set (defaults to the STM32 table)
            chooser: Selection callback; returning None means the user cancelled

        Raises:
            NoMatchingDevice: If no attached device matches, or USB is unavailable
            NoDeviceSelected: If the chooser declines
            TransportError: If enumeration fails
        """
        filters = self.filters if filters is None else tuple(filters)
        try:
            candidates = await asyncio.to_thread(self.backend.enumerate, filters)
        except BackendUnavailable as e:
            raise NoMatchingDevice(
                f"No attached device matches the filter set ({e})", cause=e
            ) from e
        if not candidates:
            raise NoMatchingDevice("No attached device matches the filter set")

        selected = (chooser or first_device)(candidates)
        if selected is None:
            raise NoDeviceSelected("Device selection cancelled")

        self.logger.info(
            f"Selected device {selected.usb_id} ({selected.protocol_mode.value}) "
            f"at {selected.key}"
        )
        return selected

    def on_attached(self, callback: DeviceCallback) -> Callable[[], None]:
        self._attached_callbacks.append(callback)
        return lambda: self._discard(self._attached_callbacks, callback)

    def on_detached(self, callback: DeviceCallback) -> Callable[[], None]:
        self._detached_callbacks.append(callback)
        return lambda: self._discard(self._detached_callbacks, callback)

    def notify_attached(self, device: DeviceDescriptor) -> None:
        self._known[device.key] = device
        self.logger.info(f"Device attached: {device.usb_id} at {device.key}")
        if self.event_bus:
            self.event_bus.publish(DeviceAttached(device=device))
        self._dispatch(self._attached_callbacks, device)

    def notify_detached(self, device: DeviceDescriptor) -> None:
        self._known.pop(device.key, None)
        self.logger.info(f"Device detached: {device.usb_id} at {device.key}")
        if self.event_bus:
            self.event_bus.publish(DeviceDetached(device=device))
        self._dispatch(self._detached_callbacks, device)

    async def scan(self) -> None:
        """Compare attached devices with the previous scan and emit events."""
        current = {d.key: d for d in await self.list_known_devices()}

        for key, device in list(self._known.items()):
            if key not in current:
                self.notify_detached(device)
        for key, device in current.items():
            if key not in self._known:
                self.notify_attached(device)

    async def start_monitoring(self, poll_interval: float = 1.0) -> None:
        """Start polling for hot-plug events."""
        if self._monitor_task is not None:
            return

        # Devices present at start are known, not newly attached
        self._known = {d.key: d for d in await self.list_known_devices()}
        self._monitor_task = asyncio.create_task(self._monitor_loop(poll_interval))
        self.logger.info(f"Started USB hot-plug monitoring ({len(self._known)} present)")

    async def stop_monitoring(self) -> None:
        if self._monitor_task is None:
            return
        self._monitor_task.cancel()
        try:
            await self._monitor_task
        except asyncio.CancelledError:
            pass
        self._monitor_task = None
        self.logger.info("Stopped USB hot-plug monitoring")

    @property
    def monitoring(self) -> bool:
        return self._monitor_task is not None

    async def _monitor_loop(self, poll_interval: float) -> None:
        while True:
            await asyncio.sleep(poll_interval)
            try:
                await self.scan()
            except Exception as e:
                self.logger.error(f"Hot-plug scan failed: {e}", exc_info=True)

    def _dispatch(self, callbacks: list[DeviceCallback], device: DeviceDescriptor) -> None:
        for callback in list(callbacks):
            try:
                callback(device)
            except Exception as e:
                self.logger.error(f"Error in device callback: {e}", exc_info=True)

    @staticmethod
    def _discard(callbacks: list[DeviceCallback], callback: DeviceCallback) -> None:
        if callback in callbacks:
            callbacks.remove(callback)
