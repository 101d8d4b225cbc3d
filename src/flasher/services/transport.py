"""USB transport backends."""

import abc
import logging
from typing import Any, Iterable, Optional

import usb.core
import usb.util

from flasher.models.device import DeviceDescriptor, DeviceFilter, matches_any
from flasher.models.errors import BackendUnavailable, TransportError


logger = logging.getLogger("flasher.transport")

# errno reported by libusb when the configuration is already active
EBUSY = 16


class UsbBackend(abc.ABC):
    """Blocking USB primitives used by discovery and the connection manager.

    All methods raise ``TransportError`` on failure. ``enumerate`` raises
    ``BackendUnavailable`` when the host has no usable USB stack.
    """

    @abc.abstractmethod
    def enumerate(self, filters: Iterable[DeviceFilter]) -> list[DeviceDescriptor]:
        """List attached devices matching any of the filters."""

    @abc.abstractmethod
    def open(self, descriptor: DeviceDescriptor) -> Any:
        """Open the device and return a transport reference."""

    @abc.abstractmethod
    def set_configuration(self, device: Any, configuration: int) -> None:
        pass

    @abc.abstractmethod
    def claim_interface(self, device: Any, interface: int) -> None:
        pass

    @abc.abstractmethod
    def release_interface(self, device: Any, interface: int) -> None:
        pass

    @abc.abstractmethod
    def close(self, device: Any) -> None:
        pass


class PyUsbBackend(UsbBackend):
    """libusb access through pyusb."""

    def enumerate(self, filters: Iterable[DeviceFilter]) -> list[DeviceDescriptor]:
        filters = tuple(filters)
        try:
            devices = usb.core.find(
                find_all=True,
                custom_match=lambda d: matches_any(filters, d.idVendor, d.idProduct),
            )
            return [self._describe(d) for d in devices]
        except usb.core.NoBackendError as e:
            raise BackendUnavailable(f"No USB backend available: {e}") from e
        except usb.core.USBError as e:
            raise TransportError(f"USB enumeration failed: {e}") from e

    def open(self, descriptor: DeviceDescriptor) -> Any:
        def same_port(d) -> bool:
            return descriptor.location is None or self._location(d) == descriptor.location

        try:
            device = usb.core.find(
                idVendor=descriptor.vendor_id,
                idProduct=descriptor.product_id,
                custom_match=same_port,
            )
        except usb.core.NoBackendError as e:
            raise BackendUnavailable(f"No USB backend available: {e}") from e
        except usb.core.USBError as e:
            raise TransportError(f"Failed to open {descriptor.usb_id}: {e}") from e

        if device is None:
            raise TransportError(f"Device {descriptor.usb_id} not present")
        return device

    def set_configuration(self, device: Any, configuration: int) -> None:
        try:
            device.set_configuration(configuration)
        except usb.core.USBError as e:
            if e.errno == EBUSY:
                logger.debug(f"Configuration {configuration} already active")
                return
            raise TransportError(f"Failed to select configuration {configuration}: {e}") from e

    def claim_interface(self, device: Any, interface: int) -> None:
        try:
            usb.util.claim_interface(device, interface)
        except usb.core.USBError as e:
            raise TransportError(f"Failed to claim interface {interface}: {e}") from e

    def release_interface(self, device: Any, interface: int) -> None:
        try:
            usb.util.release_interface(device, interface)
        except usb.core.USBError as e:
            raise TransportError(f"Failed to release interface {interface}: {e}") from e

    def close(self, device: Any) -> None:
        try:
            usb.util.dispose_resources(device)
        except usb.core.USBError as e:
            raise TransportError(f"Failed to close device: {e}") from e

    def _describe(self, device: Any) -> DeviceDescriptor:
        return DeviceDescriptor(
            vendor_id=device.idVendor,
            product_id=device.idProduct,
            manufacturer=self._get_string(device, device.iManufacturer),
            product=self._get_string(device, device.iProduct),
            serial_number=self._get_string(device, device.iSerialNumber),
            location=self._location(device),
            usb_version=self._bcd_version(device.bcdUSB),
        )

    @staticmethod
    def _location(device: Any) -> str:
        return f"bus={device.bus},addr={device.address}"

    @staticmethod
    def _bcd_version(bcd: int) -> str:
        return f"{bcd >> 8}.{(bcd >> 4) & 0xF}.{bcd & 0xF}"

    @staticmethod
    def _get_string(device: Any, index: int) -> Optional[str]:
        # String descriptors need device access rights; missing ones stay None
        if not index:
            return None
        try:
            return usb.util.get_string(device, index)
        except (usb.core.USBError, ValueError, NotImplementedError) as e:
            logger.debug(f"Could not read string descriptor {index}: {e}")
            return None
