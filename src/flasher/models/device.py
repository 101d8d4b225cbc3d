"""Device descriptor and USB filter table."""

from typing import Optional
from pydantic import BaseModel, ConfigDict, Field, model_validator

from flasher.models.status import ProtocolMode


STM32_VENDOR_ID = 0x0483

# Product id -> protocol mode for the STM32F4 line.
PRODUCT_MODES = {
    0x5740: ProtocolMode.DFU,
    0xDF11: ProtocolMode.BOOTLOADER,
    0x374B: ProtocolMode.VIRTUAL_COM_PORT,
    0x3748: ProtocolMode.VIRTUAL_COM_PORT,
}


class DeviceFilter(BaseModel):
    """One entry of a device filter set: vendor id plus optional product id."""

    model_config = ConfigDict(frozen=True)

    vendor_id: int = Field(..., ge=0, le=0xFFFF)
    product_id: Optional[int] = Field(None, ge=0, le=0xFFFF)

    def matches(self, vendor_id: int, product_id: int) -> bool:
        if vendor_id != self.vendor_id:
            return False
        return self.product_id is None or product_id == self.product_id


# DFU/VCP, bootloader and the two additional STM32F4 modes.
STM32_FILTERS: tuple[DeviceFilter, ...] = (
    DeviceFilter(vendor_id=STM32_VENDOR_ID, product_id=0x5740),
    DeviceFilter(vendor_id=STM32_VENDOR_ID, product_id=0xDF11),
    DeviceFilter(vendor_id=STM32_VENDOR_ID, product_id=0x374B),
    DeviceFilter(vendor_id=STM32_VENDOR_ID, product_id=0x3748),
)


def matches_any(filters, vendor_id: int, product_id: int) -> bool:
    """Check a vendor/product pair against a filter set."""
    return any(f.matches(vendor_id, product_id) for f in filters)


def protocol_mode_for(vendor_id: int, product_id: int) -> ProtocolMode:
    if vendor_id != STM32_VENDOR_ID:
        return ProtocolMode.OTHER
    return PRODUCT_MODES.get(product_id, ProtocolMode.OTHER)


class DeviceDescriptor(BaseModel):
    """Immutable snapshot of a USB device taken at discovery/open time."""

    model_config = ConfigDict(frozen=True)

    vendor_id: int = Field(..., ge=0, le=0xFFFF, description="USB idVendor")
    product_id: int = Field(..., ge=0, le=0xFFFF, description="USB idProduct")
    manufacturer: Optional[str] = Field(None, description="iManufacturer string")
    product: Optional[str] = Field(None, description="iProduct string")
    serial_number: Optional[str] = Field(None, description="iSerialNumber string")
    protocol_mode: ProtocolMode = Field(
        ProtocolMode.OTHER, description="Derived from vendor/product id if omitted"
    )
    location: Optional[str] = Field(
        None, description="Bus/address of the physical port (e.g. 'bus=1,addr=5')"
    )
    usb_version: Optional[str] = Field(None, description="bcdUSB as 'major.minor.sub'")

    @model_validator(mode="before")
    @classmethod
    def derive_protocol_mode(cls, data):
        """Fill protocol_mode from the product table when not given."""
        if isinstance(data, dict) and data.get("protocol_mode") is None:
            vendor_id = data.get("vendor_id")
            product_id = data.get("product_id")
            if isinstance(vendor_id, int) and isinstance(product_id, int):
                data = {**data, "protocol_mode": protocol_mode_for(vendor_id, product_id)}
        return data

    @property
    def usb_id(self) -> str:
        return f"{self.vendor_id:04x}:{self.product_id:04x}"

    @property
    def key(self) -> str:
        """Identity of the physical device across snapshots."""
        if self.location:
            return self.location
        if self.serial_number:
            return f"serial={self.serial_number}"
        return self.usb_id
