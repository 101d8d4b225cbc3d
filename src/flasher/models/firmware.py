"""Firmware source and flash option models."""

from typing import Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class PresetFirmware(BaseModel):
    """Entry of the preset firmware table."""

    model_config = ConfigDict(frozen=True)

    name: str
    filename: str
    description: str


PRESET_FIRMWARE: dict[str, PresetFirmware] = {
    "v1.0.0": PresetFirmware(
        name="v1.0.0",
        filename="hid_can_v1.0.0.bin",
        description="HID to CAN bridge, stable release",
    ),
    "v1.1.0-beta": PresetFirmware(
        name="v1.1.0-beta",
        filename="hid_can_v1.1.0-beta.bin",
        description="HID to CAN bridge, beta with display support",
    ),
}


class FirmwareSource(BaseModel):
    """Firmware to flash: a preset name or a user-supplied blob.

    Exactly one variant is set. Selecting a new source replaces the whole
    value, which clears the other variant.
    """

    model_config = ConfigDict(frozen=True)

    preset: Optional[str] = Field(None, description="Name from PRESET_FIRMWARE")
    blob: Optional[bytes] = Field(None, repr=False, description="Raw firmware image")
    filename: Optional[str] = Field(None, description="Original filename of the blob")

    @field_validator("preset")
    @classmethod
    def known_preset(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and v not in PRESET_FIRMWARE:
            raise ValueError(f"Unknown preset firmware: {v}")
        return v

    @field_validator("filename")
    @classmethod
    def no_directory_traversal(cls, v: Optional[str]) -> Optional[str]:
        """Filename is display-only; reject path components."""
        if v is not None and ("/" in v or "\\" in v or ".." in v):
            raise ValueError("Filename must not contain path components")
        return v

    @model_validator(mode="after")
    def exactly_one_variant(self) -> "FirmwareSource":
        if self.preset is not None:
            if self.blob is not None or self.filename is not None:
                raise ValueError("Preset and custom blob are mutually exclusive")
        elif self.blob is None or not self.filename:
            raise ValueError("Custom firmware requires both blob and filename")
        return self

    @classmethod
    def from_preset(cls, name: str) -> "FirmwareSource":
        return cls(preset=name)

    @classmethod
    def from_blob(cls, data: bytes, filename: str) -> "FirmwareSource":
        return cls(blob=data, filename=filename)

    @property
    def is_preset(self) -> bool:
        return self.preset is not None

    @property
    def display_name(self) -> str:
        return self.preset if self.preset is not None else self.filename


class FlashOptions(BaseModel):
    """Options read once at the start of a flash run."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    erase_before_write: bool = Field(True, alias="eraseBeforeWrite")
    verify_after_write: bool = Field(True, alias="verifyAfterWrite")
    reset_after_flash: bool = Field(True, alias="resetAfterFlash")
