"""Resolves firmware sources into payload bytes."""

import logging
from pathlib import Path

import aiofiles

from flasher.models.firmware import PRESET_FIRMWARE, FirmwareSource, PresetFirmware


class FirmwareStore:
    """Loads preset images from a directory; custom blobs pass through."""

    def __init__(self, firmware_dir: str = "./firmware"):
        self.logger = logging.getLogger("flasher.firmware")
        self.firmware_dir = Path(firmware_dir)

    def presets(self) -> list[PresetFirmware]:
        return list(PRESET_FIRMWARE.values())

    def preset_path(self, name: str) -> Path:
        return self.firmware_dir / PRESET_FIRMWARE[name].filename

    def is_available(self, name: str) -> bool:
        return self.preset_path(name).is_file()

    async def load(self, source: FirmwareSource) -> bytes:
        """Return the payload bytes for a firmware source.

        Raises:
            FileNotFoundError: If a preset image is missing
            ValueError: If the resolved payload is empty
        """
        if source.is_preset:
            path = self.preset_path(source.preset)
            if not path.is_file():
                raise FileNotFoundError(f"Preset image not found: {path}")
            async with aiofiles.open(path, "rb") as f:
                payload = await f.read()
            self.logger.info(f"Loaded preset {source.preset}: {len(payload)} bytes from {path}")
        else:
            payload = source.blob
            self.logger.info(f"Using custom firmware {source.filename}: {len(payload)} bytes")

        if not payload:
            raise ValueError(f"Firmware {source.display_name} is empty")
        return payload
