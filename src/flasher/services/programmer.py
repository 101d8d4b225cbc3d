"""Device programmer contract and the timing simulation of it."""

import abc
import asyncio
import logging
from collections.abc import Callable

from flasher.models.errors import TransportError
from flasher.utils.verification import verify_image_or_raise


ProgressCallback = Callable[[float], None]


class DeviceProgrammer(abc.ABC):
    """Operations the flash pipeline runs against a connected device.

    Each stage receives the connection handle, the firmware payload and a
    ``report`` callback taking the stage's completed fraction in [0, 1].
    ``report`` raises if the device was lost; implementations must let that
    exception propagate. Any other exception fails the stage.
    """

    @abc.abstractmethod
    async def erase(self, handle, payload: bytes, report: ProgressCallback) -> None:
        pass

    @abc.abstractmethod
    async def write(self, handle, payload: bytes, report: ProgressCallback) -> None:
        pass

    @abc.abstractmethod
    async def verify(self, handle, payload: bytes, report: ProgressCallback) -> None:
        pass

    @abc.abstractmethod
    async def reset(self, handle, payload: bytes, report: ProgressCallback) -> None:
        pass


class SimulatedProgrammer(DeviceProgrammer):
    """Programmer that only simulates stage timing.

    Durations follow the web flasher this service replaces (erase 2 s,
    write 5 s, verify 3 s, reset 1 s), multiplied by ``time_scale``. The
    written image is kept per device so Verify can compare it with the
    payload.
    """

    ERASE_SECONDS = 2.0
    WRITE_SECONDS = 5.0
    VERIFY_SECONDS = 3.0
    RESET_SECONDS = 1.0

    def __init__(self, time_scale: float = 1.0, steps: int = 20):
        """Initialize simulated programmer.

        Args:
            time_scale: Multiplier applied to every stage duration
            steps: Progress reports per stage
        """
        self.logger = logging.getLogger("flasher.programmer")
        self.time_scale = time_scale
        self.steps = steps
        self.flash_memory: dict[str, bytes] = {}

    async def erase(self, handle, payload: bytes, report: ProgressCallback) -> None:
        await self._tick(self.ERASE_SECONDS, report)
        self.flash_memory[handle.descriptor.key] = b""
        self.logger.debug(f"Erased flash on {handle.descriptor.usb_id}")

    async def write(self, handle, payload: bytes, report: ProgressCallback) -> None:
        if not payload:
            raise TransportError("Empty firmware payload")

        key = handle.descriptor.key
        chunk = max(1, -(-len(payload) // self.steps))
        written = bytearray()
        delay = self.WRITE_SECONDS * self.time_scale / self.steps

        for offset in range(0, len(payload), chunk):
            await asyncio.sleep(delay)
            written += payload[offset:offset + chunk]
            report(len(written) / len(payload))

        self.flash_memory[key] = bytes(written)
        self.logger.debug(f"Wrote {len(written)} bytes to {handle.descriptor.usb_id}")

    async def verify(self, handle, payload: bytes, report: ProgressCallback) -> None:
        await self._tick(self.VERIFY_SECONDS, report)
        read_back = self.flash_memory.get(handle.descriptor.key, b"")
        try:
            verify_image_or_raise(read_back, payload)
        except ValueError as e:
            raise TransportError(str(e)) from e

    async def reset(self, handle, payload: bytes, report: ProgressCallback) -> None:
        await self._tick(self.RESET_SECONDS, report)
        self.logger.debug(f"Reset {handle.descriptor.usb_id}")

    async def _tick(self, seconds: float, report: ProgressCallback) -> None:
        delay = seconds * self.time_scale / self.steps
        for step in range(1, self.steps + 1):
            await asyncio.sleep(delay)
            report(step / self.steps)
